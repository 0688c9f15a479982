"""Network-related helpers."""

from __future__ import annotations

import errno
import re
from typing import BinaryIO, List, Mapping, Optional

DISCONNECT_ERRNOS = {
    errno.EPIPE,
    errno.ECONNRESET,
    errno.ETIMEDOUT,
}
if hasattr(errno, "WSAECONNRESET"):
    DISCONNECT_ERRNOS.add(errno.WSAECONNRESET)  # pragma: no cover

MAX_CHUNK_LINE = 4096
DISCARD_LIMIT = 256 * 1024
_DECIMAL = re.compile(r"[0-9]+")
_HEX = re.compile(r"[0-9A-Fa-f]+")


class BodyReadError(Exception):
    """The request body could not be read."""


class BodyTooLargeError(BodyReadError):
    def __init__(self, limit: int) -> None:
        super().__init__(f"request body exceeds {limit} bytes")
        self.limit = limit


class InvalidContentLengthError(BodyReadError):
    pass


def is_client_disconnect(exc: BaseException) -> bool:
    if isinstance(exc, (BrokenPipeError, ConnectionResetError, TimeoutError)):
        return True
    return isinstance(exc, OSError) and exc.errno in DISCONNECT_ERRNOS


def parse_content_length(header: Optional[str]) -> Optional[int]:
    if header is None:
        return None
    value = header.strip()
    if not _DECIMAL.fullmatch(value):
        raise InvalidContentLengthError(f"invalid Content-Length {header!r}")
    try:
        return int(value)
    except ValueError as exc:
        raise InvalidContentLengthError(f"invalid Content-Length {value[:20]!r}...") from exc


def _read_line(rfile: BinaryIO) -> bytes:
    line = rfile.readline(MAX_CHUNK_LINE + 1)
    if len(line) > MAX_CHUNK_LINE:
        raise BodyReadError("chunk line too long")
    return line


def read_chunked_body(rfile: BinaryIO, limit: int) -> bytes:
    """Decode a chunked body, failing as soon as the decoded size passes ``limit``."""
    chunks: List[bytes] = []
    total = 0
    while True:
        line = _read_line(rfile)
        if not line:
            raise BodyReadError("unexpected end of chunked body")
        size_field = line.split(b";", 1)[0].strip().decode("ascii", errors="replace")
        if not _HEX.fullmatch(size_field):
            raise BodyReadError(f"invalid chunk size {size_field!r}")
        chunk_size = int(size_field, 16)
        if chunk_size == 0:
            break
        if total + chunk_size > limit:
            raise BodyTooLargeError(limit)

        data = rfile.read(chunk_size)
        if len(data) < chunk_size:
            raise BodyReadError("truncated chunk")
        chunks.append(data)
        total += chunk_size

        if _read_line(rfile) not in (b"\r\n", b"\n"):
            raise BodyReadError("missing chunk terminator")

    # trailer section
    while True:
        line = _read_line(rfile)
        if line in (b"", b"\r\n", b"\n"):
            break
    return b"".join(chunks)


def read_body(rfile: BinaryIO, headers: Mapping[str, str], limit: int) -> bytes:
    """Read a request body of at most ``limit`` bytes.

    A declared Content-Length above the limit is rejected before anything is
    read. A request with neither Content-Length nor chunked framing has an
    empty body.
    """
    transfer_encoding = headers.get("Transfer-Encoding")
    if transfer_encoding is not None:
        if transfer_encoding.strip().lower() != "chunked":
            raise BodyReadError(f"unsupported Transfer-Encoding {transfer_encoding!r}")
        return read_chunked_body(rfile, limit)

    length = parse_content_length(headers.get("Content-Length"))
    if length is None or length == 0:
        return b""
    if length > limit:
        raise BodyTooLargeError(limit)

    data = rfile.read(length)
    if len(data) < length:
        raise BodyReadError(f"truncated body: expected {length} bytes, got {len(data)}")
    return data


def discard_body(rfile: BinaryIO, headers: Mapping[str, str], limit: int = DISCARD_LIMIT) -> bool:
    """Read and drop an unread Content-Length body of at most ``limit`` bytes."""
    if headers.get("Transfer-Encoding") is not None:
        return False
    try:
        length = parse_content_length(headers.get("Content-Length"))
    except InvalidContentLengthError:
        return False
    if not length or length > limit:
        return False
    return len(rfile.read(length)) == length
