"""HTTP transport for QR code generation."""

from __future__ import annotations

import json
import logging
import re
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, Optional, Tuple
from urllib.parse import parse_qs, urlsplit

from .config import ServiceConfig
from .net import (
    BodyReadError,
    BodyTooLargeError,
    InvalidContentLengthError,
    discard_body,
    is_client_disconnect,
    read_body,
)
from .service import MAX_SIZE, MIN_SIZE, Generator, QRGenerationError

GENERATE_PATH = "/generate"
HEALTH_PATH = "/health"
ROUTES = (GENERATE_PATH, HEALTH_PATH)
DEFAULT_SIZE = 256

_SIGNED_INT = re.compile(r"[+-]?[0-9]+")


class InvalidSizeParameter(ValueError):
    pass


def parse_size_param(raw: Optional[str]) -> int:
    """Return the requested image size, or DEFAULT_SIZE when ``raw`` is absent or blank."""
    if not raw:
        return DEFAULT_SIZE
    if not _SIGNED_INT.fullmatch(raw):
        raise InvalidSizeParameter(f"size {raw!r} is not an integer")
    try:
        value = int(raw)
    except ValueError as exc:
        raise InvalidSizeParameter(f"size {raw[:20]!r}... is not a usable integer") from exc
    if value < MIN_SIZE or value > MAX_SIZE:
        raise InvalidSizeParameter(f"size {value} is out of range")
    return value


class QRHandler(BaseHTTPRequestHandler):
    server: "QRHTTPServer"
    protocol_version = "HTTP/1.1"
    server_version = "qr-generator"

    def setup(self) -> None:
        super().setup()
        self.requests_handled = 0

    @property
    def logger(self) -> logging.Logger:
        return self.server.logger

    @property
    def config(self) -> ServiceConfig:
        return self.server.config

    def _remote_addr(self) -> str:
        host, port = self.client_address[:2]
        return f"{host}:{port}"

    def _body_pending(self) -> bool:
        if self.headers.get("Transfer-Encoding") is not None:
            return True
        return (self.headers.get("Content-Length") or "0").strip() != "0"

    def _write_response(
        self,
        status: int,
        content_type: str,
        body: bytes,
        headers: Optional[Dict[str, str]] = None,
    ) -> bool:
        self.connection.settimeout(self.config.write_timeout)
        try:
            self.send_response(status)
            self.send_header("Content-Type", content_type)
            self.send_header("Content-Length", str(len(body)))
            for name, value in (headers or {}).items():
                self.send_header(name, value)
            if self.close_connection:
                self.send_header("Connection", "close")
            self.end_headers()
            if self.command != "HEAD":
                self.wfile.write(body)
            return True
        except OSError as exc:
            self.close_connection = True
            fields = {
                "error": repr(exc),
                "status": status,
                "body_size": len(body),
                "remote_addr": self._remote_addr(),
            }
            if is_client_disconnect(exc):
                self.logger.debug("Client disconnected before response was written", extra={"fields": fields})
            else:
                self.logger.error("failed to write response", extra={"fields": fields})
            return False

    def _send_json(self, status: int, payload: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> bool:
        body = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        return self._write_response(status, "application/json", body, headers)

    def _send_error_json(self, status: int, error: str, detail: str, headers: Optional[Dict[str, str]] = None) -> bool:
        merged = {"X-Content-Type-Options": "nosniff"}
        merged.update(headers or {})
        return self._send_json(status, {"error": error, "detail": detail}, merged)

    def _dispatch(self) -> None:
        path = urlsplit(self.path).path
        self.body_read = False
        self.server.begin_request()
        try:
            if self.server.draining:
                self.close_connection = True
            if path == GENERATE_PATH:
                self.handle_generate()
            elif path == HEALTH_PATH:
                self.handle_health()
            else:
                if self._body_pending():
                    self.close_connection = True
                self._send_error_json(404, "not_found", "Unsupported endpoint.")
            if not self.body_read and self._body_pending():
                self._discard_unread_body()
        finally:
            if self.server.draining:
                self.close_connection = True
            self.requests_handled += 1
            self.server.end_request()

    def _discard_unread_body(self) -> None:
        self.connection.settimeout(self.config.read_timeout)
        try:
            discard_body(self.rfile, self.headers)
        except OSError as exc:
            self.logger.debug(
                "Failed to discard unread request body",
                extra={"fields": {"error": repr(exc), "remote_addr": self._remote_addr()}},
            )

    def __getattr__(self, name: str) -> Any:
        # every request method, including extension methods, is routed
        if name.startswith("do_"):
            return self._dispatch
        raise AttributeError(name)

    def handle_generate(self) -> None:
        remote_addr = self._remote_addr()
        self.logger.debug(
            "Received QR generation request",
            extra={
                "fields": {
                    "method": self.command,
                    "remote_addr": remote_addr,
                    "user_agent": self.headers.get("User-Agent", ""),
                    "content_length": self.headers.get("Content-Length"),
                }
            },
        )

        if self.command != "POST":
            self.logger.warning(
                "Method not allowed",
                extra={"fields": {"method": self.command, "expected": "POST", "remote_addr": remote_addr}},
            )
            if self._body_pending():
                self.close_connection = True
            self._send_error_json(405, "method_not_allowed", "Method not allowed.", {"Allow": "POST"})
            return

        max_body_bytes = self.config.max_body_bytes
        self.logger.debug("Reading request body", extra={"fields": {"max_size": max_body_bytes}})
        self.connection.settimeout(self.config.read_timeout)
        try:
            body = read_body(self.rfile, self.headers, max_body_bytes)
        except BodyTooLargeError:
            self.logger.warning(
                "Request body too large",
                extra={"fields": {"max_allowed": max_body_bytes, "remote_addr": remote_addr}},
            )
            self.close_connection = True
            self._send_error_json(413, "payload_too_large", f"Body exceeds {max_body_bytes} bytes.")
            return
        except InvalidContentLengthError as exc:
            self.logger.warning(
                "Invalid Content-Length header",
                extra={"fields": {"error": str(exc), "remote_addr": remote_addr}},
            )
            self.close_connection = True
            self._send_error_json(400, "invalid_content_length", "Content-Length must be a non-negative integer.")
            return
        except (BodyReadError, OSError) as exc:
            self.body_read = True
            self.logger.error(
                "failed to read request body",
                extra={"fields": {"error": repr(exc), "remote_addr": remote_addr}},
            )
            self.close_connection = True
            self._send_error_json(500, "body_read_failed", "Failed to read request body.")
            return

        self.body_read = True
        self.logger.debug("Request body read successfully", extra={"fields": {"body_size": len(body)}})

        if not body:
            self.logger.warning("Empty request body received", extra={"fields": {"remote_addr": remote_addr}})
            self._send_error_json(400, "empty_body", "Request body is empty.")
            return

        query = parse_qs(urlsplit(self.path).query, keep_blank_values=True)
        raw_size = query.get("size", [""])[0]
        try:
            size = parse_size_param(raw_size)
        except InvalidSizeParameter as exc:
            self.logger.warning(
                "Invalid size parameter",
                extra={
                    "fields": {
                        "size_str": raw_size,
                        "error": str(exc),
                        "min": MIN_SIZE,
                        "max": MAX_SIZE,
                        "remote_addr": remote_addr,
                    }
                },
            )
            self._send_error_json(
                400,
                "invalid_size",
                f"Invalid size parameter: must be between {MIN_SIZE} and {MAX_SIZE}.",
            )
            return
        if raw_size:
            self.logger.debug("Size parameter parsed", extra={"fields": {"size": size}})
        else:
            self.logger.debug("Using default size", extra={"fields": {"size": size}})

        self.logger.debug(
            "Calling QR generation service",
            extra={"fields": {"data_length": len(body), "size": size}},
        )
        try:
            png = self.server.service.generate(body, size)
        except QRGenerationError as exc:
            self.logger.error(
                "failed to generate QR code",
                extra={
                    "fields": {
                        "error": str(exc),
                        "data_length": len(body),
                        "size": size,
                        "remote_addr": remote_addr,
                    }
                },
            )
            self._send_error_json(500, "internal_error", "Internal server error.")
            return

        self.logger.debug(
            "QR code generated successfully",
            extra={"fields": {"png_size": len(png), "remote_addr": remote_addr}},
        )
        if not self._write_response(200, "image/png", png):
            return

        self.logger.info(
            "QR code request completed successfully",
            extra={
                "fields": {
                    "data_length": len(body),
                    "size": size,
                    "output_size": len(png),
                    "remote_addr": remote_addr,
                }
            },
        )

    def handle_health(self) -> None:
        self.logger.debug(
            "Health check request received",
            extra={"fields": {"method": self.command, "remote_addr": self._remote_addr()}},
        )
        if self._body_pending():
            self.close_connection = True
        self._send_json(200, {"status": "ok"})

    def handle_one_request(self) -> None:
        if self.requests_handled == 0:
            self.connection.settimeout(self.config.read_header_timeout)
        else:
            self.connection.settimeout(self.config.idle_timeout)
        try:
            super().handle_one_request()
        except Exception as exc:
            if is_client_disconnect(exc):
                self.close_connection = True
                return
            raise

    def parse_request(self) -> bool:
        self.connection.settimeout(self.config.read_header_timeout)
        return super().parse_request()

    def log_message(self, format: str, *args: Any) -> None:
        self.logger.debug(format % args, extra={"fields": {"remote_addr": self._remote_addr()}})


class QRHTTPServer(ThreadingHTTPServer):
    """Threaded server holding the collaborators shared by every request.

    It also counts requests in flight so a supervisor can drain them on
    shutdown.
    """

    daemon_threads = True
    allow_reuse_address = True

    def __init__(
        self,
        server_address: Tuple[str, int],
        service: Generator,
        config: ServiceConfig,
        logger: logging.Logger,
        handler_class: type = QRHandler,
    ) -> None:
        self.service = service
        self.config = config
        self.logger = logger
        self.request_queue_size = config.listen_backlog
        self.draining = False
        self._inflight = 0
        self._inflight_cond = threading.Condition()
        super().__init__(server_address, handler_class)

    @property
    def inflight(self) -> int:
        with self._inflight_cond:
            return self._inflight

    def begin_request(self) -> None:
        with self._inflight_cond:
            self._inflight += 1

    def end_request(self) -> None:
        with self._inflight_cond:
            self._inflight -= 1
            if self._inflight == 0:
                self._inflight_cond.notify_all()

    def begin_draining(self) -> None:
        self.draining = True

    def wait_idle(self, timeout: float) -> bool:
        with self._inflight_cond:
            return self._inflight_cond.wait_for(lambda: self._inflight == 0, timeout=timeout)

    def handle_error(self, request: Any, client_address: Tuple[str, int]) -> None:
        self.logger.error(
            "Unhandled error while serving request",
            exc_info=True,
            extra={"fields": {"remote_addr": f"{client_address[0]}:{client_address[1]}"}},
        )
