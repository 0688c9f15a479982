"""QR code generation with input validation."""

from __future__ import annotations

import logging
from typing import Callable, Optional, Protocol

MIN_SIZE = 1
MAX_SIZE = 2048
PREVIEW_CHARS = 50

Encoder = Callable[[bytes, int, int], bytes]


class DependencyError(RuntimeError):
    """Raised when a required runtime dependency is missing."""


class QRGenerationError(Exception):
    """Base class for generation failures."""


class InvalidInputError(QRGenerationError):
    pass


class EncodingFailureError(QRGenerationError):
    pass


class Generator(Protocol):
    def generate(self, payload: bytes, size: int) -> bytes:
        ...


def load_encoder() -> Encoder:
    try:
        from .engine import encode
    except ModuleNotFoundError as exc:
        if exc.name in ("qrcode", "PIL"):
            raise DependencyError(
                f"Missing dependency '{exc.name}'. Install project dependencies with "
                "'pip install -e .'."
            ) from exc
        raise
    return encode


def medium_error_correction() -> int:
    from .engine import MEDIUM

    return MEDIUM


def truncate_preview(payload: bytes, limit: int = PREVIEW_CHARS) -> str:
    text = payload.decode("utf-8", errors="replace")
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


class QRService:
    """Validates requests and hands them to the encoder.

    The error-correction level is fixed at Medium (about 15% recovery) for
    every request.
    """

    def __init__(
        self,
        logger: logging.Logger,
        encoder: Optional[Encoder] = None,
        error_correction: Optional[int] = None,
    ) -> None:
        self.logger = logger
        self.encoder = encoder if encoder is not None else load_encoder()
        self.error_correction = (
            error_correction if error_correction is not None else medium_error_correction()
        )

    def generate(self, payload: bytes, size: int) -> bytes:
        self.logger.debug(
            "Starting QR code generation",
            extra={"fields": {"data_length": len(payload), "size": size}},
        )

        if not payload:
            self.logger.warning("QR code generation failed: empty data provided")
            raise InvalidInputError("data cannot be empty")

        if size < MIN_SIZE or size > MAX_SIZE:
            self.logger.warning(
                "QR code generation failed: invalid size",
                extra={
                    "fields": {
                        "data_length": len(payload),
                        "size": size,
                        "min": MIN_SIZE,
                        "max": MAX_SIZE,
                    }
                },
            )
            raise InvalidInputError(f"invalid size: must be between {MIN_SIZE} and {MAX_SIZE}")

        self.logger.debug(
            "Encoding QR code",
            extra={
                "fields": {
                    "recovery_level": "Medium",
                    "data_preview": truncate_preview(payload),
                }
            },
        )

        try:
            png = self.encoder(payload, self.error_correction, size)
        except Exception as exc:
            self.logger.error(
                "Failed to encode QR code",
                exc_info=True,
                extra={
                    "fields": {
                        "error": str(exc),
                        "data_length": len(payload),
                        "size": size,
                        "data_preview": truncate_preview(payload),
                    }
                },
            )
            raise EncodingFailureError(f"failed to encode QR code: {exc}") from exc

        self.logger.debug(
            "QR code generated successfully",
            extra={
                "fields": {
                    "output_size_bytes": len(png),
                    "image_dimensions": f"{size}x{size}",
                }
            },
        )
        return png
