"""Public package API for QR code generation."""

from __future__ import annotations

import logging
from typing import Optional

from .config import ServiceConfig

__version__ = "1.0.0"


def generate_qr(data: bytes, size: int = 256, logger: Optional[logging.Logger] = None) -> bytes:
    from .service import QRService

    if logger is None:
        logger = logging.Logger(__name__)
        logger.addHandler(logging.NullHandler())
    return QRService(logger).generate(data, size)


def run(config: Optional[ServiceConfig] = None) -> int:
    from .__main__ import serve

    return serve(config)


__all__ = ["ServiceConfig", "generate_qr", "run", "__version__"]
