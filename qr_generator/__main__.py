"""Module entrypoint for running the QR generation server."""

from __future__ import annotations

from typing import Optional

from .config import ServiceConfig, load_config
from .logging_config import setup_logging
from .service import DependencyError, QRService
from .supervisor import Supervisor


def serve(config: Optional[ServiceConfig] = None) -> int:
    config = config if config is not None else load_config()
    logger = setup_logging(config.log_env, config.log_level)
    logger.debug(
        "Configuration loaded",
        extra={
            "fields": {
                "port": config.port,
                "read_timeout": config.read_timeout,
                "write_timeout": config.write_timeout,
                "shutdown_timeout": config.shutdown_timeout,
                "max_body_size": config.max_body_bytes,
            }
        },
    )

    try:
        service = QRService(logger)
    except DependencyError as exc:
        logger.error(str(exc))
        return 1
    logger.debug("QR service initialized")

    return Supervisor(config, logger, service).run()


def main() -> None:
    raise SystemExit(serve())


if __name__ == "__main__":
    main()
