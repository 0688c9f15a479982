"""Server lifecycle: startup, signal wait and bounded graceful shutdown.

State machine::

    STARTING --bind ok--> SERVING --SIGINT/SIGTERM--> SHUTTING_DOWN --drained or timeout--> STOPPED
    STARTING --bind failed--> STOPPED
    SERVING --serve loop failed--> STOPPED
"""

from __future__ import annotations

import enum
import logging
import signal
import threading
import time
from types import FrameType
from typing import Any, Dict, Optional, Tuple

from .config import ServiceConfig
from .server import ROUTES, QRHTTPServer
from .service import Generator, QRService

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ServerState(enum.Enum):
    STARTING = "starting"
    SERVING = "serving"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class ListenerError(RuntimeError):
    """Raised when the listener cannot be bound."""


class ShutdownTimeoutError(RuntimeError):
    """Raised when in-flight requests outlive the shutdown timeout."""


class Supervisor:
    def __init__(
        self,
        config: ServiceConfig,
        logger: logging.Logger,
        service: Optional[Generator] = None,
    ) -> None:
        self.config = config
        self.logger = logger
        self.service = service if service is not None else QRService(logger)
        self.state = ServerState.STARTING
        self.server: Optional[QRHTTPServer] = None
        self.serve_error: Optional[BaseException] = None
        self.received_signal: Optional[int] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _transition(self, new_state: ServerState) -> None:
        self.logger.debug(
            "Server state changed",
            extra={"fields": {"from": self.state.value, "to": new_state.value}},
        )
        self.state = new_state

    @property
    def address(self) -> Tuple[str, int]:
        if self.server is None:
            raise RuntimeError("server has not been started")
        host, port = self.server.server_address[:2]
        return str(host), int(port)

    def start(self) -> None:
        """Bind the listener and serve on a background thread."""
        if self.state is not ServerState.STARTING:
            raise RuntimeError(f"cannot start from state {self.state.value}")

        addr = (self.config.host, self.config.port)
        try:
            server = QRHTTPServer(addr, self.service, self.config, self.logger)
        except OSError as exc:
            self.logger.error(
                "Server failed to start",
                extra={"fields": {"error": str(exc), "addr": f"{addr[0]}:{addr[1]}"}},
            )
            self._transition(ServerState.STOPPED)
            raise ListenerError(f"failed to bind {addr[0]}:{addr[1]}: {exc}") from exc

        self.server = server
        self.logger.debug("HTTP routes registered", extra={"fields": {"endpoints": list(ROUTES)}})
        self.logger.debug(
            "HTTP server configured",
            extra={
                "fields": {
                    "addr": "%s:%s" % self.address,
                    "read_timeout": self.config.read_timeout,
                    "write_timeout": self.config.write_timeout,
                    "read_header_timeout": self.config.read_header_timeout,
                    "idle_timeout": self.config.idle_timeout,
                    "max_body_size": self.config.max_body_bytes,
                }
            },
        )

        self._transition(ServerState.SERVING)
        self._thread = threading.Thread(target=self._serve, args=(server,), name="qr-generator-http", daemon=True)
        self._thread.start()

    def _serve(self, server: QRHTTPServer) -> None:
        host, port = server.server_address[:2]
        self.logger.info("Starting server", extra={"fields": {"port": port, "addr": f"{host}:{port}"}})
        try:
            server.serve_forever()
        except Exception as exc:
            self.serve_error = exc
            self.logger.error("Server stopped unexpectedly", exc_info=True, extra={"fields": {"error": str(exc)}})
            self._stop.set()

    def request_stop(self, signum: Optional[int] = None) -> None:
        self.received_signal = signum
        self._stop.set()

    def _handle_signal(self, signum: int, frame: Optional[FrameType]) -> None:
        self.request_stop(signum)

    def wait(self) -> Optional[int]:
        """Block until a stop is requested; return the signal number, if any."""
        self._stop.wait()
        return self.received_signal

    def shutdown(self) -> None:
        """Stop accepting connections and drain in-flight requests.

        Raises ShutdownTimeoutError when requests are still running once the
        configured shutdown timeout has elapsed.
        """
        if self.state is not ServerState.SERVING or self.server is None:
            return

        self._transition(ServerState.SHUTTING_DOWN)
        deadline = time.monotonic() + self.config.shutdown_timeout
        self.server.begin_draining()
        self.server.shutdown()
        self.server.server_close()
        if self._thread is not None:
            self._thread.join(max(0.0, deadline - time.monotonic()))

        drained = self.server.wait_idle(max(0.0, deadline - time.monotonic()))
        self._transition(ServerState.STOPPED)
        if not drained:
            self.logger.error(
                "Server forced to shutdown",
                extra={
                    "fields": {
                        "inflight": self.server.inflight,
                        "timeout": self.config.shutdown_timeout,
                    }
                },
            )
            raise ShutdownTimeoutError(
                f"{self.server.inflight} request(s) still running after {self.config.shutdown_timeout}s"
            )
        self.logger.info("Server exited gracefully")

    def _abort(self) -> None:
        self._transition(ServerState.STOPPED)
        if self.server is not None:
            self.server.server_close()

    def run(self) -> int:
        """Run the full lifecycle and return the process exit code."""
        previous: Dict[int, Any] = {}
        for signum in SHUTDOWN_SIGNALS:
            previous[signum] = signal.signal(signum, self._handle_signal)
        try:
            try:
                self.start()
            except ListenerError:
                return 1

            signum = self.wait()
        finally:
            for restored, handler in previous.items():
                signal.signal(restored, handler)

        if self.serve_error is not None:
            self._abort()
            return 1

        signal_name = signal.Signals(signum).name if signum is not None else "none"
        self.logger.info("Shutdown signal received", extra={"fields": {"signal": signal_name}})
        self.logger.debug(
            "Initiating graceful shutdown",
            extra={"fields": {"timeout": self.config.shutdown_timeout}},
        )
        try:
            self.shutdown()
        except ShutdownTimeoutError:
            return 1
        return 0
