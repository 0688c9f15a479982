import http.client
import logging
import os
import signal
import socket
import threading
import time
import unittest
from typing import Callable, List, Optional
from unittest.mock import patch

from qr_generator.config import ServiceConfig
from qr_generator.server import QRHTTPServer
from qr_generator.supervisor import ListenerError, ServerState, ShutdownTimeoutError, Supervisor

STUB_PNG = b"\x89PNG\r\n\x1a\nstub"


def quiet_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.propagate = False
    if not logger.handlers:
        logger.addHandler(logging.NullHandler())
    logger.setLevel(logging.DEBUG)
    return logger


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class BlockingService:
    def __init__(self) -> None:
        self.release = threading.Event()
        self.entered = threading.Event()

    def generate(self, payload: bytes, size: int) -> bytes:
        self.entered.set()
        self.release.wait(10)
        return STUB_PNG


class StubService:
    def generate(self, payload: bytes, size: int) -> bytes:
        return STUB_PNG


def make_config(**overrides) -> ServiceConfig:
    values = {"host": "127.0.0.1", "port": 0, "shutdown_timeout_ms": 2000}
    values.update(overrides)
    return ServiceConfig(**values)


class BackgroundRequest(threading.Thread):
    def __init__(self, port: int, path: str, body: bytes) -> None:
        super().__init__(daemon=True)
        self.port = port
        self.path = path
        self.body = body
        self.status: Optional[int] = None
        self.error: Optional[BaseException] = None

    def run(self) -> None:
        conn = http.client.HTTPConnection("127.0.0.1", self.port, timeout=10)
        try:
            conn.request("POST", self.path, body=self.body)
            response = conn.getresponse()
            response.read()
            self.status = response.status
        except (OSError, http.client.HTTPException) as exc:
            self.error = exc
        finally:
            conn.close()


class SupervisorLifecycleTests(unittest.TestCase):
    def setUp(self) -> None:
        self.logger = quiet_logger("tests.supervisor")

    def test_start_serves_and_shutdown_stops(self) -> None:
        supervisor = Supervisor(make_config(), self.logger, StubService())
        self.assertIs(supervisor.state, ServerState.STARTING)

        supervisor.start()
        self.assertIs(supervisor.state, ServerState.SERVING)
        _, port = supervisor.address

        conn = http.client.HTTPConnection("127.0.0.1", port, timeout=5)
        conn.request("GET", "/health")
        response = conn.getresponse()
        self.assertEqual(response.status, 200)
        response.read()
        conn.close()

        supervisor.shutdown()
        self.assertIs(supervisor.state, ServerState.STOPPED)
        with self.assertRaises(OSError):
            socket.create_connection(("127.0.0.1", port), timeout=1).close()

    def test_shutdown_is_noop_once_stopped(self) -> None:
        supervisor = Supervisor(make_config(), self.logger, StubService())
        supervisor.start()
        supervisor.shutdown()

        supervisor.shutdown()

        self.assertIs(supervisor.state, ServerState.STOPPED)

    def test_bind_failure_raises_listener_error(self) -> None:
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        blocker.bind(("127.0.0.1", 0))
        blocker.listen(1)
        port = blocker.getsockname()[1]
        try:
            supervisor = Supervisor(make_config(port=port), self.logger, StubService())
            with self.assertRaises(ListenerError):
                supervisor.start()
            self.assertIs(supervisor.state, ServerState.STOPPED)
        finally:
            blocker.close()

    def test_run_returns_nonzero_on_bind_failure(self) -> None:
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        blocker.bind(("127.0.0.1", 0))
        blocker.listen(1)
        port = blocker.getsockname()[1]
        try:
            supervisor = Supervisor(make_config(port=port), self.logger, StubService())
            self.assertEqual(supervisor.run(), 1)
        finally:
            blocker.close()

    def test_shutdown_waits_for_inflight_request(self) -> None:
        service = BlockingService()
        supervisor = Supervisor(make_config(shutdown_timeout_ms=5000), self.logger, service)
        supervisor.start()
        client = BackgroundRequest(supervisor.address[1], "/generate", b"payload")
        client.start()
        self.assertTrue(service.entered.wait(5))

        timer = threading.Timer(0.2, service.release.set)
        timer.start()
        try:
            supervisor.shutdown()
        finally:
            timer.cancel()
        client.join(5)

        self.assertIs(supervisor.state, ServerState.STOPPED)
        self.assertEqual(client.status, 200)

    def test_shutdown_timeout_raises(self) -> None:
        service = BlockingService()
        supervisor = Supervisor(make_config(shutdown_timeout_ms=100), self.logger, service)
        supervisor.start()
        client = BackgroundRequest(supervisor.address[1], "/generate", b"payload")
        client.start()
        self.assertTrue(service.entered.wait(5))

        try:
            with self.assertLogs(self.logger, level="ERROR") as logs:
                with self.assertRaises(ShutdownTimeoutError):
                    supervisor.shutdown()
        finally:
            service.release.set()
            client.join(5)

        self.assertIs(supervisor.state, ServerState.STOPPED)
        self.assertEqual(logs.records[0].fields["timeout"], 0.1)

    def test_run_shuts_down_on_sigterm(self) -> None:
        supervisor = Supervisor(make_config(), self.logger, StubService())
        original = signal.getsignal(signal.SIGTERM)

        def send_signal() -> None:
            if wait_until(lambda: supervisor.state is ServerState.SERVING):
                os.kill(os.getpid(), signal.SIGTERM)

        sender = threading.Thread(target=send_signal, daemon=True)
        sender.start()
        code = supervisor.run()
        sender.join(5)

        self.assertEqual(code, 0)
        self.assertEqual(supervisor.received_signal, signal.SIGTERM)
        self.assertIs(supervisor.state, ServerState.STOPPED)
        self.assertEqual(signal.getsignal(signal.SIGTERM), original)

    def test_run_returns_nonzero_when_serve_loop_fails(self) -> None:
        supervisor = Supervisor(make_config(), self.logger, StubService())

        with patch.object(QRHTTPServer, "serve_forever", side_effect=RuntimeError("listener died")):
            code = supervisor.run()

        self.assertEqual(code, 1)
        self.assertIsInstance(supervisor.serve_error, RuntimeError)
        self.assertIs(supervisor.state, ServerState.STOPPED)

    def test_request_stop_wakes_wait(self) -> None:
        supervisor = Supervisor(make_config(), self.logger, StubService())
        results: List[Optional[int]] = []
        waiter = threading.Thread(target=lambda: results.append(supervisor.wait()))
        waiter.start()

        supervisor.request_stop(signal.SIGINT)
        waiter.join(5)

        self.assertEqual(results, [signal.SIGINT])


if __name__ == "__main__":
    unittest.main()
