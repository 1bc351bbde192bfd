"""HTTP server lifecycle: bind, serve on a background thread, drain on stop.

The service moves through ``IDLE -> STARTING -> SERVING -> SHUTTING_DOWN ->
STOPPED``. Stopping is driven by a :class:`threading.Event` that the signal
handlers (or a test) set; requests already running when it fires get up to
``shutdown_timeout`` seconds to finish before the listener is closed.
"""

import enum
import signal
import socket
import logging
import threading
from typing import Optional

from flask import Flask
from werkzeug.serving import ThreadedWSGIServer, WSGIRequestHandler, select_address_family

from .config import Config, ServiceError
from .logs import SERVICE_NAME, log_json

STOP_SIGNALS = tuple(
    getattr(signal, name) for name in ("SIGINT", "SIGTERM", "SIGQUIT") if hasattr(signal, name)
)


class ListenError(ServiceError):
    pass


class State(enum.Enum):
    IDLE = "idle"
    STARTING = "starting"
    SERVING = "serving"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class InFlight:
    """Counts requests currently being handled."""

    def __init__(self):
        self._cond = threading.Condition()
        self._count = 0

    @property
    def count(self) -> int:
        with self._cond:
            return self._count

    def enter(self) -> None:
        with self._cond:
            self._count += 1

    def leave(self) -> None:
        with self._cond:
            self._count -= 1
            if self._count == 0:
                self._cond.notify_all()

    def wait_idle(self, timeout: Optional[float]) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: self._count == 0, timeout)


class RequestHandler(WSGIRequestHandler):
    # idle: waiting for the next request on a kept-alive connection
    # read: request line done, reading headers
    # write: running the app and sending the response
    idle_timeout: float = 120.0
    read_timeout: float = 5.0
    write_timeout: float = 10.0

    _counted = False

    def handle_one_request(self):
        self.connection.settimeout(self.idle_timeout)
        try:
            return super().handle_one_request()
        finally:
            if self._counted:
                self._counted = False
                self.server.in_flight.leave()
            if self.server.draining:
                self.close_connection = True

    def parse_request(self):
        # the request line has arrived: from here on the request must drain
        self.server.in_flight.enter()
        self._counted = True
        self.connection.settimeout(self.read_timeout)
        return super().parse_request()

    def run_wsgi(self):
        self.connection.settimeout(self.write_timeout)
        super().run_wsgi()

    def log_request(self, code="-", size="-"):
        pass


def make_handler(cfg: Config) -> type:
    return type(
        "ConfiguredRequestHandler",
        (RequestHandler,),
        {
            "idle_timeout": cfg.idle_timeout,
            "read_timeout": cfg.read_timeout,
            "write_timeout": cfg.write_timeout,
        },
    )


class CounterServer(ThreadedWSGIServer):
    def __init__(self, host: str, port: int, app: Flask, handler: type, fd: int):
        super().__init__(host, port, app, handler=handler, fd=fd)
        self.in_flight = InFlight()
        self.draining = False


class Service:
    def __init__(self, cfg: Config, app: Flask, log: Optional[logging.Logger] = None):
        self.cfg = cfg
        self.app = app
        self.log = log or logging.getLogger(SERVICE_NAME)
        self.state = State.IDLE
        self.server: Optional[CounterServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> int:
        return self.server.port if self.server else self.cfg.port

    @property
    def url(self) -> str:
        return f"http://{self.cfg.host}:{self.port}"

    def start(self) -> None:
        self.state = State.STARTING
        family = select_address_family(self.cfg.host, self.cfg.port)
        try:
            sock = socket.create_server((self.cfg.host, self.cfg.port), family=family)
        except OSError as e:
            self.state = State.STOPPED
            raise ListenError(f"listen on {self.cfg.host}:{self.cfg.port}: {e}") from e

        try:
            self.server = CounterServer(self.cfg.host, self.cfg.port, self.app, make_handler(self.cfg), sock.fileno())
        finally:
            sock.close()

        self._thread = threading.Thread(target=self._serve, name="http-server", daemon=True)
        self._thread.start()
        self.state = State.SERVING
        log_json(self.log.info, "listening", addr=self.url)

    def _serve(self) -> None:
        try:
            self.server.serve_forever()
        except Exception:
            log_json(self.log.error, "listen", exc_info=True)
            raise

    def wait(self, stop: threading.Event) -> None:
        stop.wait()

    def shutdown(self) -> bool:
        if self.state is not State.SERVING:
            return True
        self.state = State.SHUTTING_DOWN
        log_json(self.log.info, "shutting down the service...")

        server = self.server
        server.draining = True
        server.shutdown()
        drained = server.in_flight.wait_idle(self.cfg.shutdown_timeout)
        if not drained:
            log_json(
                self.log.error,
                "server shutdown failed",
                err="timed out waiting for in-flight requests",
                in_flight=server.in_flight.count,
                timeout=self.cfg.shutdown_timeout,
            )
        server.server_close()
        self._thread.join(timeout=self.cfg.shutdown_timeout)
        self.state = State.STOPPED
        return drained

    def run(self, stop: threading.Event) -> bool:
        self.start()
        try:
            self.wait(stop)
        finally:
            drained = self.shutdown()
        return drained


def install_signal_handlers(stop: threading.Event) -> None:
    def _handler(signum, frame):
        stop.set()

    for sig in STOP_SIGNALS:
        signal.signal(sig, _handler)
