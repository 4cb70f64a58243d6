"""
Service runner: HTTP listener + ordered, time-bounded shutdown.

States: STARTING -> LISTENING -> DRAINING -> STOPPED

- The listener serves on its own thread so the main thread can block on
  SIGINT/SIGTERM.
- On a shutdown request the listener is asked to stop (no new connections,
  in-flight requests finish) and is given ``shutdown_timeout`` seconds.
- Telemetry is shut down only after the listener has stopped, or after it
  has been forced to stop.
- A listener that misses the deadline, or a telemetry shutdown failure,
  marks the exit as unclean (non-zero exit code).
"""

from __future__ import annotations

import enum
import logging
import signal
import threading
import time
from typing import Any, Optional, Protocol

import uvicorn

logger = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ServerState(str, enum.Enum):
    STARTING = "starting"
    LISTENING = "listening"
    DRAINING = "draining"
    STOPPED = "stopped"


class ListenerStartupError(RuntimeError):
    """Raised when the listener dies before or while serving without a stop request."""


class Listener(Protocol):
    @property
    def started(self) -> bool: ...

    def serve(self) -> None:
        """Block until stopped."""

    def stop(self) -> None:
        """Stop accepting connections and let in-flight requests finish."""

    def force_stop(self) -> None:
        """Abandon in-flight requests."""


class SupportsShutdown(Protocol):
    def shutdown(self) -> None: ...


class UvicornListener:
    """Listener backed by a ``uvicorn.Server``."""

    def __init__(self, app: Any, *, host: str, port: int) -> None:
        config = uvicorn.Config(
            app,
            host=host,
            port=port,
            lifespan="off",
            log_config=None,
            access_log=False,
        )
        self._server = uvicorn.Server(config)

    @property
    def started(self) -> bool:
        return bool(self._server.started)

    @property
    def bound_port(self) -> Optional[int]:
        """Actual port once listening (useful when configured with port 0)."""
        for server in getattr(self._server, "servers", []):
            for sock in server.sockets:
                return sock.getsockname()[1]
        return None

    def serve(self) -> None:
        # Off the main thread uvicorn does not install signal handlers.
        self._server.run()

    def stop(self) -> None:
        self._server.should_exit = True

    def force_stop(self) -> None:
        self._server.should_exit = True
        self._server.force_exit = True


class ServiceRunner:
    """Drives the listener and telemetry through the service lifecycle."""

    def __init__(
        self,
        *,
        listener: Listener,
        telemetry: SupportsShutdown,
        shutdown_timeout: float = 5.0,
        startup_timeout: float = 10.0,
        poll_interval: float = 0.1,
    ) -> None:
        self._listener = listener
        self._telemetry = telemetry
        self._shutdown_timeout = shutdown_timeout
        self._startup_timeout = startup_timeout
        self._poll_interval = poll_interval
        self._stop_requested = threading.Event()
        self._stop_reason: Optional[str] = None
        self._listener_error: Optional[BaseException] = None
        self._thread: Optional[threading.Thread] = None
        self._previous_handlers: dict[int, Any] = {}
        self.state = ServerState.STARTING

    @property
    def stop_reason(self) -> Optional[str]:
        return self._stop_reason

    def _serve(self) -> None:
        try:
            self._listener.serve()
        except (Exception, SystemExit) as exc:  # uvicorn exits on bind failure
            self._listener_error = exc

    def _listener_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """
        Start the listener thread and wait until it accepts connections.

        Raises:
            ListenerStartupError: the listener died or did not start in time.
        """
        self._thread = threading.Thread(
            target=self._serve, name="http-listener", daemon=True
        )
        self._thread.start()

        deadline = time.monotonic() + self._startup_timeout
        while not self._listener.started:
            if not self._listener_alive():
                raise ListenerStartupError(
                    f"HTTP listener exited during startup: {self._listener_error!r}"
                )
            if time.monotonic() >= deadline:
                raise ListenerStartupError(
                    f"HTTP listener did not start within {self._startup_timeout}s"
                )
            time.sleep(self._poll_interval)

        self.state = ServerState.LISTENING
        logger.info("HTTP listener started")

    def install_signal_handlers(self) -> None:
        """Route SIGINT/SIGTERM to ``request_shutdown``. Main thread only."""
        for sig in HANDLED_SIGNALS:
            self._previous_handlers[sig] = signal.signal(sig, self._handle_signal)

    def restore_signal_handlers(self) -> None:
        for sig, handler in self._previous_handlers.items():
            signal.signal(sig, handler)
        self._previous_handlers.clear()

    def _handle_signal(self, signum: int, frame: Any) -> None:
        self.request_shutdown(signal.Signals(signum).name)

    def request_shutdown(self, reason: str) -> None:
        if self._stop_reason is None:
            self._stop_reason = reason
        self._stop_requested.set()

    def wait_for_shutdown(self, timeout: Optional[float] = None) -> bool:
        """
        Block until shutdown is requested.

        Returns:
            True if requested, False if ``timeout`` elapsed first.

        Raises:
            ListenerStartupError: the listener stopped on its own.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self._stop_requested.wait(self._poll_interval):
            if not self._listener_alive():
                raise ListenerStartupError(
                    f"HTTP listener stopped unexpectedly: {self._listener_error!r}"
                )
            if deadline is not None and time.monotonic() >= deadline:
                return False
        return True

    def drain(self) -> bool:
        """
        Stop the listener (bounded), then shut telemetry down.

        Returns:
            True on a clean shutdown, False if forced or telemetry failed.
        """
        self.state = ServerState.DRAINING
        logger.info(
            "Shutting down server...",
            extra={
                "reason": self._stop_reason,
                "timeout_seconds": self._shutdown_timeout,
            },
        )
        clean = True

        self._listener.stop()
        if self._thread is not None:
            self._thread.join(timeout=self._shutdown_timeout)
        if self._listener_alive():
            clean = False
            logger.critical(
                "Server forced to shutdown",
                extra={"timeout_seconds": self._shutdown_timeout},
            )
            self._listener.force_stop()
            if self._thread is not None:
                self._thread.join(timeout=self._poll_interval * 10)

        try:
            self._telemetry.shutdown()
        except Exception:  # noqa: BLE001
            clean = False
            logger.critical("Telemetry shutdown failed", exc_info=True)

        self.state = ServerState.STOPPED
        logger.info("Server exited", extra={"clean": clean})
        return clean

    def abort(self) -> None:
        """Fatal path: stop whatever is running and shut telemetry down."""
        self.request_shutdown("fatal")
        self.drain()

    def run(self) -> int:
        """
        Full lifecycle: start, block on SIGINT/SIGTERM, drain.

        Handlers are installed before the listener starts, so a signal
        received during startup still leads to an ordered shutdown.

        Returns:
            Process exit code (0 clean, 1 forced or failed).
        """
        self.install_signal_handlers()
        try:
            try:
                self.start()
            except ListenerStartupError:
                logger.critical("Failed to start server", exc_info=True)
                self.abort()
                return 1

            try:
                self.wait_for_shutdown()
            except ListenerStartupError:
                logger.critical("Server stopped unexpectedly", exc_info=True)
                self.abort()
                return 1
            return 0 if self.drain() else 1
        finally:
            self.restore_signal_handlers()
