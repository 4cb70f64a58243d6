import os
import signal
import threading
import time

import httpx
import pytest
from opentelemetry.trace import SpanKind

from libs.core.server import (
    ListenerStartupError,
    ServerState,
    ServiceRunner,
    UvicornListener,
)


class FakeListener:
    """Listener that serves until released; optionally ignores ``stop``."""

    def __init__(self, events, *, stuck=False, error=None, exit_early=False):
        self.events = events
        self._stuck = stuck
        self._error = error
        self._exit_early = exit_early
        self._started = False
        self._release = threading.Event()

    @property
    def started(self):
        return self._started

    def serve(self):
        if self._error is not None:
            raise self._error
        self._started = True
        if not self._exit_early:
            self._release.wait()
        self.events.append("listener-stopped")

    def stop(self):
        self.events.append("stop")
        if not self._stuck:
            self._release.set()

    def force_stop(self):
        self.events.append("force_stop")
        self._release.set()


class SlowStartListener(FakeListener):
    """Accepts connections only once ``gate`` is opened."""

    def __init__(self, events, gate):
        super().__init__(events)
        self._gate = gate

    def serve(self):
        self._gate.wait(timeout=5.0)
        super().serve()


class FakeTelemetry:
    def __init__(self, events, *, error=None):
        self.events = events
        self._error = error
        self.runner = None
        self.state_at_shutdown = None

    def shutdown(self):
        self.events.append("telemetry-shutdown")
        if self.runner is not None:
            self.state_at_shutdown = self.runner.state
        if self._error is not None:
            raise self._error


def _runner(listener, telemetry, **kwargs):
    kwargs.setdefault("shutdown_timeout", 1.0)
    kwargs.setdefault("poll_interval", 0.01)
    runner = ServiceRunner(listener=listener, telemetry=telemetry, **kwargs)
    telemetry.runner = runner
    return runner


def _send_sigterm_when_ready(runner, timeout=5.0):
    """Deliver SIGTERM once the runner's handler is installed."""

    def _fire():
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if signal.getsignal(signal.SIGTERM) == runner._handle_signal:
                os.kill(os.getpid(), signal.SIGTERM)
                return
            time.sleep(0.01)
        runner.request_shutdown("test-timeout")

    thread = threading.Thread(target=_fire, daemon=True)
    thread.start()
    return thread


def test_graceful_lifecycle():
    events = []
    telemetry = FakeTelemetry(events)
    runner = _runner(FakeListener(events), telemetry)
    assert runner.state is ServerState.STARTING

    runner.start()
    assert runner.state is ServerState.LISTENING

    runner.request_shutdown("test")
    assert runner.wait_for_shutdown(timeout=1.0)
    assert runner.drain() is True

    assert events == ["stop", "listener-stopped", "telemetry-shutdown"]
    assert telemetry.state_at_shutdown is ServerState.DRAINING
    assert runner.state is ServerState.STOPPED
    assert runner.stop_reason == "test"


def test_drain_deadline_forces_listener_then_shuts_telemetry():
    events = []
    runner = _runner(
        FakeListener(events, stuck=True), FakeTelemetry(events), shutdown_timeout=0.2
    )
    runner.start()

    started = time.monotonic()
    assert runner.drain() is False

    assert time.monotonic() - started < 1.0
    assert events == ["stop", "force_stop", "listener-stopped", "telemetry-shutdown"]
    assert runner.state is ServerState.STOPPED


def test_telemetry_failure_makes_exit_unclean():
    events = []
    runner = _runner(
        FakeListener(events), FakeTelemetry(events, error=RuntimeError("export failed"))
    )
    runner.start()

    assert runner.drain() is False
    assert runner.state is ServerState.STOPPED


@pytest.mark.parametrize("error", [OSError("address in use"), SystemExit(1)])
def test_startup_failure(error):
    events = []
    runner = _runner(FakeListener(events, error=error), FakeTelemetry(events))

    with pytest.raises(ListenerStartupError):
        runner.start()


def test_startup_timeout():
    events = []
    listener = FakeListener(events)
    listener.serve = lambda: listener._release.wait()
    runner = _runner(listener, FakeTelemetry(events), startup_timeout=0.1)

    with pytest.raises(ListenerStartupError):
        runner.start()
    runner.abort()


def test_run_returns_error_code_when_listener_cannot_start():
    events = []
    runner = _runner(
        FakeListener(events, error=OSError("address in use")), FakeTelemetry(events)
    )

    assert runner.run() == 1
    assert events == ["stop", "telemetry-shutdown"]
    assert runner.stop_reason == "fatal"


def test_run_returns_error_code_when_listener_exits_on_its_own():
    events = []
    runner = _runner(FakeListener(events, exit_early=True), FakeTelemetry(events))

    assert runner.run() == 1
    assert events[-1] == "telemetry-shutdown"
    assert runner.state is ServerState.STOPPED


def test_signal_requests_shutdown():
    events = []
    runner = _runner(FakeListener(events), FakeTelemetry(events))
    previous = signal.getsignal(signal.SIGTERM)

    runner.install_signal_handlers()
    try:
        signal.raise_signal(signal.SIGTERM)
        assert runner.wait_for_shutdown(timeout=1.0)
    finally:
        runner.restore_signal_handlers()

    assert runner.stop_reason == "SIGTERM"
    assert signal.getsignal(signal.SIGTERM) == previous


def test_run_full_cycle_on_sigterm():
    events = []
    runner = _runner(FakeListener(events), FakeTelemetry(events))
    previous = signal.getsignal(signal.SIGTERM)

    sender = _send_sigterm_when_ready(runner)
    exit_code = runner.run()
    sender.join(timeout=1.0)

    assert exit_code == 0
    assert runner.stop_reason == "SIGTERM"
    assert events == ["stop", "listener-stopped", "telemetry-shutdown"]
    assert signal.getsignal(signal.SIGTERM) == previous


def test_in_flight_request_completes_during_drain(app, simulator, telemetry, server_spans):
    in_flight = threading.Event()
    simulator.on_latency = lambda operation: in_flight.set()
    simulator.latency_s = 0.3

    listener = UvicornListener(app, host="127.0.0.1", port=0)
    runner = ServiceRunner(
        listener=listener, telemetry=telemetry, shutdown_timeout=5.0, poll_interval=0.01
    )
    responses = []

    def _client():
        deadline = time.monotonic() + 5.0
        while listener.bound_port is None and time.monotonic() < deadline:
            time.sleep(0.01)
        with httpx.Client(trust_env=False, timeout=5.0) as http:
            responses.append(
                http.post(f"http://127.0.0.1:{listener.bound_port}/api/process")
            )

    def _terminate():
        if not in_flight.wait(timeout=5.0):
            runner.request_shutdown("test-timeout")
            return
        _send_sigterm_when_ready(runner).join()

    client_thread = threading.Thread(target=_client, daemon=True)
    client_thread.start()
    threading.Thread(target=_terminate, daemon=True).start()

    exit_code = runner.run()
    client_thread.join(timeout=5.0)

    assert exit_code == 0
    assert runner.stop_reason == "SIGTERM"
    (response,) = responses
    assert response.status_code == 200
    assert response.json() == {"message": "Processing completed", "status": "success"}

    assert telemetry.is_shut_down
    (span,) = server_spans()
    assert span.kind is SpanKind.SERVER
    assert span.attributes["http.route"] == "/api/process"
    assert span.attributes["http.response.status_code"] == 200


def test_sigterm_during_startup_still_drains():
    events = []
    gate = threading.Event()
    runner = _runner(SlowStartListener(events, gate), FakeTelemetry(events))
    state_at_signal = []

    def _fire():
        deadline = time.monotonic() + 5.0
        while time.monotonic() < deadline:
            if signal.getsignal(signal.SIGTERM) == runner._handle_signal:
                state_at_signal.append(runner.state)
                os.kill(os.getpid(), signal.SIGTERM)
                break
            time.sleep(0.01)
        else:
            runner.request_shutdown("test-timeout")
        gate.set()

    sender = threading.Thread(target=_fire, daemon=True)
    sender.start()
    exit_code = runner.run()
    sender.join(timeout=1.0)

    assert state_at_signal == [ServerState.STARTING]
    assert exit_code == 0
    assert runner.stop_reason == "SIGTERM"
    assert events == ["stop", "listener-stopped", "telemetry-shutdown"]
