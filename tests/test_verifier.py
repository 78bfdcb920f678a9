"""
Tests for health probes and the polling verifier.
"""

import threading
from http.server import BaseHTTPRequestHandler, HTTPServer

import pytest

from provisioner.core.engine.verifier import HealthVerifier, Prober, http_probe
from provisioner.core.errors import HealthTimeoutError, ProvisionCancelled
from provisioner.core.models.descriptor import HttpProbe, ServiceDescriptor
from provisioner.core.reliability.retry import RetryPolicy


class _Handler(BaseHTTPRequestHandler):
    def do_GET(self):  # noqa: N802
        if self.path == "/health":
            body = b'{"status": "ok", "models": []}'
            self.send_response(200)
        else:
            body = b"missing"
            self.send_response(404)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, *args):
        pass


@pytest.fixture
def http_server():
    server = HTTPServer(("127.0.0.1", 0), _Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_address[1]}"
    server.shutdown()
    server.server_close()


def _descriptor(**health) -> ServiceDescriptor:
    return ServiceDescriptor(id="svc", health=health)


class _Flaky:
    """is_active that turns true after ``after`` calls."""

    def __init__(self, after: int):
        self.after = after
        self.calls = 0

    def __call__(self, unit: str) -> bool:
        self.calls += 1
        return self.calls > self.after


# ── Probes ──────────────────────────────────────────────────────────


class TestHttpProbe:
    def test_ok(self, http_server):
        result = http_probe(HttpProbe(url=f"{http_server}/health"))
        assert result.ok
        assert "HTTP 200" in result.detail

    def test_body_contains(self, http_server):
        assert http_probe(HttpProbe(url=f"{http_server}/health", body_contains="ok")).ok
        result = http_probe(HttpProbe(url=f"{http_server}/health", body_contains="ready"))
        assert not result.ok
        assert "body" in result.detail

    def test_unexpected_status(self, http_server):
        result = http_probe(HttpProbe(url=f"{http_server}/other"))
        assert not result.ok
        assert "HTTP 404" in result.detail

    def test_expected_error_status(self, http_server):
        assert http_probe(HttpProbe(url=f"{http_server}/other", expect_status=[404])).ok

    def test_connection_refused(self):
        result = http_probe(HttpProbe(url="http://127.0.0.1:9/", timeout=0.5))
        assert not result.ok


class TestProber:
    def test_process_uses_unit_name(self):
        seen = []
        prober = Prober(is_active=lambda unit: seen.append(unit) or True)
        assert prober.probe(_descriptor(process="")).ok
        assert seen == ["svc"]

    def test_process_explicit_unit(self):
        prober = Prober(is_active=lambda unit: unit == "ollama")
        assert prober.probe(_descriptor(process="ollama")).ok
        assert not prober.probe(_descriptor(process="other")).ok

    def test_process_without_checker(self):
        assert not Prober().probe(_descriptor(process="x")).ok

    def test_command(self):
        assert Prober().probe(_descriptor(command="true")).ok
        assert not Prober().probe(_descriptor(command="false")).ok

    def test_none_is_healthy(self):
        assert Prober().probe(_descriptor()).ok

    def test_simulate_answers_http_from_process_state(self):
        prober = Prober(is_active=lambda unit: unit == "svc", simulate=True)
        assert prober.probe(_descriptor(http={"url": "http://127.0.0.1:9/"})).ok


# ── Verifier ────────────────────────────────────────────────────────


class TestHealthVerifier:
    def test_healthy_first_attempt(self):
        verifier = HealthVerifier(Prober(is_active=lambda u: True), policy=RetryPolicy.immediate(3))
        assert verifier.verify(_descriptor(process="")) == 1

    def test_healthy_after_retries(self):
        flaky = _Flaky(after=2)
        verifier = HealthVerifier(Prober(is_active=flaky), policy=RetryPolicy.immediate(5))
        assert verifier.verify(_descriptor(process="")) == 3

    def test_timeout_after_budget(self):
        flaky = _Flaky(after=100)
        verifier = HealthVerifier(Prober(is_active=flaky), policy=RetryPolicy.immediate(4))
        with pytest.raises(HealthTimeoutError) as exc:
            verifier.verify(_descriptor(process=""))
        assert exc.value.attempts == 4
        assert flaky.calls == 4
        assert "inactive" in exc.value.last_detail

    def test_descriptor_budget_used_without_override(self):
        verifier = HealthVerifier(Prober(is_active=lambda u: False))
        with pytest.raises(HealthTimeoutError) as exc:
            verifier.verify(_descriptor(process="", max_attempts=2, interval=0))
        assert exc.value.attempts == 2

    def test_timeout_scale(self):
        verifier = HealthVerifier(
            Prober(is_active=lambda u: False),
            timeout_scale=2.0,
            policy=RetryPolicy.immediate(3),
        )
        assert verifier.policy_for(_descriptor()).max_attempts == 6

    def test_cancelled_before_probe(self):
        event = threading.Event()
        event.set()
        flaky = _Flaky(after=0)
        verifier = HealthVerifier(Prober(is_active=flaky), cancel_event=event)
        with pytest.raises(ProvisionCancelled):
            verifier.verify(_descriptor(process=""))
        assert flaky.calls == 0

    def test_cancel_interrupts_wait(self):
        event = threading.Event()

        def inactive(unit):
            event.set()
            return False

        # A long interval would block for minutes if the wait ignored the event
        verifier = HealthVerifier(
            Prober(is_active=inactive),
            cancel_event=event,
            policy=RetryPolicy(max_attempts=3, interval=300.0, max_interval=300.0),
        )
        with pytest.raises(ProvisionCancelled):
            verifier.verify(_descriptor(process=""))
