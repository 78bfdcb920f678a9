"""
Health verifier — poll a service until it is healthy or the budget runs out.

Probes:
    http      GET the URL, match status code and optional body substring
    process   ask the backend whether the unit is active
    command   run a command, exit 0 means healthy
    none      healthy as soon as installed

Waiting between attempts uses ``threading.Event.wait`` so an operator
interrupt stops polling immediately instead of after the next sleep.
"""

from __future__ import annotations

import logging
import threading
import urllib.error
import urllib.request
from collections.abc import Callable
from dataclasses import dataclass

from provisioner.backends.runner import CommandRunner
from provisioner.core.errors import HealthTimeoutError, ProvisionCancelled
from provisioner.core.models.descriptor import HttpProbe, ServiceDescriptor
from provisioner.core.reliability.retry import RetryPolicy

logger = logging.getLogger(__name__)

_BODY_LIMIT = 64 * 1024


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of a single probe attempt."""

    ok: bool
    detail: str = ""


def http_probe(spec: HttpProbe) -> ProbeResult:
    """One HTTP GET evaluated against the probe's predicate."""
    req = urllib.request.Request(
        spec.url,
        method="GET",
        headers={"User-Agent": "provisioner/health"},
    )
    try:
        with urllib.request.urlopen(req, timeout=spec.timeout) as resp:
            status = resp.getcode()
            body = resp.read(_BODY_LIMIT) if spec.body_contains else b""
    except urllib.error.HTTPError as e:
        status = e.code
        body = b""
    except (urllib.error.URLError, OSError, ValueError) as e:
        reason = getattr(e, "reason", e)
        return ProbeResult(ok=False, detail=f"{spec.url}: {reason}")

    if status not in spec.expect_status:
        return ProbeResult(ok=False, detail=f"{spec.url}: HTTP {status}")

    if spec.body_contains and spec.body_contains not in body.decode("utf-8", "replace"):
        return ProbeResult(
            ok=False,
            detail=f"{spec.url}: body does not contain {spec.body_contains!r}",
        )

    return ProbeResult(ok=True, detail=f"{spec.url}: HTTP {status}")


class Prober:
    """Runs the probe declared by a descriptor.

    Args:
        is_active: Process-state check, normally the backend's ``is_active``.
        runner: Command runner for ``command`` probes.
        simulate: Answer every probe from ``is_active`` (mock runs, where
            nothing really listens).
    """

    def __init__(
        self,
        is_active: Callable[[str], bool] | None = None,
        runner: CommandRunner | None = None,
        simulate: bool = False,
    ):
        self._is_active = is_active
        self._runner = runner or CommandRunner()
        self._simulate = simulate

    def probe(self, descriptor: ServiceDescriptor) -> ProbeResult:
        check = descriptor.health
        kind = check.kind

        if self._simulate and kind != "none":
            return self._process(descriptor.unit_name)

        if kind == "http":
            assert check.http is not None
            return http_probe(check.http)

        if kind == "process":
            return self._process(check.process or descriptor.unit_name)

        if kind == "command":
            assert check.command is not None
            result = self._runner.run(check.command, timeout=30)
            return ProbeResult(ok=result.ok, detail=result.summary or check.command)

        return ProbeResult(ok=True, detail="no health check declared")

    def _process(self, unit: str) -> ProbeResult:
        if self._is_active is None:
            return ProbeResult(ok=False, detail="no process-state checker available")
        active = self._is_active(unit)
        return ProbeResult(ok=active, detail=f"{unit} {'active' if active else 'inactive'}")


class HealthVerifier:
    """Bounded polling of service health.

    Args:
        prober: Executes individual probes.
        cancel_event: Set by the operator-interrupt handler.
        timeout_scale: Multiplier on every attempt budget.
        policy: Overrides the per-descriptor policy (tests use
            ``RetryPolicy.immediate``).
    """

    def __init__(
        self,
        prober: Prober,
        cancel_event: threading.Event | None = None,
        timeout_scale: float = 1.0,
        policy: RetryPolicy | None = None,
    ):
        self._prober = prober
        self._cancel = cancel_event or threading.Event()
        self._timeout_scale = timeout_scale
        self._policy = policy

    def policy_for(self, descriptor: ServiceDescriptor) -> RetryPolicy:
        policy = self._policy or RetryPolicy.from_health_check(descriptor.health)
        if self._timeout_scale != 1.0:
            policy = policy.scaled(self._timeout_scale)
        return policy

    def verify(self, descriptor: ServiceDescriptor) -> int:
        """Poll until healthy.

        Returns:
            Number of attempts it took.

        Raises:
            HealthTimeoutError: Attempts exhausted.
            ProvisionCancelled: The cancel event was set.
        """
        policy = self.policy_for(descriptor)
        last_detail = ""

        for attempt in range(1, policy.max_attempts + 1):
            if self._cancel.is_set():
                raise ProvisionCancelled(f"cancelled while verifying '{descriptor.id}'")

            result = self._prober.probe(descriptor)
            if result.ok:
                logger.info("✓ %s healthy after %d attempt(s)", descriptor.id, attempt)
                return attempt

            last_detail = result.detail
            logger.debug(
                "%s not healthy yet (%d/%d): %s",
                descriptor.id, attempt, policy.max_attempts, result.detail,
            )

            if attempt < policy.max_attempts and self._cancel.wait(policy.delay(attempt)):
                raise ProvisionCancelled(f"cancelled while verifying '{descriptor.id}'")

        raise HealthTimeoutError(descriptor.id, policy.max_attempts, last_detail)
