"""
Tests for the retry policy used by health polling.
"""

import pytest

from provisioner.core.models.descriptor import HealthCheck
from provisioner.core.reliability.retry import RetryPolicy


class TestRetryPolicy:
    def test_fixed_interval(self):
        policy = RetryPolicy(max_attempts=4, interval=2.0)
        assert [policy.delay(a) for a in range(1, 4)] == [2.0, 2.0, 2.0]
        assert policy.budget_seconds == 6.0

    def test_exponential_backoff_capped(self):
        policy = RetryPolicy(max_attempts=6, interval=1.0, backoff=2.0, max_interval=5.0)
        assert [policy.delay(a) for a in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]
        assert policy.budget_seconds == 17.0

    def test_single_attempt_never_waits(self):
        assert RetryPolicy(max_attempts=1).budget_seconds == 0

    def test_immediate(self):
        policy = RetryPolicy.immediate(max_attempts=5)
        assert policy.max_attempts == 5
        assert policy.budget_seconds == 0

    def test_jitter_bounded(self):
        policy = RetryPolicy(max_attempts=3, interval=10.0, jitter=0.5)
        for _ in range(20):
            assert 10.0 <= policy.delay(1) <= 15.0

    def test_from_health_check(self):
        check = HealthCheck(process="ollama", max_attempts=10, interval=3, backoff=1.5, max_interval=20)
        policy = RetryPolicy.from_health_check(check)
        assert policy.max_attempts == 10
        assert policy.interval == 3
        assert policy.backoff == 1.5
        assert policy.max_interval == 20

    def test_scaled_stretches_attempts(self):
        policy = RetryPolicy(max_attempts=10).scaled(2.5)
        assert policy.max_attempts == 25
        assert RetryPolicy(max_attempts=3).scaled(0.1).max_attempts == 1

    def test_scaled_rejects_non_positive(self):
        with pytest.raises(ValueError):
            RetryPolicy().scaled(0)

    def test_invalid_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
