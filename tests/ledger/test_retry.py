"""Tests for bounded retry of transient ledger failures."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from acp.core.exceptions import (
    ProtocolError,
    RejectReason,
    RetriesExhaustedError,
    TransientKind,
    TransientLedgerError,
    ValidationException,
)
from acp.ledger.retry import NO_RETRY, NOT_APPLIED_KINDS, RetryPolicy, with_retry


class Flaky:
    """Raises the queued errors in order, then returns ``result``."""

    def __init__(self, errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


def transient(kind=TransientKind.CONGESTION):
    return TransientLedgerError(kind)


class TestRetryPolicy:
    def test_defaults(self):
        policy = RetryPolicy()
        assert (policy.max_retries, policy.base_delay_ms, policy.max_delay_ms) == (3, 1000, 10_000)

    @pytest.mark.parametrize(("attempt", "expected"), [(0, 1000), (1, 2000), (2, 4000), (3, 8000), (4, 10_000)])
    def test_exponential_with_ceiling(self, attempt, expected):
        assert RetryPolicy().base_delay_for(attempt) == expected

    def test_jitter_bounds(self):
        policy = RetryPolicy()
        with patch("acp.ledger.retry.random.uniform", return_value=0.5):
            assert policy.delay_for(0) == pytest.approx(0.5)
        with patch("acp.ledger.retry.random.uniform", return_value=1.5):
            assert policy.delay_for(4) == pytest.approx(15.0)

    def test_invalid(self):
        with pytest.raises(ValidationException):
            RetryPolicy(max_retries=-1)

    def test_from_settings(self, settings):
        policy = RetryPolicy.from_settings(settings)
        assert policy.base_delay_ms == 1
        assert policy.max_delay_ms == 4


class TestWithRetry:
    def test_succeeds_after_transient_failures(self):
        sleeps = []
        fn = Flaky([transient(), transient(TransientKind.RATE_LIMITED)])
        with patch("acp.ledger.retry.random.uniform", return_value=1.0):
            assert with_retry(fn, RetryPolicy(), sleep=sleeps.append) == "ok"
        assert fn.calls == 3
        assert sleeps == [1.0, 2.0]

    def test_exhaustion(self):
        fn = Flaky([transient() for _ in range(5)])
        with pytest.raises(RetriesExhaustedError) as exc_info:
            with_retry(fn, RetryPolicy(max_retries=2, base_delay_ms=0), sleep=lambda s: None)
        assert fn.calls == 3
        assert exc_info.value.attempts == 3
        assert exc_info.value.last_error.kind == TransientKind.CONGESTION

    @pytest.mark.parametrize(
        "error",
        [ValidationException("bad"), ProtocolError(RejectReason.VOTING_CLOSED)],
    )
    def test_permanent_errors_not_retried(self, error):
        fn = Flaky([error])
        with pytest.raises(type(error)):
            with_retry(fn, RetryPolicy(), sleep=lambda s: pytest.fail("slept"))
        assert fn.calls == 1

    def test_no_retry_policy(self):
        fn = Flaky([transient()])
        with pytest.raises(RetriesExhaustedError):
            with_retry(fn, NO_RETRY, sleep=lambda s: None)
        assert fn.calls == 1

    def test_logs_each_retry(self, caplog):
        fn = Flaky([transient()])
        with_retry(fn, RetryPolicy(base_delay_ms=0), sleep=lambda s: None, op_name="vote_swarm_action")
        assert "vote_swarm_action hit transient congestion" in caplog.text

    def test_excluded_kind_raised_unchanged(self, caplog):
        error = transient(TransientKind.TIMEOUT)
        fn = Flaky([error])
        with pytest.raises(TransientLedgerError) as exc_info:
            with_retry(
                fn,
                RetryPolicy(),
                sleep=lambda s: pytest.fail("slept"),
                op_name="deposit_collateral",
                retry_on=NOT_APPLIED_KINDS,
            )
        assert exc_info.value is error
        assert fn.calls == 1
        assert "deposit_collateral hit timeout and may have been applied" in caplog.text

    def test_included_kind_still_retried(self):
        fn = Flaky([transient(TransientKind.STALE_STATE), transient(TransientKind.RATE_LIMITED)])
        result = with_retry(fn, RetryPolicy(base_delay_ms=0), sleep=lambda s: None, retry_on=NOT_APPLIED_KINDS)
        assert result == "ok"
        assert fn.calls == 3
