"""Bounded retry for transient ledger failures.

Retry eligibility is decided by error type alone: only
``TransientLedgerError`` is retried. Validation and protocol-state
rejections propagate on the first attempt. Callers submitting an
operation that would apply twice on replay narrow the retried kinds
with ``retry_on``.

Delay for attempt ``n`` (0-based)::

    min(base_delay_ms * 2**n, max_delay_ms) * uniform(0.5, 1.5)
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable, Collection
from dataclasses import dataclass
from typing import TypeVar

from ..core.config import ACPSettings, get_config
from ..core.exceptions import RetriesExhaustedError, TransientKind, TransientLedgerError, ValidationException

logger = logging.getLogger(__name__)

T = TypeVar("T")

JITTER_MIN = 0.5
JITTER_MAX = 1.5


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 10_000

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValidationException("max_retries must be non-negative", field="max_retries", value=self.max_retries)
        if self.base_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValidationException("retry delays must be non-negative")

    @classmethod
    def from_settings(cls, settings: ACPSettings | None = None) -> RetryPolicy:
        settings = settings or get_config()
        return cls(
            max_retries=settings.retry_max_retries,
            base_delay_ms=settings.retry_base_delay_ms,
            max_delay_ms=settings.retry_max_delay_ms,
        )

    def base_delay_for(self, attempt: int) -> int:
        return min(self.base_delay_ms * (2**attempt), self.max_delay_ms)

    def delay_for(self, attempt: int) -> float:
        """Jittered delay in seconds before retry number ``attempt + 1``."""
        jitter = random.uniform(JITTER_MIN, JITTER_MAX)
        return self.base_delay_for(attempt) * jitter / 1000


NO_RETRY = RetryPolicy(max_retries=0)

# The ledger rejected these before touching state.
NOT_APPLIED_KINDS = frozenset({TransientKind.RATE_LIMITED, TransientKind.STALE_STATE})


def with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], None] = time.sleep,
    op_name: str = "operation",
    retry_on: Collection[TransientKind] | None = None,
) -> T:
    """Call ``fn`` until it succeeds, fails permanently, or retries run out.

    ``fn`` is invoked afresh on each attempt, so it can re-read state
    (for example to re-sign an admin op against a new nonce).

    Args:
        retry_on: Transient kinds worth retrying; ``None`` means all of
            them. Operations that are not safe to replay pass
            ``NOT_APPLIED_KINDS`` so an ambiguous failure surfaces instead.

    Raises:
        RetriesExhaustedError: If every attempt raised TransientLedgerError.
        TransientLedgerError: A kind outside ``retry_on``, unchanged.
        ACPException: Any non-transient failure, unchanged.
    """
    policy = policy or RetryPolicy.from_settings()
    attempt = 0
    while True:
        try:
            return fn()
        except TransientLedgerError as e:
            if retry_on is not None and e.kind not in retry_on:
                logger.error(f"{op_name} hit {e.kind.value} and may have been applied; not retrying")
                raise
            if attempt >= policy.max_retries:
                logger.error(f"{op_name} failed after {attempt + 1} attempts: {e.kind.value}: {e.message}")
                raise RetriesExhaustedError(e, attempt + 1) from e
            delay = policy.delay_for(attempt)
            logger.warning(
                f"{op_name} hit transient {e.kind.value} ({e.message}); "
                f"retry {attempt + 1}/{policy.max_retries} in {delay:.2f}s"
            )
            sleep(delay)
            attempt += 1
