"""Retry decisions and backoff delays for the request pipeline.

The rules are evaluated in a fixed order:

1. a configured ``retry_evaluator`` is authoritative;
2. ``attempt >= max_attempts`` stops;
3. a status code in ``retry_status_codes`` retries;
4. a cause matching ``retry_exceptions`` retries;
5. a timeout retries when ``retry_on_timeout`` is set;
6. anything else stops.

Delays grow exponentially from the base delay, get +/-25% uniform jitter so
that many clients do not retry in lockstep, and are clamped to
``[delay, max_delay]``.
"""

from __future__ import annotations

import random
from dataclasses import dataclass

from steadyhttp.exceptions import RequestError
from steadyhttp.models import RetryPolicy

_JITTER = 0.25
# An evaluator may keep retrying forever; the exponent stops growing here.
_MAX_EXPONENT = 62


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of :func:`evaluate`.

    Attributes:
        retry: Whether another attempt should be made.
        delay: Seconds to wait before the next attempt (``0`` when stopping).
        reason: Short description of the rule that decided.
    """

    retry: bool
    delay: float
    reason: str


def _decide(policy: RetryPolicy, error: RequestError, attempt: int) -> tuple[bool, str]:
    if policy.retry_evaluator is not None:
        verdict = bool(policy.retry_evaluator(error, attempt))
        return verdict, "custom evaluator"
    if attempt >= policy.max_attempts:
        return False, f"max attempts ({policy.max_attempts}) reached"
    if error.status_code is not None and error.status_code in policy.retry_status_codes:
        return True, f"retryable status {error.status_code}"
    if error.cause is not None and isinstance(error.cause, policy.retry_exceptions):
        return True, f"retryable cause {type(error.cause).__name__}"
    if policy.retry_on_timeout and error.is_timeout:
        return True, "timeout"
    return False, "not retryable"


def should_retry(policy: RetryPolicy, error: RequestError, attempt: int) -> bool:
    """Return whether *error* on 1-based *attempt* should be retried."""
    return _decide(policy, error, attempt)[0]


def compute_delay(policy: RetryPolicy, attempt: int, rng: random.Random | None = None) -> float:
    """Seconds to wait after failed *attempt* (1-based) before the next one.

    Args:
        policy: Supplies ``delay`` and ``max_delay``.
        attempt: The attempt that just failed.
        rng: Source of jitter; defaults to the :mod:`random` module.
    """
    draw = (rng or random).uniform(1 - _JITTER, 1 + _JITTER)
    exponent = min(max(attempt - 1, 0), _MAX_EXPONENT)
    raw = policy.delay * (2**exponent) * draw
    ceiling = max(policy.max_delay, policy.delay)
    return min(max(raw, policy.delay), ceiling)


def evaluate(
    policy: RetryPolicy,
    error: RequestError,
    attempt: int,
    rng: random.Random | None = None,
) -> RetryDecision:
    """Decide whether to retry and, if so, how long to wait."""
    retry, reason = _decide(policy, error, attempt)
    delay = compute_delay(policy, attempt, rng) if retry else 0.0
    return RetryDecision(retry=retry, delay=delay, reason=reason)
