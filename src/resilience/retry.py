# src/resilience/retry.py - v1
"""Retry policy with exponential backoff and jitter.

Classification is pure: it looks at the exception type, an explicit status
code where the error carries one, and finally the message text, since many
provider SDKs only surface strings like ``"HTTP 503 Service Unavailable"``.
Only transient categories are retried. Auth and other client errors fail
on the first attempt because repeating the request cannot fix them.
"""

from __future__ import annotations

import asyncio
import logging
import random
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from prospector.core.errors import CircuitOpenError, RetryExhaustedError

logger = logging.getLogger(__name__)

RETRYABLE_CATEGORIES: frozenset[str] = frozenset(
    {"rate_limit", "server_error", "timeout", "connection"}
)

_RETRYABLE_STATUS = {429: "rate_limit", 500: "server_error", 502: "server_error",
                     503: "server_error", 504: "server_error"}

# Ordered: the first matching category wins.
_MESSAGE_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("auth", re.compile(r"\b(401|403)\b|unauthori[sz]ed|forbidden|invalid api key")),
    ("rate_limit", re.compile(r"\b429\b|rate.?limit|too many requests")),
    ("timeout", re.compile(r"timeout|timed out|etimedout")),
    ("server_error", re.compile(
        r"\b(500|502|503|504)\b|internal server error|bad gateway|service unavailable"
    )),
    ("connection", re.compile(
        r"econnreset|econnrefused|enotfound|connection (reset|refused|aborted)"
        r"|\bdns\b|network|temporarily|try again"
    )),
    ("client_error", re.compile(r"\b(400|404|409|422)\b|bad request|not found")),
]

_RETRY_AFTER = re.compile(r"retry[- ]after[:\s]+(\d+(?:\.\d+)?)\s*(ms|s)?", re.IGNORECASE)


@dataclass(frozen=True)
class ErrorClassification:
    """Retry verdict for one exception."""

    category: str
    retryable: bool


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters. ``max_attempts`` counts the first call."""

    max_attempts: int = 3
    base_delay_s: float = 1.0
    max_delay_s: float = 30.0
    jitter_ratio: float = 0.25
    multiplier: float = 2.0

    def next_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based).

        ``base * multiplier**attempt`` capped at ``max_delay_s``, then spread
        by +/- ``jitter_ratio`` and capped again.
        """
        delay = min(self.base_delay_s * (self.multiplier ** attempt), self.max_delay_s)
        if self.jitter_ratio:
            delay += delay * self.jitter_ratio * (2 * random.random() - 1)  # noqa: S311
        return max(0.0, min(delay, self.max_delay_s))


def classify_error(error: BaseException) -> ErrorClassification:
    """Classify an exception into a retry category."""
    if isinstance(error, CircuitOpenError):
        return ErrorClassification("circuit_open", False)
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return ErrorClassification("timeout", True)
    if isinstance(error, ConnectionError):
        return ErrorClassification("connection", True)

    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        if status in _RETRYABLE_STATUS:
            return ErrorClassification(_RETRYABLE_STATUS[status], True)
        if status in (401, 403):
            return ErrorClassification("auth", False)
        if 400 <= status < 500:
            return ErrorClassification("client_error", False)
        if status >= 500:
            return ErrorClassification("server_error", True)

    msg = str(error).lower()
    name = type(error).__name__.lower()
    if "timeout" in name:
        return ErrorClassification("timeout", True)

    for category, pattern in _MESSAGE_PATTERNS:
        if pattern.search(msg):
            return ErrorClassification(category, category in RETRYABLE_CATEGORIES)
    return ErrorClassification("unknown", False)


def is_retryable(error: BaseException) -> bool:
    return classify_error(error).retryable


def extract_retry_after(error: BaseException) -> float | None:
    """Seconds hinted by a ``retry-after`` mention in the error text, if any."""
    match = _RETRY_AFTER.search(str(error))
    if not match:
        return None
    value = float(match.group(1))
    return value / 1000.0 if (match.group(2) or "").lower() == "ms" else value


async def execute_with_retry(
    fn: Callable[[], Awaitable[Any]],
    policy: RetryPolicy | None = None,
    *,
    name: str = "call",
    max_attempts: int | None = None,
    on_retry: Callable[[int, BaseException, float], None] | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Any:
    """Run ``fn`` until it succeeds, a non-retryable error occurs, or attempts run out.

    Args:
        fn: Zero-argument coroutine factory; called once per attempt.
        policy: Backoff parameters (defaults to ``RetryPolicy()``).
        name: Label used in logs and in the raised error.
        max_attempts: Overrides ``policy.max_attempts``.
        on_retry: Called with (attempt, error, delay) before each backoff sleep.
        sleep: Awaitable sleep, injectable for tests. Cancellation propagates.

    Raises:
        RetryExhaustedError: Wrapping the last error (also set as ``__cause__``).
    """
    policy = policy or RetryPolicy()
    limit = max_attempts if max_attempts is not None else policy.max_attempts
    attempts = 0

    while True:
        try:
            return await fn()
        except Exception as e:
            attempts += 1
            verdict = classify_error(e)

            if not verdict.retryable or attempts >= limit:
                if verdict.retryable:
                    logger.warning("%s: %s, giving up after %d attempt(s)",
                                   name, verdict.category, attempts)
                raise RetryExhaustedError(
                    name, attempts, e, verdict.retryable, verdict.category
                ) from e

            delay = policy.next_delay(attempts - 1)
            hint = extract_retry_after(e)
            if hint is not None:
                delay = min(max(delay, hint), policy.max_delay_s)

            logger.warning(
                "%s: %s (attempt %d/%d), retrying in %.1fs",
                name, verdict.category, attempts, limit, delay,
            )
            if on_retry is not None:
                on_retry(attempts, e, delay)
            await sleep(delay)
