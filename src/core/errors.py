# src/core/errors.py - v1
"""Error taxonomy for the research pipeline.

Step-level errors are recorded per item and never abort sibling items.
Only ``PipelineConfigurationError`` (and settings ``ConfigurationError``)
propagate to fail a whole batch.
"""

from __future__ import annotations


class ProspectorError(Exception):
    """Base class for all pipeline errors."""


class ProviderError(ProspectorError):
    """A research provider call failed.

    ``status_code`` is optional; classification also looks at the message,
    since providers often only surface text such as ``"HTTP 503"``.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CircuitOpenError(ProspectorError):
    """Call short-circuited because the provider's breaker is open."""

    def __init__(self, provider: str, retry_after_s: float) -> None:
        super().__init__(
            f"Circuit open for {provider}; retry after {retry_after_s:.1f}s"
        )
        self.provider = provider
        self.retry_after_s = retry_after_s


class ProcessingElsewhereError(ProspectorError):
    """Another worker holds the idempotency lock for this step input."""

    def __init__(self, item_id: str, step: str, key: str) -> None:
        super().__init__(f"Step {step} for item {item_id} is processing elsewhere")
        self.item_id = item_id
        self.step = step
        self.key = key


class SequencingError(ProspectorError):
    """A step was begun before its predecessor succeeded or was skipped."""

    def __init__(self, item_id: str, step: str, blocking_step: str | None) -> None:
        super().__init__(
            f"Cannot begin {step} for item {item_id}: "
            f"prior step {blocking_step} is not complete"
        )
        self.item_id = item_id
        self.step = step
        self.blocking_step = blocking_step


class StoreUnavailableError(ProspectorError):
    """The ledger or checkpoint backend could not be reached."""

    def __init__(self, store: str, operation: str, cause: BaseException | None = None) -> None:
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{store} unavailable during {operation}{detail}")
        self.store = store
        self.operation = operation


class RetryExhaustedError(ProspectorError):
    """All retry attempts failed, or the error was not retryable."""

    def __init__(
        self,
        name: str,
        attempts: int,
        last_error: BaseException,
        retryable: bool,
        category: str,
    ) -> None:
        super().__init__(f"{name} failed after {attempts} attempt(s): {last_error}")
        self.name = name
        self.attempts = attempts
        self.last_error = last_error
        self.retryable = retryable
        self.category = category


class StepFailedError(ProspectorError):
    """Raised by the step executor after recording a step failure."""

    def __init__(
        self,
        item_id: str,
        step: str,
        attempts: int,
        category: str,
        last_error: BaseException,
    ) -> None:
        super().__init__(f"Step {step} failed for item {item_id} ({category}): {last_error}")
        self.item_id = item_id
        self.step = step
        self.attempts = attempts
        self.category = category
        self.last_error = last_error


class PipelineConfigurationError(ProspectorError):
    """Batch-level setup fault detected before any item starts."""
