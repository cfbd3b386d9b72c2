"""Exception types for batch scraping.

Three families of errors exist:

1. BatchValidationError - the batch request itself is malformed. Raised
   before any target is dispatched and fatal to the batch.
2. ExecutorFailure - one attempt against one target failed (network error,
   unexpected HTTP status, timeout, missing selector, script error). These
   are recoverable: the driver retries them according to its RetryPolicy.
3. ExhaustedRetries - the terminal per-target record once the policy gives
   up. The driver logs it and records a failed result; it never aborts the
   rest of the batch.

LimiterInvariantError signals internal corruption of the concurrency
limiter and, like BatchValidationError, is fatal to the batch.
"""

from enum import Enum


class FailureKind(Enum):
    """Kind of a failed attempt, propagated verbatim into results."""

    NETWORK = "network"
    HTTP_STATUS = "http-status"
    TIMEOUT = "timeout"
    SELECTOR_NOT_FOUND = "selector-not-found"
    SCRIPT_ERROR = "script-error"


class BatchValidationError(ValueError):
    """Raised when a batch request is malformed.

    Attributes:
        field: Name of the offending option or input, if known.
        message: Human-readable error message.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        self.message = message
        super().__init__(
            f"{field}: {message}" if field is not None else message
        )


# =============================================================================
# Per-attempt failures
# =============================================================================


class ExecutorFailure(Exception):
    """Base class for a failed attempt against a single target.

    Every failure kind is retried identically; ``kind`` only exists for the
    caller's diagnostics.

    Attributes:
        kind: The FailureKind of this failure.
        message: Human-readable error message.
    """

    kind: FailureKind = FailureKind.SCRIPT_ERROR

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class NetworkFailure(ExecutorFailure):
    """Raised when the target could not be reached at all."""

    kind = FailureKind.NETWORK


class HTTPStatusFailure(ExecutorFailure):
    """Raised when the server answers with a non-success status code.

    Attributes:
        status_code: The HTTP status code received.
        url: The URL that returned the status.
        reason: The reason phrase, if any.
    """

    kind = FailureKind.HTTP_STATUS

    def __init__(self, status_code: int, url: str, reason: str = "") -> None:
        self.status_code = status_code
        self.url = url
        self.reason = reason
        message = f"HTTP {status_code}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class RequestTimeoutException(ExecutorFailure):
    """Raised when an attempt exceeds its timeout.

    Attributes:
        url: The URL that timed out.
        timeout_seconds: The timeout duration in seconds.
    """

    kind = FailureKind.TIMEOUT

    def __init__(self, url: str, timeout_seconds: float) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Request to {url} timed out after {timeout_seconds}s"
        )


class SelectorNotFoundFailure(ExecutorFailure):
    """Raised when the extraction selector matches nothing.

    Attributes:
        selector: The CSS selector that was used.
        url: The URL of the page.
    """

    kind = FailureKind.SELECTOR_NOT_FOUND

    def __init__(self, selector: str, url: str) -> None:
        self.selector = selector
        self.url = url
        super().__init__(f"No element matches selector '{selector}' at {url}")


class ScriptFailure(ExecutorFailure):
    """Raised when a scripted browser session fails."""

    kind = FailureKind.SCRIPT_ERROR


# =============================================================================
# Terminal and fatal errors
# =============================================================================


class ExhaustedRetries(Exception):
    """Terminal failure of one target after the retry policy gave up.

    Attributes:
        attempts: Number of attempts made.
        last_error: The failure of the final attempt.
    """

    def __init__(self, attempts: int, last_error: ExecutorFailure) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Gave up after {attempts} attempt(s): {last_error.message}"
        )


class LimiterInvariantError(RuntimeError):
    """Raised when the concurrency limiter's slot accounting is violated."""

    pass
