"""Application-wide exception hierarchy for psi-runner.

All custom exceptions subclass ``PsiRunnerError``, enabling consistent error
handling and structured logging across the runner.

Hierarchy::

    PsiRunnerError
    ├── CallFailed               (url, strategy, reason)
    │   ├── CallTimeout          (timeout)
    │   ├── CallHTTPError        (status_code)
    │   └── CallMalformed
    ├── StoreError               (operation)
    └── JobNotFoundError         (job_id)

There is no claim-conflict error: ``FOR UPDATE SKIP LOCKED`` never hands the
same row to two claimers, so the condition cannot arise.
"""

from __future__ import annotations


class PsiRunnerError(Exception):
    """Base class for all psi-runner exceptions."""


# ---------------------------------------------------------------------------
# External scorer exceptions
# ---------------------------------------------------------------------------


class CallFailed(PsiRunnerError):
    """Raised when a single scorer call does not produce a usable result.

    Every subclass is retryable: the task executor converts it into a retry
    or terminal-error transition, never into a crash.

    Args:
        reason: Short human-readable failure reason, stored as the task's
            ``error_message``.
        url: The URL that was being scored.
        strategy: ``"mobile"`` or ``"desktop"``.
    """

    def __init__(
        self,
        reason: str,
        url: str | None = None,
        strategy: str | None = None,
    ) -> None:
        super().__init__(reason)
        self.reason = reason
        self.url = url
        self.strategy = strategy


class CallTimeout(CallFailed):
    """Raised when a scorer call exceeds its hard deadline.

    Args:
        timeout: The deadline in seconds that was exceeded.
        url: The URL that was being scored.
        strategy: ``"mobile"`` or ``"desktop"``.
    """

    def __init__(
        self,
        timeout: float,
        url: str | None = None,
        strategy: str | None = None,
    ) -> None:
        super().__init__(f"timeout after {timeout:g}s", url=url, strategy=strategy)
        self.timeout = timeout


class CallHTTPError(CallFailed):
    """Raised when the scorer answers with a non-2xx status.

    Args:
        status_code: The HTTP status code returned.
        detail: Optional excerpt of the response body.
        url: The URL that was being scored.
        strategy: ``"mobile"`` or ``"desktop"``.
    """

    def __init__(
        self,
        status_code: int,
        detail: str | None = None,
        url: str | None = None,
        strategy: str | None = None,
    ) -> None:
        reason = f"HTTP {status_code}"
        if detail:
            reason += f": {detail}"
        super().__init__(reason, url=url, strategy=strategy)
        self.status_code = status_code


class CallMalformed(CallFailed):
    """Raised when a 2xx response does not have the expected document shape."""


# ---------------------------------------------------------------------------
# Store exceptions
# ---------------------------------------------------------------------------


class StoreError(PsiRunnerError):
    """Raised when a read or write against the task store fails.

    Wraps the underlying SQLAlchemy / driver error so that callers outside the
    store do not depend on database exception types.

    Args:
        operation: Name of the store operation that failed
            (e.g. ``"claim_batch"``).
        message: Description of the underlying failure.
    """

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(f"{operation}: {message}")
        self.operation = operation


class JobNotFoundError(PsiRunnerError):
    """Raised when an operation targets a job id that does not exist.

    Args:
        job_id: The id that was looked up.
    """

    def __init__(self, job_id: object) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id
