"""
Retry Policy
============

Decides the next status of a job after a failed attempt. The decision
depends only on the error class and the job's current retry_count:

- retryable errors go back to ``pending`` with retry_count + 1 until
  ``max_retries`` attempts have been retried, then the job is ``failed``
- ValidationError fails immediately without incrementing
- ResourceVanishedError fails immediately with a ``skipped:`` message
- unexpected exceptions are treated as retryable
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from vinho_pipeline.core.enums import JobStatus
from vinho_pipeline.core.errors import PipelineError, ResourceVanishedError

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3

SKIPPED_PREFIX = "skipped: "


@dataclass(frozen=True)
class RetryOutcome:
    """Status and counters to persist after a failed attempt."""

    status: JobStatus
    retry_count: int
    error_message: str

    @property
    def will_retry(self) -> bool:
        return self.status == JobStatus.PENDING

    @property
    def skipped(self) -> bool:
        return self.error_message.startswith(SKIPPED_PREFIX)


def describe_error(error: BaseException) -> str:
    """Render an error as ``ClassName: message`` for error_message columns."""
    message = str(error) or repr(error)
    return f"{type(error).__name__}: {message}"


class RetryPolicy:
    """Maps a failure onto the job's next status."""

    def __init__(self, max_retries: int = DEFAULT_MAX_RETRIES) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        self.max_retries = max_retries

    def apply(self, retry_count: int, error: BaseException) -> RetryOutcome:
        """
        Compute the outcome of a failed attempt.

        Args:
            retry_count: The job's retry_count before this failure
            error: The exception raised by the attempt

        Returns:
            RetryOutcome with the new status, retry_count and error message
        """
        message = describe_error(error)

        if isinstance(error, ResourceVanishedError):
            return RetryOutcome(JobStatus.FAILED, retry_count, f"{SKIPPED_PREFIX}{message}")

        retryable = error.retryable if isinstance(error, PipelineError) else True
        if not retryable:
            return RetryOutcome(JobStatus.FAILED, retry_count, message)

        if retry_count < self.max_retries:
            return RetryOutcome(JobStatus.PENDING, retry_count + 1, message)

        return RetryOutcome(JobStatus.FAILED, retry_count, message)

    def log_outcome(self, job_label: str, outcome: RetryOutcome) -> None:
        """Log a failure decision at the level it deserves."""
        if outcome.skipped:
            logger.info(f"{job_label} {outcome.error_message}")
        elif outcome.will_retry:
            logger.warning(
                f"{job_label} failed (attempt {outcome.retry_count}/{self.max_retries}), "
                f"will retry: {outcome.error_message}"
            )
        else:
            logger.error(f"{job_label} failed permanently: {outcome.error_message}")
