"""
Pipeline Error Taxonomy
=======================

Every failure raised inside a worker is mapped onto one of these classes.
The retry policy decides what happens to the job from the class alone.
Provider failures are classified with ``provider_error`` by HTTP status.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all pipeline failures."""

    retryable: bool = True

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        return self.message


class TransientProviderError(PipelineError):
    """Network failure, timeout, rate limit or 5xx from an AI/embedding provider."""

    retryable = True


class ProviderRejectedError(PipelineError):
    """Provider refused the request (bad request, auth, permission); retrying cannot help."""

    retryable = False

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.status_code = status_code


class MalformedResponseError(PipelineError):
    """Provider answered, but not with JSON matching the expected schema."""

    retryable = True

    def __init__(
        self,
        message: str,
        *,
        raw_response: str = "",
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.raw_response = raw_response


class ValidationError(PipelineError):
    """Input can never succeed (missing image URL, empty input)."""

    retryable = False


class ResourceVanishedError(PipelineError):
    """A referenced job or catalog row no longer exists at write time."""

    retryable = False

    def __init__(self, resource: str, resource_id: str) -> None:
        super().__init__(f"{resource} {resource_id} no longer exists")
        self.resource = resource
        self.resource_id = resource_id


class VectorIndexUnavailableError(PipelineError):
    """The configured vector index cannot be reached or is disabled."""

    retryable = True


# 4xx answers that can succeed on a later attempt
RETRYABLE_CLIENT_STATUSES = frozenset({408, 409, 429})


def provider_error(
    message: str, status_code: int | None, cause: BaseException | None = None
) -> PipelineError:
    """
    Classify a failed provider call by its HTTP status.

    Client errors other than timeouts, conflicts and rate limits become
    ProviderRejectedError; everything else (no status, 5xx) is transient.
    """
    if (
        status_code is not None
        and 400 <= status_code < 500
        and status_code not in RETRYABLE_CLIENT_STATUSES
    ):
        return ProviderRejectedError(message, status_code=status_code, cause=cause)
    return TransientProviderError(message, cause=cause)
