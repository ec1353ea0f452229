"""
Core Exceptions
================

Exception hierarchy shared by every module.

Services raise these; the API layer maps them onto HTTP status codes and
the work queue decides from them whether a job is retried.
"""

from typing import Any, Optional


class ApplicationException(Exception):
    """Base class. ``details`` is returned to API clients alongside the message."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """A state transition the domain rules forbid (HTTP 409)."""


class ConflictException(DomainException):
    """A write lost to a concurrent change of the same record (HTTP 409)."""


class RepositoryException(ApplicationException):
    """A storage call was given data it cannot persist."""


class ValidationException(ApplicationException):
    """Caller input rejected before any state changed (HTTP 422)."""


class ResourceNotFoundException(ApplicationException):
    """Missing, or owned by another tenant (HTTP 404)."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConfigurationException(ApplicationException):
    """Missing credentials or an invalid tenant configuration file."""


class ExternalServiceException(ApplicationException):
    """A call to a model provider or the vector store failed."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class LLMException(ExternalServiceException):
    """Model gateway failure that is not worth retrying (bad request, auth)."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("LLM Service", message, details)


class ProviderUnavailableException(LLMException):
    """
    Network failure, timeout or rate limit from the model gateway.

    Retryable: the work queue re-enqueues the whole complaint with backoff.
    """


class EmbeddingUnavailableException(LLMException):
    """
    The embedding capability could not produce a vector.

    Systemic detection degrades (clustering and spike checks are skipped).
    """


class MalformedModelOutputException(DomainException):
    """
    A stage's response did not parse as its expected schema.

    Not retried automatically. ``record`` carries the audit record of the
    failed call so it can still be persisted.
    """

    def __init__(
        self,
        stage: str,
        message: str,
        raw_output: str = "",
        record: Any = None,
        details: Optional[dict] = None
    ):
        self.stage = stage
        self.raw_output = raw_output
        self.record = record
        super().__init__(
            f"Malformed model output for stage '{stage}': {message}",
            details or {"stage": stage}
        )


class VectorStoreException(ExternalServiceException):
    """The similarity index could not be reached or rejected the call."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Vector Store", message, details)
