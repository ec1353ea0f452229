"""Framework-agnostic building blocks: the exception hierarchy."""

from complaint_triage.core.exceptions import (
    ApplicationException,
    DomainException,
    ConflictException,
    RepositoryException,
    ValidationException,
    ResourceNotFoundException,
    ConfigurationException,
    ExternalServiceException,
    LLMException,
    ProviderUnavailableException,
    EmbeddingUnavailableException,
    MalformedModelOutputException,
    VectorStoreException,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "ConflictException",
    "RepositoryException",
    "ValidationException",
    "ResourceNotFoundException",
    "ConfigurationException",
    "ExternalServiceException",
    "LLMException",
    "ProviderUnavailableException",
    "EmbeddingUnavailableException",
    "MalformedModelOutputException",
    "VectorStoreException",
]
