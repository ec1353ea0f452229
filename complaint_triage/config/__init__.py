"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="complaint-triage", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/complaint_triage",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Language Model Gateway ==========
    llm_provider: str = Field(
        default="openai",
        description="Provider strategy selected at startup (openai, anthropic, zai, mock)"
    )
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    anthropic_api_key: Optional[str] = Field(default=None, description="Anthropic API key")
    anthropic_base_url: Optional[str] = Field(
        default=None,
        description="Anthropic API base URL (SDK default when unset)"
    )
    zai_api_key: Optional[str] = Field(default=None, description="Z.AI API key")
    mock_llm: bool = Field(
        default=False,
        description="Use mock LLM responses for testing (no API calls)"
    )
    llm_model: str = Field(default="gpt-4o", description="Model used for the triage stages")
    embedding_model: str = Field(
        default="text-embedding-ada-002",
        description="Model used for complaint embeddings"
    )
    llm_temperature: float = Field(
        default=0.1,
        description="Default temperature for structured stages",
        ge=0.0,
        le=1.0
    )
    llm_max_tokens: int = Field(
        default=4096,
        description="Default max tokens for LLM generation",
        ge=1,
        le=16000
    )
    llm_timeout_seconds: float = Field(
        default=60.0,
        description="Deadline for a single gateway call",
        gt=0
    )
    prompt_truncate_chars: int = Field(
        default=500,
        description="Prompt characters kept on AI output records",
        ge=0
    )

    # ========== Similarity Index (Zilliz Cloud / Milvus) ==========
    vector_store: str = Field(
        default="milvus",
        description="Similarity index backend (milvus, memory)"
    )
    zilliz_uri: str = Field(default="", description="Zilliz Cloud cluster URI")
    zilliz_api_key: str = Field(default="", description="Zilliz Cloud API key")
    milvus_collection_name: str = Field(
        default="complaint_embeddings",
        description="Milvus collection name"
    )
    embedding_dimension: int = Field(
        default=1536,
        description="Embedding vector dimension",
        ge=8
    )

    # ========== Systemic Detection ==========
    similarity_threshold: float = Field(
        default=0.85,
        description="Minimum cosine similarity for a neighbour",
        ge=0.0,
        le=1.0
    )
    similarity_recency_days: int = Field(
        default=90,
        description="Only complaints submitted within this window are neighbours",
        ge=1
    )
    similarity_max_results: int = Field(
        default=50,
        description="Cap on neighbours returned by a similarity query",
        ge=1
    )
    cluster_min_complaints: int = Field(
        default=3,
        description="Minimum candidate group size (self included) before AI judgment",
        ge=2
    )
    cluster_sample_size: int = Field(
        default=10,
        description="Representative neighbours sent to the cluster judgment",
        ge=1
    )
    spike_window_hours: int = Field(default=24, description="Spike rolling window", ge=1)
    spike_threshold: int = Field(
        default=5,
        description="Complaints in the window that constitute a spike",
        ge=1
    )
    spike_scan_interval_seconds: int = Field(
        default=900,
        description="Seconds between scheduled spike scans (0 disables)",
        ge=0
    )

    # ========== Worker Queue ==========
    worker_concurrency: int = Field(default=5, description="Concurrent complaint workers", ge=1)
    worker_queue_size: int = Field(default=1000, description="Max queued complaints", ge=1)
    worker_max_attempts: int = Field(
        default=3,
        description="Attempts per complaint when the provider is unavailable",
        ge=1
    )
    worker_retry_base_seconds: float = Field(
        default=2.0,
        description="Base delay for exponential retry backoff",
        ge=0
    )

    # ========== Tenant Configuration ==========
    tenant_config_path: Path = Field(
        default=Path("tenants.yaml"),
        description="Path to per-tenant YAML configuration (priority weights)"
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("llm_provider")
    @classmethod
    def validate_llm_provider(cls, v: str) -> str:
        allowed = {provider.value for provider in LLMProvider}
        if v not in allowed:
            raise ValueError(f"llm_provider must be one of {allowed}")
        return v

    @field_validator("vector_store")
    @classmethod
    def validate_vector_store(cls, v: str) -> str:
        allowed = {"milvus", "memory"}
        if v not in allowed:
            raise ValueError(f"vector_store must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# ========== Constants ==========

class LLMProvider(str, Enum):
    """Language-model provider strategies."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    ZAI = "zai"
    MOCK = "mock"


class RiskLevel(str, Enum):
    """Complaint and cluster risk levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RoutingDestination(str, Enum):
    """Handling tracks a complaint can be routed to."""
    LINE_1_AUTO = "line_1_auto"
    LINE_2_INVESTIGATION = "line_2_investigation"
    SYSTEMIC_REVIEW = "systemic_review"


class ComplaintStatus(str, Enum):
    """Complaint lifecycle statuses."""
    SUBMITTED = "submitted"
    TRIAGED = "triaged"
    IN_PROGRESS = "in_progress"
    ESCALATED = "escalated"
    RESOLVED = "resolved"
    CLOSED = "closed"


class AiOutputType(str, Enum):
    """Kinds of model (or human) outputs kept on the audit trail."""
    EXTRACTION = "extraction"
    CLASSIFICATION = "classification"
    RISK_SCORING = "risk_scoring"
    SUMMARISATION = "summarisation"
    CLUSTERING_ANALYSIS = "clustering_analysis"
    EMBEDDING = "embedding"
    SYSTEMIC_ELEVATION = "systemic_elevation"
    MANUAL_OVERRIDE = "manual_override"


class ClusterAction(str, Enum):
    """Outcome of a join-or-create decision."""
    CREATED = "created"
    UPDATED = "updated"
    NONE = "none"


class ClusterState(str, Enum):
    """Systemic cluster lifecycle states."""
    PROPOSED = "proposed"
    CREATED = "created"
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    INACTIVE = "inactive"


COMPLAINT_CATEGORIES = {
    "misleading_conduct": "Misleading or deceptive conduct",
    "unfair_contract_terms": "Unfair contract terms",
    "product_safety": "Product safety",
    "pricing_issues": "Pricing issues",
    "warranty_guarantee": "Warranty / guarantee",
    "refund_dispute": "Refund dispute",
    "service_quality": "Service quality",
    "billing_dispute": "Billing dispute",
    "privacy_breach": "Privacy breach",
    "accessibility": "Accessibility",
    "discrimination": "Discrimination",
    "scam_fraud": "Scam / fraud",
    "unconscionable_conduct": "Unconscionable conduct",
    "other": "Other",
}

INDUSTRY_CLASSIFICATIONS = {
    "financial_services": "Financial Services",
    "telecommunications": "Telecommunications",
    "energy": "Energy",
    "retail": "Retail",
    "health": "Health",
    "aged_care": "Aged Care",
    "building_construction": "Building & Construction",
    "automotive": "Automotive",
    "travel_tourism": "Travel & Tourism",
    "education": "Education",
    "real_estate": "Real Estate",
    "insurance": "Insurance",
    "food_beverage": "Food & Beverage",
    "technology": "Technology",
    "government_services": "Government Services",
    "other": "Other",
}

# ========== Lists for validation ==========

VALID_RISK_LEVELS = [level.value for level in RiskLevel]
VALID_ROUTING_DESTINATIONS = [destination.value for destination in RoutingDestination]
VALID_STATUSES = [status.value for status in ComplaintStatus]


# Global settings instance
settings = get_settings()
