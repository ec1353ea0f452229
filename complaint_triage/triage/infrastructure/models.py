"""
Triage Infrastructure Models
============================

SQLAlchemy ORM models for the triage module.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from complaint_triage.infrastructure.database import Base


class ComplaintModel(Base):
    """
    Database model for the Complaint entity.

    Every query against this table carries a tenant_id predicate.
    """
    __tablename__ = "complaints"
    __table_args__ = (
        Index("ix_complaints_tenant_submitted", "tenant_id", "submitted_at"),
        Index("ix_complaints_tenant_business", "tenant_id", "business_id"),
    )

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    reference_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)

    # Complaint content
    raw_text: Mapped[str] = mapped_column(Text, nullable=False)
    business_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    business_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    business_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="submitted")

    # Triage results
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    secondary_categories: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    legal_category: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    industry: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    monetary_value: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    risk_level: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    complexity_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    priority_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True, index=True)
    routing_destination: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    is_systemic_risk: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_civil_dispute: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    breach_likelihood: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    ai_confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    systemic_cluster_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("systemic_clusters.id"),
        nullable=True,
        index=True
    )

    # Timestamps
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc)
    )
    triaged_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class AiOutputModel(Base):
    """
    Database model for AiOutputRecord.

    Append-only: rows are inserted, never updated or deleted.
    """
    __tablename__ = "ai_outputs"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    complaint_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("complaints.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    # Output
    output_type: Mapped[str] = mapped_column(String(50), nullable=False)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    prompt: Mapped[str] = mapped_column(Text, nullable=False, default="")
    raw_response: Mapped[str] = mapped_column(Text, nullable=False, default="")
    parsed_output: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    reasoning: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Metadata
    prompt_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completion_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    latency_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Corrections
    is_edited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    edited_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    supersedes_id: Mapped[Optional[UUID]] = mapped_column(Uuid, ForeignKey("ai_outputs.id"), nullable=True)
    supersedes_author: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    # Timestamp
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc)
    )
