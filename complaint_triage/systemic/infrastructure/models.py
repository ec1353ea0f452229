"""
Systemic Infrastructure Models
==============================

SQLAlchemy ORM models for the systemic module.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from complaint_triage.infrastructure.database import Base


class SystemicClusterModel(Base):
    """
    Database model for the SystemicCluster entity.

    Rows are never deleted; ``is_active`` is cleared instead.
    """
    __tablename__ = "systemic_clusters"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    # Description
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    risk_level: Mapped[str] = mapped_column(String(20), nullable=False, default="medium")
    common_patterns: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    recommended_action: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    detection_method: Mapped[str] = mapped_column(String(100), nullable=False)

    # Membership statistics
    complaint_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    avg_similarity: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    # Lifecycle
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    is_acknowledged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    acknowledged_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc)
    )
