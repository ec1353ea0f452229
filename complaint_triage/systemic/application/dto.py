"""
Systemic Application DTOs
=========================

Response models for clusters, cluster alerts and volume spikes.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from complaint_triage.systemic.domain.entities import SpikeStatus, SystemicCluster
from complaint_triage.triage.domain.entities import Complaint


class ClusterResponse(BaseModel):
    id: str
    title: str
    description: str
    category: Optional[str] = None
    risk_level: str
    state: str
    complaint_count: int
    avg_similarity: float
    common_patterns: List[str]
    recommended_action: Optional[str] = None
    detection_method: str
    is_active: bool
    is_acknowledged: bool
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    version: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, cluster: SystemicCluster) -> "ClusterResponse":
        return cls(
            id=cluster.id,
            title=cluster.title,
            description=cluster.description,
            category=cluster.category,
            risk_level=cluster.risk_level,
            state=cluster.state.value,
            complaint_count=cluster.complaint_count,
            avg_similarity=round(cluster.avg_similarity, 4),
            common_patterns=list(cluster.common_patterns),
            recommended_action=cluster.recommended_action,
            detection_method=cluster.detection_method,
            is_active=cluster.is_active,
            is_acknowledged=cluster.is_acknowledged,
            acknowledged_by=cluster.acknowledged_by,
            acknowledged_at=cluster.acknowledged_at,
            version=cluster.version,
            created_at=cluster.created_at,
            updated_at=cluster.updated_at,
        )


class ClusterMember(BaseModel):
    """Short view of a complaint inside a cluster."""
    id: str
    reference_number: str
    category: Optional[str] = None
    risk_level: Optional[str] = None
    priority_score: Optional[float] = None
    summary: Optional[str] = None
    submitted_at: datetime

    @classmethod
    def from_domain(cls, complaint: Complaint) -> "ClusterMember":
        return cls(
            id=complaint.id,
            reference_number=complaint.reference_number,
            category=complaint.category,
            risk_level=complaint.risk_level,
            priority_score=complaint.priority_score,
            summary=complaint.summary,
            submitted_at=complaint.submitted_at,
        )


class ClusterDetailResponse(BaseModel):
    cluster: ClusterResponse
    members: List[ClusterMember]


class ClusterListResponse(BaseModel):
    total: int
    clusters: List[ClusterResponse]


class SpikeResponse(BaseModel):
    tenant_id: str
    window_hours: int
    count: int
    threshold: int
    baseline: float
    ratio_to_baseline: Optional[float] = None
    is_spike: bool
    checked_at: datetime

    @classmethod
    def from_domain(cls, status: SpikeStatus) -> "SpikeResponse":
        return cls(
            tenant_id=status.tenant_id,
            window_hours=status.window_hours,
            count=status.count,
            threshold=status.threshold,
            baseline=status.baseline,
            ratio_to_baseline=status.ratio_to_baseline,
            is_spike=status.is_spike,
            checked_at=status.checked_at,
        )
