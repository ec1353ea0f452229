"""
Systemic Domain Entities
========================

Domain entities for systemic-issue detection: clusters of similar
complaints, cluster decisions and volume spikes.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from complaint_triage.config import ClusterAction, ClusterState, RiskLevel
from complaint_triage.core import DomainException
from complaint_triage.triage.domain.entities import new_id, utc_now

DETECTION_METHOD_EMBEDDING = "embedding_cosine_similarity"


@dataclass
class SystemicCluster:
    """
    A group of complaints judged to share one underlying systemic issue.

    Clusters are never merged or deleted and members are never removed;
    a cluster is only ever deactivated.
    """
    tenant_id: str
    title: str
    description: str
    id: str = field(default_factory=new_id)
    category: Optional[str] = None
    risk_level: str = RiskLevel.MEDIUM.value
    complaint_count: int = 0
    avg_similarity: float = 0.0
    common_patterns: List[str] = field(default_factory=list)
    recommended_action: Optional[str] = None
    detection_method: str = DETECTION_METHOD_EMBEDDING
    is_active: bool = True
    is_acknowledged: bool = False
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    version: int = 1
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def state(self) -> ClusterState:
        if not self.is_active:
            return ClusterState.INACTIVE
        if self.is_acknowledged:
            return ClusterState.ACKNOWLEDGED
        if self.version > 1:
            return ClusterState.ACTIVE
        return ClusterState.CREATED

    def acknowledge(self, user_id: str, now: Optional[datetime] = None) -> bool:
        """
        Record that an operator has seen this cluster.

        Returns:
            False if it was already acknowledged

        Raises:
            DomainException: If the cluster has been deactivated
        """
        if not self.is_active:
            raise DomainException("Cannot acknowledge an inactive cluster", {"cluster_id": self.id})
        if self.is_acknowledged:
            return False
        now = now or utc_now()
        self.is_acknowledged = True
        self.acknowledged_by = user_id
        self.acknowledged_at = now
        self.version += 1
        self.updated_at = now
        return True

    def deactivate(self, now: Optional[datetime] = None) -> bool:
        if not self.is_active:
            return False
        now = now or utc_now()
        self.is_active = False
        self.version += 1
        self.updated_at = now
        return True


@dataclass(frozen=True)
class SimilarComplaint:
    complaint_id: str
    similarity: float


@dataclass
class ClusterDecision:
    """Outcome of the join-or-create step for one complaint."""
    action: ClusterAction
    cluster_id: Optional[str] = None
    members: List[str] = field(default_factory=list)
    reason: str = ""

    @classmethod
    def none(cls, reason: str, cluster_id: Optional[str] = None) -> "ClusterDecision":
        return cls(action=ClusterAction.NONE, cluster_id=cluster_id, reason=reason)


@dataclass(frozen=True)
class SpikeStatus:
    """
    Complaint volume for a tenant over the latest rolling window.

    ``baseline`` is the mean count per window over the previous windows.
    """
    tenant_id: str
    window_hours: int
    count: int
    threshold: int
    baseline: float
    checked_at: datetime

    @property
    def is_spike(self) -> bool:
        return self.count >= self.threshold

    @property
    def ratio_to_baseline(self) -> Optional[float]:
        if self.baseline <= 0:
            return None
        return round(self.count / self.baseline, 2)


@dataclass
class DetectionResult:
    """Everything systemic detection concluded about one complaint."""
    complaint_id: str
    tenant_id: str
    similar: List[SimilarComplaint] = field(default_factory=list)
    cluster_action: ClusterAction = ClusterAction.NONE
    cluster_id: Optional[str] = None
    spike: Optional[SpikeStatus] = None
    degraded: bool = False
    errors: List[str] = field(default_factory=list)

    @property
    def is_spike(self) -> bool:
        return self.spike is not None and self.spike.is_spike
