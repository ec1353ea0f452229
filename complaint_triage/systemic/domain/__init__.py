"""
Systemic Domain Layer
=====================

Clusters, cluster decisions, spike status and detection results.
"""

from complaint_triage.systemic.domain.entities import (
    ClusterDecision,
    DetectionResult,
    SimilarComplaint,
    SpikeStatus,
    SystemicCluster,
)

__all__ = [
    "ClusterDecision",
    "DetectionResult",
    "SimilarComplaint",
    "SpikeStatus",
    "SystemicCluster",
]
