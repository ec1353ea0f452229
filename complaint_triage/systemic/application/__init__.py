"""
Systemic Application Layer
==========================

Contains:
- Services: cluster manager, spike detector, detection orchestrator
- DTOs: Data transfer objects for API serialization
"""

from complaint_triage.systemic.application.services import (
    ClusterManager,
    ISystemicClusterRepository,
    SpikeDetector,
    SystemicClusterService,
    SystemicDetectionOrchestrator,
)

__all__ = [
    "ClusterManager",
    "ISystemicClusterRepository",
    "SpikeDetector",
    "SystemicClusterService",
    "SystemicDetectionOrchestrator",
]
