"""
Systemic Infrastructure Layer
=============================

Contains:
- Models: SQLAlchemy ORM model for clusters
- Repositories: Data access implementation
- External: APScheduler spike monitor
"""

from complaint_triage.systemic.infrastructure.external import SpikeMonitorScheduler
from complaint_triage.systemic.infrastructure.models import SystemicClusterModel
from complaint_triage.systemic.infrastructure.repositories import SQLAlchemySystemicClusterRepository

__all__ = [
    "SpikeMonitorScheduler",
    "SystemicClusterModel",
    "SQLAlchemySystemicClusterRepository",
]
