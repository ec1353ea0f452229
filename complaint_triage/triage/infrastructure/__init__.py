"""
Triage Infrastructure Layer
============================

Contains:
- Models: SQLAlchemy ORM models
- Repositories: Data access implementations
- External: tenant configuration file with hot reload
"""

from complaint_triage.triage.infrastructure.external import TenantConfigManager
from complaint_triage.triage.infrastructure.models import AiOutputModel, ComplaintModel
from complaint_triage.triage.infrastructure.repositories import (
    SQLAlchemyAiOutputRepository,
    SQLAlchemyComplaintRepository,
)

__all__ = [
    "AiOutputModel",
    "ComplaintModel",
    "SQLAlchemyAiOutputRepository",
    "SQLAlchemyComplaintRepository",
    "TenantConfigManager",
]
