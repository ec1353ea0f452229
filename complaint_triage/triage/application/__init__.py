"""
Triage Application Layer
=========================

Contains:
- Services: stage execution, the triage pipeline and override use cases
- Schemas: pydantic models each model stage must satisfy
- DTOs: Data transfer objects for API serialization
"""

from complaint_triage.triage.application.services import (
    AiAnalysisService,
    IAiOutputRepository,
    IComplaintRepository,
    TriagePipeline,
    TriageService,
    new_triage_service,
)

__all__ = [
    # Services
    "AiAnalysisService",
    "TriagePipeline",
    "TriageService",
    "new_triage_service",
    # Repository Interfaces
    "IAiOutputRepository",
    "IComplaintRepository",
]
