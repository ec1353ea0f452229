"""
Intake Application Layer
========================
"""

from complaint_triage.intake.application.services import (
    ComplaintIntakeService,
    ComplaintJob,
    ComplaintProcessor,
)

__all__ = ["ComplaintIntakeService", "ComplaintJob", "ComplaintProcessor"]
