"""
Intake Interfaces Layer
=======================

Contains:
- Controllers: FastAPI route handlers
"""

from complaint_triage.intake.interfaces.controllers import intake_router

__all__ = ["intake_router"]
