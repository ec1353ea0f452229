"""
Triage Interfaces Layer
========================

Contains:
- Controllers: FastAPI route handlers
"""

from complaint_triage.triage.interfaces.controllers import triage_router

__all__ = ["triage_router"]
