"""
Systemic Interfaces Layer
=========================

Contains:
- Controllers: FastAPI route handlers
"""

from complaint_triage.systemic.interfaces.controllers import systemic_router

__all__ = ["systemic_router"]
