"""
Intake Infrastructure Layer
===========================

In-process work queue for complaint jobs.
"""

from complaint_triage.intake.infrastructure.queue import ComplaintWorkQueue

__all__ = ["ComplaintWorkQueue"]
