"""
Intake Module
=============

Bounded Context for accepting complaints and running them through
triage and systemic detection on a background work queue.
"""

__version__ = "1.0.0"
