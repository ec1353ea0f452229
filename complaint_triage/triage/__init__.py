"""
Triage Module
=============

Bounded Context for complaint analysis, priority scoring and routing.

Responsibilities:
- Run the extraction, classification, risk and summarisation stages
- Score priority from tenant weights and route the complaint
- Keep an append-only audit trail of every model and human output
"""

__version__ = "1.0.0"
