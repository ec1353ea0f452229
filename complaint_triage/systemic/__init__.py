"""
Systemic Detection Module
=========================

Bounded Context for finding issues that affect many consumers.

Responsibilities:
- Embed triaged complaints and query tenant-scoped neighbours
- Join complaints to clusters, or create a cluster after a model judgment
- Watch per-tenant complaint volume for spikes
"""

__version__ = "1.0.0"
