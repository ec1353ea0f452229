"""
Infrastructure Layer
=====================

Low-level technical concerns:
- Logging setup
- Keyed locks for in-process mutual exclusion
"""
