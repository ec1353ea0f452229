"""
Shared Kernel Module
====================

Shared infrastructure used across all bounded contexts (Intake, Triage
and Systemic Detection).

Architecture Pattern: Modular Monolith
- Each module (intake, triage, systemic) is a bounded context
- Shared kernel contains only generic infrastructure

DO NOT add triage or clustering business logic to the shared kernel.
"""

__version__ = "1.0.0"
