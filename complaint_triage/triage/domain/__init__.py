"""
Triage Domain Layer
===================

Contains:
- Entities: Complaint, AiOutputRecord, TriageResult
- Value Objects: PriorityWeights, TenantConfig
- Scoring and routing rules, prompt templates

This layer is framework-agnostic and contains pure business logic.
"""

from complaint_triage.triage.domain.entities import (
    AiOutputRecord,
    BusinessContext,
    Complaint,
    ComplexityFactors,
    TriageOutput,
    TriageResult,
)
from complaint_triage.triage.domain.scoring import (
    PriorityInputs,
    calculate_priority_score,
    determine_routing,
    normalize_monetary_value,
)
from complaint_triage.triage.domain.value_objects import PriorityWeights, TenantConfig

__all__ = [
    "AiOutputRecord",
    "BusinessContext",
    "Complaint",
    "ComplexityFactors",
    "TriageOutput",
    "TriageResult",
    "PriorityInputs",
    "calculate_priority_score",
    "determine_routing",
    "normalize_monetary_value",
    "PriorityWeights",
    "TenantConfig",
]
