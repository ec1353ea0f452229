"""
Triage Application DTOs
========================

Data Transfer Objects for the triage API layer.

Pydantic models for request/response validation.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from complaint_triage.triage.domain.entities import AiOutputRecord, Complaint, TriageOutput
from complaint_triage.triage.domain.value_objects import PriorityWeights


# ========== Request DTOs ==========

class OverrideRequest(BaseModel):
    """Manual correction of a complaint's derived fields."""
    model_config = ConfigDict(json_schema_extra={
        "example": {
            "changes": {"risk_level": "high", "routing_destination": "line_2_investigation"},
            "reason": "Customer is a pensioner; loss understated in the complaint text."
        }
    })

    changes: Dict[str, Any] = Field(..., description="Field name to new value")
    reason: Optional[str] = Field(None, max_length=2000, description="Why the fields were corrected")

    @field_validator("changes")
    @classmethod
    def validate_not_empty(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        if not v:
            raise ValueError("At least one field must be changed")
        return v


# ========== Response DTOs ==========

class ComplaintResponse(BaseModel):
    """A complaint with its triage-derived fields."""
    id: str
    tenant_id: str
    reference_number: str
    status: str
    business_id: Optional[str] = None
    business_name: Optional[str] = None
    category: Optional[str] = None
    secondary_categories: List[str] = Field(default_factory=list)
    legal_category: Optional[str] = None
    industry: Optional[str] = None
    monetary_value: Optional[float] = None
    risk_level: Optional[str] = None
    complexity_score: Optional[float] = None
    priority_score: Optional[float] = None
    routing_destination: Optional[str] = None
    is_systemic_risk: bool = False
    is_civil_dispute: bool = False
    breach_likelihood: Optional[float] = None
    ai_confidence: Optional[float] = None
    summary: Optional[str] = None
    systemic_cluster_id: Optional[str] = None
    submitted_at: datetime
    triaged_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, complaint: Complaint) -> "ComplaintResponse":
        return cls(
            id=complaint.id,
            tenant_id=complaint.tenant_id,
            reference_number=complaint.reference_number,
            status=complaint.status.value,
            business_id=complaint.business_id,
            business_name=complaint.business_name,
            category=complaint.category,
            secondary_categories=list(complaint.secondary_categories),
            legal_category=complaint.legal_category,
            industry=complaint.industry,
            monetary_value=complaint.monetary_value,
            risk_level=complaint.risk_level,
            complexity_score=complaint.complexity_score,
            priority_score=complaint.priority_score,
            routing_destination=complaint.routing_destination.value if complaint.routing_destination else None,
            is_systemic_risk=complaint.is_systemic_risk,
            is_civil_dispute=complaint.is_civil_dispute,
            breach_likelihood=complaint.breach_likelihood,
            ai_confidence=complaint.ai_confidence,
            summary=complaint.summary,
            systemic_cluster_id=complaint.systemic_cluster_id,
            submitted_at=complaint.submitted_at,
            triaged_at=complaint.triaged_at,
            resolved_at=complaint.resolved_at,
        )


class AiOutputResponse(BaseModel):
    """One entry of the audit trail. Prompts are not returned."""
    id: str
    output_type: str
    model: str
    parsed_output: Dict[str, Any]
    confidence: Optional[float] = None
    reasoning: Optional[str] = None
    prompt_tokens: int
    completion_tokens: int
    latency_ms: int
    is_edited: bool
    edited_by: Optional[str] = None
    supersedes_id: Optional[str] = None
    supersedes_author: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_domain(cls, record: AiOutputRecord) -> "AiOutputResponse":
        return cls(
            id=record.id,
            output_type=record.output_type.value,
            model=record.model,
            parsed_output=record.parsed_output,
            confidence=record.confidence,
            reasoning=record.reasoning,
            prompt_tokens=record.prompt_tokens,
            completion_tokens=record.completion_tokens,
            latency_ms=record.latency_ms,
            is_edited=record.is_edited,
            edited_by=record.edited_by,
            supersedes_id=record.supersedes_id,
            supersedes_author=record.supersedes_author,
            created_at=record.created_at,
        )


class TriageRunResponse(BaseModel):
    """Response for a triage run."""
    complaint: ComplaintResponse
    executive_summary: str
    key_issues: List[str]
    recommended_actions: List[str]
    total_tokens: int
    detection_queued: bool
    processing_time_ms: int

    @classmethod
    def build(
        cls,
        complaint: Complaint,
        output: TriageOutput,
        detection_queued: bool,
        processing_time_ms: int
    ) -> "TriageRunResponse":
        return cls(
            complaint=ComplaintResponse.from_domain(complaint),
            executive_summary=output.executive_summary,
            key_issues=output.key_issues,
            recommended_actions=output.recommended_actions,
            total_tokens=sum(r.total_tokens for r in output.records),
            detection_queued=detection_queued,
            processing_time_ms=processing_time_ms,
        )


class TriageResultResponse(BaseModel):
    """A complaint together with its audit trail, oldest first."""
    complaint: ComplaintResponse
    ai_outputs: List[AiOutputResponse]


class OverrideResponse(BaseModel):
    complaint: ComplaintResponse
    record: AiOutputResponse


class WeightsResponse(BaseModel):
    """Priority weights in force for the calling tenant."""
    tenant_id: str
    weights: Dict[str, float]
    total: float
    has_drift: bool

    @classmethod
    def from_domain(cls, tenant_id: str, weights: PriorityWeights) -> "WeightsResponse":
        return cls(
            tenant_id=tenant_id,
            weights=weights.model_dump(),
            total=round(weights.total, 6),
            has_drift=weights.has_drift,
        )
