"""
Triage Domain Entities
======================

Domain entities for the complaint triage module.

Contains pure Python business objects for complaints, their triage
results and the append-only audit trail of model outputs.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from complaint_triage.config import AiOutputType, ComplaintStatus, RoutingDestination


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


@dataclass(frozen=True)
class AiOutputRecord:
    """
    One model (or human) output on a complaint's audit trail.

    Records are never updated. A correction is a new record with
    ``is_edited`` set, pointing at the record it supersedes.
    """
    complaint_id: str
    tenant_id: str
    output_type: AiOutputType
    model: str
    prompt: str
    raw_response: str
    parsed_output: Dict[str, Any] = field(default_factory=dict)
    confidence: Optional[float] = None
    reasoning: Optional[str] = None
    prompt_tokens: int = 0
    completion_tokens: int = 0
    latency_ms: int = 0
    is_edited: bool = False
    edited_by: Optional[str] = None
    supersedes_id: Optional[str] = None
    supersedes_author: Optional[str] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class BusinessContext:
    """What is known about the business a complaint is made against."""
    business_id: Optional[str] = None
    business_name: Optional[str] = None
    industry: Optional[str] = None
    business_status: Optional[str] = None
    prior_complaint_count: int = 0


@dataclass(frozen=True)
class ComplexityFactors:
    """Six complexity factors in [0, 1] scored by the risk stage."""
    legal_nuance: float = 0.0
    investigation_depth: float = 0.0
    monetary_value: float = 0.0
    parties_involved: float = 0.0
    novelty: float = 0.0
    public_harm: float = 0.0

    def mean(self) -> float:
        values = (
            self.legal_nuance,
            self.investigation_depth,
            self.monetary_value,
            self.parties_involved,
            self.novelty,
            self.public_harm,
        )
        return sum(values) / len(values)


@dataclass
class TriageResult:
    """Derived fields produced by one run of the triage pipeline."""
    category: Optional[str]
    secondary_categories: List[str]
    legal_category: Optional[str]
    industry: Optional[str]
    business_name: Optional[str]
    monetary_value: Optional[float]
    risk_level: str
    complexity_factors: ComplexityFactors
    complexity_score: float
    priority_score: float
    routing_destination: RoutingDestination
    is_systemic_risk: bool
    is_civil_dispute: bool
    breach_likelihood: float
    public_harm: float
    vulnerability_score: float
    systemic_impact_score: float
    resolution_probability: float
    confidence: float
    reasoning: Dict[str, Optional[str]] = field(default_factory=dict)

    def __post_init__(self):
        """Validate score ranges."""
        if not 0.0 <= self.priority_score <= 1.0:
            raise ValueError("Priority score must be between 0 and 1")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError("Confidence must be between 0 and 1")


@dataclass
class TriageOutput:
    """Everything a triage run produced: the result plus its audit records."""
    result: TriageResult
    records: List[AiOutputRecord]
    executive_summary: str
    key_issues: List[str] = field(default_factory=list)
    recommended_actions: List[str] = field(default_factory=list)


@dataclass
class Complaint:
    """
    Complaint entity.

    Tenant-scoped. Once the complaint has been placed in a systemic cluster
    its systemic flag stays true; re-triage never clears it.
    """
    tenant_id: str
    raw_text: str
    reference_number: str
    id: str = field(default_factory=new_id)
    business_id: Optional[str] = None
    business_name: Optional[str] = None
    business_status: Optional[str] = None
    status: ComplaintStatus = ComplaintStatus.SUBMITTED

    # Derived by triage
    category: Optional[str] = None
    secondary_categories: List[str] = field(default_factory=list)
    legal_category: Optional[str] = None
    industry: Optional[str] = None
    monetary_value: Optional[float] = None
    risk_level: Optional[str] = None
    complexity_score: Optional[float] = None
    priority_score: Optional[float] = None
    routing_destination: Optional[RoutingDestination] = None
    is_systemic_risk: bool = False
    is_civil_dispute: bool = False
    breach_likelihood: Optional[float] = None
    ai_confidence: Optional[float] = None
    summary: Optional[str] = None
    systemic_cluster_id: Optional[str] = None

    # Timestamps
    submitted_at: datetime = field(default_factory=utc_now)
    triaged_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_triaged(self) -> bool:
        return self.triaged_at is not None

    @property
    def in_cluster(self) -> bool:
        return self.systemic_cluster_id is not None

    def apply_triage(self, output: TriageOutput, now: Optional[datetime] = None) -> None:
        """Copy a triage run's derived fields onto the complaint."""
        result = output.result
        now = now or utc_now()

        self.category = result.category
        self.secondary_categories = list(result.secondary_categories)
        self.legal_category = result.legal_category
        self.industry = result.industry
        self.monetary_value = result.monetary_value
        if result.business_name and not self.business_name:
            self.business_name = result.business_name
        self.risk_level = result.risk_level
        self.complexity_score = result.complexity_score
        self.priority_score = result.priority_score
        self.is_civil_dispute = result.is_civil_dispute
        self.breach_likelihood = result.breach_likelihood
        self.ai_confidence = result.confidence
        self.summary = output.executive_summary

        if self.in_cluster:
            self.is_systemic_risk = True
            self.routing_destination = RoutingDestination.SYSTEMIC_REVIEW
        else:
            self.is_systemic_risk = result.is_systemic_risk
            self.routing_destination = result.routing_destination

        self.status = ComplaintStatus.TRIAGED
        self.triaged_at = now
        self.updated_at = now

    def copy(self) -> "Complaint":
        return replace(self, secondary_categories=list(self.secondary_categories))
