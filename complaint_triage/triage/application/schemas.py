"""
Stage Output Schemas
====================

Pydantic models for the JSON each model stage must return.

Field names follow the camelCase keys in the prompts; attributes are
snake_case. A response that fails validation is malformed model output.
"""

from typing import Annotated, List, Literal, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _none_as_empty(value):
    return [] if value is None else value


def _lowercase(value):
    return value.strip().lower() if isinstance(value, str) else value


StrList = Annotated[List[str], BeforeValidator(_none_as_empty)]
RiskLevelStr = Annotated[Literal["low", "medium", "high", "critical"], BeforeValidator(_lowercase)]
RoutingStr = Literal["line_1_auto", "line_2_investigation", "systemic_review"]


class StageOutput(BaseModel):
    """Common fields every stage returns."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    reasoning: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class TimelineEvent(BaseModel):
    date: Optional[str] = None
    event: str


class Party(BaseModel):
    name: str
    role: Optional[str] = None


class ExtractionOutput(StageOutput):
    business_name: Optional[str] = None
    product_or_service: Optional[str] = None
    complaint_category: Optional[str] = None
    industry: Optional[str] = None
    monetary_value: Optional[float] = None
    monetary_currency: Optional[str] = "AUD"
    incident_date: Optional[str] = None
    timeline: Annotated[List[TimelineEvent], BeforeValidator(_none_as_empty)] = Field(default_factory=list)
    parties: Annotated[List[Party], BeforeValidator(_none_as_empty)] = Field(default_factory=list)
    evidence_mentioned: StrList = Field(default_factory=list)
    urgency_indicators: StrList = Field(default_factory=list)
    vulnerability_indicators: StrList = Field(default_factory=list)
    key_facts: StrList = Field(default_factory=list)


class ClassificationOutput(StageOutput):
    primary_category: str
    secondary_categories: StrList = Field(default_factory=list)
    legal_category: Optional[str] = None
    relevant_legislation: StrList = Field(default_factory=list)
    is_civil_dispute: bool = False
    is_systemic_risk: bool
    breach_likelihood: float = 0.0
    breach_type: Optional[str] = None
    regulatory_jurisdiction: Optional[str] = None


class ComplexityFactorsOutput(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    legal_nuance: float = 0.0
    investigation_depth: float = 0.0
    monetary_value: float = 0.0
    parties_involved: float = 0.0
    novelty: float = 0.0
    public_harm: float = 0.0


class RiskScoringOutput(StageOutput):
    risk_level: RiskLevelStr
    complexity_factors: ComplexityFactorsOutput
    complexity_score: Optional[float] = None
    public_harm_indicator: float = 0.0
    vulnerability_score: float
    systemic_impact_score: float
    resolution_probability: float
    recommended_routing: Optional[RoutingStr] = None


class SummarisationOutput(StageOutput):
    executive_summary: str = Field(..., min_length=1)
    key_issues: StrList = Field(default_factory=list)
    recommended_actions: StrList = Field(default_factory=list)


class ClusterJudgmentOutput(StageOutput):
    is_systemic: bool
    title: str = ""
    description: str = ""
    common_patterns: StrList = Field(default_factory=list)
    shared_practices: StrList = Field(default_factory=list)
    affected_consumer_profile: Optional[str] = None
    potential_regulatory_concern: Optional[str] = None
    recommended_action: Optional[str] = None
    risk_level: RiskLevelStr = "medium"
