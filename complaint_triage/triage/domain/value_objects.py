"""
Triage Value Objects
====================

Immutable value objects for the triage domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from typing import Dict

from pydantic import BaseModel, ConfigDict, Field, model_validator

WEIGHT_DRIFT_TOLERANCE = 0.001


class PriorityWeights(BaseModel):
    """
    Weights of the five priority inputs.

    The score is normalised by the weight sum, so weights that do not add up
    to 1.0 still produce a value in [0, 1]. Drift from 1.0 is reported by
    ``has_drift`` and logged by the tenant configuration loader.
    """
    model_config = ConfigDict(frozen=True)

    risk: float = Field(default=0.30, ge=0.0, description="Weight of the risk level")
    systemic_impact: float = Field(default=0.25, ge=0.0, description="Weight of systemic impact")
    monetary_harm: float = Field(default=0.15, ge=0.0, description="Weight of log-scaled monetary harm")
    vulnerability: float = Field(default=0.20, ge=0.0, description="Weight of consumer vulnerability")
    resolution_probability_inverted: float = Field(
        default=0.10,
        ge=0.0,
        description="Weight of (1 - resolution probability)"
    )

    @model_validator(mode="after")
    def validate_not_all_zero(self) -> "PriorityWeights":
        """Reject a weight set whose sum is zero."""
        if self.total <= 0:
            raise ValueError("priority weights must not all be zero")
        return self

    @property
    def total(self) -> float:
        return (
            self.risk
            + self.systemic_impact
            + self.monetary_harm
            + self.vulnerability
            + self.resolution_probability_inverted
        )

    @property
    def has_drift(self) -> bool:
        """True when the weights do not sum to 1.0."""
        return abs(self.total - 1.0) > WEIGHT_DRIFT_TOLERANCE


class TenantConfig(BaseModel):
    """
    Per-tenant configuration loaded from YAML.

    Example:
        default:
          priority_weights: {risk: 0.3, systemic_impact: 0.25, ...}
        tenants:
          acme-regulator:
            priority_weights: {risk: 0.4, ...}
    """
    default_weights: PriorityWeights = Field(default_factory=PriorityWeights)
    tenant_weights: Dict[str, PriorityWeights] = Field(default_factory=dict)

    @classmethod
    def from_yaml_dict(cls, data: dict) -> "TenantConfig":
        """Build from the parsed YAML document layout."""
        default_block = data.get("default") or {}
        tenants_block = data.get("tenants") or {}
        return cls(
            default_weights=PriorityWeights(**(default_block.get("priority_weights") or {})),
            tenant_weights={
                tenant_id: PriorityWeights(**((block or {}).get("priority_weights") or {}))
                for tenant_id, block in tenants_block.items()
            },
        )

    def weights_for(self, tenant_id: str) -> PriorityWeights:
        """Weights for a tenant, falling back to the default block."""
        return self.tenant_weights.get(tenant_id, self.default_weights)
