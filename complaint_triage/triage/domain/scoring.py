"""
Priority Scoring
================

Pure functions that turn triage signals into a priority score and a
routing destination. No I/O, no clock, no randomness.
"""

import math
from dataclasses import dataclass
from typing import Optional

from complaint_triage.config import RiskLevel, RoutingDestination
from complaint_triage.triage.domain.value_objects import PriorityWeights

MONETARY_LOG_SCALE = 5.0

RISK_LEVEL_SCORES = {
    RiskLevel.CRITICAL.value: 1.0,
    RiskLevel.HIGH.value: 0.75,
    RiskLevel.MEDIUM.value: 0.5,
    RiskLevel.LOW.value: 0.25,
}
UNKNOWN_RISK_SCORE = 0.5

COMPLEXITY_INVESTIGATION_THRESHOLD = 0.7
HIGH_RISK_COMPLEXITY_THRESHOLD = 0.4
PRIORITY_INVESTIGATION_THRESHOLD = 0.6


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def normalize_monetary_value(value: Optional[float]) -> float:
    """
    Log-scale a monetary amount into [0, 1].

    $1 maps to 0, $100,000 and above to 1. Missing, zero or negative
    amounts map to 0.
    """
    if value is None or value <= 0:
        return 0.0
    return clamp01(math.log10(value) / MONETARY_LOG_SCALE)


def risk_level_to_numeric(risk_level: Optional[str]) -> float:
    """Map a risk level label to its numeric score (unknown labels score 0.5)."""
    if risk_level is None:
        return UNKNOWN_RISK_SCORE
    key = risk_level.value if isinstance(risk_level, RiskLevel) else str(risk_level).lower()
    return RISK_LEVEL_SCORES.get(key, UNKNOWN_RISK_SCORE)


@dataclass(frozen=True)
class PriorityInputs:
    """Named priority inputs. Out-of-range values are clamped when scored."""
    risk_level: Optional[str]
    systemic_impact: float
    monetary_value: Optional[float]
    vulnerability: float
    resolution_probability: float


def calculate_priority_score(inputs: PriorityInputs, weights: PriorityWeights) -> float:
    """
    Weighted, normalised priority score rounded to 3 decimals.

    Raises:
        ValueError: If the weights sum to zero
    """
    total_weight = (
        weights.risk
        + weights.systemic_impact
        + weights.monetary_harm
        + weights.vulnerability
        + weights.resolution_probability_inverted
    )
    if total_weight <= 0:
        raise ValueError("Priority weights sum to zero")

    weighted = (
        weights.risk * risk_level_to_numeric(inputs.risk_level)
        + weights.systemic_impact * clamp01(inputs.systemic_impact)
        + weights.monetary_harm * normalize_monetary_value(inputs.monetary_value)
        + weights.vulnerability * clamp01(inputs.vulnerability)
        + weights.resolution_probability_inverted * (1.0 - clamp01(inputs.resolution_probability))
    )

    return clamp01(round(weighted / total_weight, 3))


def determine_routing(
    risk_level: Optional[str],
    complexity_score: float,
    is_systemic_risk: bool,
    priority_score: float,
) -> RoutingDestination:
    """
    Pick the handling track. Rules are checked in order, first match wins.
    """
    level = risk_level_to_label(risk_level)

    if is_systemic_risk:
        return RoutingDestination.SYSTEMIC_REVIEW
    if level == RiskLevel.CRITICAL.value or complexity_score > COMPLEXITY_INVESTIGATION_THRESHOLD:
        return RoutingDestination.LINE_2_INVESTIGATION
    if level == RiskLevel.HIGH.value and complexity_score > HIGH_RISK_COMPLEXITY_THRESHOLD:
        return RoutingDestination.LINE_2_INVESTIGATION
    if priority_score > PRIORITY_INVESTIGATION_THRESHOLD:
        return RoutingDestination.LINE_2_INVESTIGATION
    return RoutingDestination.LINE_1_AUTO


def risk_level_to_label(risk_level: Optional[str]) -> Optional[str]:
    if risk_level is None:
        return None
    if isinstance(risk_level, RiskLevel):
        return risk_level.value
    return str(risk_level).lower()
