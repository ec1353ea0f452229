"""
Triage Prompts
==============

Prompt templates for the four triage stages and the cluster judgment.

Following DRY principle - all prompt logic in one place.
"""

import json
import re
from typing import Any, Dict, List

from complaint_triage.config import COMPLAINT_CATEGORIES, INDUSTRY_CLASSIFICATIONS

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_ZERO_WIDTH_SPACE = "\u200b"
_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")

# Variables carrying complainant-supplied text
USER_INPUT_KEYS = frozenset({"complaint_text", "summary", "business_name", "issues", "complaints"})


def sanitize_prompt_input(text: str) -> str:
    """
    Neutralise user text before it is placed inside a prompt.

    Triple-quote delimiters are broken with zero-width spaces and control
    characters are removed (newline, carriage return and tab are kept).
    """
    text = text.replace('"""', f'"{_ZERO_WIDTH_SPACE}"{_ZERO_WIDTH_SPACE}"')
    return _CONTROL_CHARS.sub("", text)


def _choices(options: Dict[str, str]) -> str:
    return " | ".join(f'"{key}"' for key in options)


class TriagePromptBuilder:
    """
    Builds the messages sent to the language model for each stage.

    Templates use ``{{name}}`` placeholders; values named in USER_INPUT_KEYS
    are sanitised before substitution.
    """

    SYSTEM_PROMPT = """You are an expert complaint analyst working for a government consumer protection regulator.
You analyze consumer complaints with precision and objectivity. You identify legal issues, assess risk,
and determine appropriate regulatory responses. You are thorough, accurate, and always cite specific
facts from the complaint text to support your analysis.

You must respond ONLY with valid JSON matching the requested schema. Do not include any text outside the JSON."""

    EXTRACTION_TEMPLATE = """Analyze the following consumer complaint and extract structured information.

COMPLAINT TEXT:
\"\"\"
{{complaint_text}}
\"\"\"

Extract the following fields. If a field cannot be determined from the text, set it to null.

Respond with this exact JSON schema:
{
  "businessName": string | null,
  "productOrService": string | null,
  "complaintCategory": """ + _choices(COMPLAINT_CATEGORIES) + """ | null,
  "industry": """ + _choices(INDUSTRY_CLASSIFICATIONS) + """ | null,
  "monetaryValue": number | null,
  "monetaryCurrency": "AUD",
  "incidentDate": string | null,
  "timeline": [{ "date": string | null, "event": string }],
  "parties": [{ "name": string, "role": "complainant" | "business" | "third_party" }],
  "evidenceMentioned": [string],
  "urgencyIndicators": [string],
  "vulnerabilityIndicators": [string],
  "keyFacts": [string],
  "reasoning": string,
  "confidence": number
}"""

    CLASSIFICATION_TEMPLATE = """Classify this consumer complaint for regulatory triage.

COMPLAINT TEXT:
\"\"\"
{{complaint_text}}
\"\"\"

EXTRACTED DATA:
{{extracted_data}}

Analyze and classify this complaint across multiple dimensions. Consider Australian Consumer Law (ACL),
relevant industry regulations, and regulatory precedent.

Respond with this exact JSON schema:
{
  "primaryCategory": string,
  "secondaryCategories": [string],
  "legalCategory": string,
  "relevantLegislation": [string],
  "isCivilDispute": boolean,
  "isSystemicRisk": boolean,
  "breachLikelihood": number,
  "breachType": string | null,
  "regulatoryJurisdiction": string,
  "reasoning": string,
  "confidence": number
}"""

    RISK_SCORING_TEMPLATE = """Assess the risk level and complexity of this consumer complaint for regulatory prioritization.

COMPLAINT TEXT:
\"\"\"
{{complaint_text}}
\"\"\"

CLASSIFICATION:
{{classification}}

BUSINESS CONTEXT:
- Previous complaints against this business: {{previous_complaint_count}}
- Business industry: {{industry}}
- Business status: {{business_status}}

Score each factor from 0.0 to 1.0 and provide overall risk assessment.

Respond with this exact JSON schema:
{
  "riskLevel": "low" | "medium" | "high" | "critical",
  "complexityFactors": {
    "legalNuance": number,
    "investigationDepth": number,
    "monetaryValue": number,
    "partiesInvolved": number,
    "novelty": number,
    "publicHarm": number
  },
  "complexityScore": number,
  "publicHarmIndicator": number,
  "vulnerabilityScore": number,
  "systemicImpactScore": number,
  "resolutionProbability": number,
  "recommendedRouting": "line_1_auto" | "line_2_investigation" | "systemic_review",
  "reasoning": string,
  "confidence": number
}"""

    SUMMARISATION_TEMPLATE = """Summarize this consumer complaint for a regulatory officer who needs to quickly understand the key issues.

COMPLAINT TEXT:
\"\"\"
{{complaint_text}}
\"\"\"

Provide:
1. A 2-3 sentence executive summary
2. Key issues identified
3. Recommended next steps

Respond with this exact JSON schema:
{
  "executiveSummary": string,
  "keyIssues": [string],
  "recommendedActions": [string],
  "reasoning": string,
  "confidence": number
}"""

    CLUSTERING_TEMPLATE = """Analyze this group of similar consumer complaints to identify systemic patterns.

COMPLAINTS:
{{complaints}}

Identify:
1. Common fact patterns across complaints
2. Shared contract terms, fee structures, or business practices
3. Whether this represents a systemic issue vs coincidental similar complaints
4. The nature of potential regulatory concern
5. Recommended regulatory response

Respond with this exact JSON schema:
{
  "isSystemic": boolean,
  "title": string,
  "description": string,
  "commonPatterns": [string],
  "sharedPractices": [string],
  "affectedConsumerProfile": string,
  "potentialRegulatoryConcern": string,
  "recommendedAction": string,
  "riskLevel": "low" | "medium" | "high" | "critical",
  "reasoning": string,
  "confidence": number
}"""

    @staticmethod
    def render(template: str, **variables: Any) -> str:
        """Substitute ``{{name}}`` placeholders, sanitising user-supplied values."""
        def substitute(match: re.Match) -> str:
            key = match.group(1)
            if key not in variables:
                return match.group(0)
            value = variables[key]
            text = "" if value is None else str(value)
            if key in USER_INPUT_KEYS:
                text = sanitize_prompt_input(text)
            return text

        # Single pass, so substituted text is never re-scanned for placeholders
        return _PLACEHOLDER.sub(substitute, template)

    @classmethod
    def messages(cls, user_prompt: str) -> List[dict]:
        return [
            {"role": "system", "content": cls.SYSTEM_PROMPT},
            {"role": "user", "content": user_prompt},
        ]

    @classmethod
    def build_extraction(cls, complaint_text: str) -> str:
        return cls.render(cls.EXTRACTION_TEMPLATE, complaint_text=complaint_text)

    @classmethod
    def build_classification(cls, complaint_text: str, extracted: Dict[str, Any]) -> str:
        return cls.render(
            cls.CLASSIFICATION_TEMPLATE,
            complaint_text=complaint_text,
            extracted_data=json.dumps(extracted, indent=2, default=str),
        )

    @classmethod
    def build_risk_scoring(
        cls,
        complaint_text: str,
        classification: Dict[str, Any],
        previous_complaint_count: int,
        industry: str | None,
        business_status: str | None,
    ) -> str:
        return cls.render(
            cls.RISK_SCORING_TEMPLATE,
            complaint_text=complaint_text,
            classification=json.dumps(classification, indent=2, default=str),
            previous_complaint_count=previous_complaint_count,
            industry=industry or "unknown",
            business_status=business_status or "unknown",
        )

    @classmethod
    def build_summarisation(cls, complaint_text: str) -> str:
        return cls.render(cls.SUMMARISATION_TEMPLATE, complaint_text=complaint_text)

    @classmethod
    def build_clustering(cls, complaints: List[Dict[str, Any]]) -> str:
        """
        Build the cluster judgment prompt.

        Args:
            complaints: Dicts with ``id``, ``category`` and ``text`` keys,
                the new complaint first
        """
        blocks = [
            f"--- Complaint {index} (id: {item['id']}, category: {item.get('category') or 'unknown'}) ---\n"
            f"{item['text']}"
            for index, item in enumerate(complaints, start=1)
        ]
        return cls.render(cls.CLUSTERING_TEMPLATE, complaints="\n\n".join(blocks))
