"""
Triage Application Services
===========================

Application services for complaint triage.

Orchestrates the four model stages, scoring and routing between domain
entities, the LLM gateway and repositories.
"""

import asyncio
import json
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, TypeVar

from pydantic import ValidationError

from complaint_triage.config import (
    AiOutputType,
    ComplaintStatus,
    RoutingDestination,
    VALID_RISK_LEVELS,
    VALID_ROUTING_DESTINATIONS,
    VALID_STATUSES,
    settings,
)
from complaint_triage.core import (
    MalformedModelOutputException,
    ProviderUnavailableException,
    ResourceNotFoundException,
    ValidationException,
)
from complaint_triage.infrastructure.llm import CompletionResult, ILLMGateway
from complaint_triage.shared.infrastructure.logging import get_logger
from complaint_triage.triage.application.schemas import (
    ClassificationOutput,
    ExtractionOutput,
    RiskScoringOutput,
    StageOutput,
    SummarisationOutput,
)
from complaint_triage.triage.domain.entities import (
    AiOutputRecord,
    BusinessContext,
    Complaint,
    ComplexityFactors,
    TriageOutput,
    TriageResult,
    utc_now,
)
from complaint_triage.triage.domain.prompts import TriagePromptBuilder
from complaint_triage.triage.domain.scoring import (
    PriorityInputs,
    calculate_priority_score,
    clamp01,
    determine_routing,
)
from complaint_triage.triage.domain.value_objects import PriorityWeights

logger = get_logger(__name__)

StageModel = TypeVar("StageModel", bound=StageOutput)
WeightsProvider = Callable[[str], PriorityWeights]


# ========== Repository Interfaces ==========

class IComplaintRepository(ABC):
    """Interface for complaint data access. Every call is tenant-scoped."""

    @abstractmethod
    async def create(self, complaint: Complaint) -> Complaint:
        """Store a new complaint."""

    @abstractmethod
    async def get(self, tenant_id: str, complaint_id: str) -> Optional[Complaint]:
        """Get a complaint, or None if it does not exist for this tenant."""

    @abstractmethod
    async def get_many(self, tenant_id: str, complaint_ids: List[str]) -> List[Complaint]:
        """Get the complaints of this tenant among ``complaint_ids``."""

    @abstractmethod
    async def save_triage(self, complaint: Complaint) -> None:
        """
        Persist triage-derived fields.

        Never clears a cluster assignment; a complaint that is in a cluster
        keeps its systemic flag and systemic routing.
        """

    @abstractmethod
    async def update_fields(self, tenant_id: str, complaint_id: str, fields: Dict[str, Any]) -> None:
        """Overwrite the given derived fields."""

    @abstractmethod
    async def assign_cluster(
        self,
        tenant_id: str,
        complaint_ids: List[str],
        cluster_id: str
    ) -> List[str]:
        """
        Set the cluster reference on complaints that have none yet.

        Assigned complaints get the systemic flag and systemic routing.

        Returns:
            Ids of the complaints actually assigned
        """

    @abstractmethod
    async def list_by_cluster(self, tenant_id: str, cluster_id: str) -> List[Complaint]:
        """Members of a cluster."""

    @abstractmethod
    async def count_for_business(
        self,
        tenant_id: str,
        business_id: str,
        exclude_id: Optional[str] = None
    ) -> int:
        """Complaints against a business, optionally excluding one."""

    @abstractmethod
    async def count_submitted_between(self, tenant_id: str, start: datetime, end: datetime) -> int:
        """Complaints submitted in (start, end]."""

    @abstractmethod
    async def tenants_with_submissions_since(self, since: datetime) -> List[str]:
        """Tenants that received complaints since ``since``."""


class IAiOutputRepository(ABC):
    """Append-only store of AI output records."""

    @abstractmethod
    async def append(self, record: AiOutputRecord) -> AiOutputRecord:
        """Persist one record in its own transaction."""

    @abstractmethod
    async def list_for_complaint(self, tenant_id: str, complaint_id: str) -> List[AiOutputRecord]:
        """All records of a complaint, oldest first."""

    @abstractmethod
    async def latest(
        self,
        tenant_id: str,
        complaint_id: str,
        output_type: Optional[AiOutputType] = None
    ) -> Optional[AiOutputRecord]:
        """Most recent record of a complaint, optionally of one type."""


# ========== Helpers ==========

def extract_json_payload(content: str) -> str:
    """Strip markdown code fences around a JSON response."""
    text = content.strip()
    if "```json" in text:
        text = text.split("```json", 1)[1].split("```", 1)[0].strip()
    elif text.startswith("```"):
        text = text.split("```", 2)[1].strip()
    return text


# ========== Application Services ==========

class AiAnalysisService:
    """
    Runs one structured model stage and records it on the audit trail.

    Every call, successful or malformed, yields exactly one AI output
    record which is persisted before this service returns or raises.
    """

    def __init__(
        self,
        llm_gateway: ILLMGateway,
        output_repository: IAiOutputRepository,
        timeout_seconds: Optional[float] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        prompt_truncate_chars: Optional[int] = None
    ):
        self._llm = llm_gateway
        self._outputs = output_repository
        self._timeout = timeout_seconds or settings.llm_timeout_seconds
        self._temperature = settings.llm_temperature if temperature is None else temperature
        self._max_tokens = max_tokens or settings.llm_max_tokens
        self._truncate = (
            settings.prompt_truncate_chars if prompt_truncate_chars is None else prompt_truncate_chars
        )

    async def run_stage(
        self,
        complaint_id: str,
        tenant_id: str,
        output_type: AiOutputType,
        user_prompt: str,
        schema: Type[StageModel]
    ) -> Tuple[StageModel, AiOutputRecord]:
        """
        Call the model and validate its JSON against ``schema``.

        Raises:
            ProviderUnavailableException: Gateway unavailable or deadline exceeded
            MalformedModelOutputException: Response is not valid JSON for ``schema``
        """
        messages = TriagePromptBuilder.messages(user_prompt)
        started = time.perf_counter()

        try:
            completion = await asyncio.wait_for(
                self._llm.complete(
                    messages=messages,
                    json_mode=True,
                    temperature=self._temperature,
                    max_tokens=self._max_tokens
                ),
                timeout=self._timeout
            )
        except asyncio.TimeoutError:
            raise ProviderUnavailableException(
                f"{output_type.value} stage exceeded {self._timeout}s deadline",
                details={"complaint_id": complaint_id, "stage": output_type.value}
            )

        if not completion.latency_ms:
            completion.latency_ms = int((time.perf_counter() - started) * 1000)

        try:
            data = json.loads(extract_json_payload(completion.content))
            if not isinstance(data, dict):
                raise ValueError("response is not a JSON object")
            parsed = schema.model_validate(data)
        except (json.JSONDecodeError, ValueError, ValidationError) as e:
            record = self._record(complaint_id, tenant_id, output_type, user_prompt, completion)
            await self._outputs.append(record)
            logger.error(
                "Malformed model output",
                extra={
                    "complaint_id": complaint_id,
                    "tenant_id": tenant_id,
                    "stage": output_type.value,
                    "model": completion.model,
                    "error": str(e)[:500],
                }
            )
            raise MalformedModelOutputException(
                stage=output_type.value,
                message=str(e)[:500],
                raw_output=completion.content,
                record=record
            )

        record = self._record(complaint_id, tenant_id, output_type, user_prompt, completion, parsed)
        await self._outputs.append(record)

        logger.info(
            "Model stage completed",
            extra={
                "complaint_id": complaint_id,
                "tenant_id": tenant_id,
                "stage": output_type.value,
                "model": completion.model,
                "total_tokens": completion.total_tokens,
                "latency_ms": completion.latency_ms,
                "confidence": parsed.confidence,
            }
        )
        return parsed, record

    def _record(
        self,
        complaint_id: str,
        tenant_id: str,
        output_type: AiOutputType,
        user_prompt: str,
        completion: CompletionResult,
        parsed: Optional[StageOutput] = None
    ) -> AiOutputRecord:
        return AiOutputRecord(
            complaint_id=complaint_id,
            tenant_id=tenant_id,
            output_type=output_type,
            model=completion.model,
            prompt=user_prompt[:self._truncate],
            raw_response=completion.content,
            parsed_output=parsed.model_dump(mode="json", by_alias=True) if parsed else {},
            confidence=parsed.confidence if parsed else None,
            reasoning=parsed.reasoning if parsed else None,
            prompt_tokens=completion.prompt_tokens,
            completion_tokens=completion.completion_tokens,
            latency_ms=completion.latency_ms
        )


class TriagePipeline:
    """
    Four sequential model stages followed by scoring and routing.

    extraction -> classification -> risk scoring -> summarisation
    """

    def __init__(self, analysis_service: AiAnalysisService):
        self._analysis = analysis_service

    async def triage(
        self,
        complaint_id: str,
        tenant_id: str,
        raw_text: str,
        business_context: BusinessContext,
        weights: PriorityWeights
    ) -> TriageOutput:
        """
        Triage one complaint.

        Raises:
            MalformedModelOutputException: A stage returned unusable output;
                records of earlier stages are already persisted
            ProviderUnavailableException: The gateway could not be reached
        """
        records: List[AiOutputRecord] = []

        extraction, record = await self._analysis.run_stage(
            complaint_id, tenant_id, AiOutputType.EXTRACTION,
            TriagePromptBuilder.build_extraction(raw_text),
            ExtractionOutput
        )
        records.append(record)

        classification, record = await self._analysis.run_stage(
            complaint_id, tenant_id, AiOutputType.CLASSIFICATION,
            TriagePromptBuilder.build_classification(
                raw_text, extraction.model_dump(mode="json", by_alias=True)
            ),
            ClassificationOutput
        )
        records.append(record)

        risk, record = await self._analysis.run_stage(
            complaint_id, tenant_id, AiOutputType.RISK_SCORING,
            TriagePromptBuilder.build_risk_scoring(
                raw_text,
                classification.model_dump(mode="json", by_alias=True),
                previous_complaint_count=business_context.prior_complaint_count,
                industry=business_context.industry or extraction.industry,
                business_status=business_context.business_status
            ),
            RiskScoringOutput
        )
        records.append(record)

        summary, record = await self._analysis.run_stage(
            complaint_id, tenant_id, AiOutputType.SUMMARISATION,
            TriagePromptBuilder.build_summarisation(raw_text),
            SummarisationOutput
        )
        records.append(record)

        factors = ComplexityFactors(
            legal_nuance=clamp01(risk.complexity_factors.legal_nuance),
            investigation_depth=clamp01(risk.complexity_factors.investigation_depth),
            monetary_value=clamp01(risk.complexity_factors.monetary_value),
            parties_involved=clamp01(risk.complexity_factors.parties_involved),
            novelty=clamp01(risk.complexity_factors.novelty),
            public_harm=clamp01(risk.complexity_factors.public_harm),
        )
        complexity_score = clamp01(
            risk.complexity_score if risk.complexity_score is not None else factors.mean()
        )

        priority_score = calculate_priority_score(
            PriorityInputs(
                risk_level=risk.risk_level,
                systemic_impact=risk.systemic_impact_score,
                monetary_value=extraction.monetary_value,
                vulnerability=risk.vulnerability_score,
                resolution_probability=risk.resolution_probability,
            ),
            weights
        )

        routing = determine_routing(
            risk_level=risk.risk_level,
            complexity_score=complexity_score,
            is_systemic_risk=classification.is_systemic_risk,
            priority_score=priority_score
        )

        confidence = min(
            extraction.confidence or 0.0,
            classification.confidence or 0.0,
            risk.confidence or 0.0,
        )

        result = TriageResult(
            category=classification.primary_category or extraction.complaint_category,
            secondary_categories=list(classification.secondary_categories),
            legal_category=classification.legal_category,
            industry=extraction.industry or business_context.industry,
            business_name=extraction.business_name,
            monetary_value=extraction.monetary_value,
            risk_level=risk.risk_level,
            complexity_factors=factors,
            complexity_score=round(complexity_score, 3),
            priority_score=priority_score,
            routing_destination=routing,
            is_systemic_risk=classification.is_systemic_risk,
            is_civil_dispute=classification.is_civil_dispute,
            breach_likelihood=clamp01(classification.breach_likelihood),
            public_harm=clamp01(risk.public_harm_indicator),
            vulnerability_score=clamp01(risk.vulnerability_score),
            systemic_impact_score=clamp01(risk.systemic_impact_score),
            resolution_probability=clamp01(risk.resolution_probability),
            confidence=clamp01(confidence),
            reasoning={
                AiOutputType.EXTRACTION.value: extraction.reasoning,
                AiOutputType.CLASSIFICATION.value: classification.reasoning,
                AiOutputType.RISK_SCORING.value: risk.reasoning,
                AiOutputType.SUMMARISATION.value: summary.reasoning,
            }
        )

        logger.info(
            "Complaint triaged",
            extra={
                "complaint_id": complaint_id,
                "tenant_id": tenant_id,
                "risk_level": result.risk_level,
                "priority_score": result.priority_score,
                "routing": result.routing_destination.value,
                "confidence": result.confidence,
            }
        )

        return TriageOutput(
            result=result,
            records=records,
            executive_summary=summary.executive_summary,
            key_issues=list(summary.key_issues),
            recommended_actions=list(summary.recommended_actions)
        )


OVERRIDABLE_FIELDS = {
    "category",
    "legal_category",
    "industry",
    "risk_level",
    "complexity_score",
    "priority_score",
    "routing_destination",
    "is_systemic_risk",
    "is_civil_dispute",
    "breach_likelihood",
    "summary",
    "status",
}
UNIT_INTERVAL_FIELDS = {"complexity_score", "priority_score", "breach_likelihood"}


def validate_override(changes: Dict[str, Any]) -> Dict[str, Any]:
    """
    Check a manual override payload.

    Raises:
        ValidationException: Unknown field or out-of-range value
    """
    if not changes:
        raise ValidationException("Override must change at least one field")

    unknown = set(changes) - OVERRIDABLE_FIELDS
    if unknown:
        raise ValidationException(
            f"Fields cannot be overridden: {', '.join(sorted(unknown))}",
            details={"fields": sorted(unknown)}
        )

    for name in UNIT_INTERVAL_FIELDS & set(changes):
        value = changes[name]
        if value is not None and not 0.0 <= float(value) <= 1.0:
            raise ValidationException(f"{name} must be between 0 and 1", details={"field": name})

    if "risk_level" in changes and changes["risk_level"] not in VALID_RISK_LEVELS:
        raise ValidationException(f"risk_level must be one of {VALID_RISK_LEVELS}")
    if "routing_destination" in changes and changes["routing_destination"] not in VALID_ROUTING_DESTINATIONS:
        raise ValidationException(f"routing_destination must be one of {VALID_ROUTING_DESTINATIONS}")
    if "status" in changes and changes["status"] not in VALID_STATUSES:
        raise ValidationException(f"status must be one of {VALID_STATUSES}")

    return dict(changes)


class TriageService:
    """
    Use cases around a stored complaint: run triage, apply a human
    override, read the result with its audit trail.
    """

    def __init__(
        self,
        complaint_repository: IComplaintRepository,
        output_repository: IAiOutputRepository,
        pipeline: TriagePipeline,
        weights_provider: WeightsProvider
    ):
        self._complaints = complaint_repository
        self._outputs = output_repository
        self._pipeline = pipeline
        self._weights_for = weights_provider

    async def _require(self, tenant_id: str, complaint_id: str) -> Complaint:
        complaint = await self._complaints.get(tenant_id, complaint_id)
        if complaint is None:
            raise ResourceNotFoundException("Complaint", complaint_id)
        return complaint

    async def build_business_context(self, complaint: Complaint) -> BusinessContext:
        prior = 0
        if complaint.business_id:
            prior = await self._complaints.count_for_business(
                complaint.tenant_id, complaint.business_id, exclude_id=complaint.id
            )
        return BusinessContext(
            business_id=complaint.business_id,
            business_name=complaint.business_name,
            industry=complaint.industry,
            business_status=complaint.business_status,
            prior_complaint_count=prior,
        )

    async def triage_complaint(self, tenant_id: str, complaint_id: str) -> Tuple[Complaint, TriageOutput]:
        """
        Run the pipeline and store its derived fields on the complaint.

        On failure the complaint is left as it was.
        """
        complaint = await self._require(tenant_id, complaint_id)
        context = await self.build_business_context(complaint)

        output = await self._pipeline.triage(
            complaint_id=complaint.id,
            tenant_id=tenant_id,
            raw_text=complaint.raw_text,
            business_context=context,
            weights=self._weights_for(tenant_id)
        )

        complaint.apply_triage(output)
        await self._complaints.save_triage(complaint)

        # The stored row may have joined a cluster while the stages ran
        stored = await self._complaints.get(tenant_id, complaint_id)
        return stored or complaint, output

    async def override(
        self,
        tenant_id: str,
        complaint_id: str,
        changes: Dict[str, Any],
        user_id: str,
        reason: Optional[str] = None
    ) -> Tuple[Complaint, AiOutputRecord]:
        """
        Overwrite derived fields and record the correction.

        The correction is a new ``manual_override`` record authored by
        ``user_id``; it supersedes the complaint's most recent record.
        """
        changes = validate_override(changes)
        complaint = await self._require(tenant_id, complaint_id)

        previous = {name: _plain(getattr(complaint, name)) for name in changes}
        superseded = await self._outputs.latest(tenant_id, complaint_id)

        if "routing_destination" in changes:
            changes["routing_destination"] = RoutingDestination(changes["routing_destination"])
        if "status" in changes:
            changes["status"] = ComplaintStatus(changes["status"])
            if changes["status"] in (ComplaintStatus.RESOLVED, ComplaintStatus.CLOSED):
                changes["resolved_at"] = utc_now()

        await self._complaints.update_fields(tenant_id, complaint_id, changes)

        payload = {name: _plain(value) for name, value in changes.items()}
        record = AiOutputRecord(
            complaint_id=complaint_id,
            tenant_id=tenant_id,
            output_type=AiOutputType.MANUAL_OVERRIDE,
            model="human",
            prompt=(reason or "")[:settings.prompt_truncate_chars],
            raw_response=json.dumps(payload),
            parsed_output={"changes": payload, "previous": previous},
            reasoning=reason,
            is_edited=True,
            edited_by=user_id,
            supersedes_id=superseded.id if superseded else None,
            supersedes_author=superseded.model if superseded else None
        )
        await self._outputs.append(record)

        logger.info(
            "Manual override recorded",
            extra={
                "complaint_id": complaint_id,
                "tenant_id": tenant_id,
                "edited_by": user_id,
                "fields": sorted(payload),
            }
        )

        updated = await self._require(tenant_id, complaint_id)
        return updated, record

    async def get_result(self, tenant_id: str, complaint_id: str) -> Tuple[Complaint, List[AiOutputRecord]]:
        complaint = await self._require(tenant_id, complaint_id)
        records = await self._outputs.list_for_complaint(tenant_id, complaint_id)
        return complaint, records

    def weights_for(self, tenant_id: str) -> PriorityWeights:
        return self._weights_for(tenant_id)


def _plain(value: Any) -> Any:
    if hasattr(value, "value"):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def new_triage_service(
    complaint_repository: IComplaintRepository,
    output_repository: IAiOutputRepository,
    llm_gateway: ILLMGateway,
    weights_provider: WeightsProvider
) -> TriageService:
    """Wire the triage service with settings-driven stage options."""
    analysis = AiAnalysisService(llm_gateway, output_repository)
    return TriageService(
        complaint_repository=complaint_repository,
        output_repository=output_repository,
        pipeline=TriagePipeline(analysis),
        weights_provider=weights_provider
    )
