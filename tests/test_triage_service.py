"""Tests for TriageService: triage runs, overrides and the audit trail."""

import asyncio

import pytest

from complaint_triage.config import AiOutputType, ComplaintStatus, RoutingDestination
from complaint_triage.core import (
    MalformedModelOutputException,
    ResourceNotFoundException,
    ValidationException,
)
from complaint_triage.triage.application.services import (
    AiAnalysisService,
    TriagePipeline,
    TriageService,
    validate_override,
)
from complaint_triage.triage.domain.value_objects import PriorityWeights
from tests.fakes import ScriptedGateway, make_complaint


async def _stored(complaint_repo, **fields):
    complaint = make_complaint(**fields)
    await complaint_repo.create(complaint)
    return complaint


def _service(gateway, complaint_repo, output_repo):
    return TriageService(
        complaint_repository=complaint_repo,
        output_repository=output_repo,
        pipeline=TriagePipeline(AiAnalysisService(gateway, output_repo, timeout_seconds=5)),
        weights_provider=lambda tenant_id: PriorityWeights()
    )


# ============================================================================
# triage_complaint
# ============================================================================

class TestTriageComplaint:
    @pytest.mark.asyncio
    async def test_stores_derived_fields(self, triage_service, complaint_repo, output_repo):
        complaint = await _stored(complaint_repo)

        updated, output = await triage_service.triage_complaint("tenant-a", complaint.id)

        assert updated.status == ComplaintStatus.TRIAGED
        assert updated.triaged_at is not None
        assert updated.category == "refund_dispute"
        assert updated.risk_level == "medium"
        assert updated.priority_score == output.result.priority_score
        assert updated.routing_destination == RoutingDestination.LINE_1_AUTO
        assert updated.summary == output.executive_summary
        assert len(output_repo.records) == 4

    @pytest.mark.asyncio
    async def test_unknown_complaint(self, triage_service):
        with pytest.raises(ResourceNotFoundException):
            await triage_service.triage_complaint("tenant-a", "missing")

    @pytest.mark.asyncio
    async def test_other_tenant_cannot_triage(self, triage_service, complaint_repo):
        complaint = await _stored(complaint_repo, tenant_id="tenant-a")

        with pytest.raises(ResourceNotFoundException):
            await triage_service.triage_complaint("tenant-b", complaint.id)

    @pytest.mark.asyncio
    async def test_failed_triage_leaves_complaint_untouched(self, complaint_repo, output_repo):
        complaint = await _stored(complaint_repo)
        service = _service(ScriptedGateway({"risk_scoring": "{broken"}), complaint_repo, output_repo)

        with pytest.raises(MalformedModelOutputException):
            await service.triage_complaint("tenant-a", complaint.id)

        stored = await complaint_repo.get("tenant-a", complaint.id)
        assert stored.status == ComplaintStatus.SUBMITTED
        assert stored.priority_score is None
        assert len(output_repo.records) == 3

    @pytest.mark.asyncio
    async def test_prior_complaints_against_business_reach_risk_stage(self, complaint_repo, output_repo):
        for _ in range(3):
            await _stored(complaint_repo, business_id="biz-1")
        complaint = await _stored(complaint_repo, business_id="biz-1")
        gateway = ScriptedGateway()
        service = _service(gateway, complaint_repo, output_repo)

        context = await service.build_business_context(complaint)
        assert context.prior_complaint_count == 3

        await service.triage_complaint("tenant-a", complaint.id)
        risk_prompt = gateway.prompts[gateway.calls.index("risk_scoring")]
        assert "Previous complaints against this business: 3" in risk_prompt

    @pytest.mark.asyncio
    async def test_retriage_keeps_cluster_membership(self, triage_service, complaint_repo):
        complaint = await _stored(complaint_repo)
        await complaint_repo.assign_cluster("tenant-a", [complaint.id], "cluster-1")

        updated, output = await triage_service.triage_complaint("tenant-a", complaint.id)

        assert output.result.is_systemic_risk is False
        assert updated.systemic_cluster_id == "cluster-1"
        assert updated.is_systemic_risk is True
        assert updated.routing_destination == RoutingDestination.SYSTEMIC_REVIEW

    @pytest.mark.asyncio
    async def test_cluster_joined_during_triage_is_preserved(self, complaint_repo, output_repo):
        complaint = await _stored(complaint_repo)
        service = _service(ScriptedGateway(delay=0.05), complaint_repo, output_repo)

        task = asyncio.create_task(service.triage_complaint("tenant-a", complaint.id))
        await asyncio.sleep(0.02)
        await complaint_repo.assign_cluster("tenant-a", [complaint.id], "cluster-1")
        updated, _ = await task

        stored = await complaint_repo.get("tenant-a", complaint.id)
        assert stored.systemic_cluster_id == "cluster-1"
        assert stored.is_systemic_risk is True
        assert stored.routing_destination == RoutingDestination.SYSTEMIC_REVIEW
        assert stored.status == ComplaintStatus.TRIAGED
        assert updated.systemic_cluster_id == "cluster-1"


# ============================================================================
# override
# ============================================================================

class TestOverride:
    @pytest.mark.asyncio
    async def test_override_updates_fields_and_appends_record(self, triage_service, complaint_repo, output_repo):
        complaint = await _stored(complaint_repo)
        await triage_service.triage_complaint("tenant-a", complaint.id)
        model_records = list(output_repo.records)

        updated, record = await triage_service.override(
            "tenant-a", complaint.id,
            {"risk_level": "high", "routing_destination": "line_2_investigation"},
            user_id="officer-7",
            reason="Consumer is in hardship"
        )

        assert updated.risk_level == "high"
        assert updated.routing_destination == RoutingDestination.LINE_2_INVESTIGATION
        assert record.output_type == AiOutputType.MANUAL_OVERRIDE
        assert record.is_edited is True
        assert record.edited_by == "officer-7"
        assert record.model == "human"
        assert record.reasoning == "Consumer is in hardship"
        assert record.supersedes_id == model_records[-1].id
        assert record.supersedes_author == ScriptedGateway.MODEL
        assert record.parsed_output["previous"] == {"risk_level": "medium", "routing_destination": "line_1_auto"}
        assert record.parsed_output["changes"]["routing_destination"] == "line_2_investigation"

        # Earlier records are kept unchanged
        assert output_repo.records[:4] == model_records
        assert len(output_repo.records) == 5

    @pytest.mark.asyncio
    async def test_override_before_triage_supersedes_nothing(self, triage_service, complaint_repo):
        complaint = await _stored(complaint_repo)

        _, record = await triage_service.override("tenant-a", complaint.id, {"category": "scam_fraud"}, "officer-1")

        assert record.supersedes_id is None
        assert record.supersedes_author is None

    @pytest.mark.asyncio
    async def test_resolving_sets_resolved_at(self, triage_service, complaint_repo):
        complaint = await _stored(complaint_repo)

        updated, _ = await triage_service.override("tenant-a", complaint.id, {"status": "resolved"}, "officer-1")

        assert updated.status == ComplaintStatus.RESOLVED
        assert updated.resolved_at is not None

    @pytest.mark.asyncio
    async def test_unknown_complaint(self, triage_service):
        with pytest.raises(ResourceNotFoundException):
            await triage_service.override("tenant-a", "missing", {"category": "other"}, "officer-1")

    @pytest.mark.asyncio
    async def test_cluster_membership_cannot_be_overridden(self, triage_service, complaint_repo):
        complaint = await _stored(complaint_repo)

        with pytest.raises(ValidationException):
            await triage_service.override(
                "tenant-a", complaint.id, {"systemic_cluster_id": None}, "officer-1"
            )


class TestValidateOverride:
    def test_empty_changes_rejected(self):
        with pytest.raises(ValidationException):
            validate_override({})

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationException) as exc_info:
            validate_override({"raw_text": "rewritten"})
        assert exc_info.value.details == {"fields": ["raw_text"]}

    @pytest.mark.parametrize("field", ["priority_score", "complexity_score", "breach_likelihood"])
    def test_scores_must_be_in_unit_interval(self, field):
        with pytest.raises(ValidationException):
            validate_override({field: 1.5})

    def test_invalid_enum_values_rejected(self):
        with pytest.raises(ValidationException):
            validate_override({"risk_level": "apocalyptic"})
        with pytest.raises(ValidationException):
            validate_override({"routing_destination": "line_3"})
        with pytest.raises(ValidationException):
            validate_override({"status": "lost"})

    def test_valid_changes_pass_through(self):
        changes = {"priority_score": 0.9, "is_systemic_risk": True}
        assert validate_override(changes) == changes


# ============================================================================
# get_result
# ============================================================================

class TestGetResult:
    @pytest.mark.asyncio
    async def test_returns_complaint_with_audit_trail(self, triage_service, complaint_repo):
        complaint = await _stored(complaint_repo)
        await triage_service.triage_complaint("tenant-a", complaint.id)

        stored, records = await triage_service.get_result("tenant-a", complaint.id)

        assert stored.id == complaint.id
        assert [r.output_type for r in records] == [
            AiOutputType.EXTRACTION,
            AiOutputType.CLASSIFICATION,
            AiOutputType.RISK_SCORING,
            AiOutputType.SUMMARISATION,
        ]

    @pytest.mark.asyncio
    async def test_records_are_tenant_scoped(self, triage_service, complaint_repo):
        complaint = await _stored(complaint_repo)
        await triage_service.triage_complaint("tenant-a", complaint.id)

        with pytest.raises(ResourceNotFoundException):
            await triage_service.get_result("tenant-b", complaint.id)
