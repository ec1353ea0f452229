"""Tests for systemic detection: embed, find neighbours, cluster, spike check."""

from unittest.mock import AsyncMock

import pytest

from complaint_triage.config import AiOutputType, ClusterAction
from complaint_triage.core import (
    EmbeddingUnavailableException,
    ProviderUnavailableException,
    ResourceNotFoundException,
    VectorStoreException,
)
from complaint_triage.infrastructure.vectorstore import InMemorySimilarityIndex
from complaint_triage.shared.infrastructure.locks import KeyedLockRegistry
from complaint_triage.systemic.application.services import (
    ClusterManager,
    SpikeDetector,
    SystemicDetectionOrchestrator,
    build_embedding_input,
)
from complaint_triage.triage.application.services import AiAnalysisService
from tests.fakes import ScriptedGateway, make_complaint

GYM_VECTOR = [1.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0]
GYM_VECTOR_NEAR = [0.98, 0.1, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0]
LUGGAGE_VECTOR = [0.0, 1.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0]


def _orchestrator(gateway, complaint_repo, cluster_repo, output_repo, index=None):
    cluster_manager = ClusterManager(
        complaint_repo,
        cluster_repo,
        output_repo,
        AiAnalysisService(gateway, output_repo, timeout_seconds=5),
        locks=KeyedLockRegistry(),
        min_cluster_size=3
    )
    return SystemicDetectionOrchestrator(
        complaint_repo,
        output_repo,
        gateway,
        index if index is not None else InMemorySimilarityIndex(),
        cluster_manager,
        SpikeDetector(complaint_repo, window_hours=24, threshold=5),
        similarity_threshold=0.85,
        recency_days=90,
        max_results=50,
        timeout_seconds=5
    )


async def _stored(complaint_repo, raw_text, **fields):
    complaint = make_complaint(raw_text=raw_text, **fields)
    await complaint_repo.create(complaint)
    return complaint


class TestBuildEmbeddingInput:
    def test_appends_category_and_industry(self):
        text = build_embedding_input("Charged twice", "billing_dispute", "telecommunications")
        assert text == "Charged twice\nCategory: billing_dispute\nIndustry: telecommunications"

    def test_raw_text_only(self):
        assert build_embedding_input("Charged twice", None, None) == "Charged twice"


class TestDetect:
    @pytest.mark.asyncio
    async def test_first_complaint_has_no_neighbours(self, complaint_repo, cluster_repo, output_repo):
        gateway = ScriptedGateway(vectors={"gym": GYM_VECTOR})
        complaint = await _stored(complaint_repo, "My gym kept billing me", category="billing_dispute")
        orchestrator = _orchestrator(gateway, complaint_repo, cluster_repo, output_repo)

        result = await orchestrator.detect(complaint.id, "tenant-a")

        assert result.degraded is False
        assert result.similar == []
        assert result.cluster_action == ClusterAction.NONE
        assert result.spike is not None and result.spike.count == 1
        assert gateway.embedded == ["My gym kept billing me\nCategory: billing_dispute"]

        [record] = output_repo.of_type(AiOutputType.EMBEDDING)
        assert record.parsed_output == {"dimension": 8}
        assert record.model == "scripted-embedding"

    @pytest.mark.asyncio
    async def test_third_similar_complaint_creates_cluster(self, complaint_repo, cluster_repo, output_repo):
        gateway = ScriptedGateway(vectors={"gym": GYM_VECTOR, "fitness": GYM_VECTOR_NEAR})
        orchestrator = _orchestrator(gateway, complaint_repo, cluster_repo, output_repo)
        first = await _stored(complaint_repo, "My gym kept billing me after I cancelled")
        second = await _stored(complaint_repo, "The fitness club charged me after cancellation")
        third = await _stored(complaint_repo, "Another gym debit after I cancelled")

        assert (await orchestrator.detect(first.id, "tenant-a")).cluster_action == ClusterAction.NONE
        second_result = await orchestrator.detect(second.id, "tenant-a")
        assert [s.complaint_id for s in second_result.similar] == [first.id]
        assert second_result.cluster_action == ClusterAction.NONE

        result = await orchestrator.detect(third.id, "tenant-a")

        assert result.cluster_action == ClusterAction.CREATED
        assert {s.complaint_id for s in result.similar} == {first.id, second.id}
        assert len(cluster_repo.clusters) == 1
        for complaint in (first, second, third):
            stored = await complaint_repo.get("tenant-a", complaint.id)
            assert stored.systemic_cluster_id == result.cluster_id

    @pytest.mark.asyncio
    async def test_unrelated_complaints_stay_apart(self, complaint_repo, cluster_repo, output_repo):
        gateway = ScriptedGateway(vectors={"gym": GYM_VECTOR, "luggage": LUGGAGE_VECTOR})
        orchestrator = _orchestrator(gateway, complaint_repo, cluster_repo, output_repo)
        gym = await _stored(complaint_repo, "My gym kept billing me")
        other = await _stored(complaint_repo, "Airline lost my luggage")

        await orchestrator.detect(gym.id, "tenant-a")
        result = await orchestrator.detect(other.id, "tenant-a")

        assert result.similar == []

    @pytest.mark.asyncio
    async def test_other_tenants_complaints_are_not_neighbours(self, complaint_repo, cluster_repo, output_repo):
        gateway = ScriptedGateway(vectors={"gym": GYM_VECTOR})
        orchestrator = _orchestrator(gateway, complaint_repo, cluster_repo, output_repo)
        theirs = await _stored(complaint_repo, "My gym kept billing me", tenant_id="tenant-b")
        ours = await _stored(complaint_repo, "My gym kept billing me")

        await orchestrator.detect(theirs.id, "tenant-b")
        result = await orchestrator.detect(ours.id, "tenant-a")

        assert result.similar == []

    @pytest.mark.asyncio
    async def test_embedding_failure_degrades(self, complaint_repo, cluster_repo, output_repo):
        gateway = ScriptedGateway()
        gateway.embed_error = EmbeddingUnavailableException("no embedding model")
        complaint = await _stored(complaint_repo, "My gym kept billing me")
        orchestrator = _orchestrator(gateway, complaint_repo, cluster_repo, output_repo)

        result = await orchestrator.detect(complaint.id, "tenant-a")

        assert result.degraded is True
        assert "no embedding model" in result.errors[0]
        assert result.spike is None
        assert result.cluster_action == ClusterAction.NONE
        assert output_repo.of_type(AiOutputType.EMBEDDING) == []

    @pytest.mark.asyncio
    async def test_index_failure_degrades(self, complaint_repo, cluster_repo, output_repo):
        index = InMemorySimilarityIndex()
        index.upsert = AsyncMock(side_effect=VectorStoreException("collection unavailable"))
        complaint = await _stored(complaint_repo, "My gym kept billing me")
        orchestrator = _orchestrator(ScriptedGateway(), complaint_repo, cluster_repo, output_repo, index=index)

        result = await orchestrator.detect(complaint.id, "tenant-a")

        assert result.degraded is True
        assert result.spike is None

    @pytest.mark.asyncio
    async def test_malformed_judgment_is_reported_not_raised(self, complaint_repo, cluster_repo, output_repo):
        gateway = ScriptedGateway(
            scripts={"clustering_analysis": "maybe?"},
            vectors={"gym": GYM_VECTOR}
        )
        orchestrator = _orchestrator(gateway, complaint_repo, cluster_repo, output_repo)
        complaints = [await _stored(complaint_repo, f"My gym kept billing me ({i})") for i in range(3)]
        for complaint in complaints[:2]:
            await orchestrator.detect(complaint.id, "tenant-a")

        result = await orchestrator.detect(complaints[2].id, "tenant-a")

        assert result.degraded is False
        assert result.cluster_action == ClusterAction.NONE
        assert "clustering_analysis" in result.errors[0]
        assert result.spike is not None
        assert cluster_repo.clusters == {}

    @pytest.mark.asyncio
    async def test_provider_unavailable_during_judgment_propagates(
        self, complaint_repo, cluster_repo, output_repo
    ):
        gateway = ScriptedGateway(
            scripts={"clustering_analysis": ProviderUnavailableException("overloaded")},
            vectors={"gym": GYM_VECTOR}
        )
        orchestrator = _orchestrator(gateway, complaint_repo, cluster_repo, output_repo)
        complaints = [await _stored(complaint_repo, f"My gym kept billing me ({i})") for i in range(3)]
        for complaint in complaints[:2]:
            await orchestrator.detect(complaint.id, "tenant-a")

        with pytest.raises(ProviderUnavailableException):
            await orchestrator.detect(complaints[2].id, "tenant-a")

    @pytest.mark.asyncio
    async def test_unknown_complaint(self, complaint_repo, cluster_repo, output_repo):
        orchestrator = _orchestrator(ScriptedGateway(), complaint_repo, cluster_repo, output_repo)

        with pytest.raises(ResourceNotFoundException):
            await orchestrator.detect("missing", "tenant-a")

    @pytest.mark.asyncio
    async def test_spike_reported(self, complaint_repo, cluster_repo, output_repo):
        orchestrator = _orchestrator(ScriptedGateway(), complaint_repo, cluster_repo, output_repo)
        complaints = [await _stored(complaint_repo, f"Complaint number {i}") for i in range(5)]

        result = await orchestrator.detect(complaints[-1].id, "tenant-a")

        assert result.is_spike is True
        assert (await orchestrator.check_spike("tenant-a")).count == 5
