"""
Systemic Application Services
=============================

Embedding-based detection of systemic issues.

- ClusterManager: join an existing cluster or create a new one
- SpikeDetector: complaint volume over a rolling window
- SystemicDetectionOrchestrator: embed, query neighbours, decide, check spikes
"""

import asyncio
import json
from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from complaint_triage.config import AiOutputType, ClusterAction, settings
from complaint_triage.core import (
    EmbeddingUnavailableException,
    LLMException,
    MalformedModelOutputException,
    ResourceNotFoundException,
    VectorStoreException,
)
from complaint_triage.infrastructure.llm import ILLMGateway
from complaint_triage.infrastructure.vectorstore import EmbeddingRecord, ISimilarityIndex, SimilarityMatch
from complaint_triage.shared.infrastructure.locks import KeyedLockRegistry
from complaint_triage.shared.infrastructure.logging import get_logger, log_latency
from complaint_triage.systemic.domain.entities import (
    ClusterDecision,
    DetectionResult,
    SimilarComplaint,
    SpikeStatus,
    SystemicCluster,
)
from complaint_triage.triage.application.schemas import ClusterJudgmentOutput
from complaint_triage.triage.application.services import (
    AiAnalysisService,
    IAiOutputRepository,
    IComplaintRepository,
)
from complaint_triage.triage.domain.entities import AiOutputRecord, Complaint, utc_now
from complaint_triage.triage.domain.prompts import TriagePromptBuilder

logger = get_logger(__name__)

JUDGMENT_TEXT_CHARS = 1500
SPIKE_BASELINE_WINDOWS = 7


# ========== Repository Interfaces ==========

class ISystemicClusterRepository(ABC):
    """Interface for systemic cluster data access. Every call is tenant-scoped."""

    @abstractmethod
    async def create(self, cluster: SystemicCluster) -> SystemicCluster:
        """Store a new cluster."""

    @abstractmethod
    async def get(self, tenant_id: str, cluster_id: str) -> Optional[SystemicCluster]:
        """Get a cluster, or None if it does not exist for this tenant."""

    @abstractmethod
    async def get_many(self, tenant_id: str, cluster_ids: List[str]) -> List[SystemicCluster]:
        """Clusters of this tenant among ``cluster_ids``."""

    @abstractmethod
    async def record_join(
        self,
        tenant_id: str,
        cluster_id: str,
        similarity: float
    ) -> Optional[SystemicCluster]:
        """
        Atomically add one member to an active cluster.

        complaint_count is incremented in place and avg_similarity becomes
        the running mean including ``similarity``.

        Returns:
            The updated cluster, or None if it is missing or inactive
        """

    @abstractmethod
    async def undo_join(self, tenant_id: str, cluster_id: str, similarity: float) -> None:
        """Reverse a record_join whose complaint assignment did not happen."""

    @abstractmethod
    async def set_complaint_count(self, tenant_id: str, cluster_id: str, count: int) -> None:
        """Correct the member count after creation."""

    @abstractmethod
    async def save_state(self, cluster: SystemicCluster, expected_version: int) -> None:
        """
        Persist acknowledgement and activation fields.

        The stored version must still be ``expected_version``; it is
        incremented by the write.

        Raises:
            ConflictException: If the cluster changed since it was read
            ResourceNotFoundException: If the cluster does not exist
        """

    @abstractmethod
    async def list(
        self,
        tenant_id: str,
        active_only: bool = False,
        unacknowledged_only: bool = False
    ) -> List[SystemicCluster]:
        """Clusters of a tenant, most recently updated first."""


# ========== Cluster Manager ==========

class ClusterManager:
    """
    Decides whether a complaint joins an existing cluster or starts one.

    Decisions are serialised per complaint and per cluster by a keyed
    lock arena; the repositories add conditional updates so a complaint
    is never assigned twice.
    """

    def __init__(
        self,
        complaint_repository: IComplaintRepository,
        cluster_repository: ISystemicClusterRepository,
        output_repository: IAiOutputRepository,
        analysis_service: AiAnalysisService,
        locks: Optional[KeyedLockRegistry] = None,
        min_cluster_size: Optional[int] = None,
        sample_size: Optional[int] = None
    ):
        self._complaints = complaint_repository
        self._clusters = cluster_repository
        self._outputs = output_repository
        self._analysis = analysis_service
        self._locks = locks or KeyedLockRegistry()
        self._min_cluster_size = min_cluster_size or settings.cluster_min_complaints
        self._sample_size = sample_size or settings.cluster_sample_size

    async def assign(self, complaint: Complaint, neighbours: List[SimilarityMatch]) -> ClusterDecision:
        """
        Join-or-create for one complaint given its similar neighbours.

        Raises:
            MalformedModelOutputException: The cluster judgment was unusable
            ProviderUnavailableException: The judgment call could not be made
        """
        tenant_id = complaint.tenant_id
        sample = neighbours[:self._sample_size]
        lock_keys = [f"complaint:{complaint.id}"] + [f"complaint:{m.complaint_id}" for m in sample]

        async with self._locks.hold(*lock_keys):
            current = await self._complaints.get(tenant_id, complaint.id)
            if current is None:
                raise ResourceNotFoundException("Complaint", complaint.id)
            if current.systemic_cluster_id:
                return ClusterDecision.none("already in a cluster", current.systemic_cluster_id)
            if not neighbours:
                return ClusterDecision.none("no similar complaints")

            similarity_by_id = {m.complaint_id: m.similarity for m in neighbours}
            neighbour_complaints = await self._complaints.get_many(
                tenant_id, [m.complaint_id for m in neighbours]
            )
            if len(neighbour_complaints) < len(neighbours):
                logger.warning(
                    "Similar complaints not found for tenant",
                    extra={
                        "tenant_id": tenant_id,
                        "complaint_id": complaint.id,
                        "missing": len(neighbours) - len(neighbour_complaints),
                    }
                )

            target = await self._select_cluster(tenant_id, complaint.id, neighbour_complaints)
            if target is not None:
                return await self._join(current, target, neighbour_complaints, similarity_by_id)

            group_size = 1 + len(neighbour_complaints)
            if group_size < self._min_cluster_size:
                return ClusterDecision.none(
                    f"group of {group_size} below minimum {self._min_cluster_size}"
                )

            sample_ids = {m.complaint_id for m in sample}
            members = [c for c in neighbour_complaints if c.id in sample_ids]
            return await self._judge_and_create(current, members, similarity_by_id)

    async def _select_cluster(
        self,
        tenant_id: str,
        complaint_id: str,
        neighbours: List[Complaint]
    ) -> Optional[SystemicCluster]:
        """Most represented active cluster among neighbours (tie: latest update)."""
        votes = Counter(c.systemic_cluster_id for c in neighbours if c.systemic_cluster_id)
        if not votes:
            return None

        clusters = await self._clusters.get_many(tenant_id, list(votes))
        if len(clusters) < len(votes):
            # Cross-tenant references count as no cluster found
            logger.warning(
                "Cluster referenced by similar complaint not found for tenant",
                extra={"tenant_id": tenant_id, "complaint_id": complaint_id}
            )

        active = [c for c in clusters if c.is_active]
        if not active:
            return None
        return max(active, key=lambda c: (votes[c.id], c.updated_at))

    async def _join(
        self,
        complaint: Complaint,
        cluster: SystemicCluster,
        neighbours: List[Complaint],
        similarity_by_id: Dict[str, float]
    ) -> ClusterDecision:
        in_cluster = [similarity_by_id[c.id] for c in neighbours if c.systemic_cluster_id == cluster.id]
        similarity = sum(in_cluster) / len(in_cluster)

        async with self._locks.hold(f"cluster:{cluster.id}"):
            # The is_active guard decides the join; assign only after it matched
            updated = await self._clusters.record_join(complaint.tenant_id, cluster.id, similarity)
            if updated is None:
                logger.warning(
                    "Cluster deactivated before join",
                    extra={"tenant_id": complaint.tenant_id, "cluster_id": cluster.id}
                )
                return ClusterDecision.none("cluster inactive")

            assigned = await self._complaints.assign_cluster(complaint.tenant_id, [complaint.id], cluster.id)
            if not assigned:
                await self._clusters.undo_join(complaint.tenant_id, cluster.id, similarity)
                return ClusterDecision.none("assigned concurrently")

        await self._record_elevation(complaint, cluster.id, ClusterAction.UPDATED)

        logger.info(
            "Complaint joined systemic cluster",
            extra={
                "complaint_id": complaint.id,
                "tenant_id": complaint.tenant_id,
                "cluster_id": cluster.id,
                "similarity": round(similarity, 4),
                "complaint_count": updated.complaint_count,
            }
        )
        return ClusterDecision(
            action=ClusterAction.UPDATED,
            cluster_id=cluster.id,
            members=[complaint.id],
            reason="joined most represented cluster"
        )

    async def _judge_and_create(
        self,
        complaint: Complaint,
        members: List[Complaint],
        similarity_by_id: Dict[str, float]
    ) -> ClusterDecision:
        group = [complaint] + members
        prompt = TriagePromptBuilder.build_clustering([
            {"id": c.id, "category": c.category, "text": c.raw_text[:JUDGMENT_TEXT_CHARS]}
            for c in group
        ])

        judgment, _ = await self._analysis.run_stage(
            complaint.id,
            complaint.tenant_id,
            AiOutputType.CLUSTERING_ANALYSIS,
            prompt,
            ClusterJudgmentOutput
        )

        if not judgment.is_systemic:
            logger.info(
                "Similar complaints judged not systemic",
                extra={"complaint_id": complaint.id, "tenant_id": complaint.tenant_id, "group_size": len(group)}
            )
            return ClusterDecision.none("judged not systemic")

        similarities = [similarity_by_id[c.id] for c in members]
        cluster = SystemicCluster(
            tenant_id=complaint.tenant_id,
            title=judgment.title or f"Systemic pattern: {complaint.category or 'uncategorised'}",
            description=judgment.description,
            category=complaint.category,
            risk_level=judgment.risk_level,
            complaint_count=len(group),
            avg_similarity=round(sum(similarities) / len(similarities), 6) if similarities else 0.0,
            common_patterns=list(judgment.common_patterns),
            recommended_action=judgment.recommended_action,
        )

        async with self._locks.hold(f"cluster:{cluster.id}"):
            await self._clusters.create(cluster)
            assigned = await self._complaints.assign_cluster(
                complaint.tenant_id, [c.id for c in group], cluster.id
            )
            if len(assigned) != len(group):
                await self._clusters.set_complaint_count(complaint.tenant_id, cluster.id, len(assigned))

        by_id = {c.id: c for c in group}
        for complaint_id in assigned:
            await self._record_elevation(by_id[complaint_id], cluster.id, ClusterAction.CREATED)

        logger.warning(
            "Systemic cluster created",
            extra={
                "complaint_id": complaint.id,
                "tenant_id": complaint.tenant_id,
                "cluster_id": cluster.id,
                "risk_level": cluster.risk_level,
                "complaint_count": len(assigned),
            }
        )
        return ClusterDecision(
            action=ClusterAction.CREATED,
            cluster_id=cluster.id,
            members=assigned,
            reason="judged systemic"
        )

    async def _record_elevation(self, complaint: Complaint, cluster_id: str, action: ClusterAction) -> None:
        """Audit the move of a complaint into systemic review."""
        previous_routing = complaint.routing_destination.value if complaint.routing_destination else None
        payload = {
            "clusterId": cluster_id,
            "action": action.value,
            "previousRouting": previous_routing,
            "newRouting": "systemic_review",
        }
        await self._outputs.append(AiOutputRecord(
            complaint_id=complaint.id,
            tenant_id=complaint.tenant_id,
            output_type=AiOutputType.SYSTEMIC_ELEVATION,
            model="system",
            prompt="",
            raw_response=json.dumps(payload),
            parsed_output=payload,
            reasoning=f"Complaint {action.value} systemic cluster {cluster_id}"
        ))
        if previous_routing == "line_1_auto":
            logger.warning(
                "Line 1 complaint elevated to systemic review",
                extra={"complaint_id": complaint.id, "tenant_id": complaint.tenant_id, "cluster_id": cluster_id}
            )


# ========== Spike Detector ==========

class SpikeDetector:
    """Flags tenants whose complaint volume meets the spike threshold."""

    def __init__(
        self,
        complaint_repository: IComplaintRepository,
        window_hours: Optional[int] = None,
        threshold: Optional[int] = None,
        baseline_windows: int = SPIKE_BASELINE_WINDOWS
    ):
        self._complaints = complaint_repository
        self._window_hours = window_hours or settings.spike_window_hours
        self._threshold = threshold or settings.spike_threshold
        self._baseline_windows = baseline_windows

    @property
    def window(self) -> timedelta:
        return timedelta(hours=self._window_hours)

    async def check(self, tenant_id: str, now: Optional[datetime] = None) -> SpikeStatus:
        now = now or utc_now()
        window = self.window

        count = await self._complaints.count_submitted_between(tenant_id, now - window, now)

        previous = []
        for index in range(1, self._baseline_windows + 1):
            end = now - window * index
            previous.append(
                await self._complaints.count_submitted_between(tenant_id, end - window, end)
            )
        baseline = sum(previous) / len(previous) if previous else 0.0

        status = SpikeStatus(
            tenant_id=tenant_id,
            window_hours=self._window_hours,
            count=count,
            threshold=self._threshold,
            baseline=round(baseline, 3),
            checked_at=now
        )

        if status.is_spike:
            logger.warning(
                "Complaint volume spike",
                extra={
                    "tenant_id": tenant_id,
                    "count": count,
                    "threshold": self._threshold,
                    "window_hours": self._window_hours,
                    "baseline": status.baseline,
                    "ratio_to_baseline": status.ratio_to_baseline,
                }
            )
        return status

    async def scan(self, now: Optional[datetime] = None) -> List[SpikeStatus]:
        """Check every tenant with complaints in the current window; return the spiking ones."""
        now = now or utc_now()
        tenant_ids = await self._complaints.tenants_with_submissions_since(now - self.window)

        spikes = []
        for tenant_id in tenant_ids:
            status = await self.check(tenant_id, now)
            if status.is_spike:
                spikes.append(status)

        logger.info(
            "Spike scan completed",
            extra={"tenants_checked": len(tenant_ids), "spikes": len(spikes)}
        )
        return spikes


# ========== Orchestrator ==========

def build_embedding_input(raw_text: str, category: Optional[str], industry: Optional[str]) -> str:
    parts = [raw_text]
    if category:
        parts.append(f"Category: {category}")
    if industry:
        parts.append(f"Industry: {industry}")
    return "\n".join(parts)


class SystemicDetectionOrchestrator:
    """
    Runs systemic detection for one triaged complaint.

    Embedding or index failures degrade the result instead of failing:
    clustering and the spike check are skipped and the reason is logged.
    """

    def __init__(
        self,
        complaint_repository: IComplaintRepository,
        output_repository: IAiOutputRepository,
        llm_gateway: ILLMGateway,
        similarity_index: ISimilarityIndex,
        cluster_manager: ClusterManager,
        spike_detector: SpikeDetector,
        similarity_threshold: Optional[float] = None,
        recency_days: Optional[int] = None,
        max_results: Optional[int] = None,
        timeout_seconds: Optional[float] = None
    ):
        self._complaints = complaint_repository
        self._outputs = output_repository
        self._llm = llm_gateway
        self._index = similarity_index
        self._clusters = cluster_manager
        self._spikes = spike_detector
        self._threshold = settings.similarity_threshold if similarity_threshold is None else similarity_threshold
        self._recency = timedelta(days=recency_days or settings.similarity_recency_days)
        self._max_results = max_results or settings.similarity_max_results
        self._timeout = timeout_seconds or settings.llm_timeout_seconds

    async def detect(
        self,
        complaint_id: str,
        tenant_id: str,
        raw_text: Optional[str] = None
    ) -> DetectionResult:
        complaint = await self._complaints.get(tenant_id, complaint_id)
        if complaint is None:
            raise ResourceNotFoundException("Complaint", complaint_id)

        result = DetectionResult(complaint_id=complaint_id, tenant_id=tenant_id)
        text = build_embedding_input(raw_text or complaint.raw_text, complaint.category, complaint.industry)

        try:
            neighbours = await self._index_and_query(complaint, text)
        except (LLMException, VectorStoreException) as e:
            result.degraded = True
            result.errors.append(str(e))
            logger.warning(
                "Systemic detection degraded",
                extra={"complaint_id": complaint_id, "tenant_id": tenant_id, "error": str(e)}
            )
            return result

        result.similar = [SimilarComplaint(m.complaint_id, m.similarity) for m in neighbours]

        try:
            decision = await self._clusters.assign(complaint, neighbours)
            result.cluster_action = decision.action
            result.cluster_id = decision.cluster_id
        except MalformedModelOutputException as e:
            result.errors.append(e.message)
            logger.error(
                "Cluster judgment unusable, no cluster decision made",
                extra={"complaint_id": complaint_id, "tenant_id": tenant_id}
            )

        result.spike = await self._spikes.check(tenant_id)

        logger.info(
            "Systemic detection completed",
            extra={
                "complaint_id": complaint_id,
                "tenant_id": tenant_id,
                "similar_count": len(result.similar),
                "cluster_action": result.cluster_action.value,
                "cluster_id": result.cluster_id,
                "is_spike": result.is_spike,
            }
        )
        return result

    async def _index_and_query(self, complaint: Complaint, text: str) -> List[SimilarityMatch]:
        try:
            embedding = await asyncio.wait_for(self._llm.embed(text), timeout=self._timeout)
        except asyncio.TimeoutError:
            raise EmbeddingUnavailableException("Embedding request timed out")

        await self._index.upsert(EmbeddingRecord(
            complaint_id=complaint.id,
            tenant_id=complaint.tenant_id,
            embedding=embedding.embedding,
            model=embedding.model,
            created_at=complaint.submitted_at
        ))

        await self._outputs.append(AiOutputRecord(
            complaint_id=complaint.id,
            tenant_id=complaint.tenant_id,
            output_type=AiOutputType.EMBEDDING,
            model=embedding.model,
            prompt=text[:settings.prompt_truncate_chars],
            raw_response="",
            parsed_output={"dimension": embedding.dimension},
            prompt_tokens=embedding.total_tokens
        ))

        with log_latency(logger, "similarity_query", tenant_id=complaint.tenant_id, complaint_id=complaint.id):
            return await self._index.find_similar(
                tenant_id=complaint.tenant_id,
                exclude_id=complaint.id,
                threshold=self._threshold,
                recency_window=self._recency,
                limit=self._max_results
            )

    async def check_spike(self, tenant_id: str) -> SpikeStatus:
        return await self._spikes.check(tenant_id)


# ========== Cluster Queries ==========

class SystemicClusterService:
    """
    Operator use cases on clusters: list, inspect, acknowledge, deactivate.

    State changes hold the same ``cluster:{id}`` lock as ClusterManager
    joins; the repository's version check covers other processes.
    """

    def __init__(
        self,
        cluster_repository: ISystemicClusterRepository,
        complaint_repository: IComplaintRepository,
        locks: Optional[KeyedLockRegistry] = None
    ):
        self._clusters = cluster_repository
        self._complaints = complaint_repository
        self._locks = locks or KeyedLockRegistry()

    async def _require(self, tenant_id: str, cluster_id: str) -> SystemicCluster:
        cluster = await self._clusters.get(tenant_id, cluster_id)
        if cluster is None:
            raise ResourceNotFoundException("SystemicCluster", cluster_id)
        return cluster

    async def list_clusters(self, tenant_id: str, active_only: bool = True) -> List[SystemicCluster]:
        return await self._clusters.list(tenant_id, active_only=active_only)

    async def list_alerts(self, tenant_id: str) -> List[SystemicCluster]:
        """Active clusters no operator has acknowledged yet."""
        return await self._clusters.list(tenant_id, active_only=True, unacknowledged_only=True)

    async def get_with_members(self, tenant_id: str, cluster_id: str) -> Tuple[SystemicCluster, List[Complaint]]:
        cluster = await self._require(tenant_id, cluster_id)
        members = await self._complaints.list_by_cluster(tenant_id, cluster_id)
        return cluster, members

    async def acknowledge(self, tenant_id: str, cluster_id: str, user_id: str) -> SystemicCluster:
        async with self._locks.hold(f"cluster:{cluster_id}"):
            cluster = await self._require(tenant_id, cluster_id)
            read_version = cluster.version
            if not cluster.acknowledge(user_id):
                return cluster
            await self._clusters.save_state(cluster, expected_version=read_version)

        logger.info(
            "Systemic cluster acknowledged",
            extra={"tenant_id": tenant_id, "cluster_id": cluster_id, "acknowledged_by": user_id}
        )
        return cluster

    async def deactivate(self, tenant_id: str, cluster_id: str, user_id: str) -> SystemicCluster:
        async with self._locks.hold(f"cluster:{cluster_id}"):
            cluster = await self._require(tenant_id, cluster_id)
            read_version = cluster.version
            if not cluster.deactivate():
                return cluster
            await self._clusters.save_state(cluster, expected_version=read_version)

        logger.info(
            "Systemic cluster deactivated",
            extra={"tenant_id": tenant_id, "cluster_id": cluster_id, "deactivated_by": user_id}
        )
        return cluster
