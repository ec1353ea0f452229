"""
Systemic Infrastructure Repositories
====================================

SQLAlchemy implementation of the systemic cluster repository.
"""

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import case, select, update

from complaint_triage.core import ConflictException, RepositoryException, ResourceNotFoundException
from complaint_triage.infrastructure.database import SessionFactory, get_session_context
from complaint_triage.systemic.application.services import ISystemicClusterRepository
from complaint_triage.systemic.domain.entities import SystemicCluster
from complaint_triage.systemic.infrastructure.models import SystemicClusterModel
from complaint_triage.triage.infrastructure.repositories import as_utc, to_uuid


def cluster_to_entity(model: SystemicClusterModel) -> SystemicCluster:
    return SystemicCluster(
        id=str(model.id),
        tenant_id=model.tenant_id,
        title=model.title,
        description=model.description,
        category=model.category,
        risk_level=model.risk_level,
        complaint_count=model.complaint_count,
        avg_similarity=model.avg_similarity,
        common_patterns=list(model.common_patterns or []),
        recommended_action=model.recommended_action,
        detection_method=model.detection_method,
        is_active=model.is_active,
        is_acknowledged=model.is_acknowledged,
        acknowledged_by=model.acknowledged_by,
        acknowledged_at=as_utc(model.acknowledged_at),
        version=model.version,
        created_at=as_utc(model.created_at),
        updated_at=as_utc(model.updated_at),
    )


class SQLAlchemySystemicClusterRepository(ISystemicClusterRepository):
    """SQLAlchemy implementation for systemic clusters."""

    def __init__(self, session_factory: SessionFactory = get_session_context):
        self._session_factory = session_factory

    async def create(self, cluster: SystemicCluster) -> SystemicCluster:
        cluster_uuid = to_uuid(cluster.id)
        if cluster_uuid is None:
            raise RepositoryException(f"Invalid cluster ID: {cluster.id}")

        model = SystemicClusterModel(
            id=cluster_uuid,
            tenant_id=cluster.tenant_id,
            title=cluster.title,
            description=cluster.description,
            category=cluster.category,
            risk_level=cluster.risk_level,
            common_patterns=list(cluster.common_patterns),
            recommended_action=cluster.recommended_action,
            detection_method=cluster.detection_method,
            complaint_count=cluster.complaint_count,
            avg_similarity=cluster.avg_similarity,
            is_active=cluster.is_active,
            is_acknowledged=cluster.is_acknowledged,
            version=cluster.version,
            created_at=cluster.created_at,
            updated_at=cluster.updated_at,
        )

        async with self._session_factory() as session:
            session.add(model)
            await session.flush()

        return cluster

    async def get(self, tenant_id: str, cluster_id: str) -> Optional[SystemicCluster]:
        cluster_uuid = to_uuid(cluster_id)
        if cluster_uuid is None:
            return None

        stmt = select(SystemicClusterModel).where(
            SystemicClusterModel.tenant_id == tenant_id,
            SystemicClusterModel.id == cluster_uuid
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            return cluster_to_entity(model) if model else None

    async def get_many(self, tenant_id: str, cluster_ids: List[str]) -> List[SystemicCluster]:
        uuids = [u for u in (to_uuid(i) for i in cluster_ids) if u is not None]
        if not uuids:
            return []

        stmt = select(SystemicClusterModel).where(
            SystemicClusterModel.tenant_id == tenant_id,
            SystemicClusterModel.id.in_(uuids)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [cluster_to_entity(m) for m in result.scalars().all()]

    async def record_join(
        self,
        tenant_id: str,
        cluster_id: str,
        similarity: float
    ) -> Optional[SystemicCluster]:
        count = SystemicClusterModel.complaint_count
        stmt = (
            update(SystemicClusterModel)
            .where(
                SystemicClusterModel.tenant_id == tenant_id,
                SystemicClusterModel.id == to_uuid(cluster_id),
                SystemicClusterModel.is_active.is_(True)
            )
            .values(
                avg_similarity=(SystemicClusterModel.avg_similarity * count + similarity) / (count + 1),
                complaint_count=count + 1,
                version=SystemicClusterModel.version + 1,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            if result.rowcount == 0:
                return None

        return await self.get(tenant_id, cluster_id)

    async def undo_join(self, tenant_id: str, cluster_id: str, similarity: float) -> None:
        count = SystemicClusterModel.complaint_count
        stmt = (
            update(SystemicClusterModel)
            .where(
                SystemicClusterModel.tenant_id == tenant_id,
                SystemicClusterModel.id == to_uuid(cluster_id),
                count > 0
            )
            .values(
                avg_similarity=case(
                    (count > 1, (SystemicClusterModel.avg_similarity * count - similarity) / (count - 1)),
                    else_=0.0,
                ),
                complaint_count=count - 1,
                version=SystemicClusterModel.version + 1,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            await session.execute(stmt)

    async def set_complaint_count(self, tenant_id: str, cluster_id: str, count: int) -> None:
        stmt = (
            update(SystemicClusterModel)
            .where(
                SystemicClusterModel.tenant_id == tenant_id,
                SystemicClusterModel.id == to_uuid(cluster_id)
            )
            .values(complaint_count=count, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            await session.execute(stmt)

    async def save_state(self, cluster: SystemicCluster, expected_version: int) -> None:
        stmt = (
            update(SystemicClusterModel)
            .where(
                SystemicClusterModel.tenant_id == cluster.tenant_id,
                SystemicClusterModel.id == to_uuid(cluster.id),
                SystemicClusterModel.version == expected_version
            )
            .values(
                is_active=cluster.is_active,
                is_acknowledged=cluster.is_acknowledged,
                acknowledged_by=cluster.acknowledged_by,
                acknowledged_at=cluster.acknowledged_at,
                version=SystemicClusterModel.version + 1,
                updated_at=cluster.updated_at,
            )
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            matched = result.rowcount

        if matched == 0:
            if await self.get(cluster.tenant_id, cluster.id) is None:
                raise ResourceNotFoundException("SystemicCluster", cluster.id)
            raise ConflictException(
                "Cluster was modified concurrently",
                {"cluster_id": cluster.id, "expected_version": expected_version}
            )
        cluster.version = expected_version + 1

    async def list(
        self,
        tenant_id: str,
        active_only: bool = False,
        unacknowledged_only: bool = False
    ) -> List[SystemicCluster]:
        stmt = select(SystemicClusterModel).where(SystemicClusterModel.tenant_id == tenant_id)
        if active_only:
            stmt = stmt.where(SystemicClusterModel.is_active.is_(True))
        if unacknowledged_only:
            stmt = stmt.where(SystemicClusterModel.is_acknowledged.is_(False))
        stmt = stmt.order_by(SystemicClusterModel.updated_at.desc())

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [cluster_to_entity(m) for m in result.scalars().all()]
