"""
Triage Infrastructure Repositories
==================================

SQLAlchemy implementations of triage repositories.

Each method runs in its own unit of work obtained from the session
factory, so a record is committed as soon as the call returns.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import case, func, select, update

from complaint_triage.config import AiOutputType, ComplaintStatus, RoutingDestination
from complaint_triage.core import RepositoryException, ResourceNotFoundException
from complaint_triage.infrastructure.database import SessionFactory, get_session_context
from complaint_triage.triage.application.services import IAiOutputRepository, IComplaintRepository
from complaint_triage.triage.domain.entities import AiOutputRecord, Complaint
from complaint_triage.triage.infrastructure.models import AiOutputModel, ComplaintModel


def to_uuid(value: Optional[str]) -> Optional[UUID]:
    if value is None:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite returns naive datetimes; everything stored is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _column_value(value: Any) -> Any:
    if isinstance(value, (RoutingDestination, ComplaintStatus)):
        return value.value
    return value


def complaint_to_entity(model: ComplaintModel) -> Complaint:
    return Complaint(
        id=str(model.id),
        tenant_id=model.tenant_id,
        reference_number=model.reference_number,
        raw_text=model.raw_text,
        business_id=model.business_id,
        business_name=model.business_name,
        business_status=model.business_status,
        status=ComplaintStatus(model.status),
        category=model.category,
        secondary_categories=list(model.secondary_categories or []),
        legal_category=model.legal_category,
        industry=model.industry,
        monetary_value=model.monetary_value,
        risk_level=model.risk_level,
        complexity_score=model.complexity_score,
        priority_score=model.priority_score,
        routing_destination=(
            RoutingDestination(model.routing_destination) if model.routing_destination else None
        ),
        is_systemic_risk=model.is_systemic_risk,
        is_civil_dispute=model.is_civil_dispute,
        breach_likelihood=model.breach_likelihood,
        ai_confidence=model.ai_confidence,
        summary=model.summary,
        systemic_cluster_id=str(model.systemic_cluster_id) if model.systemic_cluster_id else None,
        submitted_at=as_utc(model.submitted_at),
        triaged_at=as_utc(model.triaged_at),
        resolved_at=as_utc(model.resolved_at),
        updated_at=as_utc(model.updated_at),
    )


def record_to_entity(model: AiOutputModel) -> AiOutputRecord:
    return AiOutputRecord(
        id=str(model.id),
        complaint_id=str(model.complaint_id),
        tenant_id=model.tenant_id,
        output_type=AiOutputType(model.output_type),
        model=model.model,
        prompt=model.prompt,
        raw_response=model.raw_response,
        parsed_output=dict(model.parsed_output or {}),
        confidence=model.confidence,
        reasoning=model.reasoning,
        prompt_tokens=model.prompt_tokens,
        completion_tokens=model.completion_tokens,
        latency_ms=model.latency_ms,
        is_edited=model.is_edited,
        edited_by=model.edited_by,
        supersedes_id=str(model.supersedes_id) if model.supersedes_id else None,
        supersedes_author=model.supersedes_author,
        created_at=as_utc(model.created_at),
    )


class SQLAlchemyComplaintRepository(IComplaintRepository):
    """SQLAlchemy implementation for complaints."""

    def __init__(self, session_factory: SessionFactory = get_session_context):
        self._session_factory = session_factory

    async def create(self, complaint: Complaint) -> Complaint:
        complaint_uuid = to_uuid(complaint.id)
        if complaint_uuid is None:
            raise RepositoryException(f"Invalid complaint ID: {complaint.id}")

        model = ComplaintModel(
            id=complaint_uuid,
            tenant_id=complaint.tenant_id,
            reference_number=complaint.reference_number,
            raw_text=complaint.raw_text,
            business_id=complaint.business_id,
            business_name=complaint.business_name,
            business_status=complaint.business_status,
            status=complaint.status.value,
            secondary_categories=list(complaint.secondary_categories),
            is_systemic_risk=complaint.is_systemic_risk,
            is_civil_dispute=complaint.is_civil_dispute,
            submitted_at=complaint.submitted_at,
        )

        async with self._session_factory() as session:
            session.add(model)
            await session.flush()

        return complaint

    async def get(self, tenant_id: str, complaint_id: str) -> Optional[Complaint]:
        complaint_uuid = to_uuid(complaint_id)
        if complaint_uuid is None:
            return None

        stmt = select(ComplaintModel).where(
            ComplaintModel.tenant_id == tenant_id,
            ComplaintModel.id == complaint_uuid
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            return complaint_to_entity(model) if model else None

    async def get_many(self, tenant_id: str, complaint_ids: List[str]) -> List[Complaint]:
        uuids = [u for u in (to_uuid(i) for i in complaint_ids) if u is not None]
        if not uuids:
            return []

        stmt = select(ComplaintModel).where(
            ComplaintModel.tenant_id == tenant_id,
            ComplaintModel.id.in_(uuids)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            by_id = {str(m.id): complaint_to_entity(m) for m in result.scalars().all()}

        # Keep the caller's order
        return [by_id[i] for i in complaint_ids if i in by_id]

    async def save_triage(self, complaint: Complaint) -> None:
        in_cluster = ComplaintModel.systemic_cluster_id.is_not(None)
        routing = complaint.routing_destination.value if complaint.routing_destination else None

        stmt = (
            update(ComplaintModel)
            .where(
                ComplaintModel.tenant_id == complaint.tenant_id,
                ComplaintModel.id == to_uuid(complaint.id)
            )
            .values(
                category=complaint.category,
                secondary_categories=list(complaint.secondary_categories),
                legal_category=complaint.legal_category,
                industry=complaint.industry,
                business_name=complaint.business_name,
                monetary_value=complaint.monetary_value,
                risk_level=complaint.risk_level,
                complexity_score=complaint.complexity_score,
                priority_score=complaint.priority_score,
                routing_destination=case(
                    (in_cluster, RoutingDestination.SYSTEMIC_REVIEW.value),
                    else_=routing
                ),
                is_systemic_risk=case((in_cluster, True), else_=complaint.is_systemic_risk),
                is_civil_dispute=complaint.is_civil_dispute,
                breach_likelihood=complaint.breach_likelihood,
                ai_confidence=complaint.ai_confidence,
                summary=complaint.summary,
                status=complaint.status.value,
                triaged_at=complaint.triaged_at,
                updated_at=complaint.updated_at,
            )
            .execution_options(synchronize_session=False)
        )

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            if result.rowcount == 0:
                raise ResourceNotFoundException("Complaint", complaint.id)

    async def update_fields(self, tenant_id: str, complaint_id: str, fields: Dict[str, Any]) -> None:
        if "systemic_cluster_id" in fields:
            raise RepositoryException("Cluster membership is set by assign_cluster only")

        values = {name: _column_value(value) for name, value in fields.items()}
        values["updated_at"] = datetime.now(timezone.utc)

        stmt = (
            update(ComplaintModel)
            .where(
                ComplaintModel.tenant_id == tenant_id,
                ComplaintModel.id == to_uuid(complaint_id)
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            if result.rowcount == 0:
                raise ResourceNotFoundException("Complaint", complaint_id)

    async def assign_cluster(
        self,
        tenant_id: str,
        complaint_ids: List[str],
        cluster_id: str
    ) -> List[str]:
        cluster_uuid = to_uuid(cluster_id)
        if cluster_uuid is None:
            raise RepositoryException(f"Invalid cluster ID: {cluster_id}")

        assigned = []
        now = datetime.now(timezone.utc)
        async with self._session_factory() as session:
            for complaint_id in complaint_ids:
                stmt = (
                    update(ComplaintModel)
                    .where(
                        ComplaintModel.tenant_id == tenant_id,
                        ComplaintModel.id == to_uuid(complaint_id),
                        ComplaintModel.systemic_cluster_id.is_(None)
                    )
                    .values(
                        systemic_cluster_id=cluster_uuid,
                        is_systemic_risk=True,
                        routing_destination=RoutingDestination.SYSTEMIC_REVIEW.value,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                result = await session.execute(stmt)
                if result.rowcount:
                    assigned.append(complaint_id)
        return assigned

    async def list_by_cluster(self, tenant_id: str, cluster_id: str) -> List[Complaint]:
        cluster_uuid = to_uuid(cluster_id)
        if cluster_uuid is None:
            return []

        stmt = (
            select(ComplaintModel)
            .where(
                ComplaintModel.tenant_id == tenant_id,
                ComplaintModel.systemic_cluster_id == cluster_uuid
            )
            .order_by(ComplaintModel.submitted_at)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [complaint_to_entity(m) for m in result.scalars().all()]

    async def count_for_business(
        self,
        tenant_id: str,
        business_id: str,
        exclude_id: Optional[str] = None
    ) -> int:
        stmt = select(func.count(ComplaintModel.id)).where(
            ComplaintModel.tenant_id == tenant_id,
            ComplaintModel.business_id == business_id
        )
        exclude_uuid = to_uuid(exclude_id)
        if exclude_uuid is not None:
            stmt = stmt.where(ComplaintModel.id != exclude_uuid)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return int(result.scalar_one())

    async def count_submitted_between(self, tenant_id: str, start: datetime, end: datetime) -> int:
        stmt = select(func.count(ComplaintModel.id)).where(
            ComplaintModel.tenant_id == tenant_id,
            ComplaintModel.submitted_at > start,
            ComplaintModel.submitted_at <= end
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return int(result.scalar_one())

    async def tenants_with_submissions_since(self, since: datetime) -> List[str]:
        stmt = (
            select(ComplaintModel.tenant_id)
            .where(ComplaintModel.submitted_at > since)
            .distinct()
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return sorted(result.scalars().all())


class SQLAlchemyAiOutputRepository(IAiOutputRepository):
    """SQLAlchemy implementation for the AI output audit trail."""

    def __init__(self, session_factory: SessionFactory = get_session_context):
        self._session_factory = session_factory

    async def append(self, record: AiOutputRecord) -> AiOutputRecord:
        complaint_uuid = to_uuid(record.complaint_id)
        if complaint_uuid is None:
            raise RepositoryException(f"Invalid complaint ID: {record.complaint_id}")

        model = AiOutputModel(
            id=to_uuid(record.id),
            complaint_id=complaint_uuid,
            tenant_id=record.tenant_id,
            output_type=record.output_type.value,
            model=record.model,
            prompt=record.prompt,
            raw_response=record.raw_response,
            parsed_output=record.parsed_output,
            confidence=record.confidence,
            reasoning=record.reasoning,
            prompt_tokens=record.prompt_tokens,
            completion_tokens=record.completion_tokens,
            latency_ms=record.latency_ms,
            is_edited=record.is_edited,
            edited_by=record.edited_by,
            supersedes_id=to_uuid(record.supersedes_id),
            supersedes_author=record.supersedes_author,
            created_at=record.created_at,
        )

        async with self._session_factory() as session:
            session.add(model)
            await session.flush()

        return record

    async def list_for_complaint(self, tenant_id: str, complaint_id: str) -> List[AiOutputRecord]:
        complaint_uuid = to_uuid(complaint_id)
        if complaint_uuid is None:
            return []

        stmt = (
            select(AiOutputModel)
            .where(
                AiOutputModel.tenant_id == tenant_id,
                AiOutputModel.complaint_id == complaint_uuid
            )
            .order_by(AiOutputModel.created_at)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [record_to_entity(m) for m in result.scalars().all()]

    async def latest(
        self,
        tenant_id: str,
        complaint_id: str,
        output_type: Optional[AiOutputType] = None
    ) -> Optional[AiOutputRecord]:
        complaint_uuid = to_uuid(complaint_id)
        if complaint_uuid is None:
            return None

        stmt = select(AiOutputModel).where(
            AiOutputModel.tenant_id == tenant_id,
            AiOutputModel.complaint_id == complaint_uuid
        )
        if output_type is not None:
            stmt = stmt.where(AiOutputModel.output_type == output_type.value)
        stmt = stmt.order_by(AiOutputModel.created_at.desc()).limit(1)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            return record_to_entity(model) if model else None
