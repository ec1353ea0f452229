"""
Intake Application Services
===========================

Complaint submission and the per-complaint unit of work run by the
background queue: triage first, then systemic detection.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
from uuid import uuid4

from complaint_triage.core import ResourceNotFoundException, ValidationException
from complaint_triage.shared.infrastructure.logging import get_logger
from complaint_triage.systemic.application.services import SystemicDetectionOrchestrator
from complaint_triage.systemic.domain.entities import DetectionResult
from complaint_triage.triage.application.services import IComplaintRepository, TriageService
from complaint_triage.triage.domain.entities import Complaint, TriageOutput, utc_now

logger = get_logger(__name__)

MAX_COMPLAINT_CHARS = 20000


def generate_reference_number(now: Optional[datetime] = None) -> str:
    """Human-facing reference, e.g. CMP-20250314-4F1A9C."""
    now = now or utc_now()
    return f"CMP-{now:%Y%m%d}-{uuid4().hex[:6].upper()}"


@dataclass
class ComplaintJob:
    """One queued unit of work."""
    complaint_id: str
    tenant_id: str
    raw_text: str
    business_id: Optional[str] = None
    force_triage: bool = False
    attempt: int = 1
    enqueued_at: datetime = field(default_factory=utc_now)


@dataclass
class ProcessingOutcome:
    complaint_id: str
    triage: Optional[TriageOutput]
    detection: DetectionResult


class ComplaintIntakeService:
    """Stores newly submitted complaints."""

    def __init__(self, complaint_repository: IComplaintRepository):
        self._complaints = complaint_repository

    async def submit(
        self,
        tenant_id: str,
        raw_text: str,
        business_id: Optional[str] = None,
        business_name: Optional[str] = None,
        business_status: Optional[str] = None
    ) -> Complaint:
        """
        Raises:
            ValidationException: Empty or oversized complaint text
        """
        text = raw_text.strip()
        if not text:
            raise ValidationException("Complaint text must not be empty")
        if len(text) > MAX_COMPLAINT_CHARS:
            raise ValidationException(f"Complaint text too long (max {MAX_COMPLAINT_CHARS} characters)")

        complaint = Complaint(
            tenant_id=tenant_id,
            raw_text=text,
            reference_number=generate_reference_number(),
            business_id=business_id,
            business_name=business_name,
            business_status=business_status,
        )
        await self._complaints.create(complaint)

        logger.info(
            "Complaint submitted",
            extra={
                "complaint_id": complaint.id,
                "tenant_id": tenant_id,
                "reference_number": complaint.reference_number,
            }
        )
        return complaint

    async def get(self, tenant_id: str, complaint_id: str) -> Complaint:
        complaint = await self._complaints.get(tenant_id, complaint_id)
        if complaint is None:
            raise ResourceNotFoundException("Complaint", complaint_id)
        return complaint


class ComplaintProcessor:
    """
    Runs one complaint job: triage, then systemic detection.

    If triage fails the exception propagates and detection does not run.
    A retried job skips triage when the complaint has already been triaged.
    """

    def __init__(
        self,
        complaint_repository: IComplaintRepository,
        triage_service: TriageService,
        orchestrator: SystemicDetectionOrchestrator
    ):
        self._complaints = complaint_repository
        self._triage = triage_service
        self._orchestrator = orchestrator

    async def process(self, job: ComplaintJob) -> ProcessingOutcome:
        complaint = await self._complaints.get(job.tenant_id, job.complaint_id)
        if complaint is None:
            raise ResourceNotFoundException("Complaint", job.complaint_id)

        triage_output = None
        if job.force_triage or not complaint.is_triaged:
            _, triage_output = await self._triage.triage_complaint(job.tenant_id, job.complaint_id)

        detection = await self._orchestrator.detect(job.complaint_id, job.tenant_id, job.raw_text)
        return ProcessingOutcome(complaint_id=job.complaint_id, triage=triage_output, detection=detection)
