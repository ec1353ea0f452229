"""
Intake Controllers (API Routes)
===============================

Complaint submission. Triage and detection run on the work queue.
"""

from fastapi import APIRouter, Depends, Request, status

from complaint_triage.intake.application.dto import SubmitComplaintRequest, SubmitComplaintResponse
from complaint_triage.intake.application.services import ComplaintIntakeService, ComplaintJob
from complaint_triage.intake.infrastructure.queue import ComplaintWorkQueue
from complaint_triage.shared.api.dependencies import get_intake_service, get_tenant_id, get_work_queue
from complaint_triage.shared.infrastructure.logging import get_logger
from complaint_triage.triage.application.dto import ComplaintResponse

logger = get_logger(__name__)
router = APIRouter(prefix="/complaints", tags=["Complaint Intake"])


@router.post(
    "",
    response_model=SubmitComplaintResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Submit a complaint",
    description="""
    Stores the complaint and queues it for triage and systemic detection.
    Poll `GET /complaints/{id}` or `GET /triage/{id}/result` for the outcome.
    """
)
async def submit_complaint(
    request: Request,
    payload: SubmitComplaintRequest,
    tenant_id: str = Depends(get_tenant_id),
    service: ComplaintIntakeService = Depends(get_intake_service),
    queue: ComplaintWorkQueue = Depends(get_work_queue)
):
    complaint = await service.submit(
        tenant_id=tenant_id,
        raw_text=payload.raw_text,
        business_id=payload.business_id,
        business_name=payload.business_name,
        business_status=payload.business_status
    )

    await queue.enqueue(ComplaintJob(
        complaint_id=complaint.id,
        tenant_id=tenant_id,
        raw_text=complaint.raw_text,
        business_id=complaint.business_id
    ))

    logger.info(
        "Complaint accepted",
        extra={
            "correlation_id": getattr(request.state, "correlation_id", "unknown"),
            "complaint_id": complaint.id,
            "queue_depth": queue.depth,
        }
    )

    return SubmitComplaintResponse(
        complaint_id=complaint.id,
        reference_number=complaint.reference_number,
        status=complaint.status.value,
        queued=True
    )


@router.get("/{complaint_id}", response_model=ComplaintResponse, summary="Get a complaint")
async def get_complaint(
    complaint_id: str,
    tenant_id: str = Depends(get_tenant_id),
    service: ComplaintIntakeService = Depends(get_intake_service)
):
    complaint = await service.get(tenant_id, complaint_id)
    return ComplaintResponse.from_domain(complaint)


intake_router = router
