"""
Triage Controllers (API Routes)
================================

FastAPI routes for complaint triage endpoints.

Controllers delegate to application services.
"""

import time

from fastapi import APIRouter, Depends, Request

from complaint_triage.intake.application.services import ComplaintJob
from complaint_triage.intake.infrastructure.queue import ComplaintWorkQueue
from complaint_triage.shared.api.dependencies import (
    get_tenant_id,
    get_triage_service,
    get_user_id,
    get_work_queue,
)
from complaint_triage.shared.infrastructure.logging import get_logger
from complaint_triage.triage.application.dto import (
    AiOutputResponse,
    ComplaintResponse,
    OverrideRequest,
    OverrideResponse,
    TriageResultResponse,
    TriageRunResponse,
    WeightsResponse,
)
from complaint_triage.triage.application.services import TriageService

logger = get_logger(__name__)
router = APIRouter(prefix="/triage", tags=["Complaint Triage"])


@router.get(
    "/weights",
    response_model=WeightsResponse,
    summary="Priority weights for the calling tenant",
    description="Returns the weights in force and whether their sum drifts from 1.0."
)
async def get_weights(
    tenant_id: str = Depends(get_tenant_id),
    service: TriageService = Depends(get_triage_service)
):
    return WeightsResponse.from_domain(tenant_id, service.weights_for(tenant_id))


@router.post(
    "/{complaint_id}",
    response_model=TriageRunResponse,
    summary="Run (or re-run) triage on a complaint",
    description="""
    Runs the four triage stages synchronously (extraction, classification,
    risk scoring, summarisation), stores the derived fields, then queues
    systemic detection.

    A complaint already placed in a systemic cluster keeps its systemic
    flag and `systemic_review` routing.
    """,
    responses={
        404: {"description": "Complaint not found"},
        502: {"description": "Model output did not match the stage schema"},
        503: {"description": "Model provider unavailable"}
    }
)
async def run_triage(
    request: Request,
    complaint_id: str,
    tenant_id: str = Depends(get_tenant_id),
    service: TriageService = Depends(get_triage_service),
    queue: ComplaintWorkQueue = Depends(get_work_queue)
):
    start_time = time.perf_counter()
    correlation_id = getattr(request.state, "correlation_id", "unknown")

    complaint, output = await service.triage_complaint(tenant_id, complaint_id)

    await queue.enqueue(ComplaintJob(
        complaint_id=complaint.id,
        tenant_id=tenant_id,
        raw_text=complaint.raw_text,
        business_id=complaint.business_id
    ))

    logger.info(
        "Complaint re-triaged",
        extra={
            "correlation_id": correlation_id,
            "complaint_id": complaint_id,
            "tenant_id": tenant_id,
            "routing_destination": output.result.routing_destination.value,
            "priority_score": output.result.priority_score,
        }
    )

    return TriageRunResponse.build(
        complaint,
        output,
        detection_queued=True,
        processing_time_ms=int((time.perf_counter() - start_time) * 1000)
    )


@router.get(
    "/{complaint_id}/result",
    response_model=TriageResultResponse,
    summary="Complaint with its AI output audit trail"
)
async def get_triage_result(
    complaint_id: str,
    tenant_id: str = Depends(get_tenant_id),
    service: TriageService = Depends(get_triage_service)
):
    complaint, records = await service.get_result(tenant_id, complaint_id)
    return TriageResultResponse(
        complaint=ComplaintResponse.from_domain(complaint),
        ai_outputs=[AiOutputResponse.from_domain(r) for r in records]
    )


@router.post(
    "/{complaint_id}/override",
    response_model=OverrideResponse,
    summary="Manually correct derived fields",
    description="""
    Overwrites any derived field and appends a `manual_override` record
    authored by the `X-User-ID` user. Earlier records are never changed;
    the new record points at the one it supersedes.
    """,
    responses={
        200: {"description": "Override recorded"},
        404: {"description": "Complaint not found"},
        422: {"description": "Unknown field or invalid value"}
    },
)
async def override_triage(
    complaint_id: str,
    payload: OverrideRequest,
    tenant_id: str = Depends(get_tenant_id),
    user_id: str = Depends(get_user_id),
    service: TriageService = Depends(get_triage_service)
):
    complaint, record = await service.override(
        tenant_id,
        complaint_id,
        payload.changes,
        user_id=user_id,
        reason=payload.reason
    )
    return OverrideResponse(
        complaint=ComplaintResponse.from_domain(complaint),
        record=AiOutputResponse.from_domain(record)
    )


# Export router for inclusion in main app
triage_router = router
