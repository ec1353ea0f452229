"""
Systemic Controllers (API Routes)
=================================

Operator endpoints for systemic clusters, unacknowledged cluster
alerts and the tenant's complaint volume spike status.
"""

from fastapi import APIRouter, Depends, Query

from complaint_triage.shared.api.dependencies import (
    get_cluster_service,
    get_orchestrator,
    get_tenant_id,
    get_user_id,
)
from complaint_triage.systemic.application.dto import (
    ClusterDetailResponse,
    ClusterListResponse,
    ClusterMember,
    ClusterResponse,
    SpikeResponse,
)
from complaint_triage.systemic.application.services import (
    SystemicClusterService,
    SystemicDetectionOrchestrator,
)

router = APIRouter(prefix="/systemic", tags=["Systemic Detection"])


@router.get("/clusters", response_model=ClusterListResponse, summary="List systemic clusters")
async def list_clusters(
    active_only: bool = Query(True, description="Hide deactivated clusters"),
    tenant_id: str = Depends(get_tenant_id),
    service: SystemicClusterService = Depends(get_cluster_service)
):
    clusters = await service.list_clusters(tenant_id, active_only=active_only)
    return ClusterListResponse(
        total=len(clusters),
        clusters=[ClusterResponse.from_domain(c) for c in clusters]
    )


@router.get(
    "/clusters/{cluster_id}",
    response_model=ClusterDetailResponse,
    summary="Get a cluster with its member complaints",
    responses={404: {"description": "Cluster not found"}}
)
async def get_cluster(
    cluster_id: str,
    tenant_id: str = Depends(get_tenant_id),
    service: SystemicClusterService = Depends(get_cluster_service)
):
    cluster, members = await service.get_with_members(tenant_id, cluster_id)
    return ClusterDetailResponse(
        cluster=ClusterResponse.from_domain(cluster),
        members=[ClusterMember.from_domain(m) for m in members]
    )


@router.post(
    "/clusters/{cluster_id}/acknowledge",
    response_model=ClusterResponse,
    summary="Acknowledge a cluster alert",
    responses={
        404: {"description": "Cluster not found"},
        409: {"description": "Cluster is inactive"}
    }
)
async def acknowledge_cluster(
    cluster_id: str,
    tenant_id: str = Depends(get_tenant_id),
    user_id: str = Depends(get_user_id),
    service: SystemicClusterService = Depends(get_cluster_service)
):
    cluster = await service.acknowledge(tenant_id, cluster_id, user_id)
    return ClusterResponse.from_domain(cluster)


@router.post(
    "/clusters/{cluster_id}/deactivate",
    response_model=ClusterResponse,
    summary="Deactivate a cluster",
    description="Deactivated clusters accept no new members. Existing members keep their assignment."
)
async def deactivate_cluster(
    cluster_id: str,
    tenant_id: str = Depends(get_tenant_id),
    user_id: str = Depends(get_user_id),
    service: SystemicClusterService = Depends(get_cluster_service)
):
    cluster = await service.deactivate(tenant_id, cluster_id, user_id)
    return ClusterResponse.from_domain(cluster)


@router.get(
    "/alerts",
    response_model=ClusterListResponse,
    summary="Active clusters not yet acknowledged"
)
async def list_alerts(
    tenant_id: str = Depends(get_tenant_id),
    service: SystemicClusterService = Depends(get_cluster_service)
):
    clusters = await service.list_alerts(tenant_id)
    return ClusterListResponse(
        total=len(clusters),
        clusters=[ClusterResponse.from_domain(c) for c in clusters]
    )


@router.get(
    "/spike",
    response_model=SpikeResponse,
    summary="Complaint volume over the rolling spike window"
)
async def get_spike_status(
    tenant_id: str = Depends(get_tenant_id),
    orchestrator: SystemicDetectionOrchestrator = Depends(get_orchestrator)
):
    status = await orchestrator.check_spike(tenant_id)
    return SpikeResponse.from_domain(status)


systemic_router = router
