"""
Shared API Dependencies
=======================

FastAPI dependencies resolving the tenant, the acting user and the
service singletons the lifespan stores on ``app.state``.
"""

from typing import Any

from fastapi import Header, HTTPException, Request


def get_tenant_id(x_tenant_id: str = Header(..., min_length=1, alias="X-Tenant-ID")) -> str:
    return x_tenant_id


def get_user_id(x_user_id: str = Header(..., min_length=1, alias="X-User-ID")) -> str:
    return x_user_id


def _service(request: Request, name: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(status_code=503, detail=f"{name.replace('_', ' ')} not available")
    return service


def get_intake_service(request: Request):
    return _service(request, "intake_service")


def get_work_queue(request: Request):
    return _service(request, "work_queue")


def get_triage_service(request: Request):
    return _service(request, "triage_service")


def get_cluster_service(request: Request):
    return _service(request, "cluster_service")


def get_orchestrator(request: Request):
    return _service(request, "orchestrator")
