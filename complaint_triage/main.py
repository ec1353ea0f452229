"""
Complaint Triage - Main Application
===================================

AI-assisted complaint triage with systemic-issue detection.

Modules:
- Intake: accept complaints and queue them for processing
- Triage: four-stage model pipeline, priority scoring and routing
- Systemic: embedding similarity clusters and volume spikes

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: Database, LLM, vector store
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

# Configuration and Core
from complaint_triage.config import settings
from complaint_triage.core import ApplicationException, VectorStoreException

# Infrastructure
from complaint_triage.infrastructure.database import close_database, create_tables, init_database
from complaint_triage.infrastructure.llm import create_llm_gateway
from complaint_triage.infrastructure.vectorstore import create_similarity_index
from complaint_triage.shared.infrastructure.locks import KeyedLockRegistry

# Intake
from complaint_triage.intake.application.services import ComplaintIntakeService, ComplaintProcessor
from complaint_triage.intake.infrastructure.queue import ComplaintWorkQueue

# Triage
from complaint_triage.triage.application.services import AiAnalysisService, new_triage_service
from complaint_triage.triage.infrastructure.external import TenantConfigManager
from complaint_triage.triage.infrastructure.repositories import (
    SQLAlchemyAiOutputRepository,
    SQLAlchemyComplaintRepository,
)

# Systemic
from complaint_triage.systemic.application.services import (
    ClusterManager,
    SpikeDetector,
    SystemicClusterService,
    SystemicDetectionOrchestrator,
)
from complaint_triage.systemic.infrastructure.external import SpikeMonitorScheduler
from complaint_triage.systemic.infrastructure.repositories import SQLAlchemySystemicClusterRepository

# Module Routers
from complaint_triage.intake.interfaces import intake_router
from complaint_triage.systemic.interfaces import systemic_router
from complaint_triage.triage.interfaces import triage_router

# Middleware and Logging
from complaint_triage.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)
from complaint_triage.shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load tenant configuration and watch it
    4. Select the LLM gateway and similarity index
    5. Wire services, start the work queue and the spike monitor

    SHUTDOWN:
    1. Stop spike monitor and work queue
    2. Stop config watcher
    3. Close gateway and database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Complaint Triage Service", extra={
        "version": settings.app_version,
        "environment": settings.environment,
        "llm_provider": settings.llm_provider,
        "vector_store": settings.vector_store
    })

    init_database()

    # Tables for development; production schemas are migrated separately
    try:
        await create_tables()
    except (OSError, SQLAlchemyError) as e:
        logger.warning(f"Database not available - running in degraded mode: {e}")

    tenant_config = TenantConfigManager()
    tenant_config.load(settings.tenant_config_path)
    tenant_config.start_watching()

    llm_gateway = create_llm_gateway()

    similarity_index = create_similarity_index()
    try:
        await similarity_index.initialize()
    except VectorStoreException as e:
        # Detection degrades per complaint until the index is reachable
        logger.warning(f"Similarity index not available: {e.message}")

    complaint_repository = SQLAlchemyComplaintRepository()
    output_repository = SQLAlchemyAiOutputRepository()
    cluster_repository = SQLAlchemySystemicClusterRepository()

    triage_service = new_triage_service(
        complaint_repository, output_repository, llm_gateway, tenant_config.weights_for
    )
    spike_detector = SpikeDetector(complaint_repository)
    # Joins and operator state changes share the per-cluster locks
    cluster_locks = KeyedLockRegistry()
    cluster_manager = ClusterManager(
        complaint_repository,
        cluster_repository,
        output_repository,
        AiAnalysisService(llm_gateway, output_repository),
        locks=cluster_locks
    )
    orchestrator = SystemicDetectionOrchestrator(
        complaint_repository,
        output_repository,
        llm_gateway,
        similarity_index,
        cluster_manager,
        spike_detector
    )
    processor = ComplaintProcessor(complaint_repository, triage_service, orchestrator)

    work_queue = ComplaintWorkQueue(processor.process)
    await work_queue.start()

    spike_monitor = SpikeMonitorScheduler(interval_seconds=settings.spike_scan_interval_seconds)
    await spike_monitor.start(spike_detector.scan)

    # Store services in app state for dependency injection
    app.state.settings = settings
    app.state.tenant_config = tenant_config
    app.state.llm_gateway = llm_gateway
    app.state.similarity_index = similarity_index
    app.state.intake_service = ComplaintIntakeService(complaint_repository)
    app.state.triage_service = triage_service
    app.state.cluster_service = SystemicClusterService(cluster_repository, complaint_repository, locks=cluster_locks)
    app.state.orchestrator = orchestrator
    app.state.work_queue = work_queue
    app.state.spike_monitor = spike_monitor

    logger.info("Complaint Triage Service started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Complaint Triage Service")

    await spike_monitor.stop()
    await work_queue.stop()
    tenant_config.stop_watching()

    close_gateway = getattr(llm_gateway, "close", None)
    if close_gateway is not None:
        await close_gateway()

    await close_database()

    logger.info("Complaint Triage Service shutdown complete")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Complaint Triage API",
        description="""
        ## AI-Assisted Complaint Triage

        Classifies, scores and routes consumer complaints, and groups similar
        complaints into systemic clusters for regulator review.

        ### Intake
        - `POST /complaints` - Submit a complaint (queued for processing)
        - `GET /complaints/{id}` - Complaint with derived fields

        ### Triage
        - `POST /triage/{id}` - Run triage again
        - `GET /triage/{id}/result` - Complaint with its AI output audit trail
        - `POST /triage/{id}/override` - Manual correction
        - `GET /triage/weights` - Priority weights for the tenant

        ### Systemic Detection
        - `GET /systemic/clusters`, `GET /systemic/clusters/{id}`
        - `POST /systemic/clusters/{id}/acknowledge`, `POST /systemic/clusters/{id}/deactivate`
        - `GET /systemic/alerts` - Active, unacknowledged clusters
        - `GET /systemic/spike` - Complaint volume over the rolling window

        Every call is scoped by the `X-Tenant-ID` header.
        """,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    # === CORS Middleware ===
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Added last runs first: correlation id is set before request logging
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(CorrelationIDMiddleware)
    app.add_exception_handler(ApplicationException, application_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    # === Include Module Routers ===
    app.include_router(intake_router)
    app.include_router(triage_router)
    app.include_router(systemic_router)

    app.add_api_route("/health", health_check, methods=["GET"], tags=["Health"])
    app.add_api_route("/", root, methods=["GET"], tags=["Root"])
    return app


async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Reports work queue depth, spike monitor state, the LLM provider and
    the similarity index backend.
    """
    state = request.app.state
    work_queue = getattr(state, "work_queue", None)
    spike_monitor = getattr(state, "spike_monitor", None)
    similarity_index = getattr(state, "similarity_index", None)

    checks = {
        "work_queue": "running" if work_queue and work_queue.is_running else "stopped",
        "queue_depth": work_queue.depth if work_queue else 0,
        "spike_monitor": "running" if spike_monitor and spike_monitor.is_running else "stopped",
        "llm_provider": settings.llm_provider,
        "similarity_index": type(similarity_index).__name__ if similarity_index is not None else "not_configured",
    }

    return {
        "status": "healthy" if checks["work_queue"] == "running" else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


async def root():
    """Root endpoint with API information."""
    return {
        "service": "Complaint Triage Service",
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "intake": {"prefix": "/complaints"},
            "triage": {"prefix": "/triage"},
            "systemic": {"prefix": "/systemic"}
        }
    }


app = create_app()


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "complaint_triage.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower()
    )
