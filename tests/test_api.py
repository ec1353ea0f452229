"""Tests for the HTTP API with in-memory services on app.state."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from complaint_triage.infrastructure.vectorstore import InMemorySimilarityIndex
from complaint_triage.intake.application.services import ComplaintIntakeService, ComplaintJob
from complaint_triage.main import create_app
from complaint_triage.shared.infrastructure.locks import KeyedLockRegistry
from complaint_triage.systemic.application.services import (
    ClusterManager,
    SpikeDetector,
    SystemicClusterService,
    SystemicDetectionOrchestrator,
)
from complaint_triage.systemic.domain.entities import SystemicCluster
from complaint_triage.triage.application.services import AiAnalysisService
from tests.fakes import make_complaint

TENANT = {"X-Tenant-ID": "tenant-a"}
OFFICER = {"X-Tenant-ID": "tenant-a", "X-User-ID": "officer-1"}


@pytest.fixture
def work_queue():
    queue = MagicMock()
    queue.enqueue = AsyncMock()
    queue.depth = 0
    queue.is_running = True
    return queue


@pytest.fixture
def app(complaint_repo, output_repo, cluster_repo, gateway, triage_service, work_queue):
    app = create_app()
    locks = KeyedLockRegistry()
    cluster_manager = ClusterManager(
        complaint_repo,
        cluster_repo,
        output_repo,
        AiAnalysisService(gateway, output_repo, timeout_seconds=5),
        locks=locks
    )
    app.state.intake_service = ComplaintIntakeService(complaint_repo)
    app.state.triage_service = triage_service
    app.state.cluster_service = SystemicClusterService(cluster_repo, complaint_repo, locks=locks)
    app.state.orchestrator = SystemicDetectionOrchestrator(
        complaint_repo,
        output_repo,
        gateway,
        InMemorySimilarityIndex(),
        cluster_manager,
        SpikeDetector(complaint_repo, window_hours=24, threshold=2)
    )
    app.state.work_queue = work_queue
    return app


@pytest.fixture
def client(app):
    # No context manager: the lifespan would replace the services above
    return TestClient(app)


def _seed_complaint(complaint_repo, **fields):
    complaint = make_complaint(**fields)
    complaint_repo.complaints[complaint.id] = complaint
    return complaint


def _seed_cluster(cluster_repo, **fields):
    cluster = SystemicCluster(
        tenant_id=fields.pop("tenant_id", "tenant-a"),
        title="Energy retailer back-billing",
        description="Customers back-billed beyond twelve months",
        complaint_count=3,
        avg_similarity=0.9,
        **fields
    )
    cluster_repo.clusters[cluster.id] = cluster
    return cluster


# ============================================================================
# Intake
# ============================================================================

class TestComplaintEndpoints:
    def test_submit_queues_complaint(self, client, complaint_repo, work_queue):
        response = client.post(
            "/complaints",
            json={"raw_text": "My energy retailer back-billed me for two years.", "business_id": "biz-7"},
            headers=TENANT
        )

        assert response.status_code == 202
        data = response.json()
        assert data["queued"] is True
        assert data["status"] == "submitted"
        assert data["reference_number"].startswith("CMP-")
        assert data["complaint_id"] in complaint_repo.complaints

        job = work_queue.enqueue.await_args.args[0]
        assert isinstance(job, ComplaintJob)
        assert job.complaint_id == data["complaint_id"]
        assert job.business_id == "biz-7"

    def test_blank_text_rejected(self, client, work_queue):
        response = client.post("/complaints", json={"raw_text": "   "}, headers=TENANT)

        assert response.status_code == 422
        work_queue.enqueue.assert_not_awaited()

    def test_tenant_header_required(self, client):
        response = client.post("/complaints", json={"raw_text": "text"})
        assert response.status_code == 422

    def test_get_complaint(self, client, complaint_repo):
        complaint = _seed_complaint(complaint_repo)

        response = client.get(f"/complaints/{complaint.id}", headers=TENANT)

        assert response.status_code == 200
        assert response.json()["reference_number"] == complaint.reference_number

    def test_other_tenant_gets_404(self, client, complaint_repo):
        complaint = _seed_complaint(complaint_repo)

        response = client.get(f"/complaints/{complaint.id}", headers={"X-Tenant-ID": "tenant-b"})

        assert response.status_code == 404
        assert response.json()["error_type"] == "ResourceNotFoundException"

    def test_missing_service_is_503(self, app, client):
        app.state.intake_service = None

        response = client.get("/complaints/anything", headers=TENANT)

        assert response.status_code == 503


# ============================================================================
# Triage
# ============================================================================

class TestTriageEndpoints:
    def test_run_triage(self, client, complaint_repo, work_queue):
        complaint = _seed_complaint(complaint_repo)

        response = client.post(f"/triage/{complaint.id}", headers=TENANT)

        assert response.status_code == 200
        data = response.json()
        assert data["complaint"]["status"] == "triaged"
        assert data["complaint"]["routing_destination"] is not None
        assert data["detection_queued"] is True
        assert data["total_tokens"] > 0
        work_queue.enqueue.assert_awaited_once()

    def test_run_triage_unknown_complaint(self, client):
        response = client.post("/triage/missing", headers=TENANT)
        assert response.status_code == 404

    def test_result_includes_audit_trail(self, client, complaint_repo):
        complaint = _seed_complaint(complaint_repo)
        client.post(f"/triage/{complaint.id}", headers=TENANT)

        response = client.get(f"/triage/{complaint.id}/result", headers=TENANT)

        assert response.status_code == 200
        outputs = response.json()["ai_outputs"]
        assert [o["output_type"] for o in outputs] == [
            "extraction", "classification", "risk_scoring", "summarisation"
        ]
        assert "prompt" not in outputs[0]

    def test_override(self, client, complaint_repo):
        complaint = _seed_complaint(complaint_repo)
        client.post(f"/triage/{complaint.id}", headers=TENANT)

        response = client.post(
            f"/triage/{complaint.id}/override",
            json={"changes": {"risk_level": "critical"}, "reason": "Vulnerable consumer"},
            headers=OFFICER
        )

        assert response.status_code == 200
        data = response.json()
        assert data["complaint"]["risk_level"] == "critical"
        assert data["record"]["output_type"] == "manual_override"
        assert data["record"]["is_edited"] is True
        assert data["record"]["edited_by"] == "officer-1"
        assert data["record"]["supersedes_id"] is not None

    def test_override_requires_user(self, client, complaint_repo):
        complaint = _seed_complaint(complaint_repo)

        response = client.post(
            f"/triage/{complaint.id}/override",
            json={"changes": {"risk_level": "high"}},
            headers=TENANT
        )

        assert response.status_code == 422

    def test_override_rejects_cluster_field(self, client, complaint_repo):
        complaint = _seed_complaint(complaint_repo)

        response = client.post(
            f"/triage/{complaint.id}/override",
            json={"changes": {"systemic_cluster_id": "abc"}},
            headers=OFFICER
        )

        assert response.status_code == 422
        assert response.json()["error_type"] == "ValidationException"

    def test_override_rejects_empty_changes(self, client, complaint_repo):
        complaint = _seed_complaint(complaint_repo)

        response = client.post(f"/triage/{complaint.id}/override", json={"changes": {}}, headers=OFFICER)

        assert response.status_code == 422

    def test_weights(self, client):
        response = client.get("/triage/weights", headers=TENANT)

        assert response.status_code == 200
        data = response.json()
        assert data["tenant_id"] == "tenant-a"
        assert data["weights"]["risk"] == 0.30
        assert data["has_drift"] is False

    def test_unhandled_error_is_500(self, app):
        service = MagicMock()
        service.weights_for.side_effect = RuntimeError("boom")
        app.state.triage_service = service

        response = TestClient(app, raise_server_exceptions=False).get("/triage/weights", headers=TENANT)

        assert response.status_code == 500
        assert response.json()["detail"] == "Internal server error"


# ============================================================================
# Systemic
# ============================================================================

class TestSystemicEndpoints:
    def test_list_clusters_hides_inactive_by_default(self, client, cluster_repo):
        active = _seed_cluster(cluster_repo)
        _seed_cluster(cluster_repo, is_active=False)
        _seed_cluster(cluster_repo, tenant_id="tenant-b")

        response = client.get("/systemic/clusters", headers=TENANT)

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["clusters"][0]["id"] == active.id
        assert data["clusters"][0]["state"] == "created"

        everything = client.get("/systemic/clusters?active_only=false", headers=TENANT).json()
        assert everything["total"] == 2

    def test_get_cluster_with_members(self, client, complaint_repo, cluster_repo):
        cluster = _seed_cluster(cluster_repo)
        member = _seed_complaint(complaint_repo, systemic_cluster_id=cluster.id, is_systemic_risk=True)
        _seed_complaint(complaint_repo)

        response = client.get(f"/systemic/clusters/{cluster.id}", headers=TENANT)

        assert response.status_code == 200
        assert [m["id"] for m in response.json()["members"]] == [member.id]

    def test_get_unknown_cluster(self, client):
        assert client.get("/systemic/clusters/missing", headers=TENANT).status_code == 404

    def test_acknowledge_clears_alert(self, client, cluster_repo):
        cluster = _seed_cluster(cluster_repo)
        assert client.get("/systemic/alerts", headers=TENANT).json()["total"] == 1

        response = client.post(f"/systemic/clusters/{cluster.id}/acknowledge", headers=OFFICER)

        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "acknowledged"
        assert data["acknowledged_by"] == "officer-1"
        assert client.get("/systemic/alerts", headers=TENANT).json()["total"] == 0

    def test_acknowledge_inactive_cluster_conflicts(self, client, cluster_repo):
        cluster = _seed_cluster(cluster_repo)
        assert client.post(f"/systemic/clusters/{cluster.id}/deactivate", headers=OFFICER).json()["state"] == "inactive"

        response = client.post(f"/systemic/clusters/{cluster.id}/acknowledge", headers=OFFICER)

        assert response.status_code == 409
        assert response.json()["error_type"] == "DomainException"

    def test_spike(self, client, complaint_repo):
        _seed_complaint(complaint_repo)
        _seed_complaint(complaint_repo)
        _seed_complaint(complaint_repo, tenant_id="tenant-b")

        response = client.get("/systemic/spike", headers=TENANT)

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 2
        assert data["threshold"] == 2
        assert data["is_spike"] is True


# ============================================================================
# Health, root and middleware
# ============================================================================

class TestServiceEndpoints:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["checks"]["work_queue"] == "running"
        assert data["checks"]["similarity_index"] == "not_configured"

    def test_health_degraded_without_queue(self, app, client):
        app.state.work_queue = None

        assert client.get("/health").json()["status"] == "degraded"

    def test_root(self, client):
        data = client.get("/").json()
        assert set(data["modules"]) == {"intake", "triage", "systemic"}

    def test_correlation_id_echoed(self, client):
        response = client.get("/health", headers={"X-Correlation-ID": "corr-123"})

        assert response.headers["X-Correlation-ID"] == "corr-123"
        assert response.headers["X-Response-Time"].endswith("s")

    def test_correlation_id_generated(self, client):
        assert client.get("/").headers["X-Correlation-ID"]
