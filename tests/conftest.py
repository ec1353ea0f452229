"""Pytest configuration and fixtures."""

import os

# Settings are read once at import time, before any test module is collected
os.environ["ENVIRONMENT"] = "test"
os.environ["MOCK_LLM"] = "true"
os.environ["LLM_PROVIDER"] = "mock"
os.environ["VECTOR_STORE"] = "memory"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["EMBEDDING_DIMENSION"] = "8"
os.environ["TENANT_CONFIG_PATH"] = "tests/does-not-exist.yaml"
os.environ["OPENAI_API_KEY"] = "test-openai-key"
# Provider keys from the developer shell must not leak into tests
for _key in ("ANTHROPIC_API_KEY", "ZAI_API_KEY"):
    os.environ.pop(_key, None)

import pytest  # noqa: E402

from complaint_triage.triage.application.services import AiAnalysisService, TriagePipeline, TriageService  # noqa: E402
from complaint_triage.triage.domain.value_objects import PriorityWeights  # noqa: E402
from tests.fakes import (  # noqa: E402
    InMemoryAiOutputRepository,
    InMemoryClusterRepository,
    InMemoryComplaintRepository,
    ScriptedGateway,
)


@pytest.fixture
def complaint_repo():
    return InMemoryComplaintRepository()


@pytest.fixture
def output_repo():
    return InMemoryAiOutputRepository()


@pytest.fixture
def cluster_repo():
    return InMemoryClusterRepository()


@pytest.fixture
def gateway():
    return ScriptedGateway()


@pytest.fixture
def analysis_service(gateway, output_repo):
    return AiAnalysisService(gateway, output_repo, timeout_seconds=5, temperature=0.1, max_tokens=512)


@pytest.fixture
def triage_service(complaint_repo, output_repo, analysis_service):
    return TriageService(
        complaint_repository=complaint_repo,
        output_repository=output_repo,
        pipeline=TriagePipeline(analysis_service),
        weights_provider=lambda tenant_id: PriorityWeights()
    )
