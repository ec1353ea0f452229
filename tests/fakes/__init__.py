"""In-memory stand-ins for repositories and the model gateway."""

from tests.fakes.gateway import ScriptedGateway, stage_of
from tests.fakes.repositories import (
    InMemoryAiOutputRepository,
    InMemoryClusterRepository,
    InMemoryComplaintRepository,
    make_complaint,
)

__all__ = [
    "InMemoryAiOutputRepository",
    "InMemoryClusterRepository",
    "InMemoryComplaintRepository",
    "ScriptedGateway",
    "make_complaint",
    "stage_of",
]
