"""
Similarity Index Infrastructure
===============================

Milvus similarity index for complaint embeddings, plus an in-memory
implementation for tests and local runs.

One embedding per complaint, tenant-scoped. A similarity query takes
(tenant_id, exclude_id, threshold, recency_window, limit) and returns
(complaint_id, similarity) pairs ranked by similarity, highest first.
"""

import asyncio
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from pymilvus import DataType, MilvusClient

from complaint_triage.config import settings
from complaint_triage.core import VectorStoreException
from complaint_triage.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


@dataclass
class EmbeddingRecord:
    """Embedding of one complaint."""
    complaint_id: str
    tenant_id: str
    embedding: List[float]
    model: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class SimilarityMatch:
    """A neighbour returned by a similarity query."""
    complaint_id: str
    similarity: float


def cosine_similarity(a: List[float], b: List[float]) -> float:
    if len(a) != len(b):
        raise ValueError(f"Vector dimensions differ: {len(a)} != {len(b)}")
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class ISimilarityIndex(ABC):
    """
    Interface for the similarity index.

    Following Interface Segregation and Dependency Inversion principles.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backing store."""

    @abstractmethod
    async def upsert(self, record: EmbeddingRecord) -> None:
        """Store a complaint's embedding, replacing any previous one."""

    @abstractmethod
    async def find_similar(
        self,
        tenant_id: str,
        exclude_id: str,
        threshold: float,
        recency_window: timedelta,
        limit: int,
        now: Optional[datetime] = None
    ) -> List[SimilarityMatch]:
        """
        Neighbours of ``exclude_id`` with similarity strictly above ``threshold``.

        Only complaints of ``tenant_id`` created within ``recency_window``
        are considered. A query for a complaint stored under another tenant
        returns no matches.
        """


class InMemorySimilarityIndex(ISimilarityIndex):
    """Brute-force cosine index held in process memory."""

    def __init__(self):
        self._records: Dict[str, EmbeddingRecord] = {}

    async def initialize(self) -> None:
        return None

    async def upsert(self, record: EmbeddingRecord) -> None:
        self._records[record.complaint_id] = record

    async def get(self, complaint_id: str) -> Optional[EmbeddingRecord]:
        return self._records.get(complaint_id)

    def __len__(self) -> int:
        return len(self._records)

    async def find_similar(
        self,
        tenant_id: str,
        exclude_id: str,
        threshold: float,
        recency_window: timedelta,
        limit: int,
        now: Optional[datetime] = None
    ) -> List[SimilarityMatch]:
        target = self._records.get(exclude_id)
        if target is None:
            return []
        if target.tenant_id != tenant_id:
            logger.warning(
                "Similarity query for complaint of another tenant",
                extra={"tenant_id": tenant_id, "complaint_id": exclude_id}
            )
            return []

        cutoff = (now or datetime.now(timezone.utc)) - recency_window
        matches = []
        for record in self._records.values():
            if record.complaint_id == exclude_id or record.tenant_id != tenant_id:
                continue
            if record.created_at <= cutoff:
                continue
            similarity = cosine_similarity(target.embedding, record.embedding)
            if similarity > threshold:
                matches.append(SimilarityMatch(record.complaint_id, round(similarity, 6)))

        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches[:limit]


class MilvusSimilarityIndex(ISimilarityIndex):
    """
    Zilliz Cloud (Managed Milvus) implementation of the similarity index.

    The collection is keyed by complaint id, so an upsert replaces the
    previous embedding. Vectors are indexed for COSINE similarity.
    The MilvusClient is synchronous, so calls run in a worker thread.
    """

    def __init__(
        self,
        collection_name: Optional[str] = None,
        uri: Optional[str] = None,
        client: Optional[MilvusClient] = None
    ):
        self._collection_name = collection_name or settings.milvus_collection_name
        self._dimension = settings.embedding_dimension
        self._uri = uri or settings.zilliz_uri
        self._api_key = settings.zilliz_api_key
        self._client: Optional[MilvusClient] = client
        self._initialized = False

    def _create_collection(self) -> None:
        schema = MilvusClient.create_schema(auto_id=False, enable_dynamic_field=False)
        schema.add_field(field_name="complaint_id", datatype=DataType.VARCHAR, is_primary=True, max_length=64)
        schema.add_field(field_name="tenant_id", datatype=DataType.VARCHAR, max_length=128)
        schema.add_field(field_name="model", datatype=DataType.VARCHAR, max_length=128)
        schema.add_field(field_name="created_at", datatype=DataType.INT64)
        schema.add_field(field_name="vector", datatype=DataType.FLOAT_VECTOR, dim=self._dimension)

        index_params = self._client.prepare_index_params()
        index_params.add_index(field_name="vector", index_type="AUTOINDEX", metric_type="COSINE")

        self._client.create_collection(
            collection_name=self._collection_name,
            schema=schema,
            index_params=index_params
        )

    async def initialize(self) -> None:
        """Initialize Zilliz Cloud client and collection."""
        if self._initialized:
            return

        if self._client is None:
            if not self._uri:
                raise VectorStoreException("ZILLIZ_URI not configured")
            try:
                self._client = MilvusClient(uri=self._uri, token=self._api_key)
            except Exception as e:
                raise VectorStoreException(f"Failed to connect to Milvus: {str(e)}")

        try:
            exists = await asyncio.to_thread(self._client.has_collection, self._collection_name)
            if not exists:
                await asyncio.to_thread(self._create_collection)
                logger.info(
                    "Created similarity collection",
                    extra={"collection": self._collection_name, "dimension": self._dimension}
                )
        except Exception as e:
            raise VectorStoreException(f"Failed to initialize Milvus: {str(e)}")

        self._initialized = True

    async def upsert(self, record: EmbeddingRecord) -> None:
        """
        Upsert a complaint embedding.

        Raises:
            VectorStoreException: If the upsert fails
        """
        if not self._initialized:
            await self.initialize()

        data = [{
            "complaint_id": record.complaint_id,
            "tenant_id": record.tenant_id,
            "model": record.model,
            "created_at": int(record.created_at.timestamp()),
            "vector": record.embedding,
        }]

        try:
            await asyncio.to_thread(
                self._client.upsert,
                collection_name=self._collection_name,
                data=data
            )
        except Exception as e:
            raise VectorStoreException(f"Failed to upsert embedding: {str(e)}")

    async def find_similar(
        self,
        tenant_id: str,
        exclude_id: str,
        threshold: float,
        recency_window: timedelta,
        limit: int,
        now: Optional[datetime] = None
    ) -> List[SimilarityMatch]:
        """
        Raises:
            VectorStoreException: If the query fails
        """
        if not self._initialized:
            await self.initialize()

        try:
            rows = await asyncio.to_thread(
                self._client.get,
                collection_name=self._collection_name,
                ids=[exclude_id],
                output_fields=["tenant_id", "vector"]
            )
        except Exception as e:
            raise VectorStoreException(f"Failed to load embedding: {str(e)}")

        if not rows:
            return []
        target = rows[0]
        if target.get("tenant_id") != tenant_id:
            logger.warning(
                "Similarity query for complaint of another tenant",
                extra={"tenant_id": tenant_id, "complaint_id": exclude_id}
            )
            return []

        cutoff = int(((now or datetime.now(timezone.utc)) - recency_window).timestamp())
        expr = (
            f'tenant_id == "{_escape(tenant_id)}" '
            f'and complaint_id != "{_escape(exclude_id)}" '
            f"and created_at > {cutoff}"
        )

        try:
            results = await asyncio.to_thread(
                self._client.search,
                collection_name=self._collection_name,
                data=[list(target["vector"])],
                filter=expr,
                limit=limit,
                output_fields=["complaint_id"],
                search_params={"metric_type": "COSINE"}
            )
        except Exception as e:
            raise VectorStoreException(f"Similarity search failed: {str(e)}")

        matches = []
        if results and len(results) > 0:
            for hit in results[0]:
                # COSINE metric reports similarity as "distance"
                similarity = float(hit["distance"])
                if similarity > threshold:
                    matches.append(SimilarityMatch(str(hit["id"]), round(similarity, 6)))

        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches[:limit]


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def create_similarity_index() -> ISimilarityIndex:
    """Select the index backend from settings."""
    if settings.vector_store == "memory":
        return InMemorySimilarityIndex()
    return MilvusSimilarityIndex()
