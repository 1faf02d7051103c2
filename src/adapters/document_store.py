"""
This module defines the DocumentStore class, the adapter between the card engine and Qdrant.
Cards and rejection-log entries are stored as Qdrant points: the payload is the document, the vector is a Fastembed
embedding of its title and summary, so the same collections can back semantic search later on.

The core only relies on five operations:
- add: write one document, returns its id
- batch_write: write several documents in a single upsert
- query: equality / range filters, ordering and a limit
- get: fetch one document by id
- update: partial merge into an existing document

- Qdrant: payload filtering with range conditions gives us the keyed document collection we need, and it runs in-memory for tests.
- Fastembed: keeps embedding local and free for short texts like card titles.
"""

import os
import uuid
from datetime import datetime
from functools import lru_cache
from typing import Any, Dict, List, Optional, Sequence, Tuple

from dotenv import load_dotenv
load_dotenv()
from fastembed import TextEmbedding
from qdrant_client import QdrantClient, models

from utils.logging_setup import get_logger
logger = get_logger(__name__, log_file="adapters.log")

QDRANT_LOCATION = os.getenv("QDRANT_LOCATION")  # ":memory:" or a URL, overrides host/port
QDRANT_HOST = os.getenv("QDRANT_HOST", "localhost")
QDRANT_PORT = int(os.getenv("QDRANT_PORT", 6333))
VECTOR_SIZE = 384  # BAAI/bge-small-en-v1.5
SCROLL_PAGE_SIZE = 256

_RANGE_OPS = {">=": "gte", ">": "gt", "<=": "lte", "<": "lt"}

Where = Sequence[Tuple[str, str, Any]]
OrderBy = Sequence[Tuple[str, bool]]


def _encode(value: Any) -> Any:
    """Datetimes are stored as epoch seconds so they can be range-filtered and ordered."""
    if isinstance(value, datetime):
        return value.timestamp()
    if isinstance(value, dict):
        return {k: _encode(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(v) for v in value]
    return value


def _condition(field: str, op: str, value: Any) -> models.FieldCondition:
    value = _encode(value)
    if op == "==":
        return models.FieldCondition(key=field, match=models.MatchValue(value=value))
    if op in _RANGE_OPS:
        return models.FieldCondition(key=field, range=models.Range(**{_RANGE_OPS[op]: value}))
    raise ValueError(f"Unsupported query operator: {op!r}")


def _vector_text(doc: Dict[str, Any]) -> str:
    source = doc.get("card") if isinstance(doc.get("card"), dict) else doc
    return f"{source.get('title') or ''} {source.get('summary') or ''}".strip()


def _is_point_id(doc_id: Any) -> bool:
    try:
        uuid.UUID(str(doc_id))
    except ValueError:
        return False
    return True


class DocumentStore:
    def __init__(self, client: Optional[QdrantClient] = None, encoder=None, vector_size: int = VECTOR_SIZE):
        self.client = client or self._build_client()
        self._encoder = encoder
        self.vector_size = vector_size
        self._ready = set()

    @staticmethod
    def _build_client() -> QdrantClient:
        if QDRANT_LOCATION:
            return QdrantClient(location=QDRANT_LOCATION)
        return QdrantClient(host=QDRANT_HOST, port=QDRANT_PORT)

    @property
    def encoder(self):
        if self._encoder is None:
            self._encoder = TextEmbedding()  # Defaults to BAAI/bge-small-en-v1.5
        return self._encoder

    def _ensure_collection(self, collection: str):
        """Initialize the collection if it doesn't exist."""
        if collection in self._ready:
            return
        if not self.client.collection_exists(collection):
            self.client.create_collection(
                collection_name=collection,
                vectors_config=models.VectorParams(
                    size=self.vector_size,
                    distance=models.Distance.COSINE
                )
            )
            logger.info(f"🗃️ Created collection '{collection}'")
        self._ready.add(collection)

    def _embed(self, docs: Sequence[Dict[str, Any]]) -> List[List[float]]:
        vectors = self.encoder.embed([_vector_text(doc) for doc in docs])
        return [[float(x) for x in vector] for vector in vectors]

    def ping(self) -> int:
        """Round-trip to the server; returns how many collections exist."""
        return len(self.client.get_collections().collections)

    def add(self, collection: str, doc: Dict[str, Any]) -> str:
        return self.batch_write(collection, [doc])[0]

    def batch_write(self, collection: str, docs: Sequence[Dict[str, Any]], ids: Optional[Sequence[str]] = None) -> List[str]:
        """
        The 'Write' path: all documents go out in one upsert call.
        Ids are generated unless the caller pre-allocated them.
        """
        if not docs:
            return []
        self._ensure_collection(collection)
        ids = list(ids) if ids is not None else [str(uuid.uuid4()) for _ in docs]
        vectors = self._embed(docs)

        self.client.upsert(
            collection_name=collection,
            points=[
                models.PointStruct(id=doc_id, vector=vector, payload=_encode(dict(doc)))
                for doc_id, vector, doc in zip(ids, vectors, docs)
            ]
        )
        logger.debug(f"batch_write: Upserted {len(ids)} documents into '{collection}'")
        return ids

    def query(self, collection: str, where: Where = (), order_by: OrderBy = (), limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Filtered read. Qdrant orders by a single payload key only, so ordering is applied
        client-side after scrolling every match; collections here stay small.
        """
        self._ensure_collection(collection)
        scroll_filter = models.Filter(must=[_condition(*clause) for clause in where]) if where else None

        docs: List[Dict[str, Any]] = []
        offset = None
        while True:
            points, offset = self.client.scroll(
                collection_name=collection,
                scroll_filter=scroll_filter,
                with_payload=True,
                with_vectors=False,
                limit=SCROLL_PAGE_SIZE,
                offset=offset,
            )
            docs.extend({**(p.payload or {}), "id": str(p.id)} for p in points)
            if offset is None:
                break

        for field, descending in reversed(list(order_by)):
            docs.sort(key=lambda d, f=field: (d.get(f) is not None, d.get(f)), reverse=descending)

        logger.debug(f"query: '{collection}' where={list(where)} returned {len(docs)} documents")
        return docs[:limit] if limit is not None else docs

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Retrieves one document, or None when the id is unknown or not a valid point id."""
        if not _is_point_id(doc_id):
            return None
        self._ensure_collection(collection)
        result = self.client.retrieve(collection_name=collection, ids=[str(doc_id)], with_payload=True)
        if not result:
            return None
        return {**(result[0].payload or {}), "id": str(result[0].id)}

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]):
        """
        The 'Update' path: Only modifies the given keys of the document.
        """
        self._ensure_collection(collection)
        self.client.set_payload(
            collection_name=collection,
            payload=_encode(dict(fields)),
            points=[str(doc_id)]
        )
        logger.debug(f"update: Patched '{collection}/{doc_id}' with keys {sorted(fields)}")


@lru_cache(maxsize=1)
def get_document_store() -> DocumentStore:
    """Shared store for the API and scripts, built from the environment on first use."""
    return DocumentStore()

