import copy
import hashlib

import pytest
from qdrant_client import QdrantClient

from src.adapters.document_store import DocumentStore

VECTOR_SIZE = 384

VALID_CARD = {
    "title": "Netflix Ad Tier Hits 70M Monthly Users",
    "summary": (
        "Netflix reported its ad-supported tier reached 70M monthly active users, up 40% in six months. "
        "What this means for CMOs is a scaled premium CTV channel ready for Q1 budgets."
    ),
    "signals": ["70M monthly active users", "40% growth in six months", "$2.1B projected ad revenue"],
    "moves": [
        "Your next move: shift 10% of linear TV budget into Netflix CTV tests",
        "Negotiate first-party data clean room access",
        "Benchmark CPMs against Hulu and Peacock",
    ],
    "pillar": "media_trends",
    "type": "brief",
    "source": "Adweek",
    "sourceTier": 2,
    "sourceCount": 8,
}


class FakeEncoder:
    """Deterministic stand-in for the fastembed model: a vector derived from the text hash."""

    def embed(self, texts):
        for text in texts:
            digest = hashlib.sha256(text.encode("utf-8")).digest()
            yield [(digest[i % len(digest)] + 1) / 256 for i in range(VECTOR_SIZE)]


class FixedRng:
    """random.Random look-alike: random() and randint() return fixed values."""

    def __init__(self, value: float = 0.1, jitter: int = 0):
        self.value = value
        self.jitter = jitter

    def random(self):
        return self.value

    def randint(self, a, b):
        return min(max(self.jitter, a), b)


@pytest.fixture
def store():
    return DocumentStore(client=QdrantClient(location=":memory:"), encoder=FakeEncoder(), vector_size=VECTOR_SIZE)


@pytest.fixture
def make_card():
    """Builder for a valid raw card; keyword overrides replace fields, a value of None drops the field."""

    def _make(**overrides):
        card = copy.deepcopy(VALID_CARD)
        for key, value in overrides.items():
            if value is None:
                card.pop(key, None)
            else:
                card[key] = value
        return card

    return _make


@pytest.fixture
def fixed_rng():
    return FixedRng
