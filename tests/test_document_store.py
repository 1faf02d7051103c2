"""Tests for the Qdrant-backed DocumentStore, run against an in-memory Qdrant."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

COLLECTION = "test_cards"


def _seed(store):
    base = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
    docs = [
        {"title": "Alpha", "pillar": "ai_strategy", "priority": 70, "publishedAt": base},
        {"title": "Bravo", "pillar": "ai_strategy", "priority": 90, "publishedAt": base},
        {"title": "Charlie", "pillar": "media_trends", "priority": 99, "publishedAt": base - timedelta(days=2)},
        {"title": "Delta", "pillar": "ai_strategy", "priority": 60, "publishedAt": base + timedelta(hours=1)},
    ]
    store.batch_write(COLLECTION, docs)
    return base


class TestWrites:
    def test_add_then_get(self, store):
        doc_id = store.add(COLLECTION, {"title": "Alpha", "pillar": "ai_strategy"})
        doc = store.get(COLLECTION, doc_id)
        assert doc == {"title": "Alpha", "pillar": "ai_strategy", "id": doc_id}

    def test_datetimes_are_stored_as_epoch_seconds(self, store):
        published = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
        doc_id = store.add(COLLECTION, {"title": "Alpha", "publishedAt": published})
        assert store.get(COLLECTION, doc_id)["publishedAt"] == published.timestamp()

    def test_batch_write_keeps_preallocated_ids(self, store):
        ids = [str(uuid.uuid4()), str(uuid.uuid4())]
        assert store.batch_write(COLLECTION, [{"title": "A"}, {"title": "B"}], ids=ids) == ids
        assert store.get(COLLECTION, ids[1])["title"] == "B"

    def test_batch_write_of_nothing(self, store):
        assert store.batch_write(COLLECTION, []) == []

    def test_update_merges_fields(self, store):
        doc_id = store.add(COLLECTION, {"title": "Alpha", "linkedinPosted": False})
        store.update(COLLECTION, doc_id, {"linkedinPosted": True, "linkedinPostUrl": "https://lnkd.in/x"})
        doc = store.get(COLLECTION, doc_id)
        assert doc["title"] == "Alpha"
        assert doc["linkedinPosted"] is True
        assert doc["linkedinPostUrl"] == "https://lnkd.in/x"


class TestGet:
    def test_unknown_id(self, store):
        store.add(COLLECTION, {"title": "Alpha"})
        assert store.get(COLLECTION, str(uuid.uuid4())) is None

    def test_malformed_id(self, store):
        assert store.get(COLLECTION, "not-a-card-id") is None


class TestQuery:
    def test_equality_filter(self, store):
        _seed(store)
        titles = {d["title"] for d in store.query(COLLECTION, where=[("pillar", "==", "ai_strategy")])}
        assert titles == {"Alpha", "Bravo", "Delta"}

    def test_range_filter_on_datetimes(self, store):
        base = _seed(store)
        docs = store.query(COLLECTION, where=[("publishedAt", ">=", base - timedelta(hours=1))])
        assert {d["title"] for d in docs} == {"Alpha", "Bravo", "Delta"}

    def test_multi_key_ordering_and_limit(self, store):
        _seed(store)
        docs = store.query(COLLECTION, order_by=[("publishedAt", True), ("priority", True)], limit=3)
        assert [d["title"] for d in docs] == ["Delta", "Bravo", "Alpha"]

    def test_every_result_carries_its_id(self, store):
        _seed(store)
        assert all(d["id"] for d in store.query(COLLECTION))

    def test_unknown_operator(self, store):
        with pytest.raises(ValueError):
            store.query(COLLECTION, where=[("priority", "!=", 1)])

    def test_empty_collection(self, store):
        assert store.query("never_written") == []


def test_ping_reports_collections(store):
    store.add(COLLECTION, {"title": "Alpha"})
    assert store.ping() >= 1
