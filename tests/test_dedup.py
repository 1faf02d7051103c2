"""Tests for near-duplicate detection in src.core.dedup."""

from datetime import timedelta

from src.core.dedup import CARDS_COLLECTION, Deduplicator, extract_primary_topic, title_similarity
from src.core.entities import utcnow
from src.core.validation import generate_content_hash


def _store_card(store, title, pillar="media_trends", age=timedelta(0), **extra):
    return store.add(CARDS_COLLECTION, {"title": title, "pillar": pillar, "publishedAt": utcnow() - age, **extra})


class TestPrimaryTopic:
    def test_known_brand_wins(self):
        assert extract_primary_topic("Why Retail Media Is Eating Walmart Budgets") == "walmart"

    def test_hyphenated_brand(self):
        assert extract_primary_topic("Coca-Cola Moves Spend to Creators") == "coca-cola"

    def test_first_capitalised_word(self):
        assert extract_primary_topic("Pinterest Launches Shoppable Pins") == "pinterest"

    def test_falls_back_to_title_prefix(self):
        assert extract_primary_topic("retail media keeps growing this year") == "retail media keeps g"


class TestTitleSimilarity:
    def test_identical_titles(self):
        assert title_similarity("Netflix Ad Tier Hits 70M Users", "Netflix Ad Tier Hits 70M Users") == 1.0

    def test_only_long_words_count(self):
        # long words: netflix, tier, hits, users / netflix, tier, grows, fast
        assert title_similarity("Netflix Ad Tier Hits 70M Users", "Netflix Ad Tier Grows Fast") == 0.5

    def test_empty_titles(self):
        assert title_similarity("", "") == 0.0


class TestIsDuplicate:
    def test_same_topic_similar_title_is_duplicate(self, store):
        _store_card(store, "Netflix Ad Tier Hits 70M Monthly Users")
        dedup = Deduplicator(store)
        assert dedup.is_duplicate("Netflix Ad Tier Reaches 70M Monthly Users", "media_trends")

    def test_other_pillar_is_not_compared(self, store):
        _store_card(store, "Netflix Ad Tier Hits 70M Monthly Users", pillar="ai_strategy")
        assert not Deduplicator(store).is_duplicate("Netflix Ad Tier Reaches 70M Monthly Users", "media_trends")

    def test_cards_outside_window_are_ignored(self, store):
        _store_card(store, "Netflix Ad Tier Hits 70M Monthly Users", age=timedelta(days=8))
        assert not Deduplicator(store).is_duplicate("Netflix Ad Tier Reaches 70M Monthly Users", "media_trends")

    def test_different_topic_is_not_duplicate(self, store):
        _store_card(store, "Netflix Ad Tier Hits 70M Monthly Users")
        assert not Deduplicator(store).is_duplicate("Amazon Ad Tier Hits 70M Monthly Users", "media_trends")

    def test_threshold_is_strict(self, store):
        _store_card(store, "Netflix Ad Tier Hits 70M Users")
        dedup = Deduplicator(store, threshold=0.5)
        assert not dedup.is_duplicate("Netflix Ad Tier Grows Fast", "media_trends")

    def test_similar_compares_two_titles_without_the_store(self):
        dedup = Deduplicator(store=None)
        assert dedup.similar("Netflix Ad Tier Reaches 70M Monthly Users", "Netflix Ad Tier Hits 70M Monthly Users")
        assert not dedup.similar("Amazon Ad Tier Hits 70M Monthly Users", "Netflix Ad Tier Hits 70M Monthly Users")
        assert not dedup.similar("Netflix Earnings Beat Forecasts", "Netflix Ad Tier Hits 70M Monthly Users")

    def test_store_failure_fails_open(self):
        class BrokenStore:
            def query(self, *args, **kwargs):
                raise ConnectionError("qdrant unreachable")

        dedup = Deduplicator(BrokenStore())
        assert not dedup.is_duplicate("Netflix Ad Tier Hits 70M Monthly Users", "media_trends")
        assert not dedup.has_content_hash("abc")


class TestContentHash:
    def test_known_hash_is_found(self, store):
        content_hash = generate_content_hash("some title some summary")
        _store_card(store, "Netflix Ad Tier Hits 70M Monthly Users", contentHash=content_hash)
        dedup = Deduplicator(store)
        assert dedup.has_content_hash(content_hash)
        assert not dedup.has_content_hash(generate_content_hash("other"))
