"""
Near-duplicate detection for cards within a pillar.

A candidate is a duplicate when a card published in the same pillar during the last week shares its
primary topic (a known brand, else the first proper-noun-looking word) and more than half of its long title words.
The check is advisory: if the store cannot be read, the candidate is treated as new.
"""

import os
import re
from datetime import datetime, timedelta, timezone
from typing import Optional

from dotenv import load_dotenv
load_dotenv()

from src.core.entities import utcnow

from utils.logging_setup import get_logger
logger = get_logger(__name__, log_file="core.log")

CARDS_COLLECTION = os.getenv("CARDS_COLLECTION", "discover_cards")
DEDUP_THRESHOLD = float(os.getenv("DEDUP_THRESHOLD", 0.5))
DEDUP_WINDOW_DAYS = 7
DEDUP_SCAN_LIMIT = 50

KNOWN_BRANDS = (
    "Netflix", "OpenAI", "Google", "Meta", "Amazon", "Apple", "Microsoft", "Hershey",
    "Walmart", "Target", "Nike", "Disney", "Coca-Cola", "P&G", "Unilever",
)

_PROPER_NOUN = re.compile(r"([A-Z][a-z]+(?:'s)?)")
_NON_ALNUM = re.compile(r"[^a-z0-9\s]")


def extract_primary_topic(title: str) -> str:
    """Coarse dedup key: known brand, else first capitalised word, else the first 20 chars."""
    lowered = title.lower()
    for brand in KNOWN_BRANDS:
        if brand.lower() in lowered:
            return brand.lower()

    match = _PROPER_NOUN.search(title)
    return match.group(1).lower() if match else title[:20].lower()


def _long_words(title: str) -> set:
    normalized = _NON_ALNUM.sub("", title.lower())
    return {word for word in normalized.split(" ") if len(word) > 3}


def title_similarity(a: str, b: str) -> float:
    """Share of long words in common, relative to the larger of the two word sets."""
    words_a, words_b = _long_words(a), _long_words(b)
    denominator = max(len(words_a), len(words_b))
    if denominator == 0:
        return 0.0
    return len(words_a & words_b) / denominator


def _as_datetime(value) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return None


class Deduplicator:
    def __init__(
        self,
        store,
        collection: str = CARDS_COLLECTION,
        window_days: int = DEDUP_WINDOW_DAYS,
        scan_limit: int = DEDUP_SCAN_LIMIT,
        threshold: float = DEDUP_THRESHOLD,
    ):
        self.store = store
        self.collection = collection
        self.window = timedelta(days=window_days)
        self.scan_limit = scan_limit
        self.threshold = threshold

    def is_duplicate(self, title: str, pillar: str, now: Optional[datetime] = None) -> bool:
        """
        Compare the candidate against the latest cards in the same pillar.

        Cards older than the window are skipped; the first card with the same primary topic and a
        title similarity above the threshold makes the candidate a duplicate.
        """
        try:
            recent = self.store.query(
                self.collection,
                where=[("pillar", "==", pillar)],
                order_by=[("publishedAt", True)],
                limit=self.scan_limit,
            )
        except Exception as e:
            logger.warning(f"⚠️ Deduplication check failed, proceeding anyway: {e}")
            return False

        cutoff = (now or utcnow()) - self.window
        for doc in recent:
            published_at = _as_datetime(doc.get("publishedAt"))
            if published_at and published_at < cutoff:
                continue
            if self.similar(title, doc.get("title") or ""):
                return True

        return False

    def similar(self, title: str, existing_title: str) -> bool:
        """Same primary topic and a title overlap above the threshold."""
        topic = extract_primary_topic(title)
        if extract_primary_topic(existing_title) != topic:
            return False

        logger.debug(f"[DEDUPE] Same topic detected: '{topic}' - checking similarity...")
        similarity = title_similarity(title, existing_title)
        if similarity > self.threshold:
            logger.info(
                f"🚫 [DEDUPE] Duplicate found: '{title}' similar to '{existing_title}' "
                f"({similarity:.0%} overlap)"
            )
            return True
        return False

    def has_content_hash(self, content_hash: str) -> bool:
        """Exact-equality check on the stored contentHash."""
        try:
            matches = self.store.query(
                self.collection, where=[("contentHash", "==", content_hash)], limit=1
            )
        except Exception as e:
            logger.warning(f"⚠️ Content hash lookup failed, proceeding anyway: {e}")
            return False
        return bool(matches)
