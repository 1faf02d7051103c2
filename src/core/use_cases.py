"""
This module contains the externally-triggered use cases around stored cards.

- store_cards: accept cards produced outside the pipeline (the n8n workflow), validate, dedupe, score and batch-write them
- get_top_unpublished: pick the card to publish next from the last 24 hours
- mark_published: record that a card went out on LinkedIn
- list_cards: the Discover feed read, newest first

The scheduled generation run lives in src.core.ingestion.
"""

import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from src.core.dedup import CARDS_COLLECTION, Deduplicator
from src.core.entities import (
    Card,
    RejectedCard,
    StoredCardInfo,
    StoreResult,
    ValidationIssue,
    ValidationResult,
    authored_fields,
    utcnow,
)
from src.core.errors import CardNotFoundError, NoCardsAvailableError
from src.core.ingestion import REJECTED_COLLECTION
from src.core.priority import calculate_priority
from src.core.validation import card_content_hash, validate_card

from utils.logging_setup import get_logger
logger = get_logger(__name__, log_file="core.log")

PUBLISHING_WINDOW = timedelta(hours=24)
PUBLISHING_CANDIDATES = 5


def _source_count(card: Dict[str, Any]) -> int:
    value = card.get("sourceCount")
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value >= 1:
        return int(value)
    return 1


def _reject(rejected: List[RejectedCard], card: Dict[str, Any], validation: ValidationResult, now: datetime):
    logger.error(f"❌ Card REJECTED: '{card.get('title')}' (score: {validation.score}) issues={validation.issues}")
    rejected.append(RejectedCard(card=card, validation=validation, rejected_at=now, source="n8n"))


def store_cards(store, cards: Sequence[Dict[str, Any]], deduplicator: Optional[Deduplicator] = None,
                now: Optional[datetime] = None) -> StoreResult:
    """
    Core use case: store a batch of externally generated cards.
    1. Validate every card against the editorial rules
    2. Drop exact repeats (content hash) and near-duplicates of recent cards or of earlier cards in the batch
    3. Enrich the survivors from their authored fields only (id, timestamps, hash, score, computed priority)
    4. Write them in one batch; rejected cards go to the rejection log
    """
    now = now or utcnow()
    deduplicator = deduplicator or Deduplicator(store)
    logger.info(f"📥 Received {len(cards)} cards from n8n workflow")

    accepted: List[Card] = []
    rejected: List[RejectedCard] = []
    seen_hashes = set()
    duplicates = 0

    for raw in cards:
        raw = raw if isinstance(raw, dict) else {}
        validation = validate_card(raw)
        if not validation.is_valid:
            _reject(rejected, raw, validation, now)
            continue

        content_hash = card_content_hash(raw)
        in_batch = content_hash in seen_hashes or any(
            c.pillar == raw["pillar"] and deduplicator.similar(raw["title"], c.title) for c in accepted
        )
        if in_batch or deduplicator.has_content_hash(content_hash) \
                or deduplicator.is_duplicate(raw["title"], raw["pillar"], now=now):
            logger.info(f"⏭️ Skipping duplicate card: '{raw['title']}'")
            duplicates += 1
            continue
        seen_hashes.add(content_hash)

        card_type = raw.get("type") or "brief"
        try:
            card = Card.model_validate({
                **authored_fields(raw),
                "id": str(uuid.uuid4()),
                "type": card_type,
                "priority": calculate_priority(_source_count(raw), raw["pillar"], card_type),
                "publishedAt": now,
                "createdAt": now,
                "contentSource": "n8n",
                "validationScore": validation.score,
                "contentHash": content_hash,
                "linkedinPosted": False,
            })
        except ValidationError as e:
            # passes the editorial rules but not the stored schema (e.g. a fractional tier)
            problems = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
            _reject(rejected, raw, ValidationResult(is_valid=False, score=validation.score, issues=problems,
                                                    warnings=validation.warnings), now)
            continue

        accepted.append(card)
        logger.info(f"✅ [{card.pillar}] '{card.title}' (score: {validation.score}, priority: {card.priority})")
        if validation.warnings:
            logger.warning(f"⚠️ Warnings for '{card.title}': {validation.warnings}")

    if accepted:
        store.batch_write(CARDS_COLLECTION, [c.to_document() for c in accepted], ids=[c.id for c in accepted])
        logger.info(f"📊 Committed {len(accepted)} cards to {CARDS_COLLECTION}")
    else:
        logger.warning("⚠️ No valid cards to commit - all were rejected or duplicates")

    if rejected:
        store.batch_write(REJECTED_COLLECTION, [r.to_document() for r in rejected])
        logger.info(f"📋 Logged {len(rejected)} rejected cards to {REJECTED_COLLECTION}")

    return StoreResult(
        stored=len(accepted),
        rejected=len(rejected),
        duplicates=duplicates,
        timestamp=now,
        validation_issues=[
            ValidationIssue(title=r.card.get("title"), issues=r.validation.issues, score=r.validation.score)
            for r in rejected
        ],
        stored_cards=[
            StoredCardInfo(id=c.id, title=c.title, pillar=c.pillar, priority=c.priority,
                           source=c.source, validation_score=c.validation_score)
            for c in accepted
        ],
    )


def get_top_unpublished(store, now: Optional[datetime] = None, candidates: int = PUBLISHING_CANDIDATES) -> Card:
    """
    Highest-ranked card from the last 24 hours that has not been posted yet.
    Raises NoCardsAvailableError telling apart an empty window from one where everything was posted.
    """
    cutoff = (now or utcnow()) - PUBLISHING_WINDOW
    logger.info(f"[Publishing] Querying for top card published after {cutoff.isoformat()}")

    docs = store.query(
        CARDS_COLLECTION,
        where=[("publishedAt", ">=", cutoff)],
        order_by=[("publishedAt", True), ("priority", True)],
        limit=candidates,
    )
    if not docs:
        logger.warning("[Publishing] No cards found from the last 24 hours")
        raise NoCardsAvailableError(NoCardsAvailableError.NO_CARDS)

    unposted = [doc for doc in docs if not doc.get("linkedinPosted")]
    if not unposted:
        logger.warning("[Publishing] All recent cards have already been posted to LinkedIn")
        raise NoCardsAvailableError(NoCardsAvailableError.ALL_POSTED, total_cards=len(docs))

    top = Card.from_document(unposted[0]["id"], unposted[0])
    logger.info(f"✅ [Publishing] Selected top card: '{top.title}' (priority: {top.priority}, pillar: {top.pillar})")
    return top


def mark_published(store, card_id: str, post_url: Optional[str] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Record the LinkedIn post for a card; the only mutation a stored card ever gets."""
    doc = store.get(CARDS_COLLECTION, card_id)
    if doc is None:
        logger.error(f"[LinkedIn] Card not found: {card_id}")
        raise CardNotFoundError(card_id)

    now = now or utcnow()
    fields: Dict[str, Any] = {"linkedinPosted": True, "linkedinPostedAt": now}
    if post_url:
        fields["linkedinPostUrl"] = post_url
    store.update(CARDS_COLLECTION, card_id, fields)

    logger.info(f"✅ [LinkedIn] Card marked as posted: '{doc.get('title')}' ({'with URL' if post_url else 'without URL'})")
    return {
        "success": True,
        "cardId": card_id,
        "cardTitle": doc.get("title") or "Unknown",
        "linkedinPostUrl": post_url,
        "timestamp": now.isoformat(),
    }


def list_cards(store, pillar: Optional[str] = None, limit: int = 20) -> List[Card]:
    where = [("pillar", "==", pillar)] if pillar else []
    docs = store.query(CARDS_COLLECTION, where=where, order_by=[("publishedAt", True)], limit=limit)
    return [Card.from_document(doc["id"], doc) for doc in docs]
