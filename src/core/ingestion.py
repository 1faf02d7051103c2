"""
The daily ingestion run: for every pillar and every card slot in it, fetch news, structure it into a card,
validate it, check it against recent cards, score it and store it.

Slots run one after another. Each run owns a RunContext holding the topics already covered, which steers
later slots away from repeats; it is created fresh per run and never shared between runs.
A failing slot is logged and counted, it never stops the run.
"""

import asyncio
import os
import random
import re
import time
from typing import Dict, List, Optional, Sequence

from dotenv import load_dotenv
load_dotenv()

from src.adapters.llm import extract_card
from src.core.dedup import CARDS_COLLECTION, Deduplicator
from src.core.entities import (
    Card,
    CostBreakdown,
    PillarConfig,
    RejectedCard,
    RunSummary,
    SlotResult,
    SlotStatus,
    UsageMetrics,
    ValidationResult,
    authored_fields,
    utcnow,
)
from src.core.priority import calculate_priority
from src.core.validation import card_content_hash, validate_card

from utils.logging_setup import get_logger
logger = get_logger(__name__, log_file="core.log")

REJECTED_COLLECTION = os.getenv("REJECTED_COLLECTION", "rejected_cards")
SLOT_TIMEOUT_SECONDS = float(os.getenv("SLOT_TIMEOUT_SECONDS", 120))
HOT_TAKE_SHARE = 0.2

# USD per million tokens
PRICING = {
    "input": 3.00,
    "output": 15.00,
    "cache_write": 3.75,
    "cache_read": 0.30,
}

PILLARS: List[PillarConfig] = [
    PillarConfig(
        id="ai_strategy",
        query="latest AI marketing strategy news, CMO adoption, enterprise AI tools",
        card_count=3,
        diverse_queries=[
            "enterprise AI adoption ROI metrics CMO budget allocation",
            "generative AI content marketing automation workflow tools",
            "AI governance marketing compliance brand safety machine learning",
        ],
    ),
    PillarConfig(
        id="brand_performance",
        query="brand marketing performance metrics, campaign ROI, brand measurement",
        card_count=3,
        diverse_queries=[
            "brand equity measurement attribution modeling marketing mix",
            "campaign performance ROI creative effectiveness testing",
            "customer lifetime value retention marketing loyalty programs",
        ],
    ),
    PillarConfig(
        id="competitive_intel",
        query="competitor marketing moves, industry benchmarks, market share changes",
        card_count=2,
        diverse_queries=[
            "agency holding company mergers acquisitions marketing industry",
            "brand market share shifts competitive positioning strategy",
        ],
    ),
    PillarConfig(
        id="media_trends",
        query="advertising trends, media buying, platform updates for marketers",
        card_count=2,
        diverse_queries=[
            "retail media network advertising Amazon Walmart Target ads",
            "streaming CTV advertising programmatic media buying trends",
        ],
    ),
]

_TITLE_PHRASE = re.compile(r"[A-Z][a-z]+(?:\s[A-Z][a-z]+)?")


class RunContext:
    """Per-run state threaded through every slot."""

    def __init__(self):
        self._topics: Dict[str, None] = {}  # insertion-ordered set
        self.results: List[SlotResult] = []

    @property
    def generated_topics(self) -> List[str]:
        return list(self._topics)

    def track_topic(self, topic: Optional[str]):
        if topic and topic.strip():
            self._topics.setdefault(topic.strip().lower(), None)

    def track_card(self, primary_topic: Optional[str], title: str):
        """The declared primary topic plus capitalised phrases from the title."""
        self.track_topic(primary_topic if isinstance(primary_topic, str) else None)
        for phrase in _TITLE_PHRASE.findall(title):
            if len(phrase) > 3:
                self.track_topic(phrase)

    def exclusions(self, limit: Optional[int] = None) -> List[str]:
        topics = self.generated_topics
        return topics[-limit:] if limit else topics


def estimate_cost(usage: UsageMetrics) -> CostBreakdown:
    per_token = {name: rate / 1_000_000 for name, rate in PRICING.items()}
    return CostBreakdown(
        cache_write=usage.cache_creation_input_tokens * per_token["cache_write"],
        cache_read=usage.cache_read_input_tokens * per_token["cache_read"],
        input=usage.input_tokens * per_token["input"],
        output=usage.output_tokens * per_token["output"],
    )


def summarize_run(results: Sequence[SlotResult], elapsed_seconds: float) -> RunSummary:
    usage = UsageMetrics()
    for result in results:
        usage = usage + result.usage

    cost = estimate_cost(usage)
    prompt_tokens = usage.input_tokens + usage.cache_read_input_tokens + usage.cache_creation_input_tokens
    cache_working = usage.cache_read_input_tokens > 0

    def count(status: SlotStatus) -> int:
        return sum(1 for r in results if r.status == status)

    return RunSummary(
        timestamp=utcnow(),
        successful=count(SlotStatus.STORED),
        failed=count(SlotStatus.FAILED),
        rejected=count(SlotStatus.REJECTED),
        duplicates=count(SlotStatus.DUPLICATE),
        elapsed_seconds=round(elapsed_seconds, 2),
        usage=usage,
        cost=cost,
        total_cost=round(cost.total, 4),
        monthly_cost=round(cost.total * 30, 2),
        cache_working=cache_working,
        cache_hit_rate=(usage.cache_read_input_tokens / prompt_tokens) if cache_working else None,
        results=list(results),
    )


def log_run_summary(summary: RunSummary):
    logger.info("📊 GENERATION SUMMARY")
    logger.info(f"✅ Successful: {summary.successful}/{summary.total}")
    logger.info(f"🚫 Rejected: {summary.rejected} | Duplicates: {summary.duplicates}")
    logger.info(f"❌ Failed: {summary.failed}/{summary.total}")
    logger.info(f"⏱️ Total time: {summary.elapsed_seconds}s")
    logger.info(
        f"💰 Tokens: input={summary.usage.input_tokens:,} output={summary.usage.output_tokens:,} "
        f"cache_read={summary.usage.cache_read_input_tokens:,} cache_write={summary.usage.cache_creation_input_tokens:,}"
    )
    logger.info(f"💵 Cost: ${summary.total_cost:.4f} (monthly est: ${summary.monthly_cost:.2f})")
    if summary.cache_working:
        logger.info(f"🔍 Prompt cache: WORKING ({summary.cache_hit_rate:.1%} of prompt tokens served from cache)")
    else:
        logger.warning("⚠️ Prompt cache: NOT WORKING - no cached prompt tokens were reported this run")


class IngestionPipeline:
    def __init__(
        self,
        search,
        summarizer,
        store,
        deduplicator: Optional[Deduplicator] = None,
        pillars: Optional[Sequence[PillarConfig]] = None,
        rng: Optional[random.Random] = None,
        slot_timeout: float = SLOT_TIMEOUT_SECONDS,
        log_rejections: bool = True,
        cards_collection: str = CARDS_COLLECTION,
        rejected_collection: str = REJECTED_COLLECTION,
    ):
        self.search = search
        self.summarizer = summarizer
        self.store = store
        self.cards_collection = cards_collection
        self.rejected_collection = rejected_collection
        self.deduplicator = deduplicator or Deduplicator(store, collection=cards_collection)
        self.pillars = list(pillars) if pillars is not None else PILLARS
        self.rng = rng or random.Random()
        self.slot_timeout = slot_timeout
        self.log_rejections = log_rejections

    async def run(self) -> RunSummary:
        """
        Generate cards for every configured slot, sequentially.
        Returns the run summary: slot outcomes, token usage, estimated cost and whether prompt caching kicked in.
        """
        logger.info("🚀 DISCOVER CARD GENERATION STARTED")
        started = time.monotonic()
        ctx = RunContext()

        for pillar in self.pillars:
            for slot_index in range(pillar.card_count):
                ctx.results.append(await self.process_slot(ctx, pillar, slot_index))

        summary = summarize_run(ctx.results, time.monotonic() - started)
        log_run_summary(summary)
        return summary

    async def _call(self, func, *args):
        return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.slot_timeout)

    def _choose_type(self) -> str:
        return "hot_take" if self.rng.random() > 1 - HOT_TAKE_SHARE else "brief"

    async def process_slot(self, ctx: RunContext, pillar: PillarConfig, slot_index: int) -> SlotResult:
        label = f"[{pillar.id} #{slot_index + 1}]"
        card_type = self._choose_type()
        usage = UsageMetrics()
        result = dict(pillar=pillar.id, slot_index=slot_index, card_type=card_type)

        try:
            news = await self._call(self.search.fetch_pillar_news, pillar, slot_index, ctx.exclusions())
            usage = usage + news.usage

            logger.info(f"{label} 🚀 Generating {card_type}...")
            completion = await self._call(self.summarizer.summarize, news.text, pillar.id, card_type, ctx.exclusions())
            usage = usage + completion.usage
            logger.debug(f"{label} ⚡ Cache: {completion.usage.cache_status}")

            parsed = extract_card(completion.text)
            ctx.track_card(parsed.get("primaryTopic"), parsed["title"])

            candidate = authored_fields(parsed)
            candidate.pop("primaryTopic", None)
            candidate.update(pillar=pillar.id, type=card_type)
            title = candidate["title"]

            verdict = validate_card(candidate)
            if not verdict.is_valid:
                logger.warning(f"{label} ❌ Card REJECTED: '{title}' (score: {verdict.score}) issues={verdict.issues}")
                self._log_rejection(candidate, verdict)
                reason = "; ".join(verdict.issues) or f"score {verdict.score} below threshold"
                return SlotResult(**result, status=SlotStatus.REJECTED, title=title, reason=reason, usage=usage)
            if verdict.warnings:
                logger.warning(f"{label} ⚠️ Warnings for '{title}': {verdict.warnings}")

            if self.deduplicator.is_duplicate(title, pillar.id):
                logger.info(f"{label} ⏭️ Skipping duplicate card: '{title}'")
                return SlotResult(**result, status=SlotStatus.DUPLICATE, title=title, usage=usage)

            card = self._build_card(candidate, verdict)
            card_id = self.store.add(self.cards_collection, card.to_document())
            logger.info(f"{label} ✅ Stored: '{title}' (priority: {card.priority}, score: {verdict.score})")
            return SlotResult(**result, status=SlotStatus.STORED, title=title, card_id=card_id, usage=usage)

        except asyncio.TimeoutError:
            reason = f"timed out after {self.slot_timeout:.0f}s"
        except Exception as e:
            reason = f"{type(e).__name__}: {e}"

        logger.error(f"{label} ❌ Failed: {reason}")
        return SlotResult(**result, status=SlotStatus.FAILED, reason=reason, usage=usage)

    def _build_card(self, candidate: dict, verdict: ValidationResult) -> Card:
        now = utcnow()
        priority = calculate_priority(
            int(candidate.get("sourceCount") or 1), candidate["pillar"], candidate["type"], rng=self.rng
        )
        return Card.model_validate({
            **candidate,
            "priority": priority,
            "publishedAt": now,
            "createdAt": now,
            "contentSource": "pipeline",
            "contentHash": card_content_hash(candidate),
            "validationScore": verdict.score,
        })

    def _log_rejection(self, candidate: dict, verdict: ValidationResult):
        if not self.log_rejections:
            return
        rejected = RejectedCard(card=candidate, validation=verdict, source="pipeline")
        try:
            self.store.add(self.rejected_collection, rejected.to_document())
        except Exception as e:
            logger.warning(f"⚠️ Could not write rejection log entry for '{candidate.get('title')}': {e}")
