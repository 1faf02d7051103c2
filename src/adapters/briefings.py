"""
Daily executive feed served next to the Discover cards: intelligence briefings and trending topics.

Both are a single Perplexity call with a fixed markdown layout (## BRIEFING n / ## TOPIC n blocks of KEY: value lines),
parsed best effort with a static fallback so the home screen always has something to show.
Results are cached per audience for a day; the cache lives in the API process.
"""

import re
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Generic, List, Optional, Tuple, TypeVar

from src.adapters.llm import LLMClient
from src.core.entities import IntelligenceBriefing, TrendingTopic, utcnow
from src.core.errors import CollaboratorError

from utils.logging_setup import get_logger
logger = get_logger(__name__, log_file="adapters.log")

DEFAULT_AUDIENCE = "CMO"
DEFAULT_LIMIT = 6
CACHE_TTL = timedelta(hours=24)
MAX_BRIEFING_TITLE_CHARS = 80

THEMES = (
    "AI Strategy",
    "Market Trends",
    "Revenue Growth",
    "Competitive Analysis",
    "Brand Intelligence",
    "Customer Retention",
)

BRIEFING_AUDIENCE_CONTEXT = {
    "CMO": "Focus on board-level implications, budget ROI, and strategic positioning.",
    "VP Marketing": "Focus on operational execution, team resources, and vendor evaluation.",
    "Brand Director": "Focus on brand equity, creative differentiation, and positioning.",
    "Growth Leader": "Focus on acquisition channels, conversion metrics, and retention tactics.",
}

TRENDING_AUDIENCE_CONTEXT = {
    "CMO": "Focus on board-level strategic questions about budget allocation, ROI measurement, and competitive positioning.",
    "VP Marketing": "Focus on operational questions about campaign execution, team efficiency, and technology implementation.",
    "Brand Director": "Focus on brand strategy questions about differentiation, creative excellence, and brand health.",
    "Growth Leader": "Focus on growth tactics questions about customer acquisition, retention strategies, and conversion optimization.",
}

BRIEFINGS_SYSTEM_PROMPT = """You are a strategic intelligence analyst for C-suite marketing executives.

Generate {limit} strategic intelligence briefings for a {audience} published today ({date}).

{audience_context}

Cover these 6 categories (one briefing per category):
1. AI Strategy
2. Market Trends
3. Revenue Growth
4. Competitive Analysis
5. Brand Intelligence
6. Customer Retention

For EACH briefing, provide:
- TITLE: Concise, specific headline (max 80 characters) with concrete data or insights
- DESCRIPTION: 2-3 sentences with specific metrics, data points, or actionable insights
- CATEGORY: One of the 6 categories above

Format your response EXACTLY as follows:

## BRIEFING 1
CATEGORY: [Category Name]
TITLE: [Title with specific data/metrics]
DESCRIPTION: [2-3 sentences with specific numbers, trends, or insights]

## BRIEFING 2
CATEGORY: [Category Name]
TITLE: [Title with specific data/metrics]
DESCRIPTION: [2-3 sentences with specific numbers, trends, or insights]

...continue for all {limit} briefings

Keep it data-driven, executive-appropriate, and strategically relevant. Use real market data and trends from recent sources."""

BRIEFINGS_USER_PROMPT = "Generate {limit} strategic intelligence briefings for {audience} with fresh market data from today."

TRENDING_SYSTEM_PROMPT = """You are a strategic intelligence analyst tracking marketing trends for C-suite executives.

Identify the top {limit} trending marketing intelligence topics for a {audience} as of {date}.

{audience_context}

Include categories like:
- AI Strategy
- Market Trends
- Revenue Growth
- Competitive Analysis
- Brand Intelligence
- Customer Retention
- Content Strategy
- Digital Transformation

For each topic, provide:
- CATEGORY: The strategic topic category (e.g., "AI Strategy", "Market Trends")
- TRENDING: Whether this topic is currently trending (YES or NO) based on news volume, search trends, and industry discussion
- SAMPLE_QUERY: A specific, executive-level strategic question about this topic (e.g., "How are Fortune 500 CMOs reallocating budget to AI in 2026?")

Format your response EXACTLY as follows:

## TOPIC 1
CATEGORY: [Category Name]
TRENDING: [YES or NO]
SAMPLE_QUERY: [Specific strategic question for {audience}]

## TOPIC 2
CATEGORY: [Category Name]
TRENDING: [YES or NO]
SAMPLE_QUERY: [Specific strategic question for {audience}]

...continue for all {limit} topics

Make the sample queries compelling, specific, and relevant to current market conditions."""

TRENDING_USER_PROMPT = "What are the top {limit} trending marketing intelligence topics for {audience} right now?"

FALLBACK_BRIEFING_DESCRIPTION = (
    "Intelligence briefing generated from real-time market analysis. "
    "Click to explore detailed insights and strategic recommendations."
)

# last refreshed January 2026
FALLBACK_TOPICS = (
    ("AI Strategy", True, "How is DeepSeek disrupting enterprise AI pricing for marketing teams?"),
    ("Market Trends", True, "What does Google AI Mode mean for 2026 paid search budgets?"),
    ("Revenue Growth", True, "Which brands are winning Q1 2026 with AI-powered personalization?"),
    ("Competitive Analysis", True, "How are agencies repositioning around AI agents vs automation?"),
    ("Brand Intelligence", False, "What zero-party data strategies are driving measurable brand lift?"),
    ("Customer Retention", False, "How are AI chatbots impacting customer retention metrics in 2026?"),
)

_BRIEFING_BLOCK = re.compile(r"## BRIEFING \d+\s*\n([\s\S]*?)(?=## BRIEFING \d+|$)")
_TOPIC_BLOCK = re.compile(r"## TOPIC \d+\s*\n([\s\S]*?)(?=## TOPIC \d+|$)")
_CATEGORY = re.compile(r"CATEGORY:\s*(.+)", re.IGNORECASE)
_TITLE = re.compile(r"TITLE:\s*(.+)", re.IGNORECASE)
_DESCRIPTION = re.compile(r"DESCRIPTION:\s*([\s\S]+?)(?=\n\n|$)", re.IGNORECASE)
_TRENDING = re.compile(r"TRENDING:\s*(YES|NO)", re.IGNORECASE)
_SAMPLE_QUERY = re.compile(r"SAMPLE_QUERY:\s*(.+)", re.IGNORECASE)


def format_briefing_date(day: date) -> str:
    return day.strftime("%d.%m.%Y")


def _briefing_id(index: int) -> str:
    return f"LOG-{index:03d}"


def fallback_briefings(date_str: str) -> List[IntelligenceBriefing]:
    return [
        IntelligenceBriefing(
            id=_briefing_id(index),
            date=date_str,
            title=f"Strategic Intelligence: {theme}",
            description=FALLBACK_BRIEFING_DESCRIPTION,
            theme=theme,
            query=f"Strategic Intelligence: {theme}",
        )
        for index, theme in enumerate(THEMES, start=1)
    ]


def parse_briefings(content: str, date_str: str) -> List[IntelligenceBriefing]:
    """
    Read the ## BRIEFING blocks; a block missing its category, title or description is skipped.

    Titles are cut to 80 characters and double as the follow-up query. When nothing parses,
    the six fallback briefings (one per theme) are returned instead.
    """
    briefings = []
    for match in _BRIEFING_BLOCK.finditer(content or ""):
        block = match.group(1)
        category, title, description = _CATEGORY.search(block), _TITLE.search(block), _DESCRIPTION.search(block)
        if not (category and title and description):
            continue

        headline = title.group(1).strip()[:MAX_BRIEFING_TITLE_CHARS]
        briefings.append(IntelligenceBriefing(
            id=_briefing_id(len(briefings) + 1),
            date=date_str,
            title=headline,
            description=description.group(1).strip().replace("\n", " "),
            theme=category.group(1).strip(),
            query=headline,
        ))

    if not briefings:
        logger.warning("⚠️ [Briefings] No briefing blocks parsed - serving fallback briefings")
        return fallback_briefings(date_str)
    return briefings


def parse_trending_topics(content: str, limit: int = DEFAULT_LIMIT) -> List[TrendingTopic]:
    """Read the ## TOPIC blocks, at most `limit` of them; falls back to the static topic list."""
    topics = []
    for match in _TOPIC_BLOCK.finditer(content or ""):
        block = match.group(1)
        category, trending, sample = _CATEGORY.search(block), _TRENDING.search(block), _SAMPLE_QUERY.search(block)
        if category and trending and sample:
            topics.append(TrendingTopic(
                label=category.group(1).strip(),
                trending=trending.group(1).upper() == "YES",
                sample_query=sample.group(1).strip(),
            ))

    if not topics:
        logger.warning("⚠️ [Trending] No topic blocks parsed - serving fallback topics")
        topics = [TrendingTopic(label=label, trending=flag, sample_query=query) for label, flag, query in FALLBACK_TOPICS]
    return topics[:limit]


def generate_briefings(llm: LLMClient, audience: str = DEFAULT_AUDIENCE, limit: int = DEFAULT_LIMIT,
                       today: Optional[date] = None) -> List[IntelligenceBriefing]:
    date_str = format_briefing_date(today or utcnow().date())
    audience_context = BRIEFING_AUDIENCE_CONTEXT.get(audience, BRIEFING_AUDIENCE_CONTEXT[DEFAULT_AUDIENCE])

    logger.info(f"📰 [Briefings] Generating {limit} briefings for {audience}")
    completion = llm.complete(
        BRIEFINGS_SYSTEM_PROMPT.format(limit=limit, audience=audience, date=date_str, audience_context=audience_context),
        BRIEFINGS_USER_PROMPT.format(limit=limit, audience=audience),
        temperature=0.3,
        max_tokens=2000,
    )
    return parse_briefings(completion.text, date_str)


def generate_trending_topics(llm: LLMClient, audience: str = DEFAULT_AUDIENCE, limit: int = DEFAULT_LIMIT,
                             today: Optional[date] = None) -> List[TrendingTopic]:
    """Trending topics from the last day of news; an empty answer is an error, not a fallback."""
    today = today or utcnow().date()
    audience_context = TRENDING_AUDIENCE_CONTEXT.get(audience, TRENDING_AUDIENCE_CONTEXT[DEFAULT_AUDIENCE])

    logger.info(f"📈 [Trending] Fetching {limit} topics for {audience}")
    completion = llm.complete(
        TRENDING_SYSTEM_PROMPT.format(
            limit=limit, audience=audience, date=f"{today:%B} {today.day}, {today.year}", audience_context=audience_context
        ),
        TRENDING_USER_PROMPT.format(limit=limit, audience=audience),
        temperature=0.3,
        max_tokens=1500,
        extra_body={"search_recency_filter": "day", "return_citations": True},
    )
    if not completion.text.strip():
        raise CollaboratorError("Perplexity returned empty content for trending topics")
    return parse_trending_topics(completion.text, limit)


T = TypeVar("T")


class AudienceCache(Generic[T]):
    """Per-audience results with the time they were generated; entries expire after the TTL."""

    def __init__(self, ttl: timedelta = CACHE_TTL, clock: Callable[[], datetime] = utcnow):
        self.ttl = ttl
        self.clock = clock
        self._entries: Dict[str, Tuple[List[T], datetime]] = {}

    def get(self, audience: str) -> Optional[Tuple[List[T], datetime]]:
        entry = self._entries.get(audience)
        if entry is None:
            return None
        if self.clock() - entry[1] >= self.ttl:
            del self._entries[audience]
            return None
        return entry

    def put(self, audience: str, items: List[T]) -> datetime:
        generated_at = self.clock()
        self._entries[audience] = (list(items), generated_at)
        return generated_at

    def clear(self):
        self._entries.clear()
