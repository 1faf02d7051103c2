"""
This file defines the core entities for the intelligence card engine.
These entities are used throughout the application to represent cards as they move from raw LLM output to the document store and out to publishing.

- Card is one persisted unit of intelligence: title, summary, signals, moves and the metadata around them
- ValidationResult is the verdict of the editorial rule engine for a candidate card
- RejectedCard is the record written to the rejection log for human review
- UsageMetrics, SlotResult and RunSummary describe what a single ingestion run did and what it cost
- GeneratedCard is the summarizer LLM output before validation; anything in SYSTEM_CARD_FIELDS is set by the engine, never authored
- StoreResult, the ChatIntel* models, IntelligenceBriefing, TrendingTopic and SimpleAnswer are payloads of the HTTP boundary

Storage and wire field names are camelCase (sourceTier, publishedAt, linkedinPosted); Python attributes are snake_case.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Pillar = Literal["ai_strategy", "brand_performance", "competitive_intel", "media_trends"]
CardType = Literal["brief", "hot_take", "datapulse"]

VALID_PILLARS = ("ai_strategy", "brand_performance", "competitive_intel", "media_trends")
VALID_CARD_TYPES = ("brief", "hot_take", "datapulse")

# computed on enrichment or by the publish step; stripped from LLM output and external cards
SYSTEM_CARD_FIELDS = (
    "id",
    "priority",
    "publishedAt",
    "createdAt",
    "contentSource",
    "contentHash",
    "validationScore",
    "linkedinPosted",
    "linkedinPostedAt",
    "linkedinPostUrl",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IntelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ChartPoint(IntelModel):
    label: str
    value: float


class Card(IntelModel):
    """A validated intelligence card as stored in the cards collection."""
    id: Optional[str] = None
    title: str = Field(..., max_length=80)
    summary: str
    signals: List[str] = Field(default_factory=list)
    moves: List[str] = Field(default_factory=list)
    pillar: Pillar
    type: CardType = "brief"

    source: str = ""
    source_url: Optional[str] = None
    source_tier: Optional[int] = Field(None, ge=1, le=5)
    source_count: Optional[int] = Field(None, ge=1)

    priority: int = Field(50, ge=1, le=100, description="Computed by the priority scorer, never authored.")
    published_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    content_source: Optional[Literal["pipeline", "n8n", "manual"]] = None
    content_hash: Optional[str] = None
    validation_score: Optional[int] = None

    linkedin_posted: bool = False
    linkedin_posted_at: Optional[datetime] = None
    linkedin_post_url: Optional[str] = None

    macro_anchor: Optional[str] = None
    micro_signal: Optional[str] = None
    tension: Optional[str] = None
    image_url: Optional[str] = None
    chart_data: Optional[List[ChartPoint]] = None

    def to_document(self) -> Dict[str, Any]:
        """camelCase payload for the document store; the id lives outside the payload."""
        return self.model_dump(by_alias=True, exclude={"id"}, exclude_none=True)

    @classmethod
    def from_document(cls, doc_id: str, payload: Dict[str, Any]) -> "Card":
        data = {k: v for k, v in payload.items() if k != "id"}
        return cls.model_validate({**data, "id": doc_id})


class ValidationResult(IntelModel):
    is_valid: bool
    score: int = Field(..., ge=0, le=100)
    issues: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class RejectedCard(IntelModel):
    """A candidate that failed validation, kept outside the primary collection."""
    card: Dict[str, Any]
    validation: ValidationResult
    rejected_at: datetime = Field(default_factory=utcnow)
    source: str = "pipeline"

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class PillarConfig(IntelModel):
    id: Pillar
    query: str
    card_count: int = Field(1, ge=1)
    diverse_queries: List[str] = Field(default_factory=list)

    def query_for_slot(self, slot_index: int) -> str:
        """Diverse query for this slot when one is configured, else the default query."""
        if slot_index < len(self.diverse_queries) and self.diverse_queries[slot_index]:
            return self.diverse_queries[slot_index]
        return self.query


class UsageMetrics(IntelModel):
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_input_tokens: int = 0
    cache_creation_input_tokens: int = 0

    @property
    def cache_status(self) -> str:
        if self.cache_read_input_tokens:
            return "HIT"
        if self.cache_creation_input_tokens:
            return "CREATED"
        return "MISS"

    def __add__(self, other: "UsageMetrics") -> "UsageMetrics":
        return UsageMetrics(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cache_read_input_tokens=self.cache_read_input_tokens + other.cache_read_input_tokens,
            cache_creation_input_tokens=self.cache_creation_input_tokens + other.cache_creation_input_tokens,
        )


class SlotStatus(str, Enum):
    STORED = "stored"
    REJECTED = "rejected"
    DUPLICATE = "duplicate"
    FAILED = "failed"


class SlotResult(IntelModel):
    pillar: str
    slot_index: int
    status: SlotStatus
    card_type: Optional[str] = None
    title: Optional[str] = None
    reason: Optional[str] = None
    card_id: Optional[str] = None
    usage: UsageMetrics = Field(default_factory=UsageMetrics)


class CostBreakdown(IntelModel):
    cache_write: float = 0.0
    cache_read: float = 0.0
    input: float = 0.0
    output: float = 0.0

    @property
    def total(self) -> float:
        return self.cache_write + self.cache_read + self.input + self.output


class RunSummary(IntelModel):
    timestamp: datetime
    successful: int
    failed: int
    rejected: int
    duplicates: int
    elapsed_seconds: float
    usage: UsageMetrics
    cost: CostBreakdown
    total_cost: float
    monthly_cost: float
    cache_working: bool
    cache_hit_rate: Optional[float] = None
    results: List[SlotResult] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)


class ValidationIssue(IntelModel):
    title: Optional[str] = None
    issues: List[str]
    score: int


class StoredCardInfo(IntelModel):
    id: str
    title: str
    pillar: str
    priority: int
    source: str
    validation_score: Optional[int] = None


class StoreResult(IntelModel):
    success: bool = True
    stored: int
    rejected: int
    duplicates: int = 0
    timestamp: datetime
    validation_issues: List[ValidationIssue] = Field(default_factory=list)
    stored_cards: List[StoredCardInfo] = Field(default_factory=list)


class ChatIntelSignal(IntelModel):
    id: str
    title: str
    summary: str
    source_name: str
    source_url: str


class ChatIntelResponse(IntelModel):
    signals: List[ChatIntelSignal] = Field(default_factory=list)
    implications: List[str] = Field(default_factory=list)
    actions: List[str] = Field(default_factory=list)


def authored_fields(card: Dict[str, Any]) -> Dict[str, Any]:
    """The part of a raw card its author may set."""
    return {k: v for k, v in card.items() if k not in SYSTEM_CARD_FIELDS}


class GeneratedCard(IntelModel):
    """
    Card JSON as the summarizer returns it. Only the structure is enforced here;
    lengths, counts and editorial rules are the validator's job so that failures still get a score.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    title: str = Field(..., min_length=1)
    summary: str = Field(..., min_length=1)
    signals: List[str]
    moves: List[str]
    source_count: float = Field(..., ge=1, description="Number of sources the model analysed.")
    source: Optional[str] = None
    source_tier: Any = None  # scored by the validator, which also reports non-numbers
    primary_topic: Optional[str] = None


class IntelligenceBriefing(IntelModel):
    id: str = Field(..., description="LOG-001 style")
    date: str = Field(..., description="DD.MM.YYYY")
    title: str = Field(..., max_length=80)
    description: str
    theme: str
    query: str


class TrendingTopic(IntelModel):
    label: str
    trending: bool
    sample_query: str


class SimpleAnswer(IntelModel):
    response: str
    citations: List[str] = Field(default_factory=list)
