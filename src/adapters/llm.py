"""
This module serves as the adapter layer for the LLM collaborators of the card engine.
Both collaborators speak the OpenAI chat-completions protocol, so one thin client covers them:

- NewsSearchService asks Perplexity (sonar) for the freshest pillar news, restricted to trade-press domains and the last day
- CardSummarizer turns that raw news into one strict-JSON card, reusing a large fixed system prompt that the provider can cache

Token usage (including cached prompt tokens) is reported on every Completion so runs can be costed.
Parsing at the bottom validates LLM text against GeneratedCard and raises MalformedCardError when it does not fit.
"""

import os
import re
from typing import Any, Dict, List, Optional, Sequence

from dotenv import load_dotenv
load_dotenv()
from openai import APIError, OpenAI
from pydantic import BaseModel, Field, ValidationError

from src.core.entities import GeneratedCard, PillarConfig, UsageMetrics
from src.core.errors import CollaboratorError, ConfigurationError, MalformedCardError

from utils.logging_setup import get_logger
logger = get_logger(__name__, log_file="adapters.log")

PPLX_API_KEY = os.getenv("PPLX_API_KEY")
PPLX_BASE_URL = os.getenv("PPLX_BASE_URL", "https://api.perplexity.ai")
PPLX_MODEL = os.getenv("PPLX_MODEL", "sonar-pro")

LLM_API_KEY = os.getenv("LLM_API_KEY")
LLM_BASE_URL = os.getenv("LLM_BASE_URL")  # None -> OpenAI
LLM_MODEL = os.getenv("LLM_MODEL", "gpt-4o")
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", 60))

SEARCH_DOMAINS = [
    "adweek.com",
    "marketingdive.com",
    "adage.com",
    "techcrunch.com",
    "digiday.com",
    "wsj.com",
    "bloomberg.com",
]
SEARCH_EXCLUSION_LIMIT = 10
CARD_PROMPT_CACHE_KEY = "discover-card-system-v2"

# prompt templates
NEWS_SEARCH_PROMPT = """Find the most important recent news about: {query}.
Focus on stories from the last 24-48 hours with specific data/metrics.
Return 3-5 DISTINCT news items with sources - each about a DIFFERENT company/topic.{exclusion_note}"""

CARD_SYSTEM_PROMPT = """You are an expert marketing intelligence analyst serving senior marketing executives (CMOs, VPs of Marketing, CX leaders) at Fortune 500 companies and enterprise brands.

## Your Role
Analyze breaking news and trends across marketing, advertising, media, and customer experience. Transform raw news data into actionable executive intelligence.

## Content Pillars
1. **ai_strategy**: CMO AI adoption, enterprise AI tools, generative AI in marketing, AI measurement
2. **brand_performance**: Campaign ROI, brand measurement, attribution, marketing effectiveness
3. **competitive_intel**: Market share shifts, competitor moves, M&A, industry consolidation
4. **media_trends**: Platform updates, media buying shifts, ad tech innovations

## Audience Context
- **Primary**: CMOs, VPs Marketing at F500 companies
- **Tone**: Analytical, pragmatic, no hype
- **Format**: Operator-focused thought leadership (credible, concise, actionable)

## Output Requirements
Return valid JSON only. Each card must follow this exact structure:

{
  "title": "Clear, specific headline with a metric (20-80 chars)",
  "summary": "2-3 sentences: what happened, then what this means for senior marketers",
  "signals": ["Metric 1 with numbers", "Metric 2 with numbers", "Metric 3 with numbers"],
  "moves": ["Your next move: the single most important action", "Actionable recommendation 2", "Actionable recommendation 3"],
  "sourceCount": number of sources analyzed,
  "source": "Name of the most authoritative source (e.g. Adweek, McKinsey & Company)",
  "sourceTier": 1-5 where 1 = premier research/financial press and 5 = vendor blogs,
  "primaryTopic": "The main company/brand/topic name"
}

## Example Output (Brief)
{
  "title": "Google Ads Drops $2.1B in Brand Safety Spend",
  "summary": "Google announced new brand safety controls resulting in a $2.1B reduction in ad spend across YouTube and Display. What this means for CMOs is tighter Q1 budgets and a shift toward premium inventory.",
  "signals": ["$2.1B spend reduction YoY", "78% of F500 CMOs prioritize brand safety", "34% shift to premium publisher direct deals"],
  "moves": ["Your next move: audit Q1 YouTube placements for adjacency risk", "Test 3 premium publisher programmatic deals", "Build a brand safety dashboard for board reporting"],
  "sourceCount": 12,
  "source": "Adweek",
  "sourceTier": 2,
  "primaryTopic": "Google"
}

## Quality Standards
- **Numbers required**: every signal carries quantitative data (%, $, x multipliers)
- **No hype**: never use "game-changing", "revolutionary", "disruptive", "transformative", "groundbreaking", "paradigm shift"
- **No emojis** anywhere
- **Executive framing**: the summary states what this means for the reader's P&L, team or board
- **Direct moves**: specific and tactical; never "consider", "maybe", "perhaps" or "monitor the space"
- **First move** always starts with the literal text "Your next move:"

Return ONLY the JSON object, no additional text or markdown formatting."""

BRIEF_PROMPT = """News: {raw_news}

Pillar: {pillar}

Create a brief (fact-based reporting with clear signals and moves) using the exact JSON structure from your instructions.
Make it executive-appropriate: data-driven, specific metrics, clear ROI implications.{diversity_note}
Return ONLY the JSON object, no markdown code blocks."""

HOT_TAKE_PROMPT = """News: {raw_news}

Pillar: {pillar}

Create a hot take (a contrarian headline that challenges conventional wisdom, backed by data) using the exact JSON structure from your instructions.
Be balanced and operator-grade. Focus on clear, practical implications.{diversity_note}
Return ONLY the JSON object, no markdown code blocks."""

class Completion(BaseModel):
    text: str
    usage: UsageMetrics = Field(default_factory=UsageMetrics)
    citations: List[str] = Field(default_factory=list)

    @property
    def cache_hit(self) -> bool:
        return self.usage.cache_status == "HIT"


def usage_from_response(usage: Any) -> UsageMetrics:
    """Map chat-completions usage onto our metrics; cached prompt tokens are not billed as input."""
    if usage is None:
        return UsageMetrics()
    prompt_tokens = getattr(usage, "prompt_tokens", 0) or 0
    details = getattr(usage, "prompt_tokens_details", None)
    cached = (getattr(details, "cached_tokens", 0) or 0) if details is not None else 0
    return UsageMetrics(
        input_tokens=max(prompt_tokens - cached, 0),
        output_tokens=getattr(usage, "completion_tokens", 0) or 0,
        cache_read_input_tokens=cached,
    )


class LLMClient:
    def __init__(self, api_key: str, model: str, base_url: Optional[str] = None,
                 timeout: float = LLM_TIMEOUT_SECONDS, client: Optional[OpenAI] = None):
        self.model = model
        self.client = client or OpenAI(api_key=api_key, base_url=base_url, timeout=timeout)

    def complete(
        self,
        system_prompt: Optional[str],
        user_prompt: str,
        *,
        temperature: float = 0.2,
        max_tokens: int = 2048,
        cache_key: Optional[str] = None,
        extra_body: Optional[Dict[str, Any]] = None,
    ) -> Completion:
        """
        One chat completion.

        cache_key marks calls that share the same fixed system prompt so the provider can serve it
        from its prompt cache; whether it did shows up as cached tokens in the usage.
        """
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})

        body = dict(extra_body or {})
        if cache_key:
            body["prompt_cache_key"] = cache_key

        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if body:
            kwargs["extra_body"] = body

        try:
            response = self.client.chat.completions.create(**kwargs)
        except APIError as e:
            logger.error(f"LLM API error ({self.model}): {e}")
            raise CollaboratorError(f"LLM call to {self.model} failed: {e}") from e

        text = ""
        if response.choices:
            text = (response.choices[0].message.content or "").strip()
        completion = Completion(
            text=text,
            usage=usage_from_response(getattr(response, "usage", None)),
            citations=list(getattr(response, "citations", None) or []),
        )
        logger.debug(
            f"complete: {self.model} | cache={completion.usage.cache_status} | "
            f"input={completion.usage.input_tokens} output={completion.usage.output_tokens} "
            f"cache_read={completion.usage.cache_read_input_tokens}"
        )
        return completion


class NewsSearchService:
    """Raw pillar news from Perplexity, steered away from topics already covered this run."""

    def __init__(self, llm: LLMClient):
        self.llm = llm

    def fetch_pillar_news(self, pillar: PillarConfig, slot_index: int, exclude_topics: Sequence[str] = ()) -> Completion:
        query = pillar.query_for_slot(slot_index)
        excluded = list(exclude_topics)[-SEARCH_EXCLUSION_LIMIT:]
        exclusion_note = (
            f"\n\nIMPORTANT: Do NOT include news about these topics (already covered): {', '.join(excluded)}"
            if excluded else ""
        )

        completion = self.llm.complete(
            None,
            NEWS_SEARCH_PROMPT.format(query=query, exclusion_note=exclusion_note),
            extra_body={
                "search_domain_filter": SEARCH_DOMAINS,
                "search_recency_filter": "day",
            },
        )
        if not completion.text:
            raise CollaboratorError(f"News search returned no content for {pillar.id} slot {slot_index}")

        logger.info(f"📰 Fetched news for {pillar.id} slot {slot_index + 1} ({len(completion.text)} chars)")
        return completion


class CardSummarizer:
    """Structures raw news into one card with the cached card system prompt."""

    def __init__(self, llm: LLMClient):
        self.llm = llm

    def summarize(self, raw_news: str, pillar: str, card_type: str, exclude_topics: Sequence[str] = ()) -> Completion:
        excluded = list(exclude_topics)
        diversity_note = (
            "\n\nCRITICAL DIVERSITY REQUIREMENT: Do NOT write about these topics/companies (already covered today): "
            f"{', '.join(excluded)}. Choose a DIFFERENT company, trend, or angle."
            if excluded else ""
        )
        template = HOT_TAKE_PROMPT if card_type == "hot_take" else BRIEF_PROMPT

        return self.llm.complete(
            CARD_SYSTEM_PROMPT,
            template.format(raw_news=raw_news, pillar=pillar, diversity_note=diversity_note),
            temperature=0.3,
            max_tokens=2048,
            cache_key=CARD_PROMPT_CACHE_KEY,
        )


# parsing LLM output into a card
_CODE_FENCE = re.compile(r"```(?:json)?\s*")


def _describe(error: ValidationError) -> str:
    return "; ".join(f"{'.'.join(str(p) for p in err['loc']) or 'card'}: {err['msg']}" for err in error.errors())


def parse_generated_card(text: str) -> GeneratedCard:
    """Strip markdown fences and validate the summarizer's JSON against GeneratedCard."""
    cleaned = _CODE_FENCE.sub("", text or "").strip()
    if not cleaned:
        raise MalformedCardError("LLM returned an empty response")
    try:
        return GeneratedCard.model_validate_json(cleaned)
    except ValidationError as e:
        raise MalformedCardError(f"LLM output does not match the card shape: {_describe(e)}") from e


def extract_card(text: str) -> Dict[str, Any]:
    """Camel-cased dict of exactly what the model returned, ready for the validator."""
    return parse_generated_card(text).model_dump(by_alias=True, exclude_unset=True)


# factories
def build_perplexity_client(model: str = PPLX_MODEL) -> LLMClient:
    if not PPLX_API_KEY:
        raise ConfigurationError("PPLX_API_KEY environment variable is not set")
    return LLMClient(api_key=PPLX_API_KEY, model=model, base_url=PPLX_BASE_URL)


def build_news_search() -> NewsSearchService:
    return NewsSearchService(build_perplexity_client())


def build_summarizer() -> CardSummarizer:
    if not LLM_API_KEY:
        raise ConfigurationError("LLM_API_KEY environment variable is not set")
    return CardSummarizer(LLMClient(api_key=LLM_API_KEY, model=LLM_MODEL, base_url=LLM_BASE_URL))
