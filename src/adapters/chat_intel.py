"""
Executive strategy chat: one Perplexity call that answers a free-form question as a short intelligence brief.

The model is asked for three markdown sections (SIGNALS, IMPLICATIONS, ACTIONS). Parsing is best effort:
whatever the sections do not yield is filled from bullet lines and citations, then from fixed defaults.
fetch_simple_answer is the plain conversational variant: a short free-text answer plus citations.
"""

import os
import re
from typing import List, Optional, Sequence

from dotenv import load_dotenv
load_dotenv()

from src.adapters.llm import LLMClient, build_perplexity_client
from src.core.entities import ChatIntelResponse, ChatIntelSignal, SimpleAnswer

from utils.logging_setup import get_logger
logger = get_logger(__name__, log_file="adapters.log")

PPLX_MODEL_FAST = os.getenv("PPLX_MODEL_FAST", "sonar")
MAX_FALLBACK_SIGNALS = 5

CHAT_SYSTEM_PROMPT = """You are a strategic intelligence analyst for C-suite marketing executives (CMOs, VPs of Marketing, Brand Directors, Growth Leaders).

Provide direct, confident analysis with current data and specific examples. Never mention lack of access to information or include disclaimers.

Analyze the query and provide:
1. SIGNALS (2-5 key insights) - Each with a title, 1-2 sentence summary, and source
2. IMPLICATIONS (2-4 points) - "What this means" for marketing strategy
3. ACTIONS (2-4 points) - Specific, actionable next steps

Format your response EXACTLY as follows:

## SIGNALS
- [SIGNAL 1 TITLE]
Summary: [1-2 sentences]
Source: [Source Name] | [URL]

- [SIGNAL 2 TITLE]
Summary: [1-2 sentences]
Source: [Source Name] | [URL]

## IMPLICATIONS
- [Implication 1]
- [Implication 2]

## ACTIONS
- [Action 1]
- [Action 2]

Keep it concise, data-driven, and business-focused."""

DEFAULT_IMPLICATIONS = [
    "Requires strategic review and action planning",
    "Monitor competitive landscape for similar trends",
]
DEFAULT_ACTIONS = [
    "Schedule team briefing to discuss implications",
    "Analyze internal data to validate findings",
]

_SIGNAL_SPLIT = re.compile(r"^-\s+", re.MULTILINE)
_BULLET_LINE = re.compile(r"^[-•]\s+.+$", re.MULTILINE)


def extract_section(content: str, name: str) -> Optional[str]:
    match = re.search(rf"## {name}\s*([\s\S]*?)(?=##|$)", content, re.IGNORECASE)
    return match.group(1).strip() if match else None


def _bullets(section: Optional[str]) -> List[str]:
    if not section:
        return []
    return [line.strip()[1:].strip() for line in section.splitlines() if line.strip().startswith("-")]


def _parse_signals(section: Optional[str]) -> List[ChatIntelSignal]:
    signals = []
    if not section:
        return signals

    blocks = [block for block in _SIGNAL_SPLIT.split(section) if block.strip()]
    for index, block in enumerate(blocks):
        lines = [line.strip() for line in block.strip().splitlines() if line.strip()]
        summary_line = next((l for l in lines if l.startswith("Summary:")), "")
        source_line = next((l for l in lines if l.startswith("Source:")), "")

        source_parts = [part.strip() for part in source_line.replace("Source:", "", 1).split("|")]
        source_name = source_parts[0] or "Industry Analysis"
        source_url = source_parts[1] if len(source_parts) > 1 and source_parts[1] else "#"

        signals.append(ChatIntelSignal(
            id=f"SIG-{index + 1}",
            title=lines[0],
            summary=summary_line.replace("Summary:", "", 1).strip(),
            source_name=source_name,
            source_url=source_url,
        ))
    return signals


def parse_chat_intel(content: str, citations: Sequence[str] = ()) -> ChatIntelResponse:
    """Best-effort parse of the sectioned answer; never raises, falls back to defaults instead."""
    signals = _parse_signals(extract_section(content, "SIGNALS"))
    implications = _bullets(extract_section(content, "IMPLICATIONS"))
    actions = _bullets(extract_section(content, "ACTIONS"))

    if not signals:
        for index, bullet in enumerate(_BULLET_LINE.findall(content)[:MAX_FALLBACK_SIGNALS]):
            signals.append(ChatIntelSignal(
                id=f"SIG-{index + 1}",
                title=bullet[:60].strip(),
                summary=bullet[2:].strip(),
                source_name="Perplexity Analysis",
                source_url=citations[index] if index < len(citations) else "#",
            ))
        if signals:
            logger.debug(f"parse_chat_intel: sections missing, used {len(signals)} bullet lines")

    return ChatIntelResponse(
        signals=signals,
        implications=implications or list(DEFAULT_IMPLICATIONS),
        actions=actions or list(DEFAULT_ACTIONS),
    )


def build_chat_client() -> LLMClient:
    return build_perplexity_client(model=PPLX_MODEL_FAST)


def fetch_chat_intel(llm: LLMClient, query: str) -> ChatIntelResponse:
    logger.info(f"💬 Chat intel query: {query[:100]}")
    completion = llm.complete(CHAT_SYSTEM_PROMPT, query, temperature=0.2, max_tokens=1500)
    return parse_chat_intel(completion.text, completion.citations)


SIMPLE_SYSTEM_PROMPT = (
    "You are a strategic marketing intelligence assistant for C-suite executives. "
    "Provide direct, confident answers with specific data, metrics, and recent examples. "
    "Never mention lack of access to information or disclaimers - always respond positively using your knowledge "
    "and current research. Keep responses under 150 words. Focus on business impact, strategic implications, "
    "and actionable insights. Format with clear section headers using **bold** for readability."
)
NO_ANSWER = "I could not generate a response."


def fetch_simple_answer(llm: LLMClient, query: str) -> SimpleAnswer:
    """Short conversational answer with the citations the search model returned."""
    logger.info(f"💬 Simple chat query: {query[:100]}")
    completion = llm.complete(SIMPLE_SYSTEM_PROMPT, query, temperature=0.2, max_tokens=500)
    logger.debug(f"Simple chat answer: {len(completion.text)} chars, {len(completion.citations)} citations")
    return SimpleAnswer(response=completion.text or NO_ANSWER, citations=completion.citations)
