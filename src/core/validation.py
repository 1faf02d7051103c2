"""
Editorial rule engine for candidate cards.

validate_card runs every rule in RULES over the raw candidate and folds the findings into a single verdict:
- a blocking finding is an issue and any issue rejects the card
- a non-blocking finding is a warning and only costs points
Every rule is evaluated even after earlier ones fail, so a rejected card still carries a full score for triage.
"""

import hashlib
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple

from src.core.entities import VALID_CARD_TYPES, VALID_PILLARS, ValidationResult

MAX_TITLE_CHARS = 80
MIN_TITLE_CHARS = 20
MIN_SUMMARY_CHARS = 50
MAX_SUMMARY_CHARS = 500
MIN_SIGNALS, MAX_SIGNALS = 2, 6
MIN_MOVES, MAX_MOVES = 2, 5
MIN_PASSING_SCORE = 50
FIRST_MOVE_PREFIX = "Your next move:"

HYPE_WORDS = (
    "revolutionary",
    "game-changing",
    "game changer",
    "paradigm shift",
    "disrupting",
    "disruptive",
    "transformative",
    "groundbreaking",
)
VAGUE_TERMS = ("consider", "maybe", "perhaps", "might want to", "should think about")
GENERIC_AI_TERMS = (
    "ai is changing everything",
    "the future of ai",
    "ai revolution",
    "in the age of ai",
)

EMOJI_PATTERN = re.compile(
    "[\U0001F600-\U0001F64F\U0001F300-\U0001F5FF\U0001F680-\U0001F6FF"
    "\U0001F1E0-\U0001F1FF\u2600-\u26FF\u2700-\u27BF]"
)
METRIC_PATTERN = re.compile(r"\d+%|\$\d+[BMK]?|\d+x|\d+\.\d+x", re.IGNORECASE)
IMPLICATION_PATTERN = re.compile(
    r"what this means|for (\w+), the|the implication|this puts pressure on", re.IGNORECASE
)


@dataclass(frozen=True)
class Finding:
    message: str
    penalty: int
    blocking: bool = True


Rule = Callable[[dict], Optional[Finding]]


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _headline_text(card: dict) -> str:
    return f"{_text(card.get('title'))} {_text(card.get('summary'))}".lower()


# critical rules: a failure rejects the card

def check_title(card: dict) -> Optional[Finding]:
    title = _text(card.get("title"))
    if not title.strip():
        return Finding("Title is missing", 50)
    if len(title) > MAX_TITLE_CHARS:
        return Finding(f"Title too long ({len(title)} chars, max {MAX_TITLE_CHARS})", 20)
    if len(title) < MIN_TITLE_CHARS:
        return Finding(f"Title too short ({len(title)} chars, min {MIN_TITLE_CHARS})", 15)
    return None


def check_summary(card: dict) -> Optional[Finding]:
    summary = _text(card.get("summary"))
    if not summary.strip():
        return Finding("Summary is missing", 50)
    if len(summary) < MIN_SUMMARY_CHARS:
        return Finding(f"Summary too short ({len(summary)} chars, min {MIN_SUMMARY_CHARS})", 30)
    if len(summary) > MAX_SUMMARY_CHARS:
        return Finding(f"Summary very long ({len(summary)} chars) - consider condensing", 5, blocking=False)
    return None


def check_signals(card: dict) -> Optional[Finding]:
    signals = card.get("signals")
    if not isinstance(signals, list):
        return Finding("Signals field is missing or not an array", 25)
    if len(signals) < MIN_SIGNALS:
        return Finding(f"Need at least {MIN_SIGNALS} signals (found {len(signals)})", 25)
    if len(signals) > MAX_SIGNALS:
        return Finding(f"Too many signals ({len(signals)}) - recommended max is 4-5", 5, blocking=False)
    return None


def check_moves(card: dict) -> Optional[Finding]:
    moves = card.get("moves")
    if not isinstance(moves, list):
        return Finding("Moves field is missing or not an array", 25)
    if len(moves) < MIN_MOVES:
        return Finding(f"Need at least {MIN_MOVES} moves (found {len(moves)})", 25)
    if len(moves) > MAX_MOVES:
        return Finding(f"Too many moves ({len(moves)}) - recommended max is 3-4", 5, blocking=False)
    return None


def check_first_move(card: dict) -> Optional[Finding]:
    moves = card.get("moves")
    if not isinstance(moves, list) or not moves:
        return None
    if not _text(moves[0]).strip().startswith(FIRST_MOVE_PREFIX):
        return Finding(f'First move must start with "{FIRST_MOVE_PREFIX}"', 15)
    return None


def check_pillar(card: dict) -> Optional[Finding]:
    pillar = card.get("pillar")
    if not pillar:
        return Finding("Pillar is missing", 20)
    if pillar not in VALID_PILLARS:
        return Finding(f'Invalid pillar "{pillar}" - must be one of: {", ".join(VALID_PILLARS)}', 20)
    return None


def check_source(card: dict) -> Optional[Finding]:
    if not _text(card.get("source")).strip():
        return Finding("Source name is required", 20)
    return None


def check_source_tier(card: dict) -> Optional[Finding]:
    tier = card.get("sourceTier")
    if not _is_number(tier):
        return Finding("Source tier is required and must be a number", 15)
    if tier < 1 or tier > 5:
        return Finding(f"Source tier must be 1-5 (found {tier})", 15)
    return None


def check_hype_language(card: dict) -> Optional[Finding]:
    text = _headline_text(card)
    found = [word for word in HYPE_WORDS if word in text]
    if not found:
        return None
    return Finding(f"Contains prohibited hype language: {', '.join(found)}", 10 * len(found))


def check_emoji(card: dict) -> Optional[Finding]:
    if EMOJI_PATTERN.search(_text(card.get("title"))) or EMOJI_PATTERN.search(_text(card.get("summary"))):
        return Finding("Emojis are not allowed in title or summary (per editorial guidelines)", 15)
    return None


# quality rules: warnings only

def check_card_type(card: dict) -> Optional[Finding]:
    card_type = card.get("type")
    if not card_type:
        return Finding('Card type missing - defaulting to "brief"', 5, blocking=False)
    if card_type not in VALID_CARD_TYPES:
        return Finding(
            f'Invalid card type "{card_type}" - should be: {", ".join(VALID_CARD_TYPES)}', 5, blocking=False
        )
    return None


def check_signal_metrics(card: dict) -> Optional[Finding]:
    signals = card.get("signals")
    if not isinstance(signals, list):
        return None
    if any(METRIC_PATTERN.search(str(signal)) for signal in signals):
        return None
    return Finding("Signals should include specific metrics (%, $, x multipliers)", 5, blocking=False)


def check_tier_priority(card: dict) -> Optional[Finding]:
    tier, priority = card.get("sourceTier"), card.get("priority")
    if not (_is_number(tier) and _is_number(priority)):
        return None
    if tier > 2 and priority > 85:
        return Finding(
            f"High priority card ({priority}) should ideally use Tier 1-2 source "
            f"(currently Tier {tier}: {card.get('source')})",
            5,
            blocking=False,
        )
    return None


def check_vague_moves(card: dict) -> Optional[Finding]:
    moves = card.get("moves")
    if not isinstance(moves, list):
        return None
    text = " ".join(str(move) for move in moves).lower()
    found = [term for term in VAGUE_TERMS if term in text]
    if not found:
        return None
    return Finding(f"Moves should be direct and specific, not vague. Found: {', '.join(found)}", 3, blocking=False)


def check_generic_ai(card: dict) -> Optional[Finding]:
    text = _headline_text(card)
    found = [term for term in GENERIC_AI_TERMS if term in text]
    if not found:
        return None
    return Finding(
        "Content feels generic. Focus on marketing/brand-specific AI applications. "
        f"Found: {', '.join(found)}",
        5,
        blocking=False,
    )


def check_implication_framing(card: dict) -> Optional[Finding]:
    if IMPLICATION_PATTERN.search(_text(card.get("summary"))):
        return None
    return Finding('Summary should include "what this means" language for target audience', 3, blocking=False)


RULES: Tuple[Rule, ...] = (
    check_title,
    check_summary,
    check_signals,
    check_moves,
    check_first_move,
    check_pillar,
    check_source,
    check_source_tier,
    check_card_type,
    check_hype_language,
    check_emoji,
    check_signal_metrics,
    check_tier_priority,
    check_vague_moves,
    check_generic_ai,
    check_implication_framing,
)


def validate_card(card: dict, rules: Tuple[Rule, ...] = RULES) -> ValidationResult:
    """
    Score a candidate card against the editorial rules.

    Starts at 100 and subtracts each finding's penalty. The card is valid only when there
    are no blocking issues and the score is still at least 50. The reported score is clamped to 0-100.
    """
    if not isinstance(card, dict):
        card = {}

    score = 100
    issues, warnings = [], []
    for rule in rules:
        finding = rule(card)
        if finding is None:
            continue
        score -= finding.penalty
        (issues if finding.blocking else warnings).append(finding.message)

    return ValidationResult(
        is_valid=not issues and score >= MIN_PASSING_SCORE,
        score=max(0, min(100, score)),
        issues=issues,
        warnings=warnings,
    )


def generate_content_hash(content: str) -> str:
    """MD5 of the normalised content, used for exact-equality dedup (title + summary)."""
    return hashlib.md5(content.strip().lower().encode("utf-8")).hexdigest()


def card_content_hash(card: dict) -> str:
    return generate_content_hash(_text(card.get("title")) + _text(card.get("summary")))
