"""
Rules-based priority for cards, used to rank what gets published first.
"""

import random

MIN_PRIORITY, MAX_PRIORITY = 1, 100
BASE_SCORE = 50
RECENCY_BONUS = 20  # every generated card is same-day
BRIEF_BONUS = 5

PILLAR_WEIGHTS = {
    "ai_strategy": 15,
    "competitive_intel": 10,
    "brand_performance": 8,
    "media_trends": 7,
}
DEFAULT_PILLAR_WEIGHT = 5


def source_count_bonus(source_count: int) -> int:
    if source_count >= 15:
        return 20
    if source_count >= 10:
        return 15
    if source_count >= 5:
        return 10
    return 5


def calculate_priority(source_count: int, pillar: str, card_type: str, rng=None) -> int:
    """
    Score a card 1-100 from how many sources back it, its pillar and its type.

    A jitter of 0-4 breaks ties between otherwise identical cards; pass `rng`
    (anything with `randint`) to make it reproducible.
    """
    rng = rng or random
    score = BASE_SCORE + RECENCY_BONUS
    score += source_count_bonus(source_count or 0)
    score += PILLAR_WEIGHTS.get(pillar, DEFAULT_PILLAR_WEIGHT)
    if card_type == "brief":
        score += BRIEF_BONUS
    score += rng.randint(0, 4)
    return min(MAX_PRIORITY, max(MIN_PRIORITY, score))
