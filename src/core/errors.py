"""
Typed errors for the intelligence card engine.

Validation and duplicate rejections are not errors: they are ordinary outcomes recorded on a SlotResult.
Everything here is something a caller has to decide how to surface (HTTP status, per-slot failure, log line).
"""


class IntelError(Exception):
    """Base error for the card engine."""


class ConfigurationError(IntelError):
    """A required credential or setting is missing."""


class CollaboratorError(IntelError):
    """An LLM or document-store call failed or timed out."""


class MalformedCardError(CollaboratorError):
    """LLM output could not be turned into the card shape."""


class CardNotFoundError(IntelError):
    def __init__(self, card_id: str):
        super().__init__(f"No card found with ID: {card_id}")
        self.card_id = card_id


class NoCardsAvailableError(IntelError):
    """The publishing window is empty, or every card in it was already posted."""

    NO_CARDS = "no_cards"
    ALL_POSTED = "all_posted"

    def __init__(self, reason: str, total_cards: int = 0):
        if reason == self.ALL_POSTED:
            message = "All recent cards have already been published to LinkedIn."
        else:
            message = "No intelligence cards found from the last 24 hours. Daily generation may not have run yet."
        super().__init__(message)
        self.reason = reason
        self.total_cards = total_cards
