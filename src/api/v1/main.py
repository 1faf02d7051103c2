"""
This is the main FastAPI application file that defines the API endpoints for the intelligence card engine.

Endpoints called by the n8n publishing workflow require the X-API-Key header:
- POST /api/v1/cards            store externally generated cards
- GET  /api/v1/cards/top        highest-priority unposted card from the last 24 hours
- POST /api/v1/cards/published  mark a card as posted to LinkedIn

Public endpoints:
- GET  /api/v1/cards                Discover feed
- POST /api/v1/chat-intel           ask a strategy question, get a short intelligence brief
- POST /api/v1/chat-simple          ask a question, get a short conversational answer
- GET  /api/v1/briefings/latest     daily briefings for an audience, cached for 24 hours
- POST /api/v1/briefings/generate   regenerate the briefings and refresh the cache
- GET  /api/v1/trending/topics      trending topics with sample questions, cached for 24 hours
"""

import asyncio
import os
import secrets
from typing import Any, Dict, Optional

from dotenv import load_dotenv
load_dotenv()
from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse

from src.adapters.briefings import (
    DEFAULT_AUDIENCE,
    DEFAULT_LIMIT,
    AudienceCache,
    generate_briefings,
    generate_trending_topics,
)
from src.adapters.chat_intel import build_chat_client, fetch_chat_intel, fetch_simple_answer
from src.adapters.document_store import get_document_store
from src.core.entities import VALID_PILLARS, utcnow
from src.core.errors import CardNotFoundError, ConfigurationError, NoCardsAvailableError
from src.core.use_cases import get_top_unpublished, list_cards, mark_published, store_cards

from utils.logging_setup import get_logger
logger = get_logger(__name__, log_file="api_v1.log")

INTEL_API_KEY = os.getenv("INTEL_API_KEY")
MAX_FEED_ITEMS = 12

app = FastAPI(title="Planner Intel API", version="1.0.0")


class ApiError(Exception):
    def __init__(self, status_code: int, error: str, message: str, **extra: Any):
        super().__init__(message)
        self.status_code = status_code
        self.error = error
        self.message = message
        self.extra = extra


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error, "message": exc.message, **exc.extra, "timestamp": utcnow().isoformat()},
    )


def _internal_error(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "message": message, "timestamp": utcnow().isoformat()},
    )


# dependencies
def get_store():
    return get_document_store()


def get_chat_client_factory():
    return build_chat_client


briefings_cache = AudienceCache()
trending_cache = AudienceCache()


def get_briefings_cache():
    return briefings_cache


def get_trending_cache():
    return trending_cache


def require_api_key(x_api_key: Optional[str] = Header(default=None, alias="X-API-Key")):
    if not INTEL_API_KEY:
        logger.error("INTEL_API_KEY is not configured - refusing authenticated requests")
        raise ApiError(500, "Service configuration error", "Please contact support.")
    if not x_api_key or not secrets.compare_digest(x_api_key, INTEL_API_KEY):
        logger.error("Unauthorized request - invalid or missing API key")
        raise ApiError(401, "Unauthorized", "Valid X-API-Key header is required")


async def _json_object(request: Request) -> Dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError:
        raise ApiError(400, "Invalid payload", "Request body must be valid JSON")
    if not isinstance(payload, dict):
        raise ApiError(400, "Invalid payload", "Request body must be a JSON object")
    return payload


def _build_llm(client_factory, tag: str):
    try:
        return client_factory()
    except ConfigurationError as e:
        logger.error(f"[{tag}] {e}")
        raise ApiError(500, "Service configuration error", "Please contact support.")


# welcome endpoint
@app.get("/")
async def root():
    return {
        "message": "Welcome to the Planner Intel API",
        "endpoints": {
            "cards": "/api/v1/cards",
            "top_card": "/api/v1/cards/top",
            "mark_published": "/api/v1/cards/published",
            "chat_intel": "/api/v1/chat-intel",
            "chat_simple": "/api/v1/chat-simple",
            "briefings": "/api/v1/briefings/latest",
            "trending": "/api/v1/trending/topics",
            "health": "/health"
        }
    }

# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring."""
    return {"status": "healthy", "service": "planner-intel-api"}


@app.post("/api/v1/cards", dependencies=[Depends(require_api_key)])
async def post_cards(request: Request, store=Depends(get_store)):
    """
    Store cards generated by the n8n workflow.

    Body: { "cards": [ ... ] }. Every card is validated; rejected cards are logged for review.
    """
    payload = await _json_object(request)
    cards = payload.get("cards")
    if cards is None:
        raise ApiError(400, "Invalid payload", 'Request body must include "cards" field')
    if not isinstance(cards, list):
        raise ApiError(400, "Invalid payload", "Cards must be an array")
    if not cards:
        raise ApiError(400, "Invalid payload", "Cards array cannot be empty")

    try:
        result = store_cards(store, cards)
    except Exception as e:
        logger.error(f"Error processing cards: {e}", exc_info=True)
        return _internal_error("Failed to store cards")

    logger.info(f"✅ Request completed: {result.stored} stored, {result.rejected} rejected, {result.duplicates} duplicates")
    return result.model_dump(mode="json", by_alias=True)


@app.get("/api/v1/cards/top", dependencies=[Depends(require_api_key)])
async def get_top_card(store=Depends(get_store)):
    """Highest-priority card from the last 24 hours that has not been posted to LinkedIn."""
    try:
        card = get_top_unpublished(store)
    except NoCardsAvailableError as e:
        error = "No unposted cards" if e.reason == NoCardsAvailableError.ALL_POSTED else "No cards available"
        raise ApiError(404, error, str(e), reason=e.reason, totalCards=e.total_cards)
    except Exception as e:
        logger.error(f"[Publishing] Error fetching top card: {e}", exc_info=True)
        return _internal_error("Failed to fetch top card")

    return {
        "card": card.model_dump(mode="json", by_alias=True),
        "metadata": {"selectedReason": "Highest priority unposted card from last 24 hours"},
        "timestamp": utcnow().isoformat(),
    }


@app.post("/api/v1/cards/published", dependencies=[Depends(require_api_key)])
async def post_card_published(request: Request, store=Depends(get_store)):
    """Body: { "cardId": "...", "linkedinPostUrl": "..." (optional) }"""
    payload = await _json_object(request)
    card_id = payload.get("cardId")
    if not card_id or not isinstance(card_id, str):
        raise ApiError(400, "Invalid payload", "cardId is required and must be a string")
    post_url = payload.get("linkedinPostUrl")
    if post_url is not None and not isinstance(post_url, str):
        raise ApiError(400, "Invalid payload", "linkedinPostUrl must be a string")

    try:
        return mark_published(store, card_id, post_url or None)
    except CardNotFoundError as e:
        raise ApiError(404, "Card not found", str(e))
    except Exception as e:
        logger.error(f"[LinkedIn] Error marking card as posted: {e}", exc_info=True)
        return _internal_error("Failed to mark card as posted")


# endpoint to read the Discover feed
@app.get("/api/v1/cards")
async def get_cards(
    pillar: Optional[str] = None,
    limit: int = Query(20, ge=1, le=100),
    store=Depends(get_store)
):
    """
    Latest cards, newest first.

    - **pillar**: Only cards from this pillar (ai_strategy, brand_performance, competitive_intel, media_trends)
    - **limit**: Maximum number of cards to return (1-100)
    """
    if pillar and pillar not in VALID_PILLARS:
        raise ApiError(400, "Invalid pillar", f"pillar must be one of: {', '.join(VALID_PILLARS)}")
    try:
        cards = list_cards(store, pillar=pillar, limit=limit)
    except Exception as e:
        logger.error(f"Error fetching cards: {e}")
        return _internal_error("Failed to fetch cards")

    return {
        "count": len(cards),
        "cards": [card.model_dump(mode="json", by_alias=True) for card in cards],
    }


@app.post("/api/v1/chat-intel")
async def chat_intel(request: Request, client_factory=Depends(get_chat_client_factory)):
    """Body: { "query": "..." }. Returns signals, implications and actions."""
    payload = await _json_object(request)
    query = payload.get("query")
    if not query or not isinstance(query, str):
        raise ApiError(400, "Invalid request", "Please provide a query string in the request body.")
    if not query.strip():
        raise ApiError(400, "Invalid request", "Query cannot be empty.")

    llm = _build_llm(client_factory, "chatIntel")

    try:
        response = await asyncio.to_thread(fetch_chat_intel, llm, query.strip())
    except Exception as e:
        logger.error(f"[chatIntel] Error generating brief: {e}", exc_info=True)
        return _internal_error(
            "Unable to generate intelligence brief at this time. Please try again or contact support if the issue persists."
        )

    return response.model_dump(mode="json", by_alias=True)


def _query_text(payload: Dict[str, Any]) -> str:
    query = payload.get("query")
    if not query or not isinstance(query, str) or not query.strip():
        raise ApiError(400, "Invalid request", "Please provide a query string in the request body.")
    return query.strip()


@app.post("/api/v1/chat-simple")
async def chat_simple(request: Request, client_factory=Depends(get_chat_client_factory)):
    """Body: { "query": "..." }. Returns { response, citations }."""
    query = _query_text(await _json_object(request))
    llm = _build_llm(client_factory, "chatSimple")

    try:
        answer = await asyncio.to_thread(fetch_simple_answer, llm, query)
    except Exception as e:
        logger.error(f"[chatSimple] Error answering query: {e}", exc_info=True)
        return _internal_error("Unable to process your question. Please try again.")

    return answer.model_dump(mode="json", by_alias=True)


def _feed_response(key: str, items, cached: bool, generated_at) -> Dict[str, Any]:
    return {
        key: [item.model_dump(mode="json", by_alias=True) for item in items],
        "cached": cached,
        "generatedAt": generated_at.isoformat(),
    }


async def _refresh_briefings(cache: AudienceCache, client_factory, audience: str, limit: int):
    llm = _build_llm(client_factory, "Briefings")
    try:
        briefings = await asyncio.to_thread(generate_briefings, llm, audience, limit)
    except Exception as e:
        logger.error(f"[Briefings] Error generating briefings: {e}", exc_info=True)
        return _internal_error(
            "Unable to generate intelligence briefings at this time. Please try again or contact support if the issue persists."
        )
    generated_at = cache.put(audience, briefings)
    return _feed_response("briefings", briefings[:limit], False, generated_at)


@app.get("/api/v1/briefings/latest")
async def get_latest_briefings(
    audience: str = DEFAULT_AUDIENCE,
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_FEED_ITEMS),
    cache=Depends(get_briefings_cache),
    client_factory=Depends(get_chat_client_factory),
):
    """
    Today's intelligence briefings for an audience (CMO, VP Marketing, Brand Director, Growth Leader).

    Served from the per-audience cache when it is younger than 24 hours, generated otherwise.
    """
    hit = cache.get(audience)
    if hit:
        briefings, generated_at = hit
        logger.info(f"[Briefings] Cache hit for audience: {audience}")
        return _feed_response("briefings", briefings[:limit], True, generated_at)

    logger.info(f"[Briefings] Cache miss for audience: {audience}, generating...")
    return await _refresh_briefings(cache, client_factory, audience, limit)


@app.post("/api/v1/briefings/generate")
async def post_generate_briefings(
    request: Request,
    cache=Depends(get_briefings_cache),
    client_factory=Depends(get_chat_client_factory),
):
    """Body (optional): { "audience": "CMO", "limit": 6 }. Always regenerates and replaces the cached set."""
    payload = await _json_object(request) if await request.body() else {}
    audience = payload.get("audience") or DEFAULT_AUDIENCE
    limit = payload.get("limit", DEFAULT_LIMIT)
    if not isinstance(audience, str):
        raise ApiError(400, "Invalid payload", "audience must be a string")
    if not isinstance(limit, int) or isinstance(limit, bool) or not 1 <= limit <= MAX_FEED_ITEMS:
        raise ApiError(400, "Invalid payload", f"limit must be an integer between 1 and {MAX_FEED_ITEMS}")

    logger.info(f"[Briefings] Force generating briefings for audience: {audience}")
    return await _refresh_briefings(cache, client_factory, audience, limit)


@app.get("/api/v1/trending/topics")
async def get_trending_topics(
    audience: str = DEFAULT_AUDIENCE,
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_FEED_ITEMS),
    cache=Depends(get_trending_cache),
    client_factory=Depends(get_chat_client_factory),
):
    """Trending marketing topics with a sample question each, cached per audience for 24 hours."""
    hit = cache.get(audience)
    if hit:
        topics, generated_at = hit
        logger.info(f"[Trending] Cache hit for audience: {audience}")
        return _feed_response("topics", topics[:limit], True, generated_at)

    logger.info(f"[Trending] Cache miss for audience: {audience}, generating...")
    llm = _build_llm(client_factory, "Trending")
    try:
        topics = await asyncio.to_thread(generate_trending_topics, llm, audience, limit)
    except Exception as e:
        logger.error(f"[Trending] Error fetching topics: {e}", exc_info=True)
        return _internal_error(
            "Unable to fetch trending topics at this time. Please try again or contact support if the issue persists."
        )
    generated_at = cache.put(audience, topics)
    return _feed_response("topics", topics, False, generated_at)
