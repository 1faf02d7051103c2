"""
This script runs the daily Discover card generation: for every pillar it fetches fresh news from Perplexity,
structures it into cards with the summarizer LLM, validates and dedupes them, and stores the survivors in Qdrant.
A summary with token usage, estimated cost and prompt-cache status is logged at the end.
To run this script, use the command: `PYTHONPATH=. python scripts/generate_cards.py` from the root of the project.
"""

import asyncio
import sys

from src.adapters.document_store import get_document_store
from src.adapters.llm import build_news_search, build_summarizer
from src.core.entities import RunSummary
from src.core.errors import ConfigurationError
from src.core.ingestion import IngestionPipeline

from utils.logging_setup import get_logger
logger = get_logger(__name__, log_file="scripts.log")


async def generate():
    # Check Qdrant connection first
    logger.info("🔍 Checking Qdrant connection...")
    try:
        store = get_document_store()
        store.ping()
        logger.info("🗃️ Qdrant connected.")
    except Exception as e:
        logger.error(f"❌ Cannot connect to Qdrant: {e}")
        logger.error("Make sure Qdrant is running: docker run -p 6333:6333 qdrant/qdrant")
        return None

    try:
        search = build_news_search()
        summarizer = build_summarizer()
    except ConfigurationError as e:
        logger.error(f"❌ {e}")
        return None

    pipeline = IngestionPipeline(search, summarizer, store)
    summary: RunSummary = await pipeline.run()

    logger.info(f"✅ Generation complete! {summary.successful} cards stored out of {summary.total} slots.")
    return summary


if __name__ == "__main__":
    result = asyncio.run(generate())
    sys.exit(0 if result is not None and result.successful > 0 else 1)
