"""Tests for the OpenAI-protocol adapters in src.adapters.llm, with a stubbed SDK client."""

import json
from types import SimpleNamespace

import httpx
import pytest
from openai import APIError

from src.adapters import llm as llm_module
from src.adapters.llm import (
    CARD_PROMPT_CACHE_KEY,
    CardSummarizer,
    LLMClient,
    NewsSearchService,
    SEARCH_DOMAINS,
    SEARCH_EXCLUSION_LIMIT,
    extract_card,
    parse_generated_card,
    usage_from_response,
)
from src.core.entities import PillarConfig
from src.core.errors import CollaboratorError, ConfigurationError, MalformedCardError


def _response(text, prompt_tokens=100, completion_tokens=50, cached_tokens=0, citations=None):
    usage = SimpleNamespace(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        prompt_tokens_details=SimpleNamespace(cached_tokens=cached_tokens),
    )
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=text))],
        usage=usage,
        citations=citations,
    )


class StubCompletions:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return self.response


def _client(response=None, error=None):
    completions = StubCompletions(response, error)
    sdk = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return LLMClient(api_key="test", model="test-model", client=sdk), completions


PILLAR = PillarConfig(
    id="media_trends",
    query="advertising trends",
    card_count=2,
    diverse_queries=["retail media networks", "CTV programmatic"],
)


class TestLLMClient:
    def test_builds_messages_and_cache_key(self):
        client, completions = _client(_response("ok"))
        client.complete("system", "user", cache_key="k1", temperature=0.3)

        call = completions.calls[0]
        assert call["model"] == "test-model"
        assert call["messages"] == [
            {"role": "system", "content": "system"},
            {"role": "user", "content": "user"},
        ]
        assert call["extra_body"] == {"prompt_cache_key": "k1"}
        assert call["temperature"] == 0.3

    def test_no_system_prompt_no_extra_body(self):
        client, completions = _client(_response("ok"))
        client.complete(None, "user")
        call = completions.calls[0]
        assert call["messages"] == [{"role": "user", "content": "user"}]
        assert "extra_body" not in call

    def test_reports_cached_tokens(self):
        client, _ = _client(_response("ok", prompt_tokens=1000, completion_tokens=200, cached_tokens=800))
        completion = client.complete("system", "user")
        assert completion.usage.input_tokens == 200
        assert completion.usage.cache_read_input_tokens == 800
        assert completion.usage.output_tokens == 200
        assert completion.cache_hit

    def test_citations_are_kept(self):
        client, _ = _client(_response("ok", citations=["https://adweek.com/a"]))
        assert client.complete(None, "user").citations == ["https://adweek.com/a"]

    def test_api_error_becomes_collaborator_error(self):
        error = APIError("boom", request=httpx.Request("POST", "https://api.example.com"), body=None)
        client, _ = _client(error=error)
        with pytest.raises(CollaboratorError):
            client.complete(None, "user")

    def test_missing_usage(self):
        assert usage_from_response(None).cache_status == "MISS"


class TestNewsSearch:
    def test_uses_slot_query_and_search_filters(self):
        client, completions = _client(_response("Retail media news"))
        NewsSearchService(client).fetch_pillar_news(PILLAR, 0)

        call = completions.calls[0]
        assert "retail media networks" in call["messages"][0]["content"]
        assert call["extra_body"]["search_domain_filter"] == SEARCH_DOMAINS
        assert call["extra_body"]["search_recency_filter"] == "day"

    def test_slot_without_diverse_query_uses_default(self):
        client, completions = _client(_response("news"))
        NewsSearchService(client).fetch_pillar_news(PILLAR, 5)
        assert "advertising trends" in completions.calls[0]["messages"][0]["content"]

    def test_only_recent_exclusions_are_sent(self):
        client, completions = _client(_response("news"))
        topics = [f"topic{i}" for i in range(15)]
        NewsSearchService(client).fetch_pillar_news(PILLAR, 1, topics)

        prompt = completions.calls[0]["messages"][0]["content"]
        assert "already covered" in prompt
        assert "topic14" in prompt
        assert f"topic{15 - SEARCH_EXCLUSION_LIMIT - 1}," not in prompt

    def test_empty_answer_is_an_error(self):
        client, _ = _client(_response(""))
        with pytest.raises(CollaboratorError):
            NewsSearchService(client).fetch_pillar_news(PILLAR, 0)


class TestSummarizer:
    def test_hot_take_prompt_with_diversity_note(self):
        client, completions = _client(_response("{}"))
        CardSummarizer(client).summarize("raw news", "media_trends", "hot_take", ["netflix"])

        call = completions.calls[0]
        user_prompt = call["messages"][1]["content"]
        assert "Create a hot take" in user_prompt
        assert "netflix" in user_prompt
        assert call["extra_body"] == {"prompt_cache_key": CARD_PROMPT_CACHE_KEY}

    def test_brief_prompt_without_exclusions(self):
        client, completions = _client(_response("{}"))
        CardSummarizer(client).summarize("raw news", "ai_strategy", "brief")
        user_prompt = completions.calls[0]["messages"][1]["content"]
        assert "Create a brief" in user_prompt
        assert "DIVERSITY" not in user_prompt


class TestCardParsing:
    def test_strips_markdown_fences(self, make_card):
        text = "```json\n" + json.dumps(make_card()) + "\n```"
        assert parse_generated_card(text).title == make_card()["title"]

    def test_invalid_json(self):
        with pytest.raises(MalformedCardError):
            parse_generated_card("Here is your card: {title")

    def test_empty_response(self):
        with pytest.raises(MalformedCardError, match="empty"):
            parse_generated_card("   ")

    def test_json_array_is_rejected(self):
        with pytest.raises(MalformedCardError):
            parse_generated_card("[1, 2]")

    def test_missing_fields_are_named(self, make_card):
        with pytest.raises(MalformedCardError, match="sourceCount"):
            parse_generated_card(json.dumps(make_card(sourceCount=None)))

    def test_source_count_must_be_positive(self, make_card):
        with pytest.raises(MalformedCardError, match="sourceCount"):
            parse_generated_card(json.dumps(make_card(sourceCount=0)))

    def test_long_title_is_left_to_the_validator(self, make_card):
        card = extract_card(json.dumps(make_card(title="x" * 81)))
        assert len(card["title"]) == 81

    def test_extract_card_keeps_only_what_was_returned(self, make_card):
        card = extract_card(json.dumps(make_card(sourceTier=None)))
        assert card["sourceCount"] == 8
        assert card["pillar"] == "media_trends"
        assert "sourceTier" not in card
        assert "primaryTopic" not in card


class TestFactories:
    def test_missing_perplexity_key(self, monkeypatch):
        monkeypatch.setattr(llm_module, "PPLX_API_KEY", None)
        with pytest.raises(ConfigurationError):
            llm_module.build_news_search()

    def test_missing_summarizer_key(self, monkeypatch):
        monkeypatch.setattr(llm_module, "LLM_API_KEY", None)
        with pytest.raises(ConfigurationError):
            llm_module.build_summarizer()
