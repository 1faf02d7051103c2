"""Tests for parsing and fetching executive chat briefs (src.adapters.chat_intel)."""

from src.adapters.chat_intel import (
    DEFAULT_ACTIONS,
    DEFAULT_IMPLICATIONS,
    NO_ANSWER,
    extract_section,
    fetch_chat_intel,
    fetch_simple_answer,
    parse_chat_intel,
)
from src.adapters.llm import Completion

WELL_FORMED = """## SIGNALS
- Retail media spend passes $60B
Summary: US retail media spend grew 20% year over year.
Source: eMarketer | https://emarketer.com/retail-media

- Amazon opens DSP to rivals
Summary: Amazon now sells inventory from third-party publishers.
Source: Adweek

## IMPLICATIONS
- Shopper data becomes the scarce asset
- Trade budgets move under marketing

## ACTIONS
- Audit retail media measurement
- Renegotiate joint business plans
"""


class TestParseChatIntel:
    def test_sections_are_parsed(self):
        result = parse_chat_intel(WELL_FORMED)

        assert [s.id for s in result.signals] == ["SIG-1", "SIG-2"]
        first, second = result.signals
        assert first.title == "Retail media spend passes $60B"
        assert first.summary == "US retail media spend grew 20% year over year."
        assert first.source_name == "eMarketer"
        assert first.source_url == "https://emarketer.com/retail-media"
        assert second.source_name == "Adweek"
        assert second.source_url == "#"
        assert result.implications == ["Shopper data becomes the scarce asset", "Trade budgets move under marketing"]
        assert result.actions == ["Audit retail media measurement", "Renegotiate joint business plans"]

    def test_bullet_fallback_uses_citations(self):
        content = "Quick take:\n- Retail media keeps growing\n- CTV prices are falling"
        result = parse_chat_intel(content, citations=["https://a.example"])

        assert len(result.signals) == 2
        assert result.signals[0].source_name == "Perplexity Analysis"
        assert result.signals[0].source_url == "https://a.example"
        assert result.signals[1].source_url == "#"

    def test_fallback_is_capped_at_five(self):
        content = "\n".join(f"- point {i}" for i in range(8))
        assert len(parse_chat_intel(content).signals) == 5

    def test_defaults_when_nothing_parses(self):
        result = parse_chat_intel("No structure at all.")
        assert result.signals == []
        assert result.implications == DEFAULT_IMPLICATIONS
        assert result.actions == DEFAULT_ACTIONS

    def test_wire_names_are_camel_case(self):
        dumped = parse_chat_intel(WELL_FORMED).model_dump(by_alias=True)
        assert "sourceName" in dumped["signals"][0]
        assert "sourceUrl" in dumped["signals"][0]


def test_extract_section_is_case_insensitive():
    assert extract_section("## actions\n- one", "ACTIONS") == "- one"
    assert extract_section("nothing here", "ACTIONS") is None


def test_fetch_chat_intel_passes_query_and_citations():
    class FakeLLM:
        def __init__(self):
            self.calls = []

        def complete(self, system_prompt, user_prompt, **kwargs):
            self.calls.append((system_prompt, user_prompt, kwargs))
            return Completion(text="- Budgets shift to CTV", citations=["https://digiday.com/x"])

    llm = FakeLLM()
    result = fetch_chat_intel(llm, "Where are CTV budgets going?")

    assert llm.calls[0][1] == "Where are CTV budgets going?"
    assert result.signals[0].source_url == "https://digiday.com/x"


class TestSimpleAnswer:
    class FakeLLM:
        def __init__(self, text, citations=()):
            self.text = text
            self.citations = list(citations)
            self.calls = []

        def complete(self, system_prompt, user_prompt, **kwargs):
            self.calls.append((system_prompt, user_prompt, kwargs))
            return Completion(text=self.text, citations=self.citations)

    def test_answer_and_citations(self):
        llm = self.FakeLLM("**Budgets** are moving to CTV.", ["https://digiday.com/x"])
        answer = fetch_simple_answer(llm, "Where are CTV budgets going?")

        assert answer.response == "**Budgets** are moving to CTV."
        assert answer.citations == ["https://digiday.com/x"]
        system_prompt, user_prompt, kwargs = llm.calls[0]
        assert "under 150 words" in system_prompt
        assert user_prompt == "Where are CTV budgets going?"
        assert kwargs["max_tokens"] == 500

    def test_empty_answer_gets_placeholder(self):
        answer = fetch_simple_answer(self.FakeLLM(""), "anything")
        assert answer.response == NO_ANSWER
        assert answer.citations == []
