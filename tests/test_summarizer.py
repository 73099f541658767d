import httpx
import pytest

from smartthreads.config import Settings
from smartthreads.errors import InvalidInput
from smartthreads.llm import LLMGateway
from smartthreads.summarizer import (
    FAILURE_BULLET,
    NO_MESSAGES_BULLET,
    NOT_CONFIGURED_BULLET,
    Summarizer,
    SummaryMessage,
    render_messages,
)

MESSAGES = [
    SummaryMessage(id="1", content="Let's ship on Friday", category="Decision", created_at="t1",
                   author_name="Alice", author_email="alice@example.com"),
    SummaryMessage(id="2", content="Does Friday include the docs?", category="Decision", created_at="t2",
                   author_name=None, author_email="bob@example.com", parent_message_id="1"),
]


def summarizer_for(api, key="sk-test"):
    return Summarizer(LLMGateway(Settings(openai_api_key=key), transport=api.transport))


@pytest.mark.parametrize("intent", ["All", "Decision", "Scheduling"])
async def test_empty_input_is_the_same_marker_for_every_filter(fake_llm, intent):
    api = fake_llm({"bullets": ["should not be used"]})
    result = await summarizer_for(api).summarize([], intent)
    assert result.bullets == [NO_MESSAGES_BULLET]
    assert api.requests == []


async def test_missing_key_short_circuits(fake_llm):
    api = fake_llm({"bullets": ["x"]})
    result = await summarizer_for(api, key=None).summarize(MESSAGES, "All")
    assert result.bullets == [NOT_CONFIGURED_BULLET]
    assert api.requests == []


async def test_overall_summary(fake_llm):
    api = fake_llm({"bullets": ["Team plans to ship Friday", "- Open question on docs scope", 42, ""]})
    result = await summarizer_for(api).summarize(MESSAGES, "All")

    assert result.bullets == ["Team plans to ship Friday", "Open question on docs scope"]
    assert api.requests[0]["temperature"] == 0.3
    assert "3-6" in api.last_system
    assert "[Decision] Alice: Let's ship on Friday" in api.last_prompt
    assert "[Decision][reply] bob@example.com: Does Friday include the docs?" in api.last_prompt


async def test_filtered_summary_uses_intent_phrasing(fake_llm):
    api = fake_llm({"bullets": ["Team decided to ship Friday"]})
    result = await summarizer_for(api).summarize(MESSAGES, "Decision")

    assert result.bullets == ["Team decided to ship Friday"]
    assert "Team decided" in api.last_system
    assert "12 words" in api.last_system
    assert "Decision messages" in api.last_prompt


@pytest.mark.parametrize("reply", [
    {"bullets": []},
    {"bullets": "one long string"},
    {"summary": ["wrong key"]},
    httpx.Response(500, text="boom"),
    httpx.ReadTimeout("slow"),
])
async def test_failures_yield_fallback_bullet(fake_llm, reply):
    result = await summarizer_for(fake_llm(reply)).summarize(MESSAGES, "All")
    assert result.bullets == [FAILURE_BULLET]


async def test_unknown_intent_filter_is_rejected(fake_llm):
    with pytest.raises(InvalidInput):
        await summarizer_for(fake_llm()).summarize(MESSAGES, "Gossip")


def test_render_messages_marks_replies():
    assert render_messages(MESSAGES).splitlines() == [
        "[Decision] Alice: Let's ship on Friday",
        "[Decision][reply] bob@example.com: Does Friday include the docs?",
    ]
