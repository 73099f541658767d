from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .db import ALL_INTENTS, Category
from .errors import InvalidInput
from .llm import LLMGateway
from .logger import get_logger

logger = get_logger(__name__)

SUMMARY_LIMIT = 30

NO_MESSAGES_BULLET = "No messages to summarize yet."
NOT_CONFIGURED_BULLET = "Summaries are unavailable because no LLM API key is configured."
FAILURE_BULLET = "Unable to generate a summary right now. Try refreshing in a moment."

INTENT_PHRASING = {
    Category.decision: 'Phrase each bullet as "Team decided ..." or "Agreed to ...".',
    Category.question: "Phrase each bullet as the open question being asked, noting if it was answered.",
    Category.scheduling: "Phrase each bullet as what is happening and when.",
    Category.concern: "Phrase each bullet as the risk or blocker raised.",
    Category.update: "Phrase each bullet as the progress or status reported.",
    Category.fyi: "Phrase each bullet as the fact that was shared.",
}


@dataclass
class SummaryMessage:
    id: str
    content: str
    category: str
    created_at: str
    author_name: Optional[str]
    author_email: str
    parent_message_id: Optional[str] = None


@dataclass
class SummaryResult:
    bullets: List[str] = field(default_factory=list)


def parse_intent_filter(intent_filter: str) -> Optional[Category]:
    """Return the Category to filter on, or None for "All"."""
    if intent_filter == ALL_INTENTS:
        return None
    category = Category.parse(intent_filter)
    if category is None:
        raise InvalidInput(f"Unknown intent filter: {intent_filter}")
    return category


def render_messages(messages: Sequence[SummaryMessage]) -> str:
    lines = []
    for m in messages:
        reply = "[reply]" if m.parent_message_id else ""
        author = m.author_name or m.author_email
        lines.append(f"[{m.category}]{reply} {author}: {m.content}")
    return "\n".join(lines)


def build_system_prompt(category: Optional[Category]) -> str:
    if category is None:
        return """You summarize a team chat thread.
Write 3-6 short bullets that synthesize the conversation. Prioritize, in order:
decisions made, open questions, next steps, and scheduling.
Return ONLY valid JSON: {"bullets": ["...", "..."]}"""

    return f"""You summarize a team chat thread, filtered to "{category.value}" messages.
Write bullets ONLY for content that strictly matches the "{category.value}" intent; skip anything else.
Keep each bullet to about 12 words. {INTENT_PHRASING[category]}
Return ONLY valid JSON: {{"bullets": ["...", "..."]}}"""


def clean_bullets(raw) -> List[str]:
    if not isinstance(raw, dict):
        return []
    bullets = raw.get("bullets")
    if not isinstance(bullets, list):
        return []
    cleaned = []
    for b in bullets:
        if not isinstance(b, str):
            continue
        b = b.strip().lstrip("-*• ").strip()
        if b:
            cleaned.append(b)
    return cleaned


class Summarizer:
    def __init__(self, gateway: LLMGateway):
        self.gateway = gateway

    async def summarize(self, messages: Sequence[SummaryMessage], intent_filter: str) -> SummaryResult:
        """Best-effort bullet summary of chronologically ordered ``messages``."""
        category = parse_intent_filter(intent_filter)

        if not messages:
            return SummaryResult([NO_MESSAGES_BULLET])
        if not self.gateway.configured:
            return SummaryResult([NOT_CONFIGURED_BULLET])

        messages = list(messages)[-SUMMARY_LIMIT:]
        label = "messages" if category is None else f"{category.value} messages"
        prompt = f"Recent {label} (oldest first):\n{render_messages(messages)}"

        raw = await self.gateway.complete_json(build_system_prompt(category), prompt, temperature=0.3)
        bullets = clean_bullets(raw)
        if not bullets:
            logger.warning("Summary for filter %s produced no usable bullets", intent_filter)
            return SummaryResult([FAILURE_BULLET])
        return SummaryResult(bullets)
