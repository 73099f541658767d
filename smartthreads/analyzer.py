"""Draft analysis: categorize a draft and flag it when it repeats recent conversation."""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ValidationError, field_validator

from .db import Category
from .llm import LLMGateway
from .logger import get_logger

logger = get_logger(__name__)

HISTORY_LIMIT = 30

SYSTEM_PROMPT = """You are a message analyzer for a team chat application. Analyze the draft message and recent conversation history.

Your task:
1. Categorize the draft into exactly one category:
   - "Scheduling" - meeting times, availability, reschedule requests (this takes priority over Question for time/date coordination)
   - "Question" - asking for information or clarification
   - "Update" - status updates, progress reports
   - "Concern" - expressing worry, potential issues, blockers
   - "Decision" - announcing or requesting a decision
   - "FYI" - general information sharing

2. Check if the draft is repetitive:
   - If the draft asks something already answered in the recent messages, set isRepetitive=true
   - If the draft states something already stated in the recent messages, set isRepetitive=true
   - When repetitive, set matchedMessageId to the id of the prior message (the value in square brackets)
   - When repetitive, set suggestedAnswer to a brief note referencing what was already said

Return ONLY valid JSON with this exact structure (no markdown, no explanation):
{"category":"<category>","isRepetitive":<boolean>,"matchedMessageId":"<id or null>","suggestedAnswer":"<string or null>"}"""


@dataclass
class HistoryMessage:
    id: str
    content: str
    category: str
    timestamp: str


@dataclass
class AnalysisResult:
    category: Category = Category.fyi
    is_repetitive: bool = False
    matched_message_id: Optional[str] = None
    suggested_answer: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "isRepetitive": self.is_repetitive,
            "matchedMessageId": self.matched_message_id,
            "suggestedAnswer": self.suggested_answer,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisResult":
        return cls(
            category=Category.parse(data.get("category")) or Category.fyi,
            is_repetitive=bool(data.get("isRepetitive")),
            matched_message_id=data.get("matchedMessageId"),
            suggested_answer=data.get("suggestedAnswer"),
        )


class AnalysisPayload(BaseModel):
    """Shape of the model's reply; anything that does not fit is discarded."""
    category: Optional[str] = None
    isRepetitive: bool = False
    matchedMessageId: Optional[str] = None
    suggestedAnswer: Optional[str] = None

    @field_validator("matchedMessageId", "suggestedAnswer", mode="before")
    @classmethod
    def _optional_text(cls, value):
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, str):
            value = value.strip()
            return None if value.lower() in ("", "null", "none") else value
        return value

    @field_validator("isRepetitive", mode="before")
    @classmethod
    def _missing_flag(cls, value):
        return False if value is None else value

    @field_validator("category", mode="before")
    @classmethod
    def _category_text(cls, value):
        # Unknown shapes fall back to FYI later rather than failing the payload
        return value if isinstance(value, str) else None


def render_history(history: Sequence[HistoryMessage]) -> str:
    if not history:
        return "(no prior messages)"
    return "\n".join(f"[{m.id}] ({m.category}, {m.timestamp}): {m.content}" for m in history)


def build_prompt(draft: str, history: Sequence[HistoryMessage]) -> str:
    return f"""Recent messages (last ~{HISTORY_LIMIT}):
{render_history(history)}

Draft message to analyze:
{draft}"""


class DraftAnalyzer:
    def __init__(self, gateway: LLMGateway):
        self.gateway = gateway

    async def analyze(self, draft: str, history: List[HistoryMessage]) -> AnalysisResult:
        """Classify ``draft`` against ``history`` (oldest first); never raises on LLM trouble."""
        history = list(history)[-HISTORY_LIMIT:]
        raw = await self.gateway.complete_json(SYSTEM_PROMPT, build_prompt(draft, history), temperature=0)
        if raw is None:
            return AnalysisResult()

        try:
            payload = AnalysisPayload.model_validate(raw)
        except ValidationError as e:
            logger.warning("Discarding invalid analysis payload: %s", e.errors())
            return AnalysisResult()

        result = AnalysisResult(
            category=Category.parse(payload.category) or Category.fyi,
            is_repetitive=payload.isRepetitive,
            matched_message_id=payload.matchedMessageId,
            suggested_answer=payload.suggestedAnswer,
        )

        known_ids = {str(m.id) for m in history}
        if result.matched_message_id and result.matched_message_id not in known_ids:
            logger.info("Dropping matched id %s not present in history", result.matched_message_id)
            result.matched_message_id = None
        return result
