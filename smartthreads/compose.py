"""
Send flow for the message composer, with the duplicate-warning step.

    IDLE --submit--> ANALYZING --not repetitive--> SENDING --> IDLE (draft cleared)
                         |
                         +--repetitive--> WARNING --cancel--> IDLE (draft kept)
                                             |
                                             +--confirm--> SENDING --> IDLE

Each analysis is tagged with the draft's sequence number; a result that comes
back after the draft changed is dropped instead of being applied.
"""

import enum
from typing import Awaitable, Callable, Optional

from .analyzer import AnalysisResult
from .db import Category
from .logger import get_logger

logger = get_logger(__name__)

AnalyzeFn = Callable[[str], Awaitable[AnalysisResult]]
SendFn = Callable[[str, Category], Awaitable[object]]


class ComposeState(enum.Enum):
    idle = "idle"
    analyzing = "analyzing"
    warning = "warning"
    sending = "sending"


class ComposeFlow:
    def __init__(self, analyze: AnalyzeFn, send: SendFn):
        self._analyze = analyze
        self._send = send
        self.state = ComposeState.idle
        self.draft = ""
        self.sequence = 0
        self.pending_category: Category = Category.fyi
        self.warning: Optional[AnalysisResult] = None

    @property
    def input_enabled(self) -> bool:
        return self.state in (ComposeState.idle, ComposeState.warning)

    def edit(self, text: str) -> bool:
        """Replace the draft. Ignored while a request is in flight."""
        if not self.input_enabled:
            return False
        self.draft = text
        self.sequence += 1
        if self.state == ComposeState.warning:
            self.warning = None
            self.state = ComposeState.idle
        return True

    def clear(self):
        """Drop the draft (thread switch, reset). Always allowed; in-flight analysis goes stale."""
        self.draft = ""
        self.sequence += 1
        self.warning = None
        if self.state != ComposeState.sending:
            self.state = ComposeState.idle

    async def submit(self) -> ComposeState:
        if self.state != ComposeState.idle or not self.draft.strip():
            return self.state

        draft = self.draft
        issued = self.sequence
        self.state = ComposeState.analyzing
        try:
            result = await self._analyze(draft)
        except Exception as e:
            logger.error("Draft analysis failed: %s", e)
            if issued == self.sequence:
                self.state = ComposeState.idle
            return self.state

        if issued != self.sequence:
            logger.info("Discarding stale analysis for sequence %s", issued)
            return self.state

        self.pending_category = result.category
        if result.is_repetitive:
            self.warning = result
            self.state = ComposeState.warning
            return self.state

        return await self._deliver(draft, result.category)

    def cancel(self) -> ComposeState:
        if self.state == ComposeState.warning:
            self.warning = None
            self.state = ComposeState.idle
        return self.state

    async def confirm(self) -> ComposeState:
        """Send the held draft anyway, with the category already inferred."""
        if self.state != ComposeState.warning:
            return self.state
        self.warning = None
        return await self._deliver(self.draft, self.pending_category)

    async def _deliver(self, draft: str, category: Category) -> ComposeState:
        self.state = ComposeState.sending
        try:
            await self._send(draft, category)
        except Exception as e:
            logger.error("Failed to send message: %s", e)
            self.state = ComposeState.idle
            return self.state

        self.draft = ""
        self.sequence += 1
        self.pending_category = Category.fyi
        self.state = ComposeState.idle
        return self.state
