"""
Client-side merging of ``new-message`` push events into locally held views.

Each view owns its own state and applies events independently, in arrival
order. Every ``apply`` is idempotent under duplicate delivery (for example the
push echo of a message the client just sent) and only ever appends; held
messages are never reordered. ``apply`` returns True when the view changed.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional, Set

from .db import ALL_INTENTS

# Recently applied ids remembered per sidebar thread
RECENT_IDS_PER_THREAD = 50


@dataclass
class Author:
    id: str
    email: str
    name: Optional[str] = None


@dataclass
class MessageEvent:
    id: str
    content: str
    category: str
    created_at: datetime
    author: Author
    thread_id: str
    parent_message_id: Optional[str] = None

    @property
    def is_reply(self) -> bool:
        return self.parent_message_id is not None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "MessageEvent":
        author = payload.get("author") or {}
        parent = payload.get("parentMessageId")
        return cls(
            id=str(payload["id"]),
            content=payload["content"],
            category=payload["category"],
            created_at=datetime.fromisoformat(payload["createdAt"]),
            author=Author(id=str(author["id"]), email=author["email"], name=author.get("name")),
            thread_id=str(payload["threadId"]),
            parent_message_id=str(parent) if parent is not None else None,
        )


@dataclass
class HeldMessage:
    id: str
    content: str
    category: str
    created_at: datetime
    author: Author
    reply_count: int = 0

    @classmethod
    def from_event(cls, event: MessageEvent) -> "HeldMessage":
        return cls(event.id, event.content, event.category, event.created_at, event.author)


@dataclass
class ThreadView:
    """Top-level messages of one open thread, with per-message reply counts."""
    thread_id: str
    messages: List[HeldMessage] = field(default_factory=list)
    _reply_ids: Set[str] = field(default_factory=set, repr=False)

    def find(self, message_id: str) -> Optional[HeldMessage]:
        for m in self.messages:
            if m.id == message_id:
                return m
        return None

    def apply(self, event: MessageEvent) -> bool:
        if event.thread_id != str(self.thread_id):
            return False

        if event.is_reply:
            parent = self.find(event.parent_message_id)
            # Parent not held here, or this reply was already counted
            if parent is None or event.id in self._reply_ids:
                return False
            self._reply_ids.add(event.id)
            parent.reply_count += 1
            return True

        if self.find(event.id) is not None:
            return False
        self.messages.append(HeldMessage.from_event(event))
        return True

    def visible(self, intent_filter: str = ALL_INTENTS) -> List[HeldMessage]:
        if intent_filter == ALL_INTENTS:
            return list(self.messages)
        return [m for m in self.messages if m.category == intent_filter]


@dataclass
class RepliesView:
    """The reply panel for one top-level message."""
    thread_id: str
    parent_message_id: str
    parent: Optional[HeldMessage] = None
    replies: List[HeldMessage] = field(default_factory=list)

    def apply(self, event: MessageEvent) -> bool:
        if event.thread_id != str(self.thread_id) or event.parent_message_id != str(self.parent_message_id):
            return False
        if any(r.id == event.id for r in self.replies):
            return False
        self.replies.append(HeldMessage.from_event(event))
        return True


@dataclass
class ThreadListing:
    id: str
    title: Optional[str]
    latest_message: Optional[HeldMessage] = None
    unread_count: int = 0
    recent_ids: Deque[str] = field(default_factory=lambda: deque(maxlen=RECENT_IDS_PER_THREAD), repr=False)


@dataclass
class SidebarView:
    """The thread list, tracking latest message and unread count per thread."""
    viewer_id: str
    threads: List[ThreadListing] = field(default_factory=list)
    focused_thread_id: Optional[str] = None

    def find(self, thread_id: str) -> Optional[ThreadListing]:
        for t in self.threads:
            if t.id == str(thread_id):
                return t
        return None

    def focus(self, thread_id: str):
        """Open a thread; the unread reset is local only."""
        self.focused_thread_id = str(thread_id)
        listing = self.find(thread_id)
        if listing is not None:
            listing.unread_count = 0

    def apply(self, event: MessageEvent) -> bool:
        # Replies have no held parent in the listing
        if event.is_reply:
            return False
        listing = self.find(event.thread_id)
        if listing is None or event.id in listing.recent_ids:
            return False
        if listing.latest_message is not None and listing.latest_message.id == event.id:
            return False

        listing.recent_ids.append(event.id)
        listing.latest_message = HeldMessage.from_event(event)
        if event.thread_id != self.focused_thread_id and event.author.id != str(self.viewer_id):
            listing.unread_count += 1
        return True
