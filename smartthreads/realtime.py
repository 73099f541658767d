"""
Server side of realtime delivery.

Connected websockets subscribe to per-thread channels (``thread-<id>``); every
persisted message or reply is pushed to the channel as a ``new-message`` event.
Delivery is best-effort: a socket that fails to receive is dropped and the
failure is logged, never raised to the code that sent the message.
"""

from collections import defaultdict
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket

from .db import Message, User
from .logger import get_logger

logger = get_logger(__name__)

NEW_MESSAGE_EVENT = "new-message"


def channel_name(thread_id) -> str:
    return f"thread-{thread_id}"


def thread_id_from_channel(channel: str) -> Optional[int]:
    prefix = "thread-"
    if not isinstance(channel, str) or not channel.startswith(prefix):
        return None
    try:
        return int(channel[len(prefix):])
    except ValueError:
        return None


def message_payload(msg: Message, author: User) -> Dict[str, Any]:
    return {
        "id": msg.id,
        "content": msg.content,
        "category": msg.category.value,
        "createdAt": msg.created_at.isoformat(),
        "author": {"id": author.id, "email": author.email, "name": author.name},
        "threadId": msg.thread_id,
        "parentMessageId": msg.parent_message_id,
    }


class ConnectionManager:
    def __init__(self):
        self.channels: Dict[str, Set[WebSocket]] = defaultdict(set)

    async def connect(self, websocket: WebSocket):
        await websocket.accept()

    def subscribe(self, channel: str, websocket: WebSocket):
        self.channels[channel].add(websocket)

    def unsubscribe(self, channel: str, websocket: WebSocket):
        subscribers = self.channels.get(channel)
        if not subscribers:
            return
        subscribers.discard(websocket)
        if not subscribers:
            del self.channels[channel]

    def disconnect(self, websocket: WebSocket):
        for channel in list(self.channels):
            self.unsubscribe(channel, websocket)

    def subscriber_count(self, channel: str) -> int:
        return len(self.channels.get(channel, ()))

    async def trigger(self, channel: str, event: str, data: Dict[str, Any]):
        frame = {"channel": channel, "event": event, "data": data}
        for websocket in list(self.channels.get(channel, ())):
            try:
                await websocket.send_json(frame)
            except Exception as e:
                logger.warning("Dropping subscriber on %s after send failure: %s", channel, e)
                self.disconnect(websocket)


class Publisher:
    """Trigger side of the push collaborator; ``manager=None`` means realtime is off."""

    def __init__(self, manager: Optional[ConnectionManager]):
        self.manager = manager

    @property
    def configured(self) -> bool:
        return self.manager is not None

    async def trigger_event(self, channel: str, event: str, data: Dict[str, Any]):
        if not self.configured:
            return
        try:
            await self.manager.trigger(channel, event, data)
        except Exception as e:
            # Realtime is non-critical; the message is already persisted
            logger.error("Push trigger error on %s: %s", channel, e)

    async def publish_message(self, msg: Message, author: User):
        await self.trigger_event(channel_name(msg.thread_id), NEW_MESSAGE_EVENT, message_payload(msg, author))
