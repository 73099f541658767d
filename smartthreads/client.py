"""Async HTTP client for the SmartThreads API, plus builders for local client views."""

from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from .analyzer import AnalysisResult
from .compose import ComposeFlow
from .db import ALL_INTENTS, Category
from .merge import Author, HeldMessage, RepliesView, SidebarView, ThreadListing, ThreadView


def held_message(data: Dict[str, Any]) -> HeldMessage:
    author = data["author"]
    return HeldMessage(
        id=str(data["id"]),
        content=data["content"],
        category=data["category"],
        created_at=datetime.fromisoformat(data["createdAt"]),
        author=Author(id=str(author["id"]), email=author["email"], name=author.get("name")),
        reply_count=data.get("replyCount", 0),
    )


def thread_view(data: Dict[str, Any]) -> ThreadView:
    return ThreadView(thread_id=str(data["id"]), messages=[held_message(m) for m in data["messages"]])


def replies_view(thread_id, data: Dict[str, Any]) -> RepliesView:
    parent = held_message(data["parentMessage"])
    return RepliesView(
        thread_id=str(thread_id),
        parent_message_id=parent.id,
        parent=parent,
        replies=[held_message(r) for r in data["replies"]],
    )


def sidebar_view(data: Dict[str, Any], focused_thread_id=None) -> SidebarView:
    listings = [
        ThreadListing(
            id=str(t["id"]),
            title=t["title"],
            latest_message=held_message(t["latestMessage"]) if t["latestMessage"] else None,
            unread_count=t["unreadCount"],
        )
        for t in data["threads"]
    ]
    view = SidebarView(viewer_id=str(data["currentUserId"]), threads=listings)
    if focused_thread_id is not None:
        view.focus(focused_thread_id)
    return view


class SmartThreadsClient:
    def __init__(self, base_url: str, token: Optional[str] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.token = token
        self._http = httpx.AsyncClient(base_url=base_url, transport=transport)

    async def __aenter__(self) -> "SmartThreadsClient":
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self):
        await self._http.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        response = await self._http.request(method, url, headers=headers, **kwargs)
        response.raise_for_status()
        return response.json()

    async def login(self, email: str, name: Optional[str] = None) -> Dict[str, Any]:
        data = await self._request("POST", "/api/login", json={"email": email, "name": name})
        self.token = data["token"]
        return data["user"]

    async def list_threads(self) -> Dict[str, Any]:
        return await self._request("GET", "/api/threads")

    async def create_thread(self, title: Optional[str] = None, participant_emails: Optional[List[str]] = None) -> Dict[str, Any]:
        return await self._request("POST", "/api/threads",
                                   json={"title": title, "participant_emails": participant_emails or []})

    async def get_thread_messages(self, thread_id) -> Dict[str, Any]:
        return await self._request("GET", f"/api/threads/{thread_id}/messages")

    async def send_message(self, thread_id, content: str, category: Category = Category.fyi) -> Dict[str, Any]:
        return await self._request("POST", f"/api/threads/{thread_id}/messages",
                                   json={"content": content, "category": category.value})

    async def get_reply_thread(self, thread_id, parent_message_id) -> Dict[str, Any]:
        return await self._request("GET", f"/api/threads/{thread_id}/messages/{parent_message_id}/replies")

    async def send_reply(self, thread_id, parent_message_id, content: str) -> Dict[str, Any]:
        return await self._request("POST", f"/api/threads/{thread_id}/messages/{parent_message_id}/replies",
                                   json={"content": content})

    async def analyze_draft(self, thread_id, draft: str) -> AnalysisResult:
        data = await self._request("POST", f"/api/threads/{thread_id}/analyze", json={"draft": draft})
        return AnalysisResult.from_dict(data)

    async def get_summary(self, thread_id, intent: str = ALL_INTENTS, refresh: bool = False) -> List[str]:
        data = await self._request("GET", f"/api/threads/{thread_id}/summary",
                                   params={"intent": intent, "refresh": str(refresh).lower()})
        return data["bullets"]

    async def get_members(self, thread_id) -> List[Dict[str, Any]]:
        data = await self._request("GET", f"/api/threads/{thread_id}/members")
        return data["members"]

    async def add_member(self, thread_id, email: str) -> Dict[str, str]:
        return await self._request("POST", f"/api/threads/{thread_id}/members", json={"email": email})

    def compose_flow(self, thread_id) -> ComposeFlow:
        """A composer for ``thread_id`` wired to this client's analyze and send calls."""
        async def analyze(draft: str) -> AnalysisResult:
            return await self.analyze_draft(thread_id, draft)

        async def send(draft: str, category: Category):
            return await self.send_message(thread_id, draft, category)

        return ComposeFlow(analyze, send)
