"""
Shared fixtures: a scripted completion API, TestClients backed by a throwaway
SQLite database, and a login helper.
"""

import json

import httpx
import pytest
from fastapi.testclient import TestClient

from smartthreads.app import create_app
from smartthreads.config import Settings


class FakeCompletionAPI:
    """Scripted stand-in for the chat completions endpoint.

    Each reply is used once, in order; the last one repeats. A reply may be a
    dict (returned as the JSON message content), a str (raw message content),
    an ``httpx.Response``, or an exception to raise from the transport.
    """

    def __init__(self, *replies):
        self.replies = list(replies) or [{}]
        self.requests = []
        self.headers = []

    def _next(self):
        return self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        self.headers.append(request.headers)
        reply = self._next()
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, httpx.Response):
            return reply
        content = reply if isinstance(reply, str) else json.dumps(reply)
        return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": content}}]})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def last_system(self) -> str:
        return self.requests[-1]["messages"][0]["content"]

    @property
    def last_prompt(self) -> str:
        return self.requests[-1]["messages"][1]["content"]


@pytest.fixture
def fake_llm():
    return FakeCompletionAPI


@pytest.fixture
def llm_settings():
    return Settings(openai_api_key="sk-test", database_url="sqlite+aiosqlite://")


@pytest.fixture
def make_client(tmp_path):
    """Build a TestClient; pass ``llm`` to route completions to a fake API."""
    clients = []

    def _make(llm: FakeCompletionAPI = None, **overrides):
        overrides.setdefault("database_url", f"sqlite+aiosqlite:///{tmp_path / 'smartthreads.db'}")
        overrides.setdefault("secret_key", "test-secret")
        overrides.setdefault("openai_api_key", "sk-test" if llm else None)
        app = create_app(Settings(**overrides), llm_transport=llm.transport if llm else None)
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    return make_client()


def login(client, email, name=None):
    res = client.post("/api/login", json={"email": email, "name": name})
    assert res.status_code == 200
    body = res.json()
    return {"Authorization": f"Bearer {body['token']}"}, body["user"]


@pytest.fixture
def login_as():
    return login
