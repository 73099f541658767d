"""
LLM gateway: one JSON-mode chat completion per call.

Every failure (no key configured, transport error, non-2xx status, unparsable
body) is logged and collapses to ``None`` so callers can substitute their own
safe default. Nothing in here is retried.
"""

import json
from typing import Any, Dict, Optional

import httpx

from .config import Settings
from .logger import get_logger

logger = get_logger(__name__)


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Parse a JSON object out of model output, tolerating markdown fences."""
    if not isinstance(text, str):
        return None
    text = text.strip()
    if not text:
        return None

    if "```json" in text:
        text = text.split("```json")[1].split("```")[0]
    elif "```" in text:
        text = text.split("```")[1].split("```")[0]

    try:
        parsed = json.loads(text)
    except ValueError:
        # Prose around the object: fall back to the outermost braces
        start = text.find("{")
        end = text.rfind("}") + 1
        if start == -1 or end <= start:
            return None
        try:
            parsed = json.loads(text[start:end])
        except ValueError:
            return None
    return parsed if isinstance(parsed, dict) else None


class LLMGateway:
    """Client for the chat completions endpoint.

    A gateway without an API key is a valid, "not configured" gateway: it
    answers every request with ``None`` without touching the network.
    """

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = settings.openai_api_key
        self.model = settings.openai_model
        self.url = settings.openai_base_url.rstrip("/") + "/chat/completions"
        self.timeout = settings.llm_timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def build_request(self, system: str, prompt: str, temperature: float) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "temperature": temperature,
            "response_format": {"type": "json_object"},
        }

    async def complete_json(self, system: str, prompt: str, temperature: float = 0.0) -> Optional[Dict[str, Any]]:
        if not prompt or not prompt.strip():
            raise ValueError("prompt must not be empty")

        if not self.configured:
            logger.debug("LLM not configured, skipping completion request")
            return None

        headers = {"Authorization": f"Bearer {self.api_key}"}
        body = self.build_request(system, prompt, temperature)

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                response = await client.post(self.url, json=body, headers=headers)
        except httpx.HTTPError as e:
            logger.error("Completion request failed: %s", e)
            return None

        if not response.is_success:
            logger.error("Completion API error %s: %s", response.status_code, response.text[:500])
            return None

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.error("Malformed completion response: %s", e)
            return None

        parsed = extract_json_object(content)
        if parsed is None:
            logger.error("Failed to parse LLM response: %r", content[:500] if isinstance(content, str) else content)
        return parsed
