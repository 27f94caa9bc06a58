"""
Minimal OpenAI-compatible chat completions client used by the intent
classifier and the reply generator.
"""
from __future__ import annotations

import json
from typing import Any, Optional

import httpx

from app.core.config import settings
from app.core.errors import DownstreamUnavailableError


def _provider_error_message(response: httpx.Response) -> str:
    message = response.text.strip()
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict) and isinstance(err.get("message"), str):
            return err["message"].strip()
    return message or f"HTTP {response.status_code}"


def extract_json_object(raw_text: str) -> Optional[dict[str, Any]]:
    """Parse the first JSON object found in a model's text output."""
    text = (raw_text or "").strip()
    if not text:
        return None
    try:
        payload = json.loads(text)
        if isinstance(payload, dict):
            return payload
    except json.JSONDecodeError:
        pass
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        payload = json.loads(text[start : end + 1])
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None


class ChatCompletionClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str,
        timeout_seconds: float = 20.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    @classmethod
    def from_settings(cls) -> "ChatCompletionClient":
        return cls(
            base_url=settings.LLM_API_BASE,
            api_key=settings.LLM_API_KEY,
            model=settings.LLM_MODEL,
            timeout_seconds=settings.LLM_TIMEOUT_SECONDS,
        )

    def complete(self, messages: list[dict[str, str]], temperature: float = 0.1) -> str:
        if not self.api_key:
            raise DownstreamUnavailableError("llm", "API key is not configured")
        payload = {"model": self.model, "temperature": temperature, "messages": messages}
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            with httpx.Client(
                timeout=httpx.Timeout(self.timeout_seconds, connect=8.0),
                transport=self._transport,
            ) as client:
                response = client.post(f"{self.base_url}/chat/completions", headers=headers, json=payload)
        except httpx.HTTPError as exc:
            raise DownstreamUnavailableError("llm", str(exc)) from exc
        if response.status_code >= 400:
            raise DownstreamUnavailableError("llm", _provider_error_message(response))

        choices = response.json().get("choices") or []
        if not choices:
            raise DownstreamUnavailableError("llm", "empty completion")
        content = choices[0].get("message", {}).get("content")
        return content.strip() if isinstance(content, str) else ""
