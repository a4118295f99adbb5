"""HTTP client for OpenAI-compatible chat completion servers."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import aiohttp

from airuntime.errors import TransportError
from airuntime.runners.openai_compat.config import OpenAICompatConfig

log = logging.getLogger("openai_compat")

DONE_SENTINEL = "[DONE]"


class OpenAICompatClient:
    """HTTP + SSE transport for `/chat/completions`."""

    def __init__(self, config: OpenAICompatConfig):
        self.config = config

    def _make_url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}{path}"

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
            **self.config.headers,
        }
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    def build_payload(self, messages: list[dict[str, Any]]) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.config.model,
            "messages": messages,
            "stream": True,
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
        }
        if self.config.top_p is not None:
            body["top_p"] = self.config.top_p
        return body

    async def start_chat(
        self, session: aiohttp.ClientSession, messages: list[dict[str, Any]]
    ) -> aiohttp.ClientResponse:
        """POST the conversation and return the streaming response."""
        url = self._make_url("/chat/completions")
        try:
            resp = await session.post(url, json=self.build_payload(messages), headers=self._headers())
        except aiohttp.ClientError as e:
            raise TransportError(f"OpenAI-compatible request failed: {e}") from e

        if resp.status >= 400:
            text = await resp.text()
            resp.release()
            detail = _error_detail(text) or resp.reason
            raise TransportError(f"OpenAI-compatible HTTP {resp.status}: {detail}")
        return resp

    async def read_sse_stream(self, resp: aiohttp.ClientResponse) -> AsyncIterator[dict[str, Any]]:
        """Yield decoded `data:` payloads until `[DONE]` or end of body."""
        data_lines: list[str] = []
        try:
            async for raw in resp.content:
                line = raw.decode("utf-8", errors="replace").strip("\r\n")
                if not line:
                    if not data_lines:
                        continue
                    payload = "\n".join(data_lines)
                    data_lines = []
                    if payload.strip() == DONE_SENTINEL:
                        return
                    try:
                        event = json.loads(payload)
                    except json.JSONDecodeError:
                        log.debug(f"Skipping malformed SSE payload: {payload[:120]}")
                        continue
                    if isinstance(event, dict):
                        yield event
                    continue
                if line.startswith(":"):
                    continue
                if line.startswith("data:"):
                    data_lines.append(line[len("data:") :].lstrip())
        except aiohttp.ClientError as e:
            raise TransportError(f"OpenAI-compatible stream failed: {e}") from e

        # Servers may close without a trailing blank line.
        if data_lines:
            payload = "\n".join(data_lines)
            if payload.strip() != DONE_SENTINEL:
                try:
                    event = json.loads(payload)
                except json.JSONDecodeError:
                    return
                if isinstance(event, dict):
                    yield event


def _error_detail(text: str) -> str:
    text = text.strip()
    if not text:
        return ""
    try:
        body = json.loads(text)
    except json.JSONDecodeError:
        return text[:500]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        if isinstance(error, str):
            return error
    return text[:500]
