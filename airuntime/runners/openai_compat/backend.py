"""OpenAI-compatible session backend.

Keeps the conversation history so a continued conversation sends the prior
turns along with the new prompt.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator

import aiohttp

from airuntime.errors import TransportError
from airuntime.runners.openai_compat.client import OpenAICompatClient
from airuntime.runners.openai_compat.config import OpenAICompatConfig
from airuntime.runners.ports import RawEvent
from airuntime.tasks import AITask, build_prompt

log = logging.getLogger("openai_compat")


class OpenAICompatBackend:
    def __init__(self, config: OpenAICompatConfig, client: OpenAICompatClient | None = None):
        self.config = config
        self.client = client or OpenAICompatClient(config)
        self.history: list[dict[str, Any]] = []
        self._http: aiohttp.ClientSession | None = None
        self._resp: aiohttp.ClientResponse | None = None
        self._cancelled = False

    def _messages(self) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        if self.config.system_prompt:
            messages.append({"role": "system", "content": self.config.system_prompt})
        messages.extend(self.history)
        return messages

    async def open(self, task: AITask, *, resume: bool = False) -> AsyncIterator[RawEvent]:
        problems = self.config.validate()
        if problems:
            raise TransportError(f"OpenAI-compatible config invalid: {'; '.join(problems)}")

        if not resume:
            self.history = []
        self.history.append({"role": "user", "content": build_prompt(task)})
        self._cancelled = False

        log.info(f"{self.config.display_name}: {task.input.prompt[:50]}...")

        timeout = aiohttp.ClientTimeout(total=self.config.http_timeout_s)
        http = aiohttp.ClientSession(timeout=timeout)
        try:
            resp = await self.client.start_chat(http, self._messages())
        except BaseException:
            await http.close()
            raise
        if self._cancelled:
            resp.release()
            await http.close()
            raise TransportError(f"{self.config.display_name} request cancelled while starting")
        self._http = http
        self._resp = resp
        return self._iter_chunks(http, resp)

    async def _iter_chunks(
        self, http: aiohttp.ClientSession, resp: aiohttp.ClientResponse
    ) -> AsyncIterator[RawEvent]:
        reply: list[str] = []
        try:
            async for chunk in self.client.read_sse_stream(resp):
                if self._cancelled:
                    break
                choices = chunk.get("choices") or []
                delta = (choices[0].get("delta") or {}) if choices else {}
                if isinstance(delta.get("content"), str):
                    reply.append(delta["content"])
                yield chunk
        finally:
            if reply:
                self.history.append({"role": "assistant", "content": "".join(reply)})
            resp.release()
            self._resp = None
            self._http = None
            await http.close()

    def cancel(self) -> None:
        self._cancelled = True
        if self._resp is not None:
            self._resp.close()

    def close(self) -> None:
        self.cancel()
        http, self._http = self._http, None
        if http is None or http.closed:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            log.debug("No running loop; HTTP session left to the garbage collector")
            return
        asyncio.ensure_future(http.close())
