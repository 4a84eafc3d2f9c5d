"""OpenAI client and Agents SDK integration helpers."""

from __future__ import annotations

import asyncio
from typing import Any, Optional

from agents import Agent, Runner
from openai import AsyncOpenAI

from rebar_agentic.config.settings import get_settings

_async_client: Optional[AsyncOpenAI] = None


def get_async_openai_client() -> AsyncOpenAI:
    """Shared async client used by the streaming chat service."""

    global _async_client
    if _async_client is None:
        settings = get_settings()
        _async_client = AsyncOpenAI(api_key=settings.openai_api_key, project=settings.openai_project)
    return _async_client


def _ensure_event_loop() -> asyncio.AbstractEventLoop:
    """Ensure the current (worker) thread has an event loop and return it."""

    try:
        loop = asyncio.get_event_loop()
        if loop.is_closed():
            loop = None
    except RuntimeError:
        loop = None

    if loop is None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
    return loop


def run_agent_sync(agent: Agent, input_text: str, **kwargs: Any) -> Any:
    """Synchronous helper around ``Runner.run_sync``.

    Safe to call from thread-pool threads (FastAPI sync routes, the
    signal worker) which have no event loop of their own.
    """

    _ensure_event_loop()
    return Runner.run_sync(agent, input_text, **kwargs)


async def collect_response_text(client: Optional[AsyncOpenAI] = None, **kwargs: Any) -> str:
    """Stream a Responses call to completion and return its output text."""

    client = client or get_async_openai_client()
    stream = await client.responses.create(stream=True, **kwargs)
    parts = []
    final_text = ""
    async for event in stream:
        kind = getattr(event, "type", "")
        if kind == "response.output_text.delta" and event.delta:
            parts.append(event.delta)
        elif kind == "response.completed":
            final_text = getattr(event.response, "output_text", "") or ""
    return "".join(parts) or final_text
