"""Streaming research chat endpoint."""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.concurrency import run_in_threadpool
from sse_starlette.sse import EventSourceResponse

from rebar_agentic.api.deps import resolve_user
from rebar_agentic.services.chat_stream import ChatRequest, ChatService
from rebar_agentic.services.errors import ApiError

router = APIRouter()

SSE_HEADERS = {"Cache-Control": "no-cache"}


@lru_cache(maxsize=1)
def get_chat_service() -> ChatService:
    return ChatService()


@router.post("/ai/chat", summary="Stream a research chat answer as Server-Sent Events")
async def chat(
    request: Request,
    authorization: Optional[str] = Header(None),
    service: ChatService = Depends(get_chat_service),
):
    try:
        body: Dict[str, Any] = await request.json()
    except ValueError:
        raise ApiError("Invalid JSON body", 400)
    if not isinstance(body, dict):
        raise ApiError("Invalid JSON body", 400)

    user = await run_in_threadpool(resolve_user, authorization, body)
    chat_request = ChatRequest.model_validate(body)
    prepared = await run_in_threadpool(service.prepare, chat_request, user)
    return EventSourceResponse(service.stream(prepared), sep="\n", headers=SSE_HEADERS)
