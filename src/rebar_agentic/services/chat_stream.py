"""Streaming research chat over the OpenAI Responses API.

:meth:`ChatService.prepare` does the blocking work (credits, context,
memory, instruction assembly) and raises :class:`ApiError` before any
byte is streamed. :meth:`ChatService.stream` then yields SSE messages:
progress notes, an optional fast plan running concurrently with the main
answer, keep-alive pings until the first content arrives, and always a
closing ``[DONE]``.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from rebar_agentic.agents import research_prompts as prompts
from rebar_agentic.config.settings import Settings, get_settings
from rebar_agentic.services import aliases, credits, memory, research_intent, supabase_client
from rebar_agentic.services.access import assert_email_allowed
from rebar_agentic.services.credit_estimation import estimate_tokens
from rebar_agentic.services.errors import ApiError
from rebar_agentic.services.openai_provider import get_async_openai_client
from rebar_agentic.services.research_output import approximate_token_count
from rebar_agentic.services.sse import DONE_MESSAGE, event_message

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Processing exceeded time limit; partial results above."
PLAN_FAILED_MESSAGE = "Plan generation failed, continuing anyway…"
KEEPALIVE_INITIAL = 2.0
KEEPALIVE_STEP = 3.0
KEEPALIVE_MAX = 10.0
SUBJECT_SNAPSHOT_CHARS = 400
ACKNOWLEDGEMENTS = {
    "deep": "Starting Deep Research — streaming findings…",
    "quick": "Quick Facts — fetching essentials…",
    "specific": "On it — answering your specific question…",
}


class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    role: str = "user"
    content: Any = ""

    @property
    def text(self) -> str:
        return self.content if isinstance(self.content, str) else json.dumps(self.content, default=str)


class ChatRequest(BaseModel):
    """Body of ``POST /api/ai/chat``; camelCase aliases are accepted."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    messages: List[ChatMessage] = Field(default_factory=list)
    chat_id: Optional[str] = Field(None, validation_alias=AliasChoices("chat_id", "chatId"))
    agent_type: str = Field("company_research", validation_alias=AliasChoices("agent_type", "agentType"))
    config: Dict[str, Any] = Field(default_factory=dict)
    research_type: Optional[str] = None
    active_subject: Optional[str] = None
    system_prompt: Optional[str] = Field(None, validation_alias=AliasChoices("system_prompt", "systemPrompt"))
    impersonate_user_id: Optional[str] = None
    user_id: Optional[str] = None
    bulk_user_id: Optional[str] = None

    @property
    def fast_mode(self) -> bool:
        return bool(self.config.get("fast_mode"))

    @property
    def active_company(self) -> str:
        return (self.active_subject or "").strip() if isinstance(self.active_subject, str) else ""


@dataclass
class PreparedChat:
    request: ChatRequest
    user: Dict[str, Any]
    user_context: Dict[str, Any]
    instructions: str
    input: str
    is_research: bool
    last_user_text: str
    effective_request: str
    estimated_tokens: int
    started_at: float = field(default_factory=time.monotonic)

    @property
    def user_id(self) -> str:
        return self.user["id"]


def _recent_turns(messages: List[ChatMessage], window: int) -> str:
    lines = []
    for m in messages[-window:]:
        role = {"user": "User", "assistant": "Assistant"}.get(m.role, "System")
        lines.append(f"{role}: {' '.join(m.text.split())}")
    return "\n".join(lines)


def _compact_reasoning(buffer: str) -> str:
    lines = [line for line in buffer.splitlines() if line]
    last = lines[-1] if lines else buffer
    return (last or buffer).strip()[-200:]


async def _cancel(task: Optional[asyncio.Task]) -> None:
    if task is None or task.done():
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


def _parse_resolution(text: str) -> Optional[Dict[str, Any]]:
    start, end = text.find("{"), text.rfind("}")
    if start < 0 or end <= start:
        return None
    try:
        parsed = json.loads(text[start:end + 1])
    except ValueError:
        return None
    top = parsed.get("top") if isinstance(parsed, dict) else None
    return top if isinstance(top, dict) and top.get("name") else None


class ChatService:
    def __init__(self, client: Any = None, settings: Optional[Settings] = None):
        self._client = client
        self.settings = settings or get_settings()

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = get_async_openai_client()
        return self._client

    # ------------------------------------------------------------------
    # Preparation (blocking; run in a worker thread)
    # ------------------------------------------------------------------

    def prepare(self, request: ChatRequest, user: Dict[str, Any]) -> PreparedChat:
        assert_email_allowed(user.get("email"))
        check = credits.check_user_credits(user["id"], email=user.get("email"))
        if not check.has_credits:
            raise ApiError(
                check.message or "Unauthorized",
                403,
                needsApproval=check.needs_approval,
                remaining=check.remaining,
            )

        user_messages = [m for m in request.messages if m.role == "user"]
        if not request.messages:
            raise ApiError("No messages provided", 400)

        user_context = supabase_client.get_user_context(user["id"])
        instructions = self._build_instructions(request, user, user_context)

        last_user_text = user_messages[-1].text.strip() if user_messages else ""
        active = request.active_company
        is_research = research_intent.classify_research_intent(last_user_text)
        if not is_research and (request.research_type or active):
            is_research = True

        effective_request = last_user_text
        if is_research and active:
            if not research_intent.extract_company_name(last_user_text) and research_intent.refers_to_active_subject(
                last_user_text
            ):
                effective_request = f"{last_user_text}\n\nContext: The company in focus is {active}."
        elif is_research:
            detected = research_intent.extract_company_name(last_user_text)
            if detected:
                effective_request = f"{last_user_text}\n\nContext: The company in focus is {detected}."

        if not user_messages:
            input_text = "\n\n".join(
                f"{'User' if m.role == 'user' else 'Assistant'}: {m.text}" if m.role in ("user", "assistant")
                else m.text
                for m in request.messages
            )
        elif is_research:
            recent = _recent_turns(request.messages, 2 if request.fast_mode else 4)
            input_text = (
                "Task: Perform company research as specified in the instructions.\n\n"
                f"Recent context (last turns):\n{recent}\n\n"
                f"Request: {effective_request}\n\n"
                "Please use the web_search tool to research this company and provide a concise, well-formatted "
                "analysis following the output structure defined in the instructions."
            )
        else:
            instructions = prompts.SMALL_TALK_INSTRUCTIONS
            input_text = last_user_text

        estimated = estimate_tokens(json.dumps([m.model_dump() for m in request.messages], default=str))
        return PreparedChat(
            request=request,
            user=user,
            user_context=user_context,
            instructions=instructions,
            input=input_text,
            is_research=is_research,
            last_user_text=last_user_text,
            effective_request=effective_request,
            estimated_tokens=estimated,
        )

    def _build_instructions(self, request: ChatRequest, user: Dict[str, Any], user_context: Dict[str, Any]) -> str:
        cfg = request.config
        instructions = request.system_prompt or prompts.build_system_prompt(
            user_context, request.agent_type, request.research_type
        )
        block = memory.build_memory_block(user["id"], request.agent_type)
        if block:
            instructions = f"{block}\n\n{instructions}"

        active = request.active_company
        if len(active) >= 2:
            try:
                row = supabase_client.find_latest_research_output(user["id"], active)
            except supabase_client.SupabaseError as exc:
                logger.warning("Subject snapshot lookup failed for %s: %s", active, exc)
                row = None
            if row:
                summary = (row.get("executive_summary") or "")[:SUBJECT_SNAPSHOT_CHARS]
                instructions += (
                    "\n\n## SUBJECT CONTEXT\nUse only if relevant; prefer fresh research.\n"
                    f"### {row.get('subject')}\n{summary}"
                )

        if cfg.get("clarifiers_locked") or request.research_type:
            instructions += f"\n\n{prompts.clarifiers_locked_tag()}"
        if isinstance(cfg.get("facet_budget"), (int, float)) and not isinstance(cfg.get("facet_budget"), bool):
            instructions += f"\n\n<facet_budget>{cfg['facet_budget']}</facet_budget>"
        if isinstance(cfg.get("summary_brevity"), str):
            instructions += f"\n\n<summary_brevity>{cfg['summary_brevity']}</summary_brevity>"
        if request.fast_mode and request.research_type != "deep":
            instructions += f"\n\n{prompts.fast_mode_tag(bool(cfg.get('summary_brevity')))}"
        guard = (user_context.get("prompt_config") or {}).get("guardrail_profile")
        if guard:
            instructions += f"\n\n{prompts.guardrails_tag(guard)}"
        template = cfg.get("template")
        if isinstance(template, dict) and isinstance(template.get("sections"), list) and template["sections"]:
            instructions += f"\n\n{prompts.output_sections_tag(template['sections'])}"
        return instructions

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def stream(self, prepared: PreparedChat) -> AsyncIterator[Dict[str, str]]:
        queue: asyncio.Queue = asyncio.Queue()
        state: Dict[str, Any] = {"first_content": False, "content": "", "response_id": None, "usage": None}

        async def emit(payload: Dict[str, Any]) -> None:
            await queue.put(event_message(payload))

        async def produce() -> None:
            try:
                await self._produce(prepared, emit, state)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("Chat stream failed for user %s", prepared.user_id)
                await emit({"type": "error", "error": str(exc) or "Streaming failed"})
            finally:
                await queue.put(None)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.streaming_deadline_seconds
        producer = asyncio.create_task(produce())
        keepalive = KEEPALIVE_INITIAL
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    await _cancel(producer)
                    logger.warning("Chat stream for user %s hit the deadline", prepared.user_id)
                    yield event_message({"type": "timeout", "message": TIMEOUT_MESSAGE})
                    break
                wait = remaining if state["first_content"] else min(keepalive, remaining)
                try:
                    frame = await asyncio.wait_for(queue.get(), timeout=wait)
                except asyncio.TimeoutError:
                    if not state["first_content"] and loop.time() < deadline:
                        yield event_message({"type": "ping", "ts": int(time.time() * 1000)})
                        keepalive = min(KEEPALIVE_MAX, keepalive + KEEPALIVE_STEP)
                    continue
                if frame is None:
                    break
                yield frame
            yield DONE_MESSAGE
        finally:
            await _cancel(producer)
        await self._finalize(prepared, state)

    async def _create(self, **kwargs: Any) -> Any:
        return await self.client.responses.create(**kwargs)

    async def _produce(self, prepared: PreparedChat, emit, state: Dict[str, Any]) -> None:
        request = prepared.request
        cfg = request.config
        user_id = prepared.user_id
        meta = {"agent": "company_research", "chat_id": request.chat_id or "", "user_id": user_id}

        summarize_source = cfg.get("summarize_source")
        if isinstance(summarize_source, str) and summarize_source.strip():
            stream = await self._create(
                model=self.settings.default_model,
                instructions=prompts.SUMMARIZE_INSTRUCTIONS,
                input=f"SOURCE\n---\n{summarize_source}\n---\nSummarize for an Account Executive.",
                text={"format": {"type": "text"}, "verbosity": "low"},
                store=False,
                stream=True,
                metadata=dict(meta, stage="user_summarize"),
            )
            async for event in stream:
                if event.type == "response.output_text.delta" and event.delta:
                    state["first_content"] = True
                    state["content"] += event.delta
                    await emit({"type": "content", "content": event.delta})
            return

        instructions = prepared.instructions
        effective_request = prepared.effective_request
        text = prepared.last_user_text
        active = request.active_company

        if research_intent.looks_like_bare_name(text) or cfg.get("disambiguate_subject") is True:
            instructions, effective_request = await self._resolve_subject(
                text, instructions, effective_request, emit, meta
            )

        research_type = request.research_type
        auto_mode = "specific" if active and research_intent.is_short_question(text) else None
        effective_mode = auto_mode or research_type
        fast = request.fast_mode
        is_quick = fast or effective_mode == "quick"
        use_tools = prepared.is_research or research_intent.wants_fresh_lookup(text)
        if research_type in ("deep", "quick", "specific"):
            use_tools = True
        instructions += f"\n\n{prompts.tool_policy_tag(use_tools)}"

        if prepared.is_research:
            await emit({"type": "reasoning_progress", "content": self._preview(prepared)})

        should_plan = prepared.is_research and not cfg.get("disable_fast_plan") and not fast
        plan_task = None
        if should_plan and text:
            plan_task = asyncio.create_task(self._plan(prepared, effective_request, emit, meta))
        else:
            ack = ACKNOWLEDGEMENTS.get(research_type or "")
            if not ack:
                if prepared.is_research:
                    ack = "Got it — I'll research that and stream findings."
                elif text:
                    ack = "Okay — answering briefly."
            if ack:
                await emit({"type": "acknowledgment", "content": ack})

        try:
            model = cfg.get("model") or self.settings.default_model
            max_tokens = None if effective_mode == "deep" else (500 if fast else (450 if is_quick else None))
            kwargs: Dict[str, Any] = {
                "model": model,
                "instructions": instructions,
                "input": prepared.input,
                "text": {"format": {"type": "text"}, "verbosity": "low"},
                "reasoning": {"effort": "medium" if effective_mode == "deep" else "low", "summary": "auto"},
                "tools": [{"type": "web_search"}] if use_tools else [],
                "parallel_tool_calls": use_tools,
                "store": True,
                "stream": True,
                "metadata": dict(
                    meta, research_type=research_type or ("auto" if prepared.is_research else "none")
                ),
            }
            if use_tools and not fast:
                kwargs["include"] = ["web_search_call.action.sources"]
            if max_tokens:
                kwargs["max_output_tokens"] = max_tokens

            logger.info(
                "Chat request user=%s model=%s research=%s tools=%s mode=%s",
                user_id, model, prepared.is_research, use_tools, effective_mode,
            )
            await emit({"type": "meta", "response_id": "pending", "model": model})
            if self.settings.enable_prompt_debug:
                await emit({"type": "debug_prompt", "instructions": instructions, "input": prepared.input})

            stream = await self._create(**kwargs)
            await self._relay_main_stream(stream, emit, state, forward_reasoning=not fast, quick=is_quick)

            if prepared.is_research and state["content"]:
                subject = research_intent.infer_active_subject(text, state["content"])
                if subject and subject != active:
                    await emit({"type": "meta", "active_subject": subject})

            if plan_task is not None:
                await plan_task
        finally:
            await _cancel(plan_task)

    async def _relay_main_stream(self, stream: Any, emit, state: Dict[str, Any], *, forward_reasoning: bool,
                                 quick: bool) -> None:
        throttle = self.settings.quick_reasoning_throttle_ms / 1000.0
        buffer = ""
        last_emit = 0.0
        async for event in stream:
            kind = getattr(event, "type", "")
            if kind in ("response.reasoning_summary_text.delta", "response.reasoning_text.delta"):
                delta = getattr(event, "delta", "") or ""
                if not delta or not forward_reasoning:
                    continue
                if not quick:
                    await emit({"type": "reasoning", "content": delta})
                    continue
                buffer += delta
                now = time.monotonic()
                if now - last_emit >= throttle:
                    compact = _compact_reasoning(buffer)
                    if compact:
                        await emit({"type": "reasoning", "content": compact})
                        last_emit = now
                        buffer = ""
            elif kind == "response.output_text.delta":
                delta = getattr(event, "delta", "") or ""
                if delta:
                    state["first_content"] = True
                    state["content"] += delta
                    await emit({"type": "content", "content": delta})
            elif kind == "response.output_item.done":
                item = getattr(event, "item", None)
                if getattr(item, "type", None) != "web_search_call":
                    continue
                action = getattr(item, "action", None)
                query = getattr(action, "query", None) or ""
                sources = [
                    url
                    for url in (getattr(s, "url", None) for s in (getattr(action, "sources", None) or []))
                    if url
                ][:5]
                await emit({"type": "web_search", "query": query, "sources": sources})
            elif kind == "response.completed":
                if buffer.strip():
                    compact = _compact_reasoning(buffer)
                    if compact:
                        await emit({"type": "reasoning", "content": compact})
                response = getattr(event, "response", None)
                state["response_id"] = getattr(response, "id", None)
                usage = getattr(response, "usage", None)
                state["usage"] = getattr(usage, "total_tokens", None)
                payload: Dict[str, Any] = {"type": "done", "response_id": state["response_id"]}
                if usage is not None:
                    payload["usage"] = {"total_tokens": state["usage"]}
                await emit(payload)
                break

    def _preview(self, prepared: PreparedChat) -> str:
        detected = research_intent.extract_company_name(prepared.last_user_text)
        active = prepared.request.active_company
        if detected or active:
            return f"Researching {detected or active} using your saved profile and qualifying criteria…"
        summary = " ".join(research_intent.summarize_context_for_plan(prepared.user_context).split())
        if summary:
            suffix = "…" if len(summary) > 160 else ""
            return f"Researching using your saved profile: {summary[:160]}{suffix}"
        return "Researching using your saved profile and preferences…"

    async def _resolve_subject(self, text: str, instructions: str, effective_request: str, emit, meta):
        term = research_intent.strip_leading_request(text) or research_intent.extract_company_name(text)
        term = term or "the company"
        await emit(
            {
                "type": "reasoning_progress",
                "content": f"Interpreting “{term}” as a company — selecting the most likely match…",
            }
        )
        try:
            response = await self._create(
                model=self.settings.default_model,
                instructions=prompts.SUBJECT_RESOLUTION_INSTRUCTIONS,
                input=f"term: {term}",
                text={"format": {"type": "text"}, "verbosity": "low"},
                store=False,
                metadata=dict(meta, stage="subject_resolution"),
            )
        except Exception as exc:
            logger.warning("Subject resolution failed for %r: %s", term, exc)
            return instructions, effective_request

        assumed = _parse_resolution(getattr(response, "output_text", "") or "")
        if not assumed:
            return instructions, effective_request
        name = assumed["name"]
        industry = f" ({assumed['industry']})" if assumed.get("industry") else ""
        website = f" — {assumed['website']}" if assumed.get("website") else ""
        await emit({"type": "reasoning_progress", "content": f"Proceeding with {name}{industry}{website}."})
        site = f" ({assumed['website']})" if assumed.get("website") else ""
        instructions = (
            f"Assumed subject: {name}{site}.\nDo not ask clarifying questions; proceed with research on this "
            "subject. If the user later corrects, pivot silently.\n\n" + instructions
        )
        return instructions, f"{effective_request}\n\nContext: The company in focus is {name}{site}."

    async def _plan(self, prepared: PreparedChat, effective_request: str, emit, meta) -> None:
        request = prepared.request
        detected = research_intent.extract_company_name(prepared.last_user_text)
        if not research_intent.is_likely_subject(detected):
            detected = request.active_company if research_intent.is_likely_subject(request.active_company) else ""
        context = research_intent.summarize_context_for_plan(prepared.user_context)[:600]
        mode = request.research_type or ("auto" if prepared.is_research else "general")
        plan_input = (
            f"Research mode: {mode}\n"
            f"Research subject: {detected or 'Not specified'}\n"
            f"User request: {effective_request}\n"
            "ETA guide: deep about 2 min, quick about 30 sec, specific about 1 min, auto about 2 min.\n"
            "Saved profile context (do not confuse with research subject):\n"
            f"{context or 'No saved profile context yet.'}"
        )
        try:
            stream = await self._create(
                model=self.settings.default_model,
                instructions=prompts.PLAN_INSTRUCTIONS,
                input=plan_input,
                text={"format": {"type": "text"}, "verbosity": "low"},
                reasoning={"effort": "low"},
                store=False,
                stream=True,
                metadata=dict(meta, stage="fast_plan"),
            )
            first = True
            async for event in stream:
                if event.type == "response.output_text.delta" and event.delta:
                    if first:
                        first = False
                        ttfb = int((time.monotonic() - prepared.started_at) * 1000)
                        await emit({"type": "meta", "stage": "fast_plan", "event": "first_delta", "ttfb_ms": ttfb})
                    await emit({"type": "reasoning", "content": event.delta, "stage": "plan"})
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Fast plan stream failed: %s", exc)
            await emit({"type": "reasoning_progress", "content": PLAN_FAILED_MESSAGE})

    # ------------------------------------------------------------------
    # After the stream
    # ------------------------------------------------------------------

    async def _finalize(self, prepared: PreparedChat, state: Dict[str, Any]) -> None:
        request = prepared.request
        tokens = state.get("usage") or prepared.estimated_tokens + approximate_token_count(state.get("content"))
        await asyncio.to_thread(
            credits.log_usage,
            prepared.user_id,
            "chat_completion",
            tokens,
            {
                "chat_id": request.chat_id,
                "agent_type": request.agent_type,
                "model": request.config.get("model") or self.settings.default_model,
                "api": "responses",
                "prompt_head": prepared.instructions[:1000],
                "input_head": prepared.input[:400],
                "final_response_id": state.get("response_id"),
            },
        )
        await asyncio.to_thread(credits.deduct_credits, prepared.user_id, tokens)
        if prepared.last_user_text:
            await asyncio.to_thread(self._learn_aliases, prepared.user_id, prepared.last_user_text)
        if request.chat_id:
            await self._update_rolling_summary(request.chat_id, prepared.input)

    def _learn_aliases(self, user_id: str, text: str) -> None:
        try:
            aliases.learn_from_message(user_id, text)
        except supabase_client.SupabaseError as exc:
            logger.warning("Alias learning failed for user %s: %s", user_id, exc)

    async def _update_rolling_summary(self, chat_id: str, input_text: str) -> None:
        try:
            response = await self._create(
                model=self.settings.default_model,
                instructions=prompts.CHAT_SUMMARY_INSTRUCTIONS,
                input=f"Summarize in 1-2 sentences (main subject + intent).\n\n{input_text[:3500]}",
                text={"format": {"type": "text"}, "verbosity": "low"},
                store=False,
            )
            summary = (getattr(response, "output_text", "") or "").strip()
            if summary:
                await asyncio.to_thread(supabase_client.update_chat_summary, chat_id, summary)
        except Exception as exc:
            logger.warning("Rolling summary for chat %s failed: %s", chat_id, exc)
