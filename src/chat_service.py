"""
    Chat orchestration: conversation in, answer (plus the structured lookup result) out
    NOTE: One request = at most one identity extraction, one agent run and the tool calls the model asks for
    NOTE: Identity is extracted before the agent runs and is fixed for the whole request, retries included
    NOTE: Only the model call is retried (transient provider errors). A data store failure is reported by the tool, never retried
"""

import asyncio
import json
from collections.abc import AsyncIterator
from uuid import uuid4

import httpx
from pydantic_ai import UsageLimits
from pydantic_ai.exceptions import ModelHTTPError, UnexpectedModelBehavior
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential

from src.agents import support_agent
from src.config import (
    FALLBACK_REPLY,
    GREETING_REPLY,
    MODEL_MAX_RETRIES,
    MODEL_RETRY_BASE_DELAY,
    MODEL_RETRY_MAX_DELAY,
    SUPPORT_REQUEST_LIMIT,
    SUPPORT_TOTAL_TOKENS_LIMIT,
    AppContext,
)
from src.formatter import to_ui_components
from src.identity import extract_identity
from src.logger import get_logger
from src.schemas import ChatMessage, ChatResponse

logger = get_logger(__name__)

GREETINGS = {"hi", "hello", "hey", "hi there", "hello there", "hey there"}

DONE_EVENT = "data: [DONE]\n\n"

# Keeps a reference to streaming producers so they are not garbage collected mid-run
_background_tasks: set[asyncio.Task] = set()


def is_greeting(text: str) -> bool:
    return text.strip().lower().rstrip("!.?, ") in GREETINGS


def build_prompt(messages: list[ChatMessage]) -> str:
    """Render the earlier turns as a transcript followed by the latest user input."""
    history = "\n".join(
        f"{'User' if message.role == 'user' else 'Assistant'}: {message.content}"
        for message in messages[:-1]
        if message.role != "system"
    )
    latest = messages[-1].content
    if not history:
        return latest
    return f"Conversation history:\n{history}\n\nUser: {latest}"


def is_retryable_model_error(exc: BaseException) -> bool:
    return isinstance(exc, (ModelHTTPError, UnexpectedModelBehavior, httpx.TransportError))


def _log_retry(retry_state: RetryCallState) -> None:
    logger.warning(
        f"Model call failed, retrying (attempt {retry_state.attempt_number}): {retry_state.outcome.exception()}"
    )


def model_retrying(should_retry=is_retryable_model_error) -> AsyncRetrying:
    """Up to MODEL_MAX_RETRIES extra attempts, delay doubling from MODEL_RETRY_BASE_DELAY, capped at MODEL_RETRY_MAX_DELAY"""
    return AsyncRetrying(
        retry=retry_if_exception(should_retry),
        stop=stop_after_attempt(MODEL_MAX_RETRIES + 1),
        wait=wait_exponential(multiplier=MODEL_RETRY_BASE_DELAY, max=MODEL_RETRY_MAX_DELAY),
        before_sleep=_log_retry,
        reraise=True,
    )


def usage_limits() -> UsageLimits:
    return UsageLimits(request_limit=SUPPORT_REQUEST_LIMIT, total_tokens_limit=SUPPORT_TOTAL_TOKENS_LIMIT)


def _response(ctx: AppContext, text: str, request_id: str) -> ChatResponse:
    data = ctx.tool_results[-1] if ctx.tool_results else None
    return ChatResponse(text=text, data=data, ui_components=to_ui_components(data), request_id=request_id)


def _fallback(request_id: str) -> ChatResponse:
    return ChatResponse(text=FALLBACK_REPLY, request_id=request_id, error=True)


def usage_summary(result) -> str:
    """Token and request counts of a finished run, as key=value text for the log line."""
    usage = result.usage
    # A method on pydantic-ai 1.x run results
    if callable(usage):
        usage = usage()
    return f"input_tokens={usage.input_tokens} | output_tokens={usage.output_tokens} | requests={usage.requests}"


def _log_usage(message: str, result, request_id: str) -> None:
    # The reply is already complete here, reading usage must never fail it
    try:
        summary = usage_summary(result)
    except Exception as e:
        logger.warning(f"Could not read run usage: {e}", extra={"request_id": request_id})
        return
    logger.info(f"{message} | {summary}", extra={"request_id": request_id})


async def run_chat(store, messages: list[ChatMessage]) -> ChatResponse:
    request_id = uuid4().hex

    # Simple greetings don't need the model
    if is_greeting(messages[-1].content):
        return ChatResponse(text=GREETING_REPLY, request_id=request_id)

    ctx = AppContext(store=store, identity=extract_identity(messages))
    prompt = build_prompt(messages)
    user = ctx.identity.email if ctx.identity else None

    try:
        async for attempt in model_retrying():
            with attempt:
                # Each attempt starts from scratch, results of a failed attempt are discarded
                ctx.tool_results.clear()
                result = await support_agent.run(user_prompt=prompt, deps=ctx, usage_limits=usage_limits())
    except Exception as e:
        logger.error(f"Support agent failed: {e}", extra={"request_id": request_id, "user": user})
        return _fallback(request_id)

    response = _response(ctx, result.output, request_id)
    _log_usage(f"Chat run complete | user={user} | tool_calls={len(ctx.tool_results)}", result, request_id)
    return response


def _sse(payload) -> str:
    # Server-Sent Events format: "data: " followed by the payload, followed by two newlines
    return f"data: {json.dumps(payload)}\n\n"


async def _stream_reply(ctx: AppContext, prompt: str, request_id: str, events: asyncio.Queue) -> None:
    """Run the agent in streaming mode and push status, delta and final events onto the queue."""
    sent_text = False

    # Once text has reached the client a retry would repeat it, so only retry before the first delta
    def should_retry(exc: BaseException) -> bool:
        return not sent_text and is_retryable_model_error(exc)

    try:
        async for attempt in model_retrying(should_retry):
            with attempt:
                ctx.tool_results.clear()
                async with support_agent.run_stream(user_prompt=prompt, deps=ctx, usage_limits=usage_limits()) as result:
                    async for delta in result.stream_text(delta=True):
                        if delta:
                            sent_text = True
                            await events.put({"delta": delta})
                    # run_stream may still be finishing, get_output() waits for it and runs the output validator
                    output = await result.get_output()
                    final = _response(ctx, output, request_id)
                    _log_usage(
                        f"Chat stream complete | user={ctx.identity.email if ctx.identity else None}", result, request_id
                    )
    except Exception as e:
        logger.error(f"Support agent stream failed: {e}", extra={"request_id": request_id})
        final = _fallback(request_id)

    await events.put({"final": final.model_dump(mode="json", by_alias=True)})


async def run_chat_stream_events(store, messages: list[ChatMessage]) -> AsyncIterator[str]:
    """
        Yields server sent events (SSE) while the agent answers
        NOTE: The agent runs in its own task and feeds a queue. If the client disconnects, this generator stops
              but the in-flight model and store calls finish and their result is discarded
    """
    request_id = uuid4().hex

    if is_greeting(messages[-1].content):
        yield _sse({"delta": GREETING_REPLY})
        yield _sse({"final": ChatResponse(text=GREETING_REPLY, request_id=request_id).model_dump(mode="json", by_alias=True)})
        yield DONE_EVENT
        return

    events: asyncio.Queue = asyncio.Queue()

    async def emit_status(message: str):
        await events.put({"status": message})

    ctx = AppContext(store=store, identity=extract_identity(messages), on_status=emit_status)

    task = asyncio.create_task(_stream_reply(ctx, build_prompt(messages), request_id, events))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)

    while True:
        event = await events.get()
        yield _sse(event)
        if "final" in event:
            break

    yield DONE_EVENT
