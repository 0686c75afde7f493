"""Assemble per-chunk upstream output into what the chat client expects.

Buffered requests get one ``chat.completion`` envelope with the chunks'
answers concatenated. Streaming requests get the upstream lines re-framed as
server-sent events, all chunks back to back, then a single ``[DONE]``.

Chunks are sent as independent conversations: nothing one chunk produced is
fed into the next, so a multi-chunk answer is several unrelated completions
joined together.
"""

import json
import logging
import time
from typing import Any, AsyncIterator, Optional, Sequence

import requests
from fastapi import Request

from .chunking import chunk_tokens, estimate_tokens
from .errors import StreamRelayError
from .models import AssistantMessage, ChatCompletionResponse, ChatMessage, Choice, Usage
from .upstream import UpstreamClient

logger = logging.getLogger(__name__)

DONE = "[DONE]"

# SSE fields other than data carry nothing the client should parse
SKIPPED_FIELDS = ("event", "id", "retry")


def extract_content(body: dict[str, Any]) -> str:
    choices = body.get("choices")
    if not choices or not isinstance(choices[0], dict):
        return ""
    message = choices[0].get("message") or {}
    return message.get("content") or ""


def extract_finish_reason(body: dict[str, Any]) -> Optional[str]:
    choices = body.get("choices")
    if not choices or not isinstance(choices[0], dict):
        return None
    return choices[0].get("finish_reason")


def _usage_value(usage: dict[str, Any], key: str, fallback: int) -> int:
    value = usage.get(key)
    return value if isinstance(value, int) else fallback


async def run_buffered(
    client: UpstreamClient,
    chunks: Sequence[Sequence[ChatMessage]],
    alias: str,
    upstream_model: str,
    max_tokens: Optional[int] = None,
    temperature: Optional[float] = None,
) -> ChatCompletionResponse:
    parts: list[str] = []
    prompt_tokens = completion_tokens = 0
    finish_reason = "stop"

    for index, chunk in enumerate(chunks, start=1):
        logger.info(f"Dispatching chunk {index}/{len(chunks)} ({len(chunk)} messages)")
        # the next chunk is only sent once this one has fully come back
        body = await client.complete(chunk, upstream_model, max_tokens, temperature)
        content = extract_content(body)
        parts.append(content)

        usage = body.get("usage") or {}
        prompt_tokens += _usage_value(usage, "prompt_tokens", chunk_tokens(chunk))
        completion_tokens += _usage_value(usage, "completion_tokens", estimate_tokens(content))
        finish_reason = extract_finish_reason(body) or finish_reason

    text = "".join(parts)
    logger.info(f"Buffered response assembled from {len(chunks)} chunk(s), {len(text)} chars")
    return ChatCompletionResponse(
        id=f"chunked-{int(time.time() * 1000)}",
        created=int(time.time()),
        model=alias,
        choices=[Choice(index=0, message=AssistantMessage(content=text), finish_reason=finish_reason)],
        usage=Usage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        ),
    )


def normalize_line(raw: bytes) -> Optional[str]:
    """Strip an upstream line down to its payload, or None if it should not be relayed."""
    line = raw.decode("utf-8").strip()
    if line.startswith(":"):
        return None
    field, sep, _ = line.partition(":")
    if sep and field in SKIPPED_FIELDS:
        return None
    if line.startswith("data:"):
        line = line[5:].strip()
    if not line or line == DONE:
        return None
    return line


def sse_frame(payload: str) -> str:
    return f"data: {payload}\n\n"


async def empty_stream() -> AsyncIterator[str]:
    yield sse_frame(DONE)


async def relay_stream(
    client: UpstreamClient,
    chunks: Sequence[Sequence[ChatMessage]],
    first_response: requests.Response,
    request: Request,
    upstream_model: str,
    max_tokens: Optional[int] = None,
    temperature: Optional[float] = None,
) -> AsyncIterator[str]:
    """Relay every chunk's upstream stream as SSE frames, in order.

    ``first_response`` is the already-open stream for ``chunks[0]``; later
    chunks are opened one at a time after the previous stream is drained.
    """
    response: Optional[requests.Response] = first_response
    frames = 0
    try:
        for index, chunk in enumerate(chunks, start=1):
            if response is None:
                logger.info(f"Opening stream for chunk {index}/{len(chunks)}")
                response = await client.open_stream(chunk, upstream_model, max_tokens, temperature)
            async for raw in client.iter_lines(response):
                if await request.is_disconnected():
                    logger.info("Client disconnected, stopping relay")
                    return
                payload = normalize_line(raw)
                if payload is None:
                    continue
                frames += 1
                yield sse_frame(payload)
            response.close()
            response = None
        logger.info(f"Stream relay finished: {frames} frame(s) from {len(chunks)} chunk(s)")
        yield sse_frame(DONE)
    except Exception as exc:
        error = StreamRelayError.wrap(exc)
        logger.error(f"Stream relay failed after {frames} frame(s): {error.message} {error.details or ''}")
        yield sse_frame(json.dumps(error.to_body()))
    finally:
        if response is not None:
            response.close()
