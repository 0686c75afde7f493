import logging
import time
from typing import Optional

import uvicorn
from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, StreamingResponse
from pydantic import ValidationError
from starlette.background import BackgroundTask

from . import __version__
from .aggregator import empty_stream, relay_stream, run_buffered
from .chunking import chunk_messages
from .config import ProxySettings, get_settings
from .errors import InputError, ProxyError, error_response
from .model_map import ModelMapper
from .models import ChatCompletionRequest, ChatMessage, ModelCard, ModelList
from .upstream import UpstreamClient

logger = logging.getLogger(__name__)

router = APIRouter()


async def _handle_proxy_error(request: Request, exc: ProxyError) -> JSONResponse:
    return error_response(exc)


async def parse_chat_request(request: Request) -> ChatCompletionRequest:
    try:
        data = await request.json()
    except ValueError as e:
        raise InputError("Request body must be valid JSON") from e
    if not isinstance(data, dict):
        raise InputError("Request body must be a JSON object")

    messages = data.get("messages")
    if not isinstance(messages, list):
        raise InputError("Missing or invalid messages array")

    try:
        return ChatCompletionRequest.model_validate(data)
    except ValidationError as e:
        raise InputError("Invalid chat completion request", details=str(e)) from e


def split_into_chunks(messages: list[ChatMessage], settings: ProxySettings) -> list[list[ChatMessage]]:
    if not settings.chunking_enabled:
        return [list(messages)] if messages else []
    return chunk_messages(messages, settings.max_context_tokens, settings.token_buffer)


@router.get("/")
@router.get("/health")
async def health():
    return {"status": "ok"}


@router.get("/v1/models")
async def list_models(request: Request):
    state = request.app.state
    cards = [
        ModelCard(id=alias, created=state.started_at, owned_by=state.settings.model_owner)
        for alias in state.mapper.aliases()
    ]
    return ModelList(data=cards).model_dump()


@router.post("/chat/completions")
async def legacy_chat_completions():
    # 307 keeps the method and body on the retry
    return RedirectResponse(url="/v1/chat/completions", status_code=307)


@router.post("/v1/chat/completions")
async def chat_completions(request: Request):
    state = request.app.state
    settings: ProxySettings = state.settings
    client: UpstreamClient = state.client

    chat_request = await parse_chat_request(request)
    alias = state.mapper.resolve_alias(chat_request.model)
    upstream_model = state.mapper.resolve(chat_request.model)
    streaming = chat_request.stream and settings.streaming_enabled

    chunks = split_into_chunks(chat_request.messages, settings)
    logger.info(
        f"Received {'stream' if streaming else 'static'} request: model={alias} -> {upstream_model}, "
        f"{len(chat_request.messages)} messages in {len(chunks)} chunk(s)"
    )

    try:
        if streaming and not chunks:
            # nothing to send upstream; close the stream straight away
            return StreamingResponse(
                empty_stream(),
                media_type="text/event-stream",
                headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
            )
        if streaming:
            first = await client.open_stream(
                chunks[0], upstream_model, chat_request.max_tokens, chat_request.temperature
            )
            return StreamingResponse(
                relay_stream(
                    client,
                    chunks,
                    first,
                    request,
                    upstream_model,
                    chat_request.max_tokens,
                    chat_request.temperature,
                ),
                media_type="text/event-stream",
                headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
                background=BackgroundTask(first.close),
            )

        result = await run_buffered(
            client,
            chunks,
            alias,
            upstream_model,
            chat_request.max_tokens,
            chat_request.temperature,
        )
        return result.model_dump()
    except ProxyError:
        raise
    except Exception as e:
        logger.exception("Proxy processing failed")
        raise ProxyError("Proxy processing failed", details=str(e)) from e


def create_app(settings: Optional[ProxySettings] = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(title="chunkrelay", version=__version__)
    app.state.settings = settings
    app.state.mapper = ModelMapper(
        settings.model_map,
        settings.default_model,
        enforce_allowlist=settings.enforce_model_allowlist,
    )
    app.state.client = UpstreamClient(settings)
    app.state.started_at = int(time.time())

    # browser-based chat frontends call the proxy cross-origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ProxyError, _handle_proxy_error)
    app.include_router(router)
    return app


app = create_app()


def main():
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
