import asyncio
import logging
from typing import Any, AsyncIterator, Optional, Sequence

import requests

from .config import ProxySettings
from .errors import UpstreamError
from .models import ChatMessage, UpstreamRequest

logger = logging.getLogger(__name__)


class UpstreamClient:
    """One ``POST {base}/chat/completions`` per chunk against the upstream API.

    ``requests`` is blocking, so every network call is pushed onto a worker
    thread and awaited; the event loop keeps serving other requests meanwhile.
    """

    def __init__(self, settings: ProxySettings):
        self.settings = settings

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.upstream_api_key}",
            "Content-Type": "application/json",
        }

    def build_payload(
        self,
        chunk: Sequence[ChatMessage],
        model: str,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        stream: bool = False,
    ) -> dict[str, Any]:
        ceiling = self.settings.output_ceiling
        request = UpstreamRequest(
            model=model,
            messages=list(chunk),
            max_tokens=min(max_tokens or ceiling, ceiling),
            temperature=self.settings.default_temperature if temperature is None else temperature,
            stream=stream,
        )
        return request.model_dump()

    def _post(self, payload: dict[str, Any], stream: bool, timeout: Optional[float]) -> requests.Response:
        url = self.settings.completions_url
        logger.info(f"POST {url} model={payload['model']} messages={len(payload['messages'])} stream={stream}")
        try:
            response = requests.post(
                url,
                json=payload,
                headers=self._headers(),
                stream=stream,
                timeout=timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Upstream connection failed: {e}")
            raise UpstreamError("Upstream request failed", details=str(e)) from e

        if not response.ok:
            body = response.text
            response.close()
            logger.error(f"Upstream returned error: {response.status_code} - {body}")
            raise UpstreamError("Upstream request failed", status=response.status_code, details=body)
        return response

    async def complete(
        self,
        chunk: Sequence[ChatMessage],
        model: str,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> dict[str, Any]:
        payload = self.build_payload(chunk, model, max_tokens, temperature, stream=False)
        timeout = self.settings.request_timeout
        # requests only bounds connect and per-read inactivity; wait_for bounds the whole call
        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(self._post, payload, False, timeout),
                timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Upstream request exceeded {timeout}s deadline")
            raise UpstreamError("Upstream request timed out", details=f"no response within {timeout}s") from e
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(
                "Upstream returned a non-JSON body",
                status=response.status_code,
                details=response.text,
            ) from e

    async def open_stream(
        self,
        chunk: Sequence[ChatMessage],
        model: str,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> requests.Response:
        """Start a streamed completion. The caller owns and must close the response."""
        payload = self.build_payload(chunk, model, max_tokens, temperature, stream=True)
        # no deadline on streams; a long generation is not a failure
        return await asyncio.to_thread(self._post, payload, True, None)

    async def iter_lines(self, response: requests.Response) -> AsyncIterator[bytes]:
        lines = response.iter_lines()
        while True:
            line = await asyncio.to_thread(next, lines, None)
            if line is None:
                break
            yield line
