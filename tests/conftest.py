"""Shared fixtures: a small-budget proxy app and canned upstream replies."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest
import requests
from fastapi.testclient import TestClient

from chunkrelay.config import ProxySettings
from chunkrelay.main import create_app

UPSTREAM_URL = "http://upstream.test/v1/chat/completions"


class FakeResponse(requests.Response):
    """A real ``requests.Response`` with preloaded content that records close()."""

    def __init__(self, status_code=200, body=None, content=b""):
        super().__init__()
        self.status_code = status_code
        self.url = UPSTREAM_URL
        self.encoding = "utf-8"
        self._content = json.dumps(body).encode() if body is not None else content
        self._content_consumed = True
        self.closed = False

    def close(self):
        self.closed = True
        super().close()


def completion_body(content, prompt_tokens=None, completion_tokens=None, finish_reason="stop"):
    body = {
        "id": "upstream-1",
        "object": "chat.completion",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": finish_reason,
            }
        ],
    }
    if prompt_tokens is not None:
        body["usage"] = {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": prompt_tokens + completion_tokens,
        }
    return body


@pytest.fixture()
def settings():
    # 100-token window, 10-token buffer: two 50-token messages never share a chunk
    return ProxySettings(
        upstream_base_url="http://upstream.test/v1",
        upstream_api_key="test-key",
        max_context_tokens=100,
        token_buffer=10,
        model_map={"deepseek_v3_2": "deepseek-ai/deepseek-v3.2", "fast": "deepseek-ai/deepseek-lite"},
        default_model="deepseek_v3_2",
    )


@pytest.fixture()
def make_client():
    def _make(settings):
        return TestClient(create_app(settings))

    return _make


@pytest.fixture()
def client(make_client, settings):
    return make_client(settings)


@pytest.fixture()
def mock_post():
    with patch("chunkrelay.upstream.requests.post") as post:
        yield post
