"""Rough token accounting and context-window chunking of chat histories.

The estimate is the usual four-characters-per-token rule of thumb, not a
tokenizer, so a chunk that fits here can still be rejected upstream.
"""

import math
from typing import Sequence

from .models import ChatMessage


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def chunk_messages(
    messages: Sequence[ChatMessage],
    max_tokens: int,
    buffer: int,
) -> list[list[ChatMessage]]:
    """Split ``messages`` into ordered groups that each fit ``max_tokens - buffer``.

    Messages are never reordered or split. A message that is larger than the
    budget on its own still gets a chunk to itself.
    """
    chunks: list[list[ChatMessage]] = []
    current: list[ChatMessage] = []
    current_tokens = 0

    for message in messages:
        tokens = estimate_tokens(message.content)
        if current and current_tokens + tokens + buffer > max_tokens:
            chunks.append(current)
            current = []
            current_tokens = 0
        current.append(message)
        current_tokens += tokens

    if current:
        chunks.append(current)
    return chunks


def chunk_tokens(chunk: Sequence[ChatMessage]) -> int:
    return sum(estimate_tokens(m.content) for m in chunk)
