"""OpenAI-compatible chat proxy that chunks oversized conversations for a single upstream."""

__version__ = "0.1.0"
