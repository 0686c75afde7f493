from __future__ import annotations

import pytest
from pydantic import ValidationError

from chunkrelay.config import ProxySettings


class TestProxySettings:
    def test_defaults(self, monkeypatch):
        for name in ("NIM_KEY", "UPSTREAM_API_KEY", "MODEL_MAP", "MAX_CONTEXT_TOKENS", "TOKEN_BUFFER"):
            monkeypatch.delenv(name, raising=False)
        settings = ProxySettings(_env_file=None)
        assert settings.max_context_tokens == 8192
        assert settings.token_buffer == 50
        assert settings.output_ceiling == 8142
        assert settings.request_timeout == 20.0
        assert settings.default_model in settings.model_map

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("NIM_KEY", "nvapi-123")
        monkeypatch.setenv("UPSTREAM_BASE_URL", "https://example.test/v1/")
        monkeypatch.setenv("MODEL_MAP", '{"janitor": "vendor/model-x"}')
        monkeypatch.setenv("DEFAULT_MODEL", "janitor")
        monkeypatch.setenv("MAX_OUTPUT_TOKENS", "1024")
        monkeypatch.setenv("ENFORCE_MODEL_ALLOWLIST", "true")
        settings = ProxySettings(_env_file=None)
        assert settings.upstream_api_key == "nvapi-123"
        assert settings.completions_url == "https://example.test/v1/chat/completions"
        assert settings.model_map == {"janitor": "vendor/model-x"}
        assert settings.output_ceiling == 1024
        assert settings.enforce_model_allowlist is True

    def test_is_immutable(self):
        settings = ProxySettings(_env_file=None)
        with pytest.raises(ValidationError):
            settings.port = 9999

    def test_buffer_must_fit_in_window(self):
        with pytest.raises(ValidationError):
            ProxySettings(_env_file=None, max_context_tokens=50, token_buffer=50)

    def test_default_model_must_be_mapped_when_allowlist_enforced(self):
        with pytest.raises(ValidationError):
            ProxySettings(
                _env_file=None,
                model_map={"fast": "vendor/fast"},
                default_model="deepseek_v3_2",
                enforce_model_allowlist=True,
            )

    def test_unmapped_default_model_allowed_without_allowlist(self):
        settings = ProxySettings(
            _env_file=None,
            model_map={"fast": "vendor/fast"},
            default_model="deepseek_v3_2",
            enforce_model_allowlist=False,
        )
        assert settings.default_model == "deepseek_v3_2"
