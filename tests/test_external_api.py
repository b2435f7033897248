from __future__ import annotations

import asyncio
from typing import Any

import pytest

from tracker_engine.config import ExternalApiConfig
from tracker_engine.errors import ExternalApiError, TrackerConfigurationError
from tracker_engine.providers import external_api
from tracker_engine.providers.external_api import ExternalTrackerClient


class _FakeApiError(Exception):
    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


def _client(**overrides: Any) -> ExternalTrackerClient:
    payload: dict[str, Any] = {
        "base_url": "https://llm.example.test/v1/",
        "model": "tracker-small",
    }
    payload.update(overrides)
    return ExternalTrackerClient(ExternalApiConfig.model_validate(payload))


def test_resolve_endpoint_requires_base_url_and_model() -> None:
    with pytest.raises(TrackerConfigurationError, match="base URL"):
        _client(base_url=None).resolve_endpoint()
    with pytest.raises(TrackerConfigurationError, match="model"):
        _client(model="").resolve_endpoint()
    assert _client().resolve_endpoint() == ("https://llm.example.test/v1", "tracker-small")


def test_chat_completion_routes_through_litellm(monkeypatch) -> None:
    seen: dict[str, Any] = {}

    async def _fake_acompletion(**kwargs: Any) -> dict[str, Any]:
        seen.update(kwargs)
        return {"choices": [{"message": {"content": "```json\n{}\n```"}}]}

    monkeypatch.setattr(external_api.litellm, "acompletion", _fake_acompletion)

    text = asyncio.run(_client(api_key="sk-test").chat_completion([{"role": "user", "content": "hi"}]))

    assert text == "```json\n{}\n```"
    assert seen["model"] == "openai/tracker-small"
    assert seen["api_base"] == "https://llm.example.test/v1"
    assert seen["api_key"] == "sk-test"
    assert seen["max_tokens"] == 2048


def test_chat_completion_uses_placeholder_key(monkeypatch) -> None:
    seen: dict[str, Any] = {}

    async def _fake_acompletion(**kwargs: Any) -> dict[str, Any]:
        seen.update(kwargs)
        return {"choices": [{"message": {"content": [{"type": "text", "text": "ok"}]}}]}

    monkeypatch.setattr(external_api.litellm, "acompletion", _fake_acompletion)

    assert asyncio.run(_client().chat_completion([])) == "ok"
    assert seen["api_key"] == external_api.PLACEHOLDER_API_KEY


def test_chat_completion_wraps_provider_errors(monkeypatch) -> None:
    async def _failing(**kwargs: Any) -> dict[str, Any]:
        raise _FakeApiError("rate limited", 429)

    monkeypatch.setattr(external_api.litellm, "acompletion", _failing)

    with pytest.raises(ExternalApiError) as excinfo:
        asyncio.run(_client().chat_completion([]))
    assert excinfo.value.status_code == 429


def test_chat_completion_rejects_malformed_response(monkeypatch) -> None:
    async def _empty(**kwargs: Any) -> dict[str, Any]:
        return {"choices": []}

    monkeypatch.setattr(external_api.litellm, "acompletion", _empty)

    with pytest.raises(ExternalApiError, match="Invalid response format"):
        asyncio.run(_client().chat_completion([]))


def test_connection_check_reports_outcome(monkeypatch) -> None:
    async def _ok(**kwargs: Any) -> dict[str, Any]:
        return {"choices": [{"message": {"content": "Connection successful"}}]}

    monkeypatch.setattr(external_api.litellm, "acompletion", _ok)

    assert asyncio.run(_client().test_connection()) == (
        True,
        "Connection successful! Model: tracker-small",
    )
    ok, message = asyncio.run(_client(model=None).test_connection())
    assert ok is False
    assert "model" in message
