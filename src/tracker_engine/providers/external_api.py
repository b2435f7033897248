from __future__ import annotations

from typing import Any

import litellm

from tracker_engine.config import ExternalApiConfig
from tracker_engine.errors import ExternalApiError, TrackerConfigurationError
from tracker_engine.logging_setup import get_logger

# Local OpenAI-compatible servers ignore the key, but the client requires one.
PLACEHOLDER_API_KEY = "not-configured"


def _as_mapping(response: Any) -> dict[str, Any]:
    """litellm responses are pydantic models; plain dicts pass through."""
    if isinstance(response, dict):
        return response
    dump = getattr(response, "model_dump", None)
    return dump(exclude_none=True) if callable(dump) else {}


def _message_content(response: Any) -> str | None:
    try:
        value = _as_mapping(response)["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        parts = [
            item["text"]
            for item in value
            if isinstance(item, dict) and isinstance(item.get("text"), str)
        ]
        return "\n".join(parts)
    return None


class ExternalTrackerClient:
    """Tracker generation against an externally configured OpenAI-compatible API."""

    def __init__(self, config: ExternalApiConfig) -> None:
        self.config = config
        self.logger = get_logger(__name__)

    def resolve_endpoint(self) -> tuple[str, str]:
        base_url = (self.config.base_url or "").strip().rstrip("/")
        model = (self.config.model or "").strip()
        if not base_url:
            raise TrackerConfigurationError("External API base URL is not configured")
        if not model:
            raise TrackerConfigurationError("External API model is not configured")
        return base_url, model

    async def chat_completion(self, messages: list[dict[str, str]]) -> str:
        base_url, model = self.resolve_endpoint()
        self.logger.debug(
            "External tracker request base_url=%s model=%s messages=%d",
            base_url,
            model,
            len(messages),
        )
        try:
            raw = await litellm.acompletion(
                model=f"openai/{model}",
                api_base=base_url,
                api_key=self.config.api_key or PLACEHOLDER_API_KEY,
                messages=messages,
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
                timeout=self.config.timeout_seconds,
            )
        except Exception as exc:
            status_code = getattr(exc, "status_code", None)
            self.logger.warning(
                "External tracker request failed model=%s status=%s error=%s",
                model,
                status_code,
                exc.__class__.__name__,
            )
            raise ExternalApiError(
                f"External API error: {exc}", status_code=status_code
            ) from exc

        text = _message_content(raw)
        if text is None:
            raise ExternalApiError("Invalid response format from external API")
        return text

    async def test_connection(self) -> tuple[bool, str]:
        try:
            _, model = self.resolve_endpoint()
            await self.chat_completion(
                [{"role": "user", "content": 'Respond with exactly: "Connection successful"'}]
            )
        except (TrackerConfigurationError, ExternalApiError) as exc:
            return False, str(exc) or "Connection failed"
        return True, f"Connection successful! Model: {model}"
