"""AI content generation: strategy interface + LiteLLM Responses API backend."""

from __future__ import annotations

import abc
import base64
import os
from typing import Any

import litellm
from loguru import logger
from pydantic import BaseModel, Field

from schedbot.core.config.schema import Config
from schedbot.core.errors import ContentGenerationError

litellm.suppress_debug_info = True

# Output item type → billing tool name
_TOOL_CALL_TYPES = {
    "web_search_call": "web_search",
    "file_search_call": "file_search",
    "image_generation_call": "image_generation",
}


class GeneratedContent(BaseModel):
    text: str = ""
    image: bytes | None = None
    total_tokens: int = 0
    tool_calls: dict[str, int] = Field(default_factory=dict)
    model: str = ""
    conversation_token: str | None = None


class ContentGenerator(abc.ABC):
    """Abstract base for AI generation backends."""

    @abc.abstractmethod
    async def generate(
        self,
        prompt: str,
        model: str,
        temperature: float | None = None,
        conversation_token: str | None = None,
        max_tokens: int = 8192,
    ) -> GeneratedContent:
        """Run one generation; ``conversation_token`` continues a previous one."""
        ...


class LiteLLMContentGenerator(ContentGenerator):
    """Responses-API generator with web search and image generation tools."""

    def __init__(self, config: Config) -> None:
        _set_key("OPENAI_API_KEY", config.providers.openai.api_key)
        _set_key("ANTHROPIC_API_KEY", config.providers.anthropic.api_key)
        _set_key("OPENROUTER_API_KEY", config.providers.openrouter.api_key)
        self.tools: list[dict[str, Any]] = [
            {"type": "web_search_preview"},
            {"type": "image_generation"},
        ]

    async def generate(
        self,
        prompt: str,
        model: str,
        temperature: float | None = None,
        conversation_token: str | None = None,
        max_tokens: int = 8192,
    ) -> GeneratedContent:
        kwargs: dict[str, Any] = {
            "model": model,
            "input": prompt,
            "max_output_tokens": max_tokens,
            "tools": self.tools,
        }
        if temperature is not None:
            kwargs["temperature"] = temperature
        if conversation_token:
            kwargs["previous_response_id"] = conversation_token

        try:
            response = await litellm.aresponses(**kwargs)
        except Exception as e:
            logger.error(f"LLM error: {e}")
            raise ContentGenerationError(str(e)) from e
        return self._to_content(response, model)

    @staticmethod
    def _to_content(response: Any, model: str) -> GeneratedContent:
        texts: list[str] = []
        image: bytes | None = None
        tool_calls: dict[str, int] = {}

        for item in _get(response, "output") or []:
            item_type = _get(item, "type")
            if item_type == "message":
                for part in _get(item, "content") or []:
                    if _get(part, "type") == "output_text":
                        texts.append(_get(part, "text") or "")
            elif item_type in _TOOL_CALL_TYPES:
                name = _TOOL_CALL_TYPES[item_type]
                tool_calls[name] = tool_calls.get(name, 0) + 1
                result = _get(item, "result")
                if item_type == "image_generation_call" and result and image is None:
                    image = base64.b64decode(result)

        usage = _get(response, "usage")
        return GeneratedContent(
            text="\n".join(t for t in texts if t).strip(),
            image=image,
            total_tokens=int(_get(usage, "total_tokens") or 0) if usage else 0,
            tool_calls=tool_calls,
            model=model,
            conversation_token=_get(response, "id"),
        )


def _get(obj: Any, key: str) -> Any:
    """Read ``key`` from a dict or attribute-style response object."""
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def _set_key(env_name: str, value: str) -> None:
    if value:
        os.environ.setdefault(env_name, value)
