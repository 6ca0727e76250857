"""Completion-service client abstraction with an Anthropic API backend."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from codeloop.ai.conversation import build_messages, build_tools
from codeloop.ai.tools.base import ToolDefinition
from codeloop.config import LLMConfig
from codeloop.log import get_logger
from codeloop.storage.models import Message, ToolCall

logger = get_logger(__name__)


@dataclass
class Completion:
    """Unified reply from any completion backend."""

    text: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: str | None = None
    raw: Any = None  # Backend-specific raw response


class AIClient(ABC):
    """Abstract base class for completion backends.

    Backends receive the canonical message log and tool set and are responsible
    for translating both into their own request shape.
    """

    @property
    @abstractmethod
    def model_name(self) -> str:
        ...

    @abstractmethod
    async def complete(self, messages: list[Message], tools: list[ToolDefinition]) -> Completion:
        """Run one completion over ``messages`` with ``tools`` available to the model."""
        ...


class AnthropicClient(AIClient):
    """Anthropic API backend using the official SDK."""

    def __init__(self, config: LLMConfig):
        import anthropic

        self._config = config
        self._client = anthropic.AsyncAnthropic(
            api_key=config.api_key,
            base_url=config.base_url,
            max_retries=config.max_retries,
            timeout=config.timeout,
        )

    @property
    def model_name(self) -> str:
        return self._config.model

    async def complete(self, messages: list[Message], tools: list[ToolDefinition]) -> Completion:
        system, api_messages = build_messages(messages)
        kwargs: dict[str, Any] = {
            "model": self._config.model,
            "max_tokens": self._config.max_tokens,
            "messages": api_messages,
            "temperature": self._config.temperature,
        }
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = build_tools(tools)

        logger.debug("api_request", model=self._config.model, message_count=len(api_messages))
        response = await self._client.messages.create(**kwargs)
        logger.debug(
            "api_response",
            model=self._config.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=response.stop_reason,
        )

        texts: list[str] = []
        tool_calls: list[ToolCall] = []
        for block in response.content:
            match block.type:
                case "text":
                    texts.append(block.text)
                case "tool_use":
                    tool_calls.append(
                        ToolCall(id=block.id, name=block.name, arguments=json.dumps(block.input))
                    )

        return Completion(
            text="\n".join(t for t in texts if t),
            tool_calls=tool_calls,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=response.stop_reason,
            raw=response,
        )
