"""Convert the canonical session log to Anthropic API request format."""

from __future__ import annotations

import json
from typing import Any

from codeloop.ai.tools.base import ToolDefinition
from codeloop.core.types import Role
from codeloop.storage.models import Message

INTERRUPTED_RESULT = "Error: tool execution was interrupted before a result was recorded"
TRIMMED_HISTORY_NOTE = "[Earlier conversation was trimmed]"


def _tool_input(arguments: str) -> dict[str, Any]:
    try:
        parsed = json.loads(arguments) if arguments.strip() else {}
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _blocks(content: str | list[dict[str, Any]]) -> list[dict[str, Any]]:
    if isinstance(content, str):
        return [{"type": "text", "text": content}] if content else []
    return content


def _append(messages: list[dict[str, Any]], role: str, content: str | list[dict[str, Any]]) -> None:
    """Append a turn, merging it into the previous one when the role repeats."""
    if messages and messages[-1]["role"] == role:
        messages[-1]["content"] = _blocks(messages[-1]["content"]) + _blocks(content)
        return
    messages.append({"role": role, "content": content})


def build_messages(history: list[Message]) -> tuple[str, list[dict[str, Any]]]:
    """Translate the session log into ``(system, messages)`` for the API.

    The leading system message becomes the system prompt. Later system messages
    (corrective hints) are sent as user-side notices because the API takes a
    single system prompt. Tool results become ``tool_result`` blocks on the user
    side, and any tool call without a recorded result gets a synthetic failure
    so that a session interrupted mid-batch can still be resumed.
    """
    system = ""
    body = history
    if history and history[0].role == Role.SYSTEM:
        system = history[0].content
        body = history[1:]

    messages: list[dict[str, Any]] = []
    i = 0
    while i < len(body):
        message = body[i]

        match message.role:
            case Role.USER:
                _append(messages, "user", message.content)
                i += 1

            case Role.SYSTEM:
                _append(messages, "user", f"[System notice]\n{message.content}")
                i += 1

            case Role.ASSISTANT if message.tool_calls:
                blocks = _blocks(message.content)
                blocks.extend(
                    {
                        "type": "tool_use",
                        "id": call.id,
                        "name": call.name,
                        "input": _tool_input(call.arguments),
                    }
                    for call in message.tool_calls
                )
                _append(messages, "assistant", blocks)
                i += 1

                results: dict[str, dict[str, Any]] = {}
                while i < len(body) and body[i].role == Role.TOOL:
                    result = body[i]
                    results[result.tool_call_id or ""] = {
                        "type": "tool_result",
                        "tool_use_id": result.tool_call_id,
                        "content": result.content,
                    }
                    i += 1
                # Results go back in the order the calls were made.
                ordered = [
                    results.get(
                        call.id,
                        {"type": "tool_result", "tool_use_id": call.id, "content": INTERRUPTED_RESULT, "is_error": True},
                    )
                    for call in message.tool_calls
                ]
                _append(messages, "user", ordered)

            case Role.ASSISTANT:
                if message.content:
                    _append(messages, "assistant", message.content)
                i += 1

            case _:
                # Tool result without its request; nothing valid to attach it to.
                i += 1

    if messages and messages[0]["role"] != "user":
        messages.insert(0, {"role": "user", "content": TRIMMED_HISTORY_NOTE})

    return system, messages


def build_tools(definitions: list[ToolDefinition]) -> list[dict[str, Any]]:
    """Tool definitions in Anthropic's ``input_schema`` shape."""
    return [
        {"name": d.name, "description": d.description, "input_schema": d.parameters}
        for d in definitions
    ]
