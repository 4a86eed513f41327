"""Anthropic Claude chat-completion provider.

Uses the Anthropic Messages API. Supports tool use for agent actions.

API key: https://console.anthropic.com/
"""

from __future__ import annotations

import json
from typing import Any

from anthropic import AsyncAnthropic
from loguru import logger

from livbridge.core.errors import ChatCompletionError
from livbridge.core.turns import ConversationTurn, Role, ToolInvocationRequest
from livbridge.providers.base import BaseLLM, ChatReply


class AnthropicLLM(BaseLLM):
    """Anthropic Claude chat-completion provider.

    Args:
        api_key: Anthropic API key.
        model: Model identifier (default: "claude-3-5-haiku-latest").
        max_retries: Max API retries (default: 1).
    """

    def __init__(
        self,
        api_key: str,
        model: str = "claude-3-5-haiku-latest",
        max_retries: int = 1,
    ):
        self._api_key = api_key
        self._model_name = model
        self._client = AsyncAnthropic(
            api_key=api_key,
            max_retries=max_retries,
        )

    async def complete(
        self,
        turns: list[ConversationTurn],
        tools: list[dict[str, Any]] | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> ChatReply:
        """Request one completion from Anthropic Claude."""
        system_prompt, anthropic_messages = self.convert_turns(turns)
        anthropic_tools = self.convert_tools(tools) if tools else None

        kwargs: dict[str, Any] = {
            "model": self._model_name,
            "messages": anthropic_messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }

        if system_prompt:
            kwargs["system"] = system_prompt

        if anthropic_tools:
            kwargs["tools"] = anthropic_tools

        logger.debug(
            f"Anthropic request: model={self._model_name}, "
            f"messages={len(anthropic_messages)}, tools={len(anthropic_tools or [])}"
        )

        try:
            response = await self._client.messages.create(**kwargs)
        except Exception as e:
            raise ChatCompletionError(
                f"Anthropic request failed: {e}", provider="anthropic"
            ) from e

        return self.parse_response(response)

    async def close(self) -> None:
        """Close the Anthropic client."""
        await self._client.close()

    @property
    def model(self) -> str:
        return self._model_name

    # ------------------------------------------------------------------
    # Wire format
    # ------------------------------------------------------------------

    @staticmethod
    def convert_turns(
        turns: list[ConversationTurn],
    ) -> tuple[str, list[dict[str, Any]]]:
        """Convert LivBridge turns to Anthropic format.

        Returns (system_prompt, messages) since Anthropic handles system
        messages separately. Consecutive tool results are merged into one
        user message, as the Messages API requires.
        """
        system_prompt = ""
        anthropic_msgs: list[dict[str, Any]] = []

        for turn in turns:
            if turn.role == Role.SYSTEM:
                system_prompt = turn.content
                continue

            if turn.role == Role.TOOL_RESULT:
                block = {
                    "type": "tool_result",
                    "tool_use_id": turn.invocation_id,
                    "content": turn.content,
                }
                last = anthropic_msgs[-1] if anthropic_msgs else None
                if (
                    last is not None
                    and last["role"] == "user"
                    and isinstance(last["content"], list)
                    and last["content"]
                    and last["content"][0].get("type") == "tool_result"
                ):
                    last["content"].append(block)
                else:
                    anthropic_msgs.append({"role": "user", "content": [block]})
            elif turn.requests_tools:
                content: list[dict[str, Any]] = []
                if turn.content:
                    content.append({"type": "text", "text": turn.content})
                for req in turn.tool_invocations:
                    content.append({
                        "type": "tool_use",
                        "id": req.invocation_id,
                        "name": req.tool_name,
                        "input": _arguments_dict(req.raw_arguments),
                    })
                anthropic_msgs.append({"role": "assistant", "content": content})
            else:
                anthropic_msgs.append({
                    "role": turn.role.value,
                    "content": turn.content,
                })

        return system_prompt, anthropic_msgs

    @staticmethod
    def convert_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Convert OpenAI-format tools to Anthropic format.

        OpenAI format:
            {"type": "function", "function": {"name": ..., "description": ..., "parameters": {...}}}

        Anthropic format:
            {"name": ..., "description": ..., "input_schema": {...}}
        """
        anthropic_tools = []
        for tool in tools:
            func = tool.get("function", tool)
            anthropic_tools.append({
                "name": func.get("name", ""),
                "description": func.get("description", ""),
                "input_schema": func.get("parameters", {"type": "object", "properties": {}}),
            })
        return anthropic_tools

    @staticmethod
    def parse_response(response: Any) -> ChatReply:
        """Extract text and tool_use blocks from a Message object."""
        blocks = getattr(response, "content", None)
        if blocks is None:
            raise ChatCompletionError("Malformed Anthropic response: no content", provider="anthropic")

        text_parts = []
        invocations = []
        for block in blocks:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "tool_use":
                invocations.append(
                    ToolInvocationRequest(
                        invocation_id=block.id,
                        tool_name=block.name,
                        raw_arguments=block.input,
                    )
                )

        usage = getattr(response, "usage", None)
        return ChatReply(
            text="".join(text_parts),
            tool_invocations=invocations,
            input_tokens=getattr(usage, "input_tokens", 0) or 0,
            output_tokens=getattr(usage, "output_tokens", 0) or 0,
        )


def _arguments_dict(raw: Any) -> dict[str, Any]:
    """tool_use input must be an object; unparseable payloads become {}."""
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}
