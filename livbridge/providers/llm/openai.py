"""OpenAI GPT chat-completion provider.

Uses the OpenAI Chat Completions API. Supports function/tool calling for
agent actions. Webhook turns are request/response, so the full reply is
fetched in one call rather than streamed.

API key: https://platform.openai.com/
"""

from __future__ import annotations

import json
from typing import Any

from loguru import logger
from openai import AsyncOpenAI

from livbridge.core.errors import ChatCompletionError
from livbridge.core.turns import ConversationTurn, Role, ToolInvocationRequest
from livbridge.providers.base import BaseLLM, ChatReply


class OpenAILLM(BaseLLM):
    """OpenAI GPT chat-completion provider.

    Args:
        api_key: OpenAI API key.
        model: Model identifier (default: "gpt-4o-mini").
        base_url: Optional custom API base URL (for Azure, local models, etc.).
        organization: Optional OpenAI organization ID.
        max_retries: Max API retries (default: 1). Kept low because the
            orchestrator already bounds each round with a timeout.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
        organization: str | None = None,
        max_retries: int = 1,
    ):
        self._api_key = api_key
        self._model_name = model
        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            organization=organization,
            max_retries=max_retries,
        )

    async def complete(
        self,
        turns: list[ConversationTurn],
        tools: list[dict[str, Any]] | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> ChatReply:
        """Request one completion from OpenAI."""
        kwargs: dict[str, Any] = {
            "model": self._model_name,
            "messages": self.convert_turns(turns),
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"

        logger.debug(
            f"OpenAI request: model={self._model_name}, "
            f"messages={len(turns)}, tools={len(tools or [])}"
        )

        try:
            response = await self._client.chat.completions.create(**kwargs)
        except Exception as e:
            raise ChatCompletionError(f"OpenAI request failed: {e}", provider="openai") from e

        return self.parse_response(response)

    async def close(self) -> None:
        """Close the OpenAI client."""
        await self._client.close()

    @property
    def model(self) -> str:
        return self._model_name

    # ------------------------------------------------------------------
    # Wire format
    # ------------------------------------------------------------------

    @staticmethod
    def convert_turns(turns: list[ConversationTurn]) -> list[dict[str, Any]]:
        """Convert LivBridge turns to OpenAI chat messages."""
        oai_messages = []

        for turn in turns:
            if turn.role == Role.TOOL_RESULT:
                oai_messages.append({
                    "role": "tool",
                    "tool_call_id": turn.invocation_id,
                    "content": turn.content,
                })
            elif turn.requests_tools:
                # Assistant message with tool calls
                oai_messages.append({
                    "role": "assistant",
                    "content": turn.content or None,
                    "tool_calls": [
                        {
                            "id": req.invocation_id,
                            "type": "function",
                            "function": {
                                "name": req.tool_name,
                                "arguments": _arguments_json(req.raw_arguments),
                            },
                        }
                        for req in turn.tool_invocations
                    ],
                })
            else:
                oai_messages.append({"role": turn.role.value, "content": turn.content})

        return oai_messages

    @staticmethod
    def parse_response(response: Any) -> ChatReply:
        """Extract text and tool calls from a ChatCompletion object."""
        try:
            message = response.choices[0].message
        except (AttributeError, IndexError, TypeError) as e:
            raise ChatCompletionError(
                f"Malformed OpenAI response: {e}", provider="openai"
            ) from e

        invocations = [
            ToolInvocationRequest(
                invocation_id=tc.id,
                tool_name=tc.function.name,
                raw_arguments=tc.function.arguments,
            )
            for tc in (message.tool_calls or [])
        ]

        usage = getattr(response, "usage", None)
        return ChatReply(
            text=message.content or "",
            tool_invocations=invocations,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
        )


def _arguments_json(raw: Any) -> str:
    """The provider expects arguments as a JSON string."""
    if raw is None:
        return "{}"
    if isinstance(raw, str):
        return raw
    return json.dumps(raw)
