"""Base interfaces for collaborator providers (LLM, TTS).

All provider implementations inherit from these abstract base classes,
so the turn orchestrator and reply renderer work the same regardless of
the underlying service.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from livbridge.core.turns import ConversationTurn, ToolInvocationRequest


# ---------------------------------------------------------------------------
# Data classes for provider communication
# ---------------------------------------------------------------------------

@dataclass
class ChatReply:
    """A completed chat-model response.

    Either ``text`` or ``tool_invocations`` (or both, when the model adds a
    filler line before calling tools) is populated.
    """

    text: str = ""
    tool_invocations: list[ToolInvocationRequest] = field(default_factory=list)
    # Usage info
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_invocations)


# ---------------------------------------------------------------------------
# Abstract Base Classes
# ---------------------------------------------------------------------------

class BaseLLM(ABC):
    """Abstract base class for chat-completion providers.

    Lifecycle:
        1. __init__(api_key, model, **config) - configure the provider
        2. complete(turns, tools?) - one request/response round
        3. close() - clean up any persistent connections
    """

    @abstractmethod
    async def complete(
        self,
        turns: list[ConversationTurn],
        tools: list[dict[str, Any]] | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> ChatReply:
        """Run one chat-completion round.

        Args:
            turns: Conversation history, system turn first.
            tools: Optional tool definitions in OpenAI-compatible format.
                When None the model must answer in plain text.
            temperature: Sampling temperature (0.0 - 2.0).
            max_tokens: Maximum tokens to generate.

        Returns:
            A ChatReply with text and/or tool invocations.

        Raises:
            ChatCompletionError: On any API, quota or response-shape failure.
        """
        ...

    async def close(self) -> None:
        """Clean up any persistent connections. Override if needed."""
        pass

    @property
    @abstractmethod
    def model(self) -> str:
        """The model identifier (e.g., 'gpt-4o-mini')."""
        ...

    @property
    def name(self) -> str:
        """Provider name for logging."""
        return self.__class__.__name__

    @property
    def supports_tools(self) -> bool:
        """Whether this LLM supports function/tool calling."""
        return True


class BaseTTS(ABC):
    """Abstract base class for Text-to-Speech providers.

    Lifecycle:
        1. __init__(api_key, voice_id, **config) - configure the provider
        2. synthesize(text) - returns the whole clip as bytes
        3. close() - release resources
    """

    @abstractmethod
    async def synthesize(self, text: str) -> bytes:
        """Synthesize text to audio.

        Raises:
            TtsError: On any synthesis failure.
        """
        ...

    async def close(self) -> None:
        """Release resources. Override if needed."""
        pass

    @property
    def content_type(self) -> str:
        """MIME type of the produced audio."""
        return "audio/mpeg"

    @property
    def name(self) -> str:
        """Provider name for logging."""
        return self.__class__.__name__
