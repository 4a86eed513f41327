"""Conversation context management for the turn orchestrator.

Holds a session's turn sequence and enforces the pairing rule between
assistant tool requests and tool-result turns. The stored history never
shrinks; only the window handed to the chat model is trimmed.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from loguru import logger

from livbridge.core.errors import TurnSequenceError
from livbridge.core.turns import (
    ConversationTurn,
    Role,
    ToolInvocationRequest,
    ToolResult,
)


@dataclass
class ConversationContext:
    """Ordered turn history for one session.

    Starts with exactly one system turn. While an assistant turn has
    unanswered tool requests, the only turn that may be appended is the
    tool-result for the next request in order.

    Args:
        system_prompt: The persona/instructions for the system turn.
        max_window_turns: Maximum non-system turns sent to the model
            (default: 40). The stored history is never trimmed.
    """

    system_prompt: str = ""
    max_window_turns: int = 40

    # Internal
    _turns: list[ConversationTurn] = field(default_factory=list)
    _pending: list[ToolInvocationRequest] = field(default_factory=list)
    _total_input_tokens: int = 0
    _total_output_tokens: int = 0

    def __post_init__(self) -> None:
        self._turns.append(ConversationTurn.system(self.system_prompt))

    # ------------------------------------------------------------------
    # Appending
    # ------------------------------------------------------------------

    def add_user_message(self, text: str) -> None:
        """Add a user (caller) turn."""
        self._require_no_pending("user")
        self._turns.append(ConversationTurn.user(text))
        logger.debug(f"Context: added user turn ({len(text)} chars)")

    def add_assistant_message(self, text: str) -> None:
        """Add a plain assistant reply."""
        self._require_no_pending("assistant")
        self._turns.append(ConversationTurn.assistant(text))

    def add_assistant_tool_calls(
        self, text: str, requests: list[ToolInvocationRequest]
    ) -> None:
        """Add one assistant turn carrying every requested invocation."""
        self._require_no_pending("assistant")
        if not requests:
            raise TurnSequenceError("assistant tool turn needs at least one request")
        self._turns.append(ConversationTurn.assistant(text, requests))
        self._pending = list(requests)

    def add_tool_result(self, result: ToolResult) -> None:
        """Add the result for the next outstanding request."""
        if not self._pending:
            raise TurnSequenceError(
                f"tool result {result.invocation_id} with no outstanding request"
            )
        expected = self._pending[0]
        if result.invocation_id != expected.invocation_id:
            raise TurnSequenceError(
                f"tool result {result.invocation_id} out of order, "
                f"expected {expected.invocation_id}"
            )
        self._pending.pop(0)
        self._turns.append(ConversationTurn.tool_result(result))
        logger.debug(f"Context: added tool result for {result.tool_name}")

    def _require_no_pending(self, role: str) -> None:
        if self._pending:
            ids = ", ".join(r.invocation_id for r in self._pending)
            raise TurnSequenceError(
                f"cannot add {role} turn while tool results are pending ({ids})"
            )

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    @property
    def turns(self) -> list[ConversationTurn]:
        """A copy of the full turn sequence."""
        return list(self._turns)

    @property
    def has_pending_tool_results(self) -> bool:
        return bool(self._pending)

    def window(self) -> list[ConversationTurn]:
        """Turns to send to the chat model.

        The system turn plus the most recent turns, cut at a user turn so
        that no tool-result is separated from its assistant request.
        """
        body = self._turns[1:]
        if len(body) <= self.max_window_turns:
            return list(self._turns)

        start = len(body) - self.max_window_turns
        while start < len(body) and body[start].role != Role.USER:
            start += 1
        if start >= len(body):
            # No user boundary inside the window; send everything
            return list(self._turns)
        logger.debug(f"Context window trimmed to {len(body) - start} turns")
        return [self._turns[0]] + body[start:]

    def update_token_usage(self, input_tokens: int, output_tokens: int) -> None:
        """Track cumulative token usage."""
        self._total_input_tokens += input_tokens
        self._total_output_tokens += output_tokens

    @property
    def total_tokens(self) -> int:
        """Total tokens used across all model calls in this conversation."""
        return self._total_input_tokens + self._total_output_tokens

    @property
    def turn_count(self) -> int:
        return len(self._turns)

    @property
    def last_user_message(self) -> str:
        for turn in reversed(self._turns):
            if turn.role == Role.USER:
                return turn.content
        return ""

    @property
    def last_assistant_message(self) -> str:
        for turn in reversed(self._turns):
            if turn.role == Role.ASSISTANT and turn.content:
                return turn.content
        return ""

    def get_transcript(self) -> list[dict[str, str]]:
        """Simplified transcript for storage/display.

        Returns a list of {role, content} dicts (excludes the system turn,
        tool turns and empty assistant turns).
        """
        transcript = []
        for turn in self._turns:
            if turn.role in (Role.USER, Role.ASSISTANT) and turn.content:
                transcript.append({
                    "role": turn.role.value,
                    "content": turn.content,
                })
        return transcript
