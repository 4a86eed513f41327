"""Conversation data model for LivBridge.

A session's history is an ordered list of ConversationTurn objects. Turns
are frozen once created; the history only ever grows.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL_RESULT = "tool-result"


class Channel(str, Enum):
    VOICE = "voice"
    SMS = "sms"


class TurnState(str, Enum):
    AWAITING_INPUT = "awaiting_input"
    MODEL_ROUND = "model_round"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"


class OutcomeKind(str, Enum):
    REPROMPT = "reprompt"
    CONTINUE = "continue"
    END = "end"
    ERROR = "error"


@dataclass(frozen=True)
class ToolInvocationRequest:
    """A tool call requested by the chat model.

    Attributes:
        invocation_id: Opaque id assigned by the model provider. The
            matching tool-result turn carries the same id.
        tool_name: Registered tool name.
        raw_arguments: Untyped payload (JSON string or dict), validated
            by the tool registry before execution.
    """

    invocation_id: str
    tool_name: str
    raw_arguments: Any = None


@dataclass(frozen=True)
class ToolResult:
    """Short natural-language acknowledgment produced by a tool."""

    invocation_id: str
    tool_name: str
    output_text: str


@dataclass(frozen=True)
class ConversationTurn:
    """One message unit in a session's history."""

    role: Role
    content: str = ""
    # Assistant turns only
    tool_invocations: tuple[ToolInvocationRequest, ...] = ()
    # Tool-result turns only
    invocation_id: str = ""
    tool_name: str = ""

    @classmethod
    def system(cls, text: str) -> ConversationTurn:
        return cls(role=Role.SYSTEM, content=text)

    @classmethod
    def user(cls, text: str) -> ConversationTurn:
        return cls(role=Role.USER, content=text)

    @classmethod
    def assistant(
        cls,
        text: str,
        tool_invocations: list[ToolInvocationRequest] | tuple[ToolInvocationRequest, ...] = (),
    ) -> ConversationTurn:
        return cls(
            role=Role.ASSISTANT,
            content=text,
            tool_invocations=tuple(tool_invocations),
        )

    @classmethod
    def tool_result(cls, result: ToolResult) -> ConversationTurn:
        return cls(
            role=Role.TOOL_RESULT,
            content=result.output_text,
            invocation_id=result.invocation_id,
            tool_name=result.tool_name,
        )

    @property
    def requests_tools(self) -> bool:
        return self.role == Role.ASSISTANT and bool(self.tool_invocations)


@dataclass
class TurnOutcome:
    """What the orchestrator decided for one inbound event.

    Attributes:
        kind: reprompt | continue | end | error.
        text: The caller-facing text.
        hangup: Whether the voice call should be terminated after speaking.
            Always False on the SMS channel.
        metadata: Free-form details for logging (tool names, rounds...).
        markup: The rendered TwiML for this outcome, when a renderer is set.
    """

    kind: OutcomeKind
    text: str
    hangup: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)
    # Rendered provider markup, filled in before the session lock is released
    markup: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.kind in (OutcomeKind.END, OutcomeKind.ERROR)
