"""Error taxonomy for LivBridge.

Every failure is scoped to a single in-flight turn. Each class below has a
fixed recovery path, so none of them is fatal to the process:

- InputEmptyOrUnintelligible: reprompt the caller.
- ChatCompletionError: apology reply (and hang-up on voice).
- ToolArgumentError: run the tool with empty arguments, or skip it.
- ToolExecutionError: degraded acknowledgment folded into the conversation.
- TtsError: fall back to the telephony provider's built-in voice.
"""

from __future__ import annotations


class LivBridgeError(Exception):
    """Base class for all LivBridge errors."""


class InputEmptyOrUnintelligible(LivBridgeError):
    """No usable transcript was received for the turn."""


class ChatCompletionError(LivBridgeError):
    """The chat-completion collaborator failed, timed out or misbehaved."""

    def __init__(self, message: str, provider: str = ""):
        super().__init__(message)
        self.provider = provider


class ToolArgumentError(LivBridgeError):
    """Tool arguments from the model failed schema validation."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"{tool_name}: {message}")
        self.tool_name = tool_name


class UnknownToolError(ToolArgumentError):
    """The model requested a tool that is not registered."""

    def __init__(self, tool_name: str):
        super().__init__(tool_name, "unknown tool")


class ToolExecutionError(LivBridgeError):
    """A tool's downstream side effect failed."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"{tool_name}: {message}")
        self.tool_name = tool_name


class TtsError(LivBridgeError):
    """Speech synthesis failed."""


class TurnSequenceError(LivBridgeError):
    """A turn was appended that would break tool-call/result pairing."""
