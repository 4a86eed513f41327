"""LivBridge - Twilio voice/SMS bridge for a tool-using conversational assistant.

Each inbound Twilio webhook (a caller's speech or an SMS) is run through a
chat model that may call tools (text a link, log a lead, schedule a
callback, tag the outcome, escalate), and the reply is returned as TwiML.

Quick start (config-driven):
    $ pip install livbridge
    $ livbridge init          # generates bridge.yaml
    $ livbridge run --config bridge.yaml

Quick start (programmatic):
    from livbridge.server import create_app

    app = create_app({
        "llm_provider": "openai",
        "openai_api_key": "sk-...",
        "public_base_url": "https://liv.example.com",
    })
"""

__version__ = "0.1.0"

# Core
from livbridge.config import BridgeConfig, load_config
from livbridge.session import Session, SessionStore

# Data model and errors
from livbridge.core.errors import (
    ChatCompletionError,
    InputEmptyOrUnintelligible,
    LivBridgeError,
    ToolArgumentError,
    ToolExecutionError,
    TtsError,
    TurnSequenceError,
    UnknownToolError,
)
from livbridge.core.turns import (
    Channel,
    ConversationTurn,
    OutcomeKind,
    Role,
    ToolInvocationRequest,
    ToolResult,
    TurnOutcome,
    TurnState,
)

# Pipeline
from livbridge.pipeline.context import ConversationContext
from livbridge.pipeline.leads import LeadTracker
from livbridge.pipeline.orchestrator import MAX_RESUMPTION_ROUNDS, OrchestratorConfig, TurnOrchestrator

# Tools
from livbridge.tools.registry import ToolContext, ToolRegistry, ToolSpec

# Rendering
from livbridge.renderer import AudioCache, ReplyRenderer

# AI Providers
from livbridge.providers.base import BaseLLM, BaseTTS, ChatReply
from livbridge.providers.registry import provider_registry

__all__ = [
    # Core
    "BridgeConfig",
    "load_config",
    "Session",
    "SessionStore",
    # Data model
    "Channel",
    "ConversationTurn",
    "OutcomeKind",
    "Role",
    "ToolInvocationRequest",
    "ToolResult",
    "TurnOutcome",
    "TurnState",
    # Errors
    "LivBridgeError",
    "InputEmptyOrUnintelligible",
    "ChatCompletionError",
    "ToolArgumentError",
    "UnknownToolError",
    "ToolExecutionError",
    "TtsError",
    "TurnSequenceError",
    # Pipeline
    "TurnOrchestrator",
    "OrchestratorConfig",
    "MAX_RESUMPTION_ROUNDS",
    "ConversationContext",
    "LeadTracker",
    # Tools
    "ToolRegistry",
    "ToolSpec",
    "ToolContext",
    # Rendering
    "ReplyRenderer",
    "AudioCache",
    # AI Providers
    "BaseLLM",
    "BaseTTS",
    "ChatReply",
    "provider_registry",
]
