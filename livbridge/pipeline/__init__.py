"""LivBridge turn pipeline - per-event model / tool / resumption loop.

Each inbound webhook event for a call or SMS thread is run through the
TurnOrchestrator, which consults the chat model, executes requested tools
through the ToolRegistry, and produces a TurnOutcome for the renderer.

Usage:
    from livbridge.pipeline import TurnOrchestrator, OrchestratorConfig

    orchestrator = TurnOrchestrator(llm, registry, OrchestratorConfig())
    outcome = await orchestrator.handle_turn(session, utterance)
"""

from livbridge.pipeline.context import ConversationContext
from livbridge.pipeline.intent import IntentDetector
from livbridge.pipeline.leads import LeadTracker
from livbridge.pipeline.orchestrator import (
    MAX_RESUMPTION_ROUNDS,
    OrchestratorConfig,
    TurnOrchestrator,
)

__all__ = [
    "TurnOrchestrator",
    "OrchestratorConfig",
    "MAX_RESUMPTION_ROUNDS",
    "ConversationContext",
    "IntentDetector",
    "LeadTracker",
]
