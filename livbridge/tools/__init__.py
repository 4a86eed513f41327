"""LivBridge tools - schema-validated side effects the chat model can request.

Usage:
    from livbridge.tools import ToolRegistry, build_default_registry

    registry = build_default_registry(config, sms_sender, webhook_forwarder)
    result = await registry.run(request, context)
"""

from livbridge.tools.builtin import build_default_registry
from livbridge.tools.outbound import SmsSender, WebhookForwarder
from livbridge.tools.registry import ToolContext, ToolRegistry, ToolSpec

__all__ = [
    "ToolRegistry",
    "ToolSpec",
    "ToolContext",
    "SmsSender",
    "WebhookForwarder",
    "build_default_registry",
]
