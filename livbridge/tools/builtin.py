"""Built-in tools: send a link, log a lead, schedule a callback, tag the
call outcome, escalate to a human.

Which of them are offered to the model is controlled by
``tools.enabled`` in the config.
"""

from __future__ import annotations

import time
from typing import Optional

from pydantic import BaseModel, Field

from livbridge.config import BridgeConfig
from livbridge.core.errors import ToolExecutionError
from livbridge.tools.outbound import SmsSender, WebhookForwarder
from livbridge.tools.registry import ToolContext, ToolRegistry, ToolSpec


# ---------------------------------------------------------------------------
# Argument models
# ---------------------------------------------------------------------------

class SendLinkArgs(BaseModel):
    link: str = Field(description="Which link to send, e.g. 'marketplace', 'refinance' or 'dscr'")
    phone: Optional[str] = Field(default=None, description="Destination number; defaults to the caller")


class LogLeadArgs(BaseModel):
    goal: str = Field(description="What the caller wants, in a few words")
    name: str = Field(default="", description="Caller's name if given")
    email: str = Field(default="", description="Caller's email if given")
    notes: str = Field(default="", description="Anything else worth recording")


class ScheduleCallbackArgs(BaseModel):
    preferred_time: str = Field(description="When the caller wants to be called back")
    phone: Optional[str] = Field(default=None, description="Callback number; defaults to the caller")
    notes: str = Field(default="")


class TagOutcomeArgs(BaseModel):
    outcome: str = Field(
        description="Call outcome: qualified, not_interested, callback, completed or wrong_number"
    )
    summary: str = Field(default="", description="One-sentence summary of the call")


class EscalateArgs(BaseModel):
    reason: str = Field(description="Why a human should take over")


# ---------------------------------------------------------------------------
# Registry construction
# ---------------------------------------------------------------------------

def build_default_registry(
    config: BridgeConfig,
    sms: SmsSender,
    webhooks: WebhookForwarder,
) -> ToolRegistry:
    """Build the registry with the tools enabled in ``config``."""
    tools_cfg = config.tools
    registry = ToolRegistry(
        degraded_text=config.replies.tool_degraded,
        default_timeout=tools_cfg.timeout_seconds,
    )

    def _base_payload(ctx: ToolContext) -> dict:
        payload = {
            "session_id": ctx.session_id,
            "channel": ctx.channel.value,
            "caller": ctx.caller,
            "timestamp": time.time(),
        }
        if ctx.session is not None:
            payload["intent"] = ctx.session.intent
        return payload

    async def send_link(args: SendLinkArgs, ctx: ToolContext) -> str:
        url = tools_cfg.links.get(args.link.lower())
        if not url:
            raise ToolExecutionError("send_link", f"unknown link '{args.link}'")
        body = f"Here's your link from {config.persona.assistant_name}: {url}"
        await sms.send(args.phone or ctx.caller, body, tool_name="send_link")
        if ctx.session is not None:
            ctx.session.flags["MARKETPLACE_PUSHED"] = True
        return "I just texted you the link."

    async def log_lead(args: LogLeadArgs, ctx: ToolContext) -> str:
        payload = {**_base_payload(ctx), **args.model_dump()}
        await webhooks.post(tools_cfg.crm_webhook_url, payload, tool_name="log_lead")
        return "I've saved your details."

    async def schedule_callback(args: ScheduleCallbackArgs, ctx: ToolContext) -> str:
        payload = {
            **_base_payload(ctx),
            "preferred_time": args.preferred_time,
            "phone": args.phone or ctx.caller,
            "notes": args.notes,
        }
        await webhooks.post(tools_cfg.schedule_webhook_url, payload, tool_name="schedule_callback")
        return f"You're all set for a callback {args.preferred_time}."

    async def tag_outcome(args: TagOutcomeArgs, ctx: ToolContext) -> str:
        if ctx.session is not None:
            ctx.session.close(args.outcome)
        if tools_cfg.outcome_webhook_url:
            payload = {**_base_payload(ctx), **args.model_dump()}
            if ctx.session is not None:
                payload["state"] = ctx.session.state()
            await webhooks.post(tools_cfg.outcome_webhook_url, payload, tool_name="tag_outcome")
        return "Outcome recorded."

    async def escalate_to_human(args: EscalateArgs, ctx: ToolContext) -> str:
        payload = {**_base_payload(ctx), "reason": args.reason}
        await webhooks.post(tools_cfg.escalation_webhook_url, payload, tool_name="escalate_to_human")
        return "I've let a teammate know, and someone will reach out shortly."

    available = {
        "send_link": ToolSpec(
            name="send_link",
            description="Text the caller one of the configured links.",
            args_model=SendLinkArgs,
            handler=send_link,
        ),
        "log_lead": ToolSpec(
            name="log_lead",
            description="Record the caller as a lead in the CRM.",
            args_model=LogLeadArgs,
            handler=log_lead,
        ),
        "schedule_callback": ToolSpec(
            name="schedule_callback",
            description="Schedule a callback from a loan officer.",
            args_model=ScheduleCallbackArgs,
            handler=schedule_callback,
        ),
        "tag_outcome": ToolSpec(
            name="tag_outcome",
            description="Record how the call ended. Use once, when the conversation is wrapping up.",
            args_model=TagOutcomeArgs,
            handler=tag_outcome,
        ),
        "escalate_to_human": ToolSpec(
            name="escalate_to_human",
            description="Ask a human teammate to take over the conversation.",
            args_model=EscalateArgs,
            handler=escalate_to_human,
        ),
    }

    for name in tools_cfg.enabled:
        spec = available.get(name)
        if spec is None:
            raise ValueError(f"Unknown built-in tool '{name}'. Available: {', '.join(available)}")
        spec.timeout_seconds = tools_cfg.timeout_seconds
        registry.register(spec)

    return registry
