"""Built-in HTTP server for LivBridge.

Provides a FastAPI application exposing the Twilio voice/SMS webhooks,
marketplace and valuation callbacks, the TTS clip endpoint, and health
and status endpoints.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI, Form, Request
from fastapi.responses import JSONResponse, Response
from loguru import logger

from livbridge.config import BridgeConfig, load_config
from livbridge.core.turns import Channel, OutcomeKind, TurnOutcome
from livbridge.persona import resolve_system_prompt
from livbridge.pipeline.intent import IntentDetector
from livbridge.pipeline.leads import VALUATION_FIELDS, LeadTracker
from livbridge.pipeline.orchestrator import OrchestratorConfig, TurnOrchestrator
from livbridge.providers.base import BaseLLM, BaseTTS
from livbridge.providers.registry import provider_registry
from livbridge.renderer import AudioCache, ReplyRenderer
from livbridge.session import SessionStore
from livbridge.tools.builtin import build_default_registry
from livbridge.tools.outbound import SmsSender, WebhookForwarder

TWIML_MEDIA_TYPE = "application/xml"

# Twilio CallStatus values after which the call will never post again
TERMINAL_CALL_STATUSES = frozenset({"completed", "busy", "failed", "no-answer", "canceled"})


def create_app(
    config: BridgeConfig | dict | str,
    llm: BaseLLM | None = None,
    tts: BaseTTS | None = None,
    sms: SmsSender | None = None,
    webhooks: WebhookForwarder | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        config: Bridge configuration (YAML path, dict, or BridgeConfig).
        llm: Chat model to use instead of the configured provider.
        tts: TTS provider to use instead of the configured one.
        sms: SMS sender override (defaults to Twilio REST from config).
        webhooks: Webhook forwarder override.

    Returns:
        A FastAPI application instance.
    """
    bridge_config = load_config(config)

    if llm is None:
        llm, configured_tts = provider_registry.from_config(bridge_config)
        tts = tts or configured_tts
    elif tts is None and bridge_config.tts.enabled:
        tts = provider_registry.create_tts(bridge_config.tts.provider, **bridge_config.tts.config)
    if sms is None:
        sms = SmsSender(
            account_sid=bridge_config.twilio.account_sid,
            auth_token=bridge_config.twilio.auth_token,
            from_number=bridge_config.twilio.from_number,
        )
    if webhooks is None:
        webhooks = WebhookForwarder(timeout=bridge_config.tools.timeout_seconds)

    server_cfg = bridge_config.server
    public_base = server_cfg.public_base_url.rstrip("/")

    sessions = SessionStore(
        system_prompt=resolve_system_prompt(bridge_config.persona),
        idle_timeout_seconds=bridge_config.sessions.idle_timeout_seconds,
        sweep_interval_seconds=bridge_config.sessions.sweep_interval_seconds,
    )
    registry = build_default_registry(bridge_config, sms, webhooks)
    renderer = ReplyRenderer(
        gather_url=server_cfg.gather_url if public_base else server_cfg.gather_path,
        audio_base_url=f"{public_base}{server_cfg.audio_path}" if public_base else "",
        tts=tts,
        cache=AudioCache(bridge_config.tts.cache_size),
        tts_timeout=bridge_config.tts.timeout_seconds,
        fallback_voice=bridge_config.tts.fallback_voice,
        fallback_language=bridge_config.tts.fallback_language,
    )
    orchestrator = TurnOrchestrator(
        llm,
        registry,
        OrchestratorConfig.from_bridge_config(bridge_config),
        intent_detector=IntentDetector(bridge_config.intents),
        renderer=renderer,
    )
    leads = LeadTracker(webhooks, notify_url=bridge_config.notify_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await webhooks.start()
        await sessions.start_sweeper()
        logger.info(
            f"LivBridge ready: llm={llm.name}, tts={tts.name if tts else 'none'}, "
            f"tools={registry.names}"
        )
        try:
            yield
        finally:
            await sessions.stop_sweeper()
            await webhooks.close()
            await llm.close()
            if tts is not None:
                await tts.close()
            logger.info("LivBridge stopped")

    app = FastAPI(
        title="LivBridge",
        description="Twilio voice/SMS bridge for a tool-using conversational assistant",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.config = bridge_config
    app.state.sessions = sessions
    app.state.registry = registry
    app.state.renderer = renderer
    app.state.orchestrator = orchestrator
    app.state.leads = leads

    def twiml(markup: str) -> Response:
        return Response(content=markup, media_type=TWIML_MEDIA_TYPE)

    async def error_reply(channel: Channel, session_id: str) -> Response:
        outcome = TurnOutcome(
            kind=OutcomeKind.ERROR,
            text=bridge_config.replies.apology,
            hangup=channel == Channel.VOICE,
        )
        return twiml(await renderer.render(channel, outcome, session_id=session_id))

    # ------------------------------------------------------------------
    # Twilio webhooks
    # ------------------------------------------------------------------

    @app.post("/voice")
    async def voice(
        CallSid: str = Form(""),
        From: str = Form(""),
        To: str = Form(""),
    ):
        """New inbound call: create the session and speak the greeting."""
        if not CallSid:
            logger.warning("Voice webhook without CallSid")
            return await error_reply(Channel.VOICE, "")
        logger.info(f"Inbound call: {CallSid} from {From} to {To}")
        try:
            session = await sessions.get_or_create(CallSid, Channel.VOICE, caller=From)
            outcome = await orchestrator.greet(session)
            return twiml(outcome.markup)
        except Exception as e:
            logger.exception(f"[{CallSid}] greeting failed: {e}")
            return await error_reply(Channel.VOICE, CallSid)

    @app.post(server_cfg.gather_path)
    async def voice_gather(
        CallSid: str = Form(""),
        From: str = Form(""),
        SpeechResult: str = Form(""),
    ):
        """Caller speech (or silence) from <Gather>."""
        if not CallSid:
            logger.warning("Gather webhook without CallSid")
            return await error_reply(Channel.VOICE, "")
        try:
            session = await sessions.get_or_create(CallSid, Channel.VOICE, caller=From)
            outcome = await orchestrator.handle_turn(session, SpeechResult)
            return twiml(outcome.markup)
        except Exception as e:
            logger.exception(f"[{CallSid}] turn failed: {e}")
            return await error_reply(Channel.VOICE, CallSid)

    @app.post("/sms")
    async def sms_webhook(
        From: str = Form(""),
        Body: str = Form(""),
        MessageSid: str = Form(""),
    ):
        """Inbound text message. One thread per sender number."""
        session_id = From or MessageSid
        if not session_id:
            logger.warning("SMS webhook without From or MessageSid")
            return await error_reply(Channel.SMS, "")
        try:
            session = await sessions.get_or_create(session_id, Channel.SMS, caller=From)
            outcome = await orchestrator.handle_turn(session, Body)
            if outcome.kind == OutcomeKind.END:
                await sessions.end(session_id, reason="conversation_ended")
            return twiml(outcome.markup)
        except Exception as e:
            logger.exception(f"[{session_id}] sms turn failed: {e}")
            return await error_reply(Channel.SMS, session_id)

    @app.post("/voice/status")
    async def voice_status(
        CallSid: str = Form(""),
        CallStatus: str = Form(""),
        CallDuration: str = Form("0"),
    ):
        """Call status updates. Terminal statuses evict the session."""
        status_value = CallStatus.lower()
        evicted = False
        if CallSid and status_value in TERMINAL_CALL_STATUSES:
            evicted = await sessions.end(CallSid, reason=status_value)
            logger.info(f"Call {CallSid} {status_value} after {CallDuration}s")
        return JSONResponse({"ok": True, "evicted": evicted})

    # ------------------------------------------------------------------
    # Marketplace / valuation callbacks
    # ------------------------------------------------------------------

    @app.post("/marketplace/event")
    async def marketplace_event(request: Request):
        body = await _json_body(request)
        session_id = body.get("sessionId")
        event_type = body.get("eventType")
        if not session_id or not event_type:
            return JSONResponse(
                {"ok": False, "error": "Missing sessionId or eventType"}, status_code=400
            )
        session = await sessions.get_or_create(str(session_id), Channel.SMS)
        try:
            hot = await leads.apply_marketplace_event(session, str(event_type))
        except ValueError as e:
            return JSONResponse({"ok": False, "error": str(e)}, status_code=400)
        return JSONResponse({"ok": True, "hot_lead": hot})

    @app.post("/valuation/callback")
    async def valuation_callback(request: Request):
        body = await _json_body(request)
        session_id = body.get("sessionId")
        if not session_id:
            return JSONResponse({"ok": False, "error": "Missing sessionId"}, status_code=400)
        session = await sessions.get_or_create(str(session_id), Channel.SMS)
        await leads.apply_valuation(session, {k: body.get(k) for k in VALUATION_FIELDS})
        return JSONResponse({"ok": True})

    # ------------------------------------------------------------------
    # Audio, health and status
    # ------------------------------------------------------------------

    @app.get(f"{server_cfg.audio_path}/{{clip_id}}")
    async def audio_clip(clip_id: str):
        clip = renderer.cache.get(clip_id)
        if clip is None:
            return JSONResponse({"error": "clip not found"}, status_code=404)
        return Response(content=clip.data, media_type=clip.content_type)

    @app.get("/health")
    async def health():
        return JSONResponse({"status": "ok", "active_sessions": sessions.active_count})

    @app.get("/status")
    async def status():
        session_list = []
        for s in sessions.all_sessions:
            session_list.append({
                "session_id": s.session_id,
                "channel": s.channel.value,
                "caller": s.caller,
                "intent": s.intent,
                "turns": s.context.turn_count,
                "closed": s.closed,
                "hot_lead": s.flags.get("HOT_LEAD", False),
                "duration_ms": s.duration_ms,
            })
        return JSONResponse({
            "llm": bridge_config.llm.provider,
            "tts": bridge_config.tts.provider if tts else None,
            "tools": registry.names,
            "active_sessions": sessions.active_count,
            "sessions": session_list,
        })

    return app


async def _json_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def run_server(config: BridgeConfig | dict | str, host: str | None = None, port: int | None = None):
    """Run the LivBridge server with uvicorn.

    Args:
        config: Bridge configuration.
        host: Override the listen host.
        port: Override the listen port.
    """
    bridge_config = load_config(config)
    app = create_app(bridge_config)

    uvicorn.run(
        app,
        host=host or bridge_config.server.host,
        port=port or bridge_config.server.port,
    )
