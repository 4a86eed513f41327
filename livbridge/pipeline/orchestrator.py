"""Turn Orchestrator - the per-event call-turn state machine.

This is the heart of LivBridge. On every inbound webhook event for a
session it:

1. Short-circuits empty input with a reprompt (no model call)
2. Appends the caller's utterance to the session history
3. Asks the chat model for a reply, offering the registered tools
4. Runs any requested tools, in order, folding each result back in
5. Makes exactly one resumption round, with tools withheld
6. Appends the final reply and hands it to the renderer

States: AWAITING_INPUT -> MODEL_ROUND -> [EXECUTING_TOOLS -> MODEL_ROUND]
-> DONE. The whole turn, rendering included, runs under the session's
lock so a retried webhook for the same call queues behind it.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from loguru import logger

from livbridge.config import BridgeConfig
from livbridge.core.errors import ChatCompletionError, InputEmptyOrUnintelligible
from livbridge.core.turns import Channel, OutcomeKind, TurnOutcome, TurnState
from livbridge.pipeline.intent import GENERAL, IntentDetector
from livbridge.providers.base import BaseLLM, ChatReply
from livbridge.tools.registry import ToolContext, ToolRegistry

if TYPE_CHECKING:
    from livbridge.renderer import ReplyRenderer
    from livbridge.session import Session

# Tool results are folded back with one extra model call, never more.
MAX_RESUMPTION_ROUNDS = 1

_CLAUSE_SPLIT = re.compile(r"[.,!?;:]+")
_NEGATION = re.compile(r"\b(?:don't|do not|dont|not|never)\b")


@dataclass
class OrchestratorConfig:
    """Settings for the turn orchestrator.

    Args:
        temperature: Model sampling temperature.
        max_tokens: Max tokens per model response.
        llm_timeout_seconds: Bound on each chat-completion round.
        first_message: Greeting spoken when a call connects.
        reprompt_text: Reply for empty/unintelligible input.
        fallback_text: Substituted when the model returns no text.
        apology_text: Reply when the chat model fails.
        end_call_phrases: Caller phrases that end the call after the reply.
    """

    temperature: float = 0.4
    max_tokens: int = 300
    llm_timeout_seconds: float = 8.0
    first_message: str = "Hi, this is Liv. How can I help you today?"
    reprompt_text: str = "I didn't catch that. Could you repeat that?"
    fallback_text: str = "I'm here and ready to help. What would you like to do next?"
    apology_text: str = "I'm sorry, I'm having trouble right now. Please try again later."
    end_call_phrases: list[str] = field(default_factory=lambda: [
        "goodbye",
        "bye bye",
        "that's all",
        "hang up",
    ])

    @classmethod
    def from_bridge_config(cls, config: BridgeConfig) -> OrchestratorConfig:
        return cls(
            temperature=config.llm.temperature,
            max_tokens=config.llm.max_tokens,
            llm_timeout_seconds=config.llm.timeout_seconds,
            first_message=config.persona.first_message,
            reprompt_text=config.replies.reprompt,
            fallback_text=config.replies.fallback,
            apology_text=config.replies.apology,
            end_call_phrases=list(config.replies.end_call_phrases),
        )


class TurnOrchestrator:
    """Drives one session turn through the model/tool/resumption loop.

    One instance serves every session; all per-call state lives on the
    Session. Persona, tool set and model are injected, never hard-coded.

    Usage:
        orchestrator = TurnOrchestrator(llm, registry, OrchestratorConfig())
        outcome = await orchestrator.handle_turn(session, "I want to refinance")
        outcome.kind   # OutcomeKind.CONTINUE
        outcome.text   # the assistant's reply
    """

    def __init__(
        self,
        llm: BaseLLM,
        registry: ToolRegistry,
        config: OrchestratorConfig | None = None,
        intent_detector: IntentDetector | None = None,
        renderer: ReplyRenderer | None = None,
    ):
        self.config = config or OrchestratorConfig()
        self._llm = llm
        self._registry = registry
        self._intents = intent_detector
        self._renderer = renderer

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def handle_turn(self, session: Session, utterance: str | None) -> TurnOutcome:
        """Process one caller event for ``session``.

        Never raises for collaborator failures: they come back as an
        ``error`` outcome with a calm apology.
        """
        async with session.lock:
            session.touch()
            outcome = await self._run_turn(session, utterance)
            await self._render(session, outcome)
            session.touch()
            return outcome

    async def greet(self, session: Session) -> TurnOutcome:
        """Opening line for a newly connected call.

        The greeting is recorded as an assistant turn the first time only.
        """
        async with session.lock:
            text = self.config.first_message or self.config.fallback_text
            if session.context.turn_count == 1:
                session.context.add_assistant_message(text)
            session.turn_state = TurnState.DONE
            outcome = TurnOutcome(kind=OutcomeKind.CONTINUE, text=text)
            await self._render(session, outcome)
            return outcome

    # ------------------------------------------------------------------
    # Internal: the state machine
    # ------------------------------------------------------------------

    async def _run_turn(self, session: Session, utterance: str | None) -> TurnOutcome:
        states: list[TurnState] = []

        def enter(state: TurnState) -> None:
            session.turn_state = state
            states.append(state)

        enter(TurnState.AWAITING_INPUT)

        # Empty input never costs a model call
        try:
            text = self._read_utterance(utterance)
        except InputEmptyOrUnintelligible as e:
            enter(TurnState.DONE)
            logger.info(f"[{session.session_id}] {e}, reprompting")
            return TurnOutcome(
                kind=OutcomeKind.REPROMPT,
                text=self.config.reprompt_text,
                metadata={"states": states, "model_rounds": 0},
            )

        logger.info(f"[{session.session_id}] processing turn: '{text[:80]}'")
        self._tag_intent(session, text)
        session.context.add_user_message(text)

        model_rounds = 0
        tools_run: list[str] = []

        enter(TurnState.MODEL_ROUND)
        try:
            reply = await self._complete(session, tools=self._offered_tools())
            model_rounds += 1

            if reply.wants_tools:
                enter(TurnState.EXECUTING_TOOLS)
                tools_run = await self._execute_tools(session, reply)

                for _ in range(MAX_RESUMPTION_ROUNDS):
                    enter(TurnState.MODEL_ROUND)
                    reply = await self._complete(session, tools=None)
                    model_rounds += 1

                if reply.wants_tools:
                    ignored = ", ".join(r.tool_name for r in reply.tool_invocations)
                    logger.warning(
                        f"[{session.session_id}] ignoring tool requests on resumption round: {ignored}"
                    )
        except ChatCompletionError as e:
            logger.error(f"[{session.session_id}] chat completion failed: {e}")
            return self._failure(session, states, model_rounds, tools_run)

        final_text = reply.text.strip() or self.config.fallback_text
        session.context.add_assistant_message(final_text)
        enter(TurnState.DONE)

        if session.closed or self._is_goodbye(text):
            kind = OutcomeKind.END
        else:
            kind = OutcomeKind.CONTINUE

        return TurnOutcome(
            kind=kind,
            text=final_text,
            hangup=kind == OutcomeKind.END and session.channel == Channel.VOICE,
            metadata={"states": states, "model_rounds": model_rounds, "tools": tools_run},
        )

    async def _execute_tools(self, session: Session, reply: ChatReply) -> list[str]:
        """Append the tool-request turn, then one result turn per request."""
        requests = reply.tool_invocations
        session.context.add_assistant_tool_calls(reply.text, requests)

        tool_ctx = ToolContext(
            session_id=session.session_id,
            channel=session.channel,
            caller=session.caller,
            session=session,
        )
        # Sequential: narrated order matters to the caller
        for request in requests:
            result = await self._registry.run(request, tool_ctx)
            session.context.add_tool_result(result)

        return [r.tool_name for r in requests]

    async def _complete(
        self, session: Session, tools: list[dict[str, Any]] | None
    ) -> ChatReply:
        """One bounded chat-completion round. All failures become ChatCompletionError."""
        try:
            reply = await asyncio.wait_for(
                self._llm.complete(
                    session.context.window(),
                    tools=tools,
                    temperature=self.config.temperature,
                    max_tokens=self.config.max_tokens,
                ),
                timeout=self.config.llm_timeout_seconds,
            )
        except ChatCompletionError:
            raise
        except asyncio.TimeoutError as e:
            raise ChatCompletionError(
                f"timed out after {self.config.llm_timeout_seconds}s", provider=self._llm.name
            ) from e
        except Exception as e:
            raise ChatCompletionError(str(e) or type(e).__name__, provider=self._llm.name) from e

        if not isinstance(reply, ChatReply):
            raise ChatCompletionError(
                f"unexpected reply type {type(reply).__name__}", provider=self._llm.name
            )

        session.context.update_token_usage(reply.input_tokens, reply.output_tokens)
        return reply

    def _failure(
        self,
        session: Session,
        states: list[TurnState],
        model_rounds: int,
        tools_run: list[str],
    ) -> TurnOutcome:
        text = self.config.apology_text
        # Tool results are always complete by the time a model round runs
        if not session.context.has_pending_tool_results:
            session.context.add_assistant_message(text)
        session.turn_state = TurnState.DONE
        states.append(TurnState.DONE)
        return TurnOutcome(
            kind=OutcomeKind.ERROR,
            text=text,
            hangup=session.channel == Channel.VOICE,
            metadata={"states": states, "model_rounds": model_rounds, "tools": tools_run},
        )

    # ------------------------------------------------------------------
    # Internal: helpers
    # ------------------------------------------------------------------

    def _offered_tools(self) -> list[dict[str, Any]] | None:
        if not self._llm.supports_tools:
            return None
        return self._registry.schemas()

    def _tag_intent(self, session: Session, text: str) -> None:
        if self._intents is None:
            return
        intent = self._intents.detect(text)
        if intent != GENERAL:
            session.intent = intent

    @staticmethod
    def _read_utterance(utterance: str | None) -> str:
        """Return the usable transcript, or raise InputEmptyOrUnintelligible."""
        text = (utterance or "").strip()
        if not text:
            raise InputEmptyOrUnintelligible("empty input")
        # Speech recognizers sometimes post bare punctuation for noise
        if not any(ch.isalnum() for ch in text):
            raise InputEmptyOrUnintelligible(f"unintelligible input {text!r}")
        return text

    def _is_goodbye(self, text: str) -> bool:
        """True when the caller's last clause is a sign-off phrase.

        "Okay, goodbye" ends the call; "please don't hang up" and
        "is that's all you need?" do not.
        """
        clauses = [c.strip() for c in _CLAUSE_SPLIT.split(text.lower()) if c.strip()]
        if not clauses:
            return False
        last = clauses[-1]
        for phrase in self.config.end_call_phrases:
            phrase = phrase.lower().strip()
            if not phrase:
                continue
            match = re.search(rf"(?:^|\b){re.escape(phrase)}$", last)
            if match and not _NEGATION.search(last[:match.start()]):
                return True
        return False

    async def _render(self, session: Session, outcome: TurnOutcome) -> None:
        if self._renderer is None:
            return
        outcome.markup = await self._renderer.render(
            session.channel, outcome, session_id=session.session_id
        )
