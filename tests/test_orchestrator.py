"""Tests for the LivBridge turn orchestrator.

Tests cover:
- Empty input short-circuit (no model call, no turn appended)
- Plain-text turns and the fixed-phrase fallback
- Tool rounds: one assistant request turn, one result per request, in order
- The single resumption round and its tools-withheld contract
- Tool failure isolation
- Chat-model failures per channel
- End-of-conversation detection (outcome tag, goodbye phrases)
- Per-session serialization of concurrent turns
"""

import asyncio

import pytest
from pydantic import BaseModel

from livbridge.core.errors import (
    ChatCompletionError,
    InputEmptyOrUnintelligible,
    ToolExecutionError,
)
from livbridge.core.turns import (
    Channel,
    OutcomeKind,
    Role,
    ToolInvocationRequest,
    TurnState,
)
from livbridge.pipeline.context import ConversationContext
from livbridge.pipeline.intent import IntentDetector
from livbridge.pipeline.orchestrator import (
    MAX_RESUMPTION_ROUNDS,
    OrchestratorConfig,
    TurnOrchestrator,
)
from livbridge.providers.base import BaseLLM, BaseTTS, ChatReply
from livbridge.renderer import ReplyRenderer
from livbridge.session import Session
from livbridge.tools.registry import ToolRegistry


class ScriptedLLM(BaseLLM):
    """Chat model stub that replays a fixed list of replies (or raises)."""

    def __init__(self, replies=None, delay: float = 0.0):
        self._replies = list(replies or [])
        self._delay = delay
        self.calls = []

    async def complete(self, turns, tools=None, temperature=0.7, max_tokens=1024):
        self.calls.append({"turns": list(turns), "tools": tools})
        if self._delay:
            await asyncio.sleep(self._delay)
        reply = self._replies.pop(0) if self._replies else ChatReply(text="ok")
        if isinstance(reply, Exception):
            raise reply
        return reply

    @property
    def model(self) -> str:
        return "scripted"


class NoteArgs(BaseModel):
    note: str


def make_registry(fail: bool = False) -> ToolRegistry:
    registry = ToolRegistry(degraded_text="I had trouble with that, but I've noted it.")

    @registry.tool("take_note", NoteArgs, description="Write down a note.")
    async def take_note(args: NoteArgs, ctx):
        if fail:
            raise ToolExecutionError("take_note", "crm unavailable")
        return f"Noted: {args.note}"

    class OutcomeArgs(BaseModel):
        outcome: str

    @registry.tool("tag_outcome", OutcomeArgs, description="Record the outcome.")
    async def tag_outcome(args: OutcomeArgs, ctx):
        ctx.session.close(args.outcome)
        return "Outcome recorded."

    return registry


def make_session(session_id: str = "CA123", channel: Channel = Channel.VOICE) -> Session:
    return Session(
        session_id=session_id,
        channel=channel,
        caller="+15550001111",
        context=ConversationContext(system_prompt="You are Liv."),
    )


def tool_call(invocation_id: str, name: str = "take_note", arguments='{"note": "refi"}'):
    return ToolInvocationRequest(invocation_id=invocation_id, tool_name=name, raw_arguments=arguments)


def assert_sequence_valid(turns):
    """Every tool request is followed immediately by its results, in order."""
    assert turns[0].role == Role.SYSTEM
    assert sum(1 for t in turns if t.role == Role.SYSTEM) == 1
    i = 1
    while i < len(turns):
        turn = turns[i]
        assert turn.role != Role.TOOL_RESULT, f"orphan tool result at {i}"
        if turn.requests_tools:
            for offset, request in enumerate(turn.tool_invocations, start=1):
                result = turns[i + offset]
                assert result.role == Role.TOOL_RESULT
                assert result.invocation_id == request.invocation_id
            i += len(turn.tool_invocations)
        i += 1


# =========================================================================
# Empty input
# =========================================================================


class TestEmptyInput:
    """Tests for the reprompt short-circuit."""

    @pytest.mark.asyncio
    async def test_empty_utterance_reprompts_without_model_call(self):
        llm = ScriptedLLM()
        orchestrator = TurnOrchestrator(llm, make_registry())
        session = make_session()

        outcome = await orchestrator.handle_turn(session, "")

        assert outcome.kind == OutcomeKind.REPROMPT
        assert outcome.text == "I didn't catch that. Could you repeat that?"
        assert outcome.hangup is False
        assert llm.calls == []
        assert session.context.turn_count == 1

    @pytest.mark.asyncio
    async def test_whitespace_and_none_are_empty(self):
        llm = ScriptedLLM()
        orchestrator = TurnOrchestrator(llm, make_registry())
        session = make_session()

        first = await orchestrator.handle_turn(session, "   \n\t")
        second = await orchestrator.handle_turn(session, None)

        assert first.kind == OutcomeKind.REPROMPT
        assert second.kind == OutcomeKind.REPROMPT
        assert llm.calls == []
        assert session.context.turn_count == 1
        assert session.turn_state == TurnState.DONE

    @pytest.mark.asyncio
    async def test_punctuation_only_is_unintelligible(self):
        llm = ScriptedLLM()
        orchestrator = TurnOrchestrator(llm, make_registry())
        session = make_session()

        outcome = await orchestrator.handle_turn(session, " ... ?")

        assert outcome.kind == OutcomeKind.REPROMPT
        assert outcome.metadata["model_rounds"] == 0
        assert llm.calls == []
        assert session.context.turn_count == 1

    def test_read_utterance_raises_for_unusable_input(self):
        for raw in (None, "", "  ", "...", "?!"):
            with pytest.raises(InputEmptyOrUnintelligible):
                TurnOrchestrator._read_utterance(raw)
        assert TurnOrchestrator._read_utterance("  yes  ") == "yes"


# =========================================================================
# Plain turns
# =========================================================================


class TestPlainTurn:
    """Tests for turns that need no tools."""

    @pytest.mark.asyncio
    async def test_concrete_call_scenario(self):
        llm = ScriptedLLM([ChatReply(text="Great, let's start with your zip code.")])
        renderer = ReplyRenderer(gather_url="https://liv.example.com/voice/gather")
        orchestrator = TurnOrchestrator(llm, make_registry(), renderer=renderer)
        session = make_session("CA123")

        first = await orchestrator.handle_turn(session, "")
        assert first.kind == OutcomeKind.REPROMPT
        assert first.text == "I didn't catch that. Could you repeat that?"
        assert [t.role for t in session.context.turns] == [Role.SYSTEM]

        second = await orchestrator.handle_turn(session, "I want to refinance")
        turns = session.context.turns
        assert [(t.role, t.content) for t in turns[1:]] == [
            (Role.USER, "I want to refinance"),
            (Role.ASSISTANT, "Great, let's start with your zip code."),
        ]
        assert second.kind == OutcomeKind.CONTINUE
        assert second.hangup is False
        assert "<Gather" in second.markup
        assert "Great, let's start with your zip code." in second.markup

    @pytest.mark.asyncio
    async def test_broken_tts_still_delivers_reply(self):
        class BrokenTTS(BaseTTS):
            async def synthesize(self, text: str) -> bytes:
                raise ConnectionResetError("socket closed")

        llm = ScriptedLLM([ChatReply(text="Great, let's start with your zip code.")])
        renderer = ReplyRenderer(
            gather_url="https://liv.example.com/voice/gather",
            audio_base_url="https://liv.example.com/audio",
            tts=BrokenTTS(),
        )
        orchestrator = TurnOrchestrator(llm, make_registry(), renderer=renderer)
        session = make_session()

        outcome = await orchestrator.handle_turn(session, "I want to refinance")

        assert outcome.kind == OutcomeKind.CONTINUE
        assert "<Say" in outcome.markup
        assert "Great, let's start with your zip code." in outcome.markup
        assert [t.role for t in session.context.turns] == [Role.SYSTEM, Role.USER, Role.ASSISTANT]

    @pytest.mark.asyncio
    async def test_first_round_offers_registered_tools(self):
        llm = ScriptedLLM([ChatReply(text="Sure.")])
        orchestrator = TurnOrchestrator(llm, make_registry())

        await orchestrator.handle_turn(make_session(), "hello")

        offered = [t["function"]["name"] for t in llm.calls[0]["tools"]]
        assert offered == ["take_note", "tag_outcome"]

    @pytest.mark.asyncio
    async def test_empty_model_text_uses_fallback(self):
        llm = ScriptedLLM([ChatReply(text="   ")])
        orchestrator = TurnOrchestrator(llm, make_registry())
        session = make_session()

        outcome = await orchestrator.handle_turn(session, "hello")

        fallback = "I'm here and ready to help. What would you like to do next?"
        assert outcome.text == fallback
        assert session.context.turns[-1].content == fallback

    @pytest.mark.asyncio
    async def test_states_recorded(self):
        llm = ScriptedLLM([ChatReply(text="Sure.")])
        orchestrator = TurnOrchestrator(llm, make_registry())
        session = make_session()

        outcome = await orchestrator.handle_turn(session, "hello")

        assert outcome.metadata["states"] == [
            TurnState.AWAITING_INPUT,
            TurnState.MODEL_ROUND,
            TurnState.DONE,
        ]
        assert session.turn_state == TurnState.DONE

    @pytest.mark.asyncio
    async def test_token_usage_tracked(self):
        llm = ScriptedLLM([ChatReply(text="Sure.", input_tokens=120, output_tokens=8)])
        orchestrator = TurnOrchestrator(llm, make_registry())
        session = make_session()

        await orchestrator.handle_turn(session, "hello")

        assert session.context.total_tokens == 128

    @pytest.mark.asyncio
    async def test_intent_tagged_on_session(self):
        llm = ScriptedLLM([ChatReply(text="Sure."), ChatReply(text="Okay.")])
        orchestrator = TurnOrchestrator(llm, make_registry(), intent_detector=IntentDetector())
        session = make_session()

        await orchestrator.handle_turn(session, "I want to refinance")
        assert session.intent == "REFI"

        # An untagged utterance keeps the last intent
        await orchestrator.handle_turn(session, "what's next")
        assert session.intent == "REFI"


# =========================================================================
# Tool rounds
# =========================================================================


class TestToolRounds:
    """Tests for tool execution and the resumption round."""

    @pytest.mark.asyncio
    async def test_tool_results_follow_request_in_order(self):
        llm = ScriptedLLM([
            ChatReply(tool_invocations=[
                tool_call("call_1", arguments='{"note": "first"}'),
                tool_call("call_2", arguments={"note": "second"}),
            ]),
            ChatReply(text="Both noted."),
        ])
        orchestrator = TurnOrchestrator(llm, make_registry())
        session = make_session()

        outcome = await orchestrator.handle_turn(session, "note two things")

        turns = session.context.turns
        assert [t.role for t in turns] == [
            Role.SYSTEM,
            Role.USER,
            Role.ASSISTANT,
            Role.TOOL_RESULT,
            Role.TOOL_RESULT,
            Role.ASSISTANT,
        ]
        assert [t.invocation_id for t in turns[3:5]] == ["call_1", "call_2"]
        assert [t.content for t in turns[3:5]] == ["Noted: first", "Noted: second"]
        assert turns[-1].content == "Both noted."
        assert outcome.kind == OutcomeKind.CONTINUE
        assert outcome.metadata["tools"] == ["take_note", "take_note"]
        assert_sequence_valid(turns)

    @pytest.mark.asyncio
    async def test_resumption_round_withholds_tools(self):
        llm = ScriptedLLM([
            ChatReply(tool_invocations=[tool_call("call_1")]),
            ChatReply(text="Done."),
        ])
        orchestrator = TurnOrchestrator(llm, make_registry())

        await orchestrator.handle_turn(make_session(), "take a note")

        assert len(llm.calls) == 2
        assert llm.calls[0]["tools"] is not None
        assert llm.calls[1]["tools"] is None
        # The resumption round sees the tool result
        assert llm.calls[1]["turns"][-1].role == Role.TOOL_RESULT

    @pytest.mark.asyncio
    async def test_at_most_one_resumption_round(self):
        assert MAX_RESUMPTION_ROUNDS == 1
        llm = ScriptedLLM([
            ChatReply(tool_invocations=[tool_call("call_1")]),
            ChatReply(text="Still thinking.", tool_invocations=[tool_call("call_2")]),
            ChatReply(text="never used"),
        ])
        orchestrator = TurnOrchestrator(llm, make_registry())
        session = make_session()

        outcome = await orchestrator.handle_turn(session, "take a note")

        assert len(llm.calls) == 2
        assert outcome.text == "Still thinking."
        assert outcome.metadata["model_rounds"] == 2
        # The ignored request is not recorded
        assert not session.context.turns[-1].requests_tools
        assert not session.context.has_pending_tool_results
        assert_sequence_valid(session.context.turns)

    @pytest.mark.asyncio
    async def test_resumption_round_tools_only_falls_back(self):
        llm = ScriptedLLM([
            ChatReply(tool_invocations=[tool_call("call_1")]),
            ChatReply(tool_invocations=[tool_call("call_2")]),
        ])
        orchestrator = TurnOrchestrator(llm, make_registry())

        outcome = await orchestrator.handle_turn(make_session(), "take a note")

        assert outcome.text == "I'm here and ready to help. What would you like to do next?"

    @pytest.mark.asyncio
    async def test_tool_failure_is_isolated(self):
        llm = ScriptedLLM([
            ChatReply(tool_invocations=[tool_call("call_1")]),
            ChatReply(text="I've made a note of that."),
        ])
        orchestrator = TurnOrchestrator(llm, make_registry(fail=True))
        session = make_session()

        outcome = await orchestrator.handle_turn(session, "take a note")

        result_turn = session.context.turns[3]
        assert result_turn.role == Role.TOOL_RESULT
        assert result_turn.content == "I had trouble with that, but I've noted it."
        assert outcome.kind == OutcomeKind.CONTINUE
        assert outcome.text == "I've made a note of that."

    @pytest.mark.asyncio
    async def test_unknown_tool_gets_degraded_result(self):
        llm = ScriptedLLM([
            ChatReply(tool_invocations=[tool_call("call_1", name="launch_rocket", arguments="{}")]),
            ChatReply(text="Anything else?"),
        ])
        orchestrator = TurnOrchestrator(llm, make_registry())
        session = make_session()

        outcome = await orchestrator.handle_turn(session, "launch it")

        assert session.context.turns[3].content == "I had trouble with that, but I've noted it."
        assert outcome.kind == OutcomeKind.CONTINUE

    @pytest.mark.asyncio
    async def test_tag_outcome_ends_voice_call(self):
        llm = ScriptedLLM([
            ChatReply(tool_invocations=[
                tool_call("call_1", name="tag_outcome", arguments='{"outcome": "qualified"}')
            ]),
            ChatReply(text="Thanks for calling, talk soon."),
        ])
        orchestrator = TurnOrchestrator(llm, make_registry())
        session = make_session()

        outcome = await orchestrator.handle_turn(session, "that's everything")

        assert outcome.kind == OutcomeKind.END
        assert outcome.hangup is True
        assert session.closed is True
        assert session.outcome == "qualified"


# =========================================================================
# Failures
# =========================================================================


class TestChatFailures:
    """Tests for chat-model failure handling."""

    APOLOGY = "I'm sorry, I'm having trouble right now. Please try again later."

    @pytest.mark.asyncio
    async def test_voice_failure_hangs_up(self):
        llm = ScriptedLLM([ChatCompletionError("quota exceeded", provider="stub")])
        orchestrator = TurnOrchestrator(llm, make_registry())
        session = make_session(channel=Channel.VOICE)

        outcome = await orchestrator.handle_turn(session, "hello")

        assert outcome.kind == OutcomeKind.ERROR
        assert outcome.text == self.APOLOGY
        assert outcome.hangup is True
        assert session.context.turns[-1].content == self.APOLOGY

    @pytest.mark.asyncio
    async def test_sms_failure_does_not_hang_up(self):
        llm = ScriptedLLM([RuntimeError("connection reset")])
        orchestrator = TurnOrchestrator(llm, make_registry())
        session = make_session("+15550001111", channel=Channel.SMS)

        outcome = await orchestrator.handle_turn(session, "hello")

        assert outcome.kind == OutcomeKind.ERROR
        assert outcome.text == self.APOLOGY
        assert outcome.hangup is False

    @pytest.mark.asyncio
    async def test_timeout_is_a_chat_failure(self):
        llm = ScriptedLLM([ChatReply(text="too late")], delay=0.5)
        config = OrchestratorConfig(llm_timeout_seconds=0.05)
        orchestrator = TurnOrchestrator(llm, make_registry(), config)

        outcome = await orchestrator.handle_turn(make_session(), "hello")

        assert outcome.kind == OutcomeKind.ERROR

    @pytest.mark.asyncio
    async def test_failure_on_resumption_keeps_sequence_valid(self):
        llm = ScriptedLLM([
            ChatReply(tool_invocations=[tool_call("call_1")]),
            ChatCompletionError("server error"),
        ])
        orchestrator = TurnOrchestrator(llm, make_registry())
        session = make_session()

        outcome = await orchestrator.handle_turn(session, "take a note")

        turns = session.context.turns
        assert outcome.kind == OutcomeKind.ERROR
        assert turns[3].role == Role.TOOL_RESULT
        assert turns[-1].role == Role.ASSISTANT
        assert turns[-1].content == self.APOLOGY
        assert_sequence_valid(turns)

    @pytest.mark.asyncio
    async def test_session_usable_after_failure(self):
        llm = ScriptedLLM([ChatCompletionError("blip"), ChatReply(text="I'm back.")])
        orchestrator = TurnOrchestrator(llm, make_registry())
        session = make_session(channel=Channel.SMS)

        await orchestrator.handle_turn(session, "hello")
        outcome = await orchestrator.handle_turn(session, "hello again")

        assert outcome.kind == OutcomeKind.CONTINUE
        assert outcome.text == "I'm back."


# =========================================================================
# Ending and greeting
# =========================================================================


class TestConversationEnd:
    """Tests for goodbye detection and greetings."""

    @pytest.mark.asyncio
    async def test_goodbye_phrase_ends_call(self):
        llm = ScriptedLLM([ChatReply(text="Take care!")])
        orchestrator = TurnOrchestrator(llm, make_registry())

        outcome = await orchestrator.handle_turn(make_session(), "Okay, goodbye")

        assert outcome.kind == OutcomeKind.END
        assert outcome.hangup is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("utterance", [
        "please don't hang up",
        "is that's all you need?",
        "I said goodbye to my old lender, now what?",
        "never hang up",
    ])
    async def test_sign_off_words_mid_sentence_continue(self, utterance):
        llm = ScriptedLLM([ChatReply(text="I'm still here.")])
        orchestrator = TurnOrchestrator(llm, make_registry())

        outcome = await orchestrator.handle_turn(make_session(), utterance)

        assert outcome.kind == OutcomeKind.CONTINUE
        assert outcome.hangup is False

    @pytest.mark.parametrize("utterance", [
        "goodbye",
        "Thanks, bye bye.",
        "No thanks, that's all!",
        "okay you can hang up now. hang up",
    ])
    def test_sign_off_phrases_detected(self, utterance):
        orchestrator = TurnOrchestrator(ScriptedLLM(), make_registry())
        assert orchestrator._is_goodbye(utterance) is True

    @pytest.mark.asyncio
    async def test_sms_end_never_hangs_up(self):
        llm = ScriptedLLM([ChatReply(text="Take care!")])
        orchestrator = TurnOrchestrator(llm, make_registry())

        outcome = await orchestrator.handle_turn(make_session(channel=Channel.SMS), "bye bye")

        assert outcome.kind == OutcomeKind.END
        assert outcome.hangup is False

    @pytest.mark.asyncio
    async def test_greet_records_first_message_once(self):
        config = OrchestratorConfig(first_message="Hi, this is Liv.")
        orchestrator = TurnOrchestrator(ScriptedLLM(), make_registry(), config)
        session = make_session()

        first = await orchestrator.greet(session)
        await orchestrator.greet(session)

        assert first.kind == OutcomeKind.CONTINUE
        assert first.text == "Hi, this is Liv."
        assert [t.role for t in session.context.turns] == [Role.SYSTEM, Role.ASSISTANT]


# =========================================================================
# Concurrency
# =========================================================================


class TestConcurrency:
    """Tests for per-session serialization."""

    @pytest.mark.asyncio
    async def test_concurrent_turns_are_serialized(self):
        llm = ScriptedLLM(
            [ChatReply(text="first reply"), ChatReply(text="second reply")],
            delay=0.02,
        )
        orchestrator = TurnOrchestrator(llm, make_registry())
        session = make_session()

        await asyncio.gather(
            orchestrator.handle_turn(session, "one"),
            orchestrator.handle_turn(session, "two"),
        )

        roles = [t.role for t in session.context.turns]
        assert roles == [Role.SYSTEM, Role.USER, Role.ASSISTANT, Role.USER, Role.ASSISTANT]
        # The second turn saw the whole first exchange
        assert len(llm.calls[1]["turns"]) == 4
