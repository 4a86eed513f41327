"""Session management for LivBridge.

Each active call or SMS thread gets a Session holding its conversation
context, lead state and lifecycle timestamps. The SessionStore owns all
sessions: it creates them on first contact, hands them out by id, and
evicts them when the call ends or they sit idle too long.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from livbridge.core.turns import Channel, TurnState
from livbridge.pipeline.context import ConversationContext


LEAD_FLAGS = (
    "MARKETPLACE_PUSHED",
    "ACCOUNT_CREATED",
    "APP_COMPLETED",
    "CREDIT_AUTHORIZED",
    "DOC_UPLOAD_STARTED",
    "DOC_UPLOAD_COMPLETE",
    "VALUATION_COMPLETE",
    "HOT_LEAD",
)


@dataclass
class Session:
    """Conversation state for one call or messaging thread.

    The context is only mutated while ``lock`` is held; the turn
    orchestrator acquires it for the whole of a turn.
    """

    session_id: str
    channel: Channel = Channel.VOICE
    context: ConversationContext = field(default_factory=ConversationContext)

    # Caller metadata
    caller: str = ""

    # Lead state (marketplace progress, valuation, last detected intent)
    flags: dict[str, bool] = field(default_factory=lambda: {f: False for f in LEAD_FLAGS})
    valuation: dict[str, Any] = field(default_factory=dict)
    intent: str = "GENERAL"
    outcome: str = ""
    hot_lead_notified: bool = False

    # Lifecycle
    created_at: float = field(default_factory=time.time)
    last_active_at: float = field(default_factory=time.time)
    # Set when the conversation has been wrapped up (e.g. outcome tagged)
    closed: bool = False
    turn_state: TurnState = TurnState.AWAITING_INPUT

    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def touch(self) -> None:
        self.last_active_at = time.time()

    def close(self, outcome: str = "") -> None:
        """Mark the conversation as finished; the next render ends the call."""
        self.closed = True
        if outcome:
            self.outcome = outcome

    def idle_seconds(self, now: float | None = None) -> float:
        return (now or time.time()) - self.last_active_at

    @property
    def duration_ms(self) -> int:
        return int((time.time() - self.created_at) * 1000)

    def state(self) -> dict[str, Any]:
        """Lead state snapshot for notifications and status output."""
        return {
            **self.flags,
            "intent": self.intent,
            "outcome": self.outcome,
            "valuation": dict(self.valuation),
        }


class SessionStore:
    """Store for active sessions, keyed by provider call/thread id.

    get_or_create is safe under concurrent callers: creation happens under
    a store-wide lock, so an unseen id always maps to exactly one Session.

    Args:
        system_prompt: Persona text seeded as each session's system turn.
        idle_timeout_seconds: Sessions idle longer than this are evicted by
            sweep_idle (default: 1800).
        sweep_interval_seconds: Period of the background sweeper task.
        max_window_turns: Context window passed to each ConversationContext.
    """

    def __init__(
        self,
        system_prompt: str = "",
        idle_timeout_seconds: float = 1800.0,
        sweep_interval_seconds: float = 60.0,
        max_window_turns: int = 40,
    ) -> None:
        self._system_prompt = system_prompt
        self._idle_timeout = idle_timeout_seconds
        self._sweep_interval = sweep_interval_seconds
        self._max_window_turns = max_window_turns
        self._sessions: dict[str, Session] = {}
        self._create_lock = asyncio.Lock()
        self._sweeper_task: asyncio.Task | None = None

    async def get_or_create(
        self,
        session_id: str,
        channel: Channel = Channel.VOICE,
        caller: str = "",
    ) -> Session:
        """Return the session for ``session_id``, creating it on first contact."""
        session = self._sessions.get(session_id)
        if session is not None:
            session.touch()
            return session

        async with self._create_lock:
            # Another task may have created it while we waited
            session = self._sessions.get(session_id)
            if session is None:
                session = Session(
                    session_id=session_id,
                    channel=channel,
                    caller=caller,
                    context=ConversationContext(
                        system_prompt=self._system_prompt,
                        max_window_turns=self._max_window_turns,
                    ),
                )
                self._sessions[session_id] = session
                logger.info(f"Session created: {session_id} (channel: {channel.value})")
            session.touch()
            return session

    def get(self, session_id: str) -> Session | None:
        """Get a session by id."""
        return self._sessions.get(session_id)

    async def end(self, session_id: str, reason: str = "call_ended") -> bool:
        """Evict a session. Waits for any in-flight turn on it to finish.

        Returns True if a session was removed.
        """
        session = self._sessions.get(session_id)
        if session is None:
            return False
        async with session.lock:
            removed = self._sessions.pop(session_id, None)
        if removed is not None:
            logger.info(
                f"Session removed: {session_id} "
                f"(reason: {reason}, duration: {removed.duration_ms}ms, "
                f"turns: {removed.context.turn_count})"
            )
        return removed is not None

    def sweep_idle(self, now: float | None = None) -> int:
        """Evict sessions idle past the timeout. Returns count removed.

        Sessions whose lock is held (a turn is in flight) are skipped.
        """
        now = now or time.time()
        stale = [
            sid for sid, s in self._sessions.items()
            if s.idle_seconds(now) > self._idle_timeout and not s.lock.locked()
        ]
        for sid in stale:
            self._sessions.pop(sid, None)
        if stale:
            logger.info(f"Idle sweep evicted {len(stale)} session(s)")
        return len(stale)

    async def start_sweeper(self) -> None:
        """Start the periodic idle-eviction task."""
        if self._sweeper_task and not self._sweeper_task.done():
            return
        self._sweeper_task = asyncio.create_task(self._sweep_loop())

    async def stop_sweeper(self) -> None:
        if self._sweeper_task and not self._sweeper_task.done():
            self._sweeper_task.cancel()
            try:
                await self._sweeper_task
            except asyncio.CancelledError:
                pass
        self._sweeper_task = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                self.sweep_idle()
            except Exception as e:
                logger.error(f"Idle sweep error: {e}")

    @property
    def active_count(self) -> int:
        return len(self._sessions)

    @property
    def all_sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions
