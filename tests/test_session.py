"""Tests for LivBridge session management.

Tests cover:
- Session defaults and lifecycle helpers
- Idempotent get_or_create, including under concurrency
- Eviction on end() and on the idle sweep
- The background sweeper task
"""

import asyncio
import time

import pytest

from livbridge.core.turns import Channel, Role
from livbridge.session import LEAD_FLAGS, Session, SessionStore


# =========================================================================
# Session
# =========================================================================


class TestSession:
    """Tests for the Session data class."""

    def test_defaults(self):
        session = Session(session_id="CA1")
        assert session.channel == Channel.VOICE
        assert session.closed is False
        assert session.intent == "GENERAL"
        assert set(session.flags) == set(LEAD_FLAGS)
        assert not any(session.flags.values())
        assert session.context.turn_count == 1

    def test_close_records_outcome(self):
        session = Session(session_id="CA1")
        session.close("qualified")
        assert session.closed is True
        assert session.outcome == "qualified"

    def test_idle_seconds(self):
        session = Session(session_id="CA1")
        session.last_active_at = 1000.0
        assert session.idle_seconds(now=1090.0) == 90.0

    def test_state_snapshot(self):
        session = Session(session_id="CA1", intent="REFI")
        session.flags["ACCOUNT_CREATED"] = True
        state = session.state()
        assert state["ACCOUNT_CREATED"] is True
        assert state["intent"] == "REFI"
        assert state["valuation"] == {}


# =========================================================================
# SessionStore
# =========================================================================


class TestSessionStore:
    """Tests for SessionStore."""

    @pytest.mark.asyncio
    async def test_create_seeds_system_prompt(self):
        store = SessionStore(system_prompt="You are Liv.")
        session = await store.get_or_create("CA123", Channel.VOICE, caller="+15550001111")

        turns = session.context.turns
        assert len(turns) == 1
        assert turns[0].role == Role.SYSTEM
        assert turns[0].content == "You are Liv."
        assert session.caller == "+15550001111"
        assert store.active_count == 1

    @pytest.mark.asyncio
    async def test_get_or_create_returns_same_session(self):
        store = SessionStore()
        first = await store.get_or_create("CA123")
        first.context.add_user_message("hello")
        second = await store.get_or_create("CA123")

        assert second is first
        assert second.context.turn_count == 2
        assert store.active_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_creation_is_idempotent(self):
        store = SessionStore()
        sessions = await asyncio.gather(*[store.get_or_create("CA999") for _ in range(20)])

        assert all(s is sessions[0] for s in sessions)
        assert store.active_count == 1

    @pytest.mark.asyncio
    async def test_get_missing(self):
        store = SessionStore()
        assert store.get("nope") is None
        assert "nope" not in store

    @pytest.mark.asyncio
    async def test_end_removes_session(self):
        store = SessionStore()
        await store.get_or_create("CA123")

        assert await store.end("CA123", reason="completed") is True
        assert "CA123" not in store
        assert await store.end("CA123") is False

    @pytest.mark.asyncio
    async def test_end_waits_for_in_flight_turn(self):
        store = SessionStore()
        session = await store.get_or_create("CA123")
        order = []

        async def turn():
            async with session.lock:
                await asyncio.sleep(0.02)
                order.append("turn")

        task = asyncio.create_task(turn())
        await asyncio.sleep(0)
        await store.end("CA123")
        order.append("ended")
        await task

        assert order == ["turn", "ended"]

    @pytest.mark.asyncio
    async def test_recreated_after_end_starts_fresh(self):
        store = SessionStore(system_prompt="You are Liv.")
        first = await store.get_or_create("CA123")
        first.context.add_user_message("hello")
        await store.end("CA123")

        second = await store.get_or_create("CA123")
        assert second is not first
        assert second.context.turn_count == 1


# =========================================================================
# Idle eviction
# =========================================================================


class TestIdleSweep:
    """Tests for idle-timeout eviction."""

    @pytest.mark.asyncio
    async def test_sweep_evicts_idle_sessions(self):
        store = SessionStore(idle_timeout_seconds=60)
        stale = await store.get_or_create("old")
        await store.get_or_create("fresh")
        stale.last_active_at = time.time() - 120

        assert store.sweep_idle() == 1
        assert "old" not in store
        assert "fresh" in store

    @pytest.mark.asyncio
    async def test_sweep_skips_locked_sessions(self):
        store = SessionStore(idle_timeout_seconds=60)
        session = await store.get_or_create("busy")
        session.last_active_at = time.time() - 120

        async with session.lock:
            assert store.sweep_idle() == 0
        assert "busy" in store

    @pytest.mark.asyncio
    async def test_background_sweeper(self):
        store = SessionStore(idle_timeout_seconds=60, sweep_interval_seconds=0.01)
        session = await store.get_or_create("old")
        session.last_active_at = time.time() - 120

        await store.start_sweeper()
        await asyncio.sleep(0.05)
        await store.stop_sweeper()

        assert store.active_count == 0
