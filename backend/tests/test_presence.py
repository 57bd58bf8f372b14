"""Tests for the presence registry (last-connect-wins, compare-and-remove)."""
import asyncio
import random

import pytest

from app.chat.presence import PresenceRegistry


class Handle:
    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return f"Handle({self.name})"


class TestPresenceRegistry:
    """Tests for set_online / set_offline / lookup."""

    @pytest.mark.asyncio
    async def test_lookup_unknown_user_is_absent(self):
        registry = PresenceRegistry()
        assert registry.lookup("1") is None
        assert not registry.is_online("1")

    @pytest.mark.asyncio
    async def test_set_online_then_lookup(self):
        registry = PresenceRegistry()
        handle = Handle("a")
        await registry.set_online("1", handle)
        assert registry.lookup("1") is handle
        assert registry.online_count() == 1

    @pytest.mark.asyncio
    async def test_last_connect_wins(self):
        registry = PresenceRegistry()
        old, new = Handle("old"), Handle("new")
        await registry.set_online("1", old)
        await registry.set_online("1", new)
        assert registry.lookup("1") is new
        assert registry.online_count() == 1

    @pytest.mark.asyncio
    async def test_set_offline_current_handle_removes_mapping(self):
        registry = PresenceRegistry()
        handle = Handle("a")
        await registry.set_online("1", handle)
        assert await registry.set_offline("1", handle) is True
        assert registry.lookup("1") is None

    @pytest.mark.asyncio
    async def test_stale_disconnect_keeps_newer_mapping(self):
        """A superseded connection closing late must not evict the new one."""
        registry = PresenceRegistry()
        old, new = Handle("old"), Handle("new")
        await registry.set_online("1", old)
        await registry.set_online("1", new)

        assert await registry.set_offline("1", old) is False
        assert registry.lookup("1") is new

    @pytest.mark.asyncio
    async def test_set_offline_twice_is_idempotent(self):
        registry = PresenceRegistry()
        handle, other = Handle("a"), Handle("b")
        await registry.set_online("1", handle)
        await registry.set_online("2", other)

        await registry.set_offline("1", handle)
        after_once = dict(registry._connections)
        assert await registry.set_offline("1", handle) is False
        assert registry._connections == after_once

    @pytest.mark.asyncio
    async def test_set_offline_unknown_user_is_noop(self):
        registry = PresenceRegistry()
        assert await registry.set_offline("ghost", Handle("x")) is False
        assert registry.online_count() == 0

    @pytest.mark.asyncio
    async def test_users_are_independent(self):
        registry = PresenceRegistry()
        a, b = Handle("a"), Handle("b")
        await registry.set_online("1", a)
        await registry.set_online("2", b)
        await registry.set_offline("1", a)
        assert registry.lookup("2") is b


class TestPresenceRaces:
    """Connect/disconnect interleavings for a single user."""

    @pytest.mark.asyncio
    async def test_concurrent_reconnect_and_stale_disconnect(self):
        registry = PresenceRegistry()
        old, new = Handle("old"), Handle("new")
        await registry.set_online("1", old)

        # new connection registers while the old one's disconnect is in flight
        await asyncio.gather(
            registry.set_online("1", new),
            registry.set_offline("1", old),
        )
        assert registry.lookup("1") is new

    @pytest.mark.asyncio
    async def test_random_sequences_match_reference_model(self):
        """The registry ends up exactly where compare-and-remove says it should."""
        rng = random.Random(1234)
        for _ in range(200):
            registry = PresenceRegistry()
            handles = [Handle(str(i)) for i in range(4)]
            expected = None
            for _ in range(12):
                handle = rng.choice(handles)
                if rng.random() < 0.5:
                    await registry.set_online("u", handle)
                    expected = handle
                else:
                    await registry.set_offline("u", handle)
                    if expected is handle:
                        expected = None
                assert registry.lookup("u") is expected
