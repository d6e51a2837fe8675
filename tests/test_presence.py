"""
Tests for admin presence tracking.
"""
import pytest
from datetime import timedelta

from livechat.presence import PresenceTracker


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unknown_admin_is_offline(presence):
    assert await presence.is_online("admin-nobody") is False
    assert await presence.is_any_admin_online() is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_presence_threshold_boundaries(presence, clock):
    """Online 119 s after the last beat, offline at 121 s with a 2 minute threshold."""
    await presence.heartbeat("admin-1")

    clock.advance(119)
    assert await presence.is_online("admin-1") is True

    clock.advance(2)
    assert await presence.is_online("admin-1") is False
    assert await presence.is_any_admin_online() is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_exactly_at_threshold_is_offline(presence, clock):
    await presence.heartbeat("admin-1")
    clock.advance(120)
    assert await presence.is_online("admin-1") is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_heartbeat_refreshes_presence(presence, clock):
    await presence.heartbeat("admin-1")
    clock.advance(100)
    await presence.heartbeat("admin-1")
    clock.advance(100)

    assert await presence.is_online("admin-1") is True


@pytest.mark.unit
@pytest.mark.asyncio
async def test_online_admins_sorted_and_filtered(presence, clock):
    await presence.heartbeat("admin-b")
    clock.advance(90)
    await presence.heartbeat("admin-c")
    await presence.heartbeat("admin-a")
    clock.advance(60)

    assert await presence.online_admins() == ["admin-a", "admin-c"]
    assert await presence.is_any_admin_online() is True


@pytest.mark.unit
@pytest.mark.asyncio
async def test_explicit_now_overrides_clock(presence, clock):
    await presence.heartbeat("admin-1")
    later = clock() + timedelta(minutes=5)
    assert await presence.is_online("admin-1", now=later) is False
    assert await presence.is_online("admin-1") is True


@pytest.mark.unit
@pytest.mark.asyncio
async def test_presence_is_shared_through_store(store, clock):
    writer = PresenceTracker(store, stale_threshold_seconds=120, clock=clock)
    reader = PresenceTracker(store, stale_threshold_seconds=120, clock=clock)

    await writer.heartbeat("admin-1")
    assert await reader.is_online("admin-1") is True
