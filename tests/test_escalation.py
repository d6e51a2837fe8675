"""
Tests for the escalation service.
"""
import pytest

from livechat.exceptions import ContactRequired, SessionResolved
from livechat.models.chat import HistoryEntry, MessageKind, Sender, SessionStatus


@pytest.mark.asyncio
async def test_offline_escalation_notifies_nobody(escalation_service, sample_history):
    """No admin online: pending, zero admins notified, delayed-reply notice with the email."""
    result = await escalation_service.request_escalation(
        "chat-offline",
        contact_email="User@Example.com",
        recent_messages=sample_history
    )

    assert result.session.status == SessionStatus.PENDING_ADMIN
    assert result.status == SessionStatus.PENDING_ADMIN
    assert result.admin_online is False
    assert result.escalated_now is True
    assert result.notified_admins == 0
    assert result.notice.kind == MessageKind.ESCALATION_NOTICE
    assert "user@example.com" in result.notice.text
    assert "offline" in result.notice.text
    assert result.session.message_count == len(sample_history) + 1


@pytest.mark.asyncio
async def test_online_escalation_broadcasts_to_admin_feeds(
    escalation_service, presence, connections, make_connection
):
    feed_a = make_connection("admin-a")
    feed_b = make_connection("admin-b")
    connections.attach_admin("admin-a", feed_a)
    connections.attach_admin("admin-b", feed_b)
    await presence.heartbeat("admin-a")

    result = await escalation_service.request_escalation("chat-online", contact_email="u@example.com")

    assert result.admin_online is True
    assert result.notified_admins == 2
    assert "online" in result.notice.text
    for feed in (feed_a, feed_b):
        assert feed.types() == ["escalation_request", "active_sessions"]
        request = feed.frames("escalation_request")[0]["data"]
        assert request["id"] == "chat-online"
        assert request["status"] == "pending_admin"
        assert request["notice"] == result.notice.text
        sessions = feed.frames("active_sessions")[0]["data"]["sessions"]
        assert [s["id"] for s in sessions] == ["chat-online"]


@pytest.mark.asyncio
async def test_escalation_is_idempotent(escalation_service, connections, make_connection, sample_history):
    feed = make_connection("admin-a")
    connections.attach_admin("admin-a", feed)

    first = await escalation_service.request_escalation(
        "chat-twice", contact_email="u@example.com", recent_messages=sample_history
    )
    second = await escalation_service.request_escalation(
        "chat-twice", contact_email="u@example.com", recent_messages=sample_history
    )

    assert second.escalated_now is False
    assert second.notified_admins == 0
    assert second.session == first.session
    assert second.notice == first.notice
    assert len(feed.frames("escalation_request")) == 1


@pytest.mark.asyncio
async def test_escalation_without_contact_is_rejected(escalation_service, store):
    with pytest.raises(ContactRequired):
        await escalation_service.request_escalation("chat-anon")

    assert await store.get("chat-anon") is None


@pytest.mark.asyncio
async def test_escalation_with_identity_only(escalation_service):
    result = await escalation_service.request_escalation("chat-auth", user_id="member-17")
    assert result.session.user_id == "member-17"
    assert "your account email" in result.notice.text


@pytest.mark.asyncio
async def test_escalating_resolved_session_is_rejected(escalation_service, chat_service):
    await escalation_service.request_escalation("chat-closed", contact_email="u@example.com")
    await chat_service.close_session("chat-closed", "admin-1")

    with pytest.raises(SessionResolved):
        await escalation_service.request_escalation("chat-closed", contact_email="u@example.com")


@pytest.mark.asyncio
async def test_history_is_capped(escalation_service, test_settings):
    history = [HistoryEntry(sender=Sender.USER, text=f"line {i}") for i in range(25)]

    result = await escalation_service.request_escalation(
        "chat-long", contact_email="u@example.com", recent_messages=history
    )

    imported = [m for m in result.session.messages if m.kind != MessageKind.ESCALATION_NOTICE]
    assert len(imported) == test_settings.escalation_history_limit
    assert imported[-1].text == "line 24"


@pytest.mark.asyncio
async def test_existing_session_keeps_its_log(escalation_service, chat_service, sample_history):
    await chat_service.join_user("chat-existing", "u@example.com")
    await chat_service.store.modify(
        "chat-existing", lambda s: s.append(Sender.USER, "typed before escalation")
    )

    result = await escalation_service.request_escalation(
        "chat-existing", recent_messages=sample_history
    )

    texts = [m.text for m in result.session.messages]
    assert texts[0] == "typed before escalation"
    assert len(texts) == 2


@pytest.mark.asyncio
async def test_presence_hint_is_advisory(escalation_service):
    result = await escalation_service.request_escalation(
        "chat-hint", contact_email="u@example.com", admin_online_hint=True
    )
    assert result.admin_online is False
