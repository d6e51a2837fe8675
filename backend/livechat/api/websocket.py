"""
WebSocket push channel for real-time chat.
"""
from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from typing import Any, Awaitable, Callable, Dict, Type
import logging

from .connections import ConnectionManager, SessionConnections
from ..exceptions import ChatError
from ..models.events import (
    AdminMessage,
    JoinAdminSession,
    JoinUserSession,
    ServerEvent,
    UserMessage,
    parse_client_envelope,
)
from ..services.chat_service import ChatService
from ..utils.telemetry import metrics_collector

logger = logging.getLogger(__name__)


class PushChannelHandler:
    """
    Handles inbound frames on one hub.

    Every inbound envelope type has exactly one handler in ``handlers``.
    Errors are answered with an ``error`` frame and the connection stays open.
    """

    def __init__(self, chat_service: ChatService, connections: ConnectionManager):
        self.chat_service = chat_service
        self.connections = connections
        self.handlers: Dict[Type[Any], Callable[[Any, Any], Awaitable[None]]] = {
            JoinUserSession: self.on_join_user_session,
            JoinAdminSession: self.on_join_admin_session,
            UserMessage: self.on_user_message,
            AdminMessage: self.on_admin_message,
        }

    async def handle_frame(self, websocket: Any, raw: str) -> None:
        """Parse and dispatch one text frame."""
        if not raw or not raw.strip():
            return

        try:
            envelope = parse_client_envelope(raw)
        except ValidationError as e:
            logger.debug(f"Rejected malformed frame: {e.errors(include_url=False)[:1]}")
            await self.connections.send(
                websocket, ServerEvent.error("Malformed message", code="invalid_frame")
            )
            return

        handler = self.handlers[type(envelope)]
        try:
            await handler(websocket, envelope.data)
        except ChatError as e:
            logger.info(f"{type(envelope).__name__} rejected: {e.code} ({e.message})")
            await self.connections.send(websocket, ServerEvent.error(e.message, code=e.code))
        except Exception as e:
            logger.error(f"Push message processing error: {e}", exc_info=True)
            metrics_collector.record_error()
            await self.connections.send(
                websocket, ServerEvent.error("Internal server error", code="internal_error")
            )

    async def on_join_user_session(self, websocket: Any, data) -> None:
        session = await self.chat_service.join_user(data.session_id, data.user_email)
        self.connections.attach_user(session.id, websocket)
        await self.connections.send(websocket, ServerEvent.session_data(session))

    async def on_join_admin_session(self, websocket: Any, data) -> None:
        result = await self.chat_service.join_admin(data.admin_id, data.session_id)
        self.connections.attach_admin(data.admin_id, websocket, data.session_id)
        if result.session is not None:
            await self.connections.send(websocket, ServerEvent.session_data(result.session))
        await self.connections.send(websocket, ServerEvent.active_sessions(result.active_sessions))

    async def on_user_message(self, websocket: Any, data) -> None:
        result = await self.chat_service.send_user_message(
            data.session_id, data.text, user_email=data.user_email, transport="push"
        )
        await self.connections.send(websocket, ServerEvent.message_sent(result.message))

    async def on_admin_message(self, websocket: Any, data) -> None:
        result = await self.chat_service.send_admin_message(
            data.session_id, data.admin_id, data.text, transport="push"
        )
        await self.connections.send(websocket, ServerEvent.message_sent(result.message))


async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for the chat push channel.

    Frames are JSON envelopes ``{"type": ..., "data": {...}}``. A disconnect
    only detaches the connection; persisted messages are unaffected.
    """
    handler: PushChannelHandler = websocket.app.state.push_handler
    connections: ConnectionManager = websocket.app.state.connections

    await websocket.accept()
    await connections.send(websocket, ServerEvent.connected())

    try:
        while True:
            raw = await websocket.receive_text()
            await handler.handle_frame(websocket, raw)

    except WebSocketDisconnect:
        logger.info("Push connection closed by client")
    except Exception as e:
        logger.error(f"WebSocket error: {e}", exc_info=True)
    finally:
        connections.detach(websocket)


__all__ = [
    'ConnectionManager',
    'SessionConnections',
    'PushChannelHandler',
    'websocket_endpoint',
]
