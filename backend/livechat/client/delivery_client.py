"""
End-user delivery client for the chat hub.

Drives the push channel and the poll fallback for one session and feeds
both into a ``TranscriptReconciler``:

- the push loop reconnects after a fixed delay until the session is resolved
- the poll loop only hits the hub while push is down
- ``send`` tries push, then the HTTP fallback
- ``close`` stops every task and releases the socket and HTTP session
"""
import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import aiohttp
from aiohttp import ClientSession, ClientTimeout, ClientError, WSMsgType
from pydantic import ValidationError

from ..config import settings
from ..exceptions import (
    ChatError,
    MessageRejected,
    SessionResolved,
    TransportUnavailable,
    error_from_payload,
)
from ..models.chat import SessionStatus
from ..models.events import ServerEvent, ServerEventType
from ..utils.retry import RetryConfig, RetryStrategy, calculate_retry_delay
from .cache import TranscriptCache
from .reconciler import Transcript, TranscriptReconciler

logger = logging.getLogger(__name__)

TRANSPORT_ERRORS = (ClientError, OSError, asyncio.TimeoutError)


class DeliveryStatus(str, Enum):
    """Outcome of ``ChatDeliveryClient.send``."""
    PUSHED = "pushed"
    SENT_HTTP = "sent_http"
    MAYBE_UNDELIVERED = "maybe_undelivered"


def _websocket_base(base_url: str) -> str:
    if base_url.startswith("https://"):
        return "wss://" + base_url[len("https://"):]
    if base_url.startswith("http://"):
        return "ws://" + base_url[len("http://"):]
    return base_url


class ChatDeliveryClient:
    """
    Push + poll delivery for one end-user session.

    Example:
        async with ChatDeliveryClient("http://localhost:8000", "chat_123") as client:
            await client.send("Hello?")
    """

    def __init__(
        self,
        base_url: str,
        session_id: str,
        user_email: Optional[str] = None,
        cache: Optional[TranscriptCache] = None,
        reconnect_delay: Optional[float] = None,
        poll_interval: Optional[float] = None,
        request_timeout: Optional[float] = None,
        api_prefix: Optional[str] = None,
        websocket_path: Optional[str] = None,
        on_update: Optional[Callable[[Transcript], None]] = None,
        http_session: Optional[ClientSession] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.session_id = session_id
        self.user_email = user_email
        self.cache = cache
        self.on_update = on_update

        self.api_prefix = settings.api_prefix if api_prefix is None else api_prefix
        self.websocket_url = _websocket_base(self.base_url) + (websocket_path or settings.websocket_path)
        self.poll_interval = poll_interval or settings.client_poll_interval_seconds
        self.request_timeout = request_timeout or settings.client_request_timeout_seconds

        delay = reconnect_delay or settings.client_reconnect_delay_seconds
        self.reconnect_config = RetryConfig(
            initial_delay=delay,
            max_delay=delay,
            strategy=RetryStrategy.FIXED
        )

        cached = cache.load(session_id) if cache else None
        self.reconciler = TranscriptReconciler(session_id, cached)

        self.http = http_session
        self._owns_http = http_session is None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._tasks: List[asyncio.Task] = []
        self._closed = asyncio.Event()

        self.reconnect_attempts = 0
        self.last_error: Optional[ChatError] = None

    async def __aenter__(self) -> 'ChatDeliveryClient':
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def transcript(self) -> Transcript:
        return self.reconciler.transcript

    @property
    def push_connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def start(self) -> None:
        """Open the HTTP session and start the push and poll loops."""
        if self._closed.is_set():
            raise RuntimeError("Delivery client is closed")
        if self._tasks:
            return

        if self.http is None:
            self.http = ClientSession(
                timeout=ClientTimeout(total=self.request_timeout),
                headers={"Accept": "application/json"}
            )

        self._tasks = [
            asyncio.create_task(self._push_loop(), name=f"push:{self.session_id}"),
            asyncio.create_task(self._poll_loop(), name=f"poll:{self.session_id}"),
        ]
        logger.info(f"Delivery client started for session {self.session_id}")

    async def close(self) -> None:
        """Cancel all background work and release connections."""
        self._closed.set()

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        ws, self._ws = self._ws, None
        if ws is not None and not ws.closed:
            await ws.close()

        if self.http is not None and self._owns_http:
            await self.http.close()
        self.http = None

        logger.info(f"Delivery client closed for session {self.session_id}")

    # ===========================
    # Transport primitives
    # ===========================

    async def _connect_push(self) -> aiohttp.ClientWebSocketResponse:
        return await self.http.ws_connect(self.websocket_url, heartbeat=30.0)

    def _raise_for_response(self, status: int, body: Any) -> None:
        detail = body.get("detail") if isinstance(body, dict) else None
        if isinstance(detail, dict) and detail.get("code"):
            raise error_from_payload(detail)
        if status == 422:
            raise MessageRejected("Request rejected by the hub", session_id=self.session_id)
        raise TransportUnavailable(f"Hub responded with HTTP {status}", session_id=self.session_id)

    async def _http_post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        async with self.http.post(f"{self.base_url}{path}", json=payload) as response:
            body = await response.json(content_type=None)
            if response.status >= 400:
                self._raise_for_response(response.status, body)
            return body

    async def _http_get(self, path: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        async with self.http.get(f"{self.base_url}{path}", params=params or {}) as response:
            body = await response.json(content_type=None)
            if response.status >= 400:
                self._raise_for_response(response.status, body)
            return body

    async def _wait_closed(self, timeout: float) -> bool:
        try:
            await asyncio.wait_for(self._closed.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    # ===========================
    # Reconciliation
    # ===========================

    def _changed(self) -> None:
        transcript = self.reconciler.transcript
        if self.cache is not None:
            self.cache.save(transcript)
        if transcript.is_resolved:
            logger.info(f"Session {self.session_id} resolved; stopping delivery")
        if self.on_update is not None:
            self.on_update(transcript)

    def _mark_resolved(self) -> None:
        if self.reconciler.apply_messages((), status=SessionStatus.RESOLVED):
            self._changed()

    def handle_frame(self, raw: str) -> None:
        """Fold one push frame into the transcript."""
        try:
            event = ServerEvent.from_wire(raw)
        except ValidationError as e:
            logger.warning(f"Discarding unparseable push frame: {e}")
            return

        if event.type == ServerEventType.ERROR:
            self.last_error = error_from_payload(event.data)
            logger.warning(f"Hub reported {self.last_error.code}: {self.last_error.message}")
            if isinstance(self.last_error, SessionResolved):
                self._mark_resolved()
            return

        if self.reconciler.apply_event(event):
            self._changed()

    # ===========================
    # Push
    # ===========================

    async def _run_push(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        self._ws = ws
        self.reconnect_attempts = 0
        try:
            join = {"sessionId": self.session_id}
            if self.user_email:
                join["userEmail"] = self.user_email
            await ws.send_json({"type": "join_user_session", "data": join})
            logger.info(f"Push channel connected for session {self.session_id}")

            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    self.handle_frame(msg.data)
                elif msg.type == WSMsgType.ERROR:
                    logger.warning(f"Push channel error: {ws.exception()}")
                    break
                if not self.reconciler.should_reconnect():
                    break

        except TRANSPORT_ERRORS as e:
            logger.info(f"Push channel dropped for session {self.session_id}: {e}")
        finally:
            self._ws = None
            if not ws.closed:
                await ws.close()

    async def _push_loop(self) -> None:
        while not self._closed.is_set() and self.reconciler.should_reconnect():
            try:
                ws = await self._connect_push()
            except TRANSPORT_ERRORS as e:
                logger.info(f"Push channel unavailable for session {self.session_id}: {e}")
            else:
                await self._run_push(ws)

            if self._closed.is_set() or not self.reconciler.should_reconnect():
                break

            delay = calculate_retry_delay(self.reconnect_attempts, self.reconnect_config)
            self.reconnect_attempts += 1
            logger.debug(f"Reconnecting push channel in {delay:.1f}s (attempt {self.reconnect_attempts})")
            if await self._wait_closed(delay):
                break

    # ===========================
    # Poll
    # ===========================

    async def poll_once(self) -> bool:
        """
        Pull messages after the poll cursor.

        Returns:
            True if the transcript changed
        """
        params = {}
        if self.reconciler.poll_cursor:
            params["lastMessageId"] = self.reconciler.poll_cursor

        payload = await self._http_get(
            f"{self.api_prefix}/chatbot/admin-response/{self.session_id}", params
        )
        changed = self.reconciler.apply_poll(payload)
        if changed:
            self._changed()
        return changed

    async def _poll_loop(self) -> None:
        while not self._closed.is_set() and not self.reconciler.is_terminal:
            if await self._wait_closed(self.poll_interval):
                break
            if self.push_connected or self.reconciler.is_terminal:
                continue

            try:
                await self.poll_once()
            except SessionResolved:
                self._mark_resolved()
            except ChatError as e:
                logger.debug(f"Poll for {self.session_id} rejected: {e.code}")
            except TRANSPORT_ERRORS as e:
                logger.info(f"Poll for {self.session_id} failed: {e}")

    # ===========================
    # Send
    # ===========================

    async def send(self, text: str) -> DeliveryStatus:
        """
        Deliver a user message: push first, HTTP fallback second.

        Returns:
            ``MAYBE_UNDELIVERED`` only when both paths failed

        Raises:
            MessageRejected: If the text is empty or rejected by the hub
            SessionResolved: If the session is closed
        """
        text = (text or "").strip()
        if not text:
            raise MessageRejected("Message cannot be empty", session_id=self.session_id)
        if self.reconciler.is_terminal:
            raise SessionResolved(self.session_id)

        data = {"sessionId": self.session_id, "text": text}
        if self.user_email:
            data["userEmail"] = self.user_email

        ws = self._ws
        if ws is not None and not ws.closed:
            try:
                await ws.send_json({"type": "user_message", "data": data})
                return DeliveryStatus.PUSHED
            except (ClientError, ConnectionResetError, RuntimeError) as e:
                logger.info(f"Push send failed for {self.session_id}, falling back to HTTP: {e}")

        payload = {"sessionId": self.session_id, "message": text}
        if self.user_email:
            payload["userEmail"] = self.user_email

        try:
            body = await self._http_post(f"{self.api_prefix}/chatbot/send-to-admin", payload)
        except SessionResolved:
            self._mark_resolved()
            raise
        except TransportUnavailable as e:
            logger.warning(f"Message for {self.session_id} may be undelivered: {e.message}")
            return DeliveryStatus.MAYBE_UNDELIVERED
        except TRANSPORT_ERRORS as e:
            logger.warning(f"Message for {self.session_id} may be undelivered: {e}")
            return DeliveryStatus.MAYBE_UNDELIVERED

        if self.reconciler.apply_messages([body["message"]]):
            self._changed()
        return DeliveryStatus.SENT_HTTP


__all__ = ['ChatDeliveryClient', 'DeliveryStatus']
