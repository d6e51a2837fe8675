"""
End-user chat routes: escalation, HTTP fallback send, polling and presence.
"""
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Path, Query, status
from typing import Optional
from datetime import datetime
import logging

from ..dependencies import get_chat_service, get_escalation_service, http_error
from ...exceptions import ChatError
from ...models.chat import Sender
from ...models.schemas import (
    AdminStatusResponse,
    EscalateRequest,
    EscalateResponse,
    HeartbeatRequest,
    PollResponse,
    SendAcceptedResponse,
    SendToAdminRequest,
)
from ...services.chat_service import ChatService
from ...services.escalation_service import EscalationService

logger = logging.getLogger(__name__)

router = APIRouter()

SESSION_ID_PATH = Path(..., min_length=1, max_length=255, pattern=r'^[A-Za-z0-9_:.-]+$')


@router.post("/escalate", response_model=EscalateResponse)
async def escalate(
    request: EscalateRequest,
    escalation: EscalationService = Depends(get_escalation_service)
):
    """
    Hand a bot conversation over to a human admin.

    Idempotent: repeating it for an escalated session returns the current state.

    Returns:
        Session status, the escalation notice and admin availability
    """
    try:
        result = await escalation.request_escalation(
            request.session_id,
            contact_email=request.user_email,
            recent_messages=request.messages,
            user_id=request.user_id,
            admin_online_hint=request.admin_online_hint
        )

        return EscalateResponse(
            status=result.status,
            escalation_message=result.notice.text if result.notice else None,
            admin_online=result.admin_online,
            escalated=result.escalated_now,
            notified_admins=result.notified_admins
        )

    except ChatError as e:
        raise http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Escalation failed for session {request.session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to escalate session")


@router.post(
    "/send-to-admin",
    response_model=SendAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED
)
async def send_to_admin(
    request: SendToAdminRequest,
    chat: ChatService = Depends(get_chat_service)
):
    """
    HTTP fallback for a user message when the push channel is down.

    The message is persisted before the response; forwarding to the admin
    is best-effort.
    """
    try:
        result = await chat.send_user_message(
            request.session_id,
            request.message,
            user_email=request.user_email,
            transport="http"
        )
        return SendAcceptedResponse(accepted=True, message=result.message)

    except ChatError as e:
        raise http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Send failed for session {request.session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to send message")


@router.get("/admin-response/{session_id}", response_model=PollResponse)
async def poll_admin_response(
    session_id: str = SESSION_ID_PATH,
    last_message_id: Optional[str] = Query(None, alias="lastMessageId", max_length=64),
    since: Optional[datetime] = Query(None),
    sender: Optional[Sender] = Query(None),
    chat: ChatService = Depends(get_chat_service)
):
    """
    Pull fallback: messages newer than the caller's cursor.

    Read-only. Without a cursor every message is returned. ``since`` is
    inclusive, so messages sharing the last seen timestamp come back and
    are deduplicated by id on the client.
    """
    try:
        result = await chat.poll(session_id, last_message_id, since, sender)
        return PollResponse(
            has_new_messages=result.has_new_messages,
            messages=result.messages,
            session_status=result.session_status
        )

    except ChatError as e:
        raise http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Poll failed for session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch messages")


async def _record_heartbeat(chat: ChatService, admin_id: str) -> None:
    try:
        await chat.admin_heartbeat(admin_id)
    except Exception as e:
        logger.warning(f"Failed to record heartbeat for admin {admin_id}: {e}")


@router.post("/admin-heartbeat", status_code=status.HTTP_204_NO_CONTENT)
async def admin_heartbeat(
    request: HeartbeatRequest,
    background_tasks: BackgroundTasks,
    chat: ChatService = Depends(get_chat_service)
):
    """Record admin liveness after the response is sent."""
    background_tasks.add_task(_record_heartbeat, chat, request.admin_id)


@router.get("/admin-status", response_model=AdminStatusResponse)
async def admin_status(chat: ChatService = Depends(get_chat_service)):
    """Whether any admin has a fresh heartbeat."""
    try:
        data = await chat.admin_status()
        return AdminStatusResponse(is_online=data["isOnline"], online_admins=data["onlineAdmins"])
    except Exception as e:
        logger.error(f"Admin status check failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to check admin status")
