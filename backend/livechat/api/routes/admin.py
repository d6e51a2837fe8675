"""
Admin dashboard routes: session listing, transcripts, replies and closing.
"""
from fastapi import APIRouter, Depends, HTTPException, Path, Query
from typing import Any, Dict, List
import logging

from ..dependencies import get_chat_service, http_error
from ...exceptions import ChatError
from ...models.schemas import AdminActionResponse, AdminRespondRequest, CloseSessionRequest, SessionSummary
from ...services.chat_service import ChatService

logger = logging.getLogger(__name__)

router = APIRouter()

SESSION_ID_PATH = Path(..., min_length=1, max_length=255, pattern=r'^[A-Za-z0-9_:.-]+$')


@router.get("/chat-sessions", response_model=List[SessionSummary])
async def list_chat_sessions(
    include_resolved: bool = Query(False, alias="includeResolved"),
    chat: ChatService = Depends(get_chat_service)
):
    """
    List escalated sessions, most recently active first.

    Args:
        include_resolved: Also list closed sessions

    Returns:
        Session summaries
    """
    try:
        return await chat.list_sessions(include_resolved=include_resolved)
    except Exception as e:
        logger.error(f"Failed to list sessions: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to list sessions")


@router.get("/awaiting-reply", response_model=List[SessionSummary])
async def awaiting_reply(chat: ChatService = Depends(get_chat_service)):
    """
    Sessions with user messages no admin has answered yet, longest waiting first.

    Survives restarts and covers escalations made while every admin was offline.
    """
    try:
        return await chat.awaiting_reply()
    except Exception as e:
        logger.error(f"Failed to list sessions awaiting reply: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to list sessions awaiting reply")


@router.get("/chat-sessions/{session_id}")
async def get_chat_session(
    session_id: str = SESSION_ID_PATH,
    chat: ChatService = Depends(get_chat_service)
) -> Dict[str, Any]:
    """Full session with its transcript."""
    try:
        session = await chat.get_session(session_id)
        return session.to_document()

    except ChatError as e:
        raise http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to load session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to load session")


@router.post("/chat-sessions/{session_id}/respond", response_model=AdminActionResponse)
async def respond(
    request: AdminRespondRequest,
    session_id: str = SESSION_ID_PATH,
    chat: ChatService = Depends(get_chat_service)
):
    """
    Admin reply over HTTP.

    Replying to a pending session claims it for the admin.
    """
    try:
        result = await chat.send_admin_message(
            session_id, request.admin_id, request.message, transport="http"
        )
        return AdminActionResponse(session=result.session.summary(), message=result.message)

    except ChatError as e:
        raise http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Admin reply failed for session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to send reply")


@router.post("/chat-sessions/{session_id}/close", response_model=AdminActionResponse)
async def close(
    request: CloseSessionRequest,
    session_id: str = SESSION_ID_PATH,
    chat: ChatService = Depends(get_chat_service)
):
    """Resolve a session and notify the user."""
    try:
        session = await chat.close_session(session_id, request.admin_id)
        return AdminActionResponse(session=session.summary(), message=session.messages[-1])

    except ChatError as e:
        raise http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Closing session {session_id} failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to close session")
