"""
Request-scoped accessors for the services built in the application lifespan.
"""
from fastapi import HTTPException, Request

from ..exceptions import ChatError
from ..services.chat_service import ChatService
from ..services.escalation_service import EscalationService


def get_chat_service(request: Request) -> ChatService:
    """Get the chat service from app state."""
    service = getattr(request.app.state, "chat_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Chat service not initialized")
    return service


def get_escalation_service(request: Request) -> EscalationService:
    """Get the escalation service from app state."""
    service = getattr(request.app.state, "escalation_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Escalation service not initialized")
    return service


def http_error(error: ChatError) -> HTTPException:
    """Map a domain error onto its HTTP status with a ``{code, message}`` body."""
    return HTTPException(status_code=error.status_code, detail=error.to_dict())
