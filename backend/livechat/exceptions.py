"""
Error taxonomy for the chat escalation subsystem.

Every domain error carries a stable ``code`` (sent to clients in HTTP error
bodies and push ``error`` frames) and the HTTP status it maps to.
"""
from typing import Any, Dict, Optional


class ChatError(Exception):
    """Base class for chat domain errors."""

    code: str = "chat_error"
    status_code: int = 400

    def __init__(self, message: str, session_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.session_id = session_id

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for HTTP detail / push error payloads."""
        data: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.session_id:
            data["sessionId"] = self.session_id
        return data


class ContactRequired(ChatError):
    """Escalation attempted without an authenticated identity or contact email."""

    code = "contact_required"
    status_code = 400

    def __init__(self, session_id: Optional[str] = None):
        super().__init__(
            "An email address is required before we can connect you to support",
            session_id=session_id
        )


class SessionNotFound(ChatError):
    """Operation against an unknown session id."""

    code = "session_not_found"
    status_code = 404

    def __init__(self, session_id: str):
        super().__init__(f"Chat session not found: {session_id}", session_id=session_id)


class SessionResolved(ChatError):
    """The session was closed; resolved sessions accept no new user traffic."""

    code = "session_resolved"
    status_code = 409

    def __init__(self, session_id: str):
        super().__init__(
            f"Chat session {session_id} has been resolved. Please start a new chat.",
            session_id=session_id
        )


class StaleAssignment(ChatError):
    """An admin acted on a session owned (or already resolved) by another admin."""

    code = "stale_assignment"
    status_code = 409

    def __init__(self, session_id: str, assigned_admin_id: Optional[str]):
        super().__init__(
            f"Chat session {session_id} is assigned to admin {assigned_admin_id}",
            session_id=session_id
        )
        self.assigned_admin_id = assigned_admin_id


class InvalidTransition(ChatError):
    """Requested state change is not allowed from the current status."""

    code = "invalid_transition"
    status_code = 409


class MessageRejected(ChatError):
    """Message text is empty or longer than the configured limit."""

    code = "invalid_message"
    status_code = 422


class TransportUnavailable(ChatError):
    """Push channel could not be opened or written to.

    Raised client-side only; callers recover by falling back to HTTP.
    """

    code = "transport_unavailable"
    status_code = 503


_ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (
        ContactRequired,
        SessionNotFound,
        SessionResolved,
        StaleAssignment,
        InvalidTransition,
        MessageRejected,
        TransportUnavailable,
    )
}


def error_from_payload(data: Dict[str, Any]) -> ChatError:
    """
    Rebuild a domain error from a ``{code, message, sessionId?}`` payload.

    Unknown codes come back as a plain ``ChatError`` carrying that code.
    """
    code = data.get("code") or ChatError.code
    error_cls = _ERRORS_BY_CODE.get(code, ChatError)
    error = error_cls.__new__(error_cls)
    ChatError.__init__(error, data.get("message") or code, session_id=data.get("sessionId"))
    if error_cls is ChatError:
        error.code = code
    if error_cls is StaleAssignment:
        error.assigned_admin_id = None
    return error


__all__ = [
    'ChatError',
    'ContactRequired',
    'SessionNotFound',
    'SessionResolved',
    'StaleAssignment',
    'InvalidTransition',
    'MessageRejected',
    'TransportUnavailable',
    'error_from_payload',
]
