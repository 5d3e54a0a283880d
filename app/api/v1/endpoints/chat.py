"""
Chat Endpoints
==============
Conversational booking assistant.

Routes:
- POST /api/v1/chat/message - Process one user turn
- GET /api/v1/chat/session/{session_id} - Get session state
- DELETE /api/v1/chat/session/{session_id} - Delete session
"""

import logging
import uuid
from typing import Dict

from fastapi import APIRouter, Depends

from app.api.v1.dependencies import ServiceContainer, get_container
from app.conversation.models import ConversationResponse, MessageRole
from schemas.chat import ChatMessageRequest, SessionStateResponse
from services.exceptions import NotFoundError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/chat", tags=["chat"])


@router.post("/message", response_model=ConversationResponse)
async def send_message(
    request: ChatMessageRequest,
    container: ServiceContainer = Depends(get_container),
) -> ConversationResponse:
    session_id = request.session_id or f"sess_{uuid.uuid4().hex[:12]}"
    logger.info(f"[Chat] Request: session={session_id}")

    return await container.orchestrator.handle_message(session_id, request.message, user_id=request.user_id)


@router.get("/session/{session_id}", response_model=SessionStateResponse)
async def get_session_state(
    session_id: str,
    container: ServiceContainer = Depends(get_container),
) -> SessionStateResponse:
    """Get current session state."""
    await container.sessions.load(session_id)
    session = container.sessions.require(session_id)

    booking_step = None
    for message in reversed(session.conversation_history):
        if message.role == MessageRole.ASSISTANT:
            booking_step = message.booking_step
            break

    return SessionStateResponse(
        session_id=session.session_id,
        user_id=session.user_id,
        current_query=session.current_query,
        search_results=session.search_results,
        selected_flight=session.selected_flight,
        preferences=session.preferences,
        conversation_history=session.conversation_history,
        booking_step=booking_step,
        created_at=session.created_at,
        last_activity=session.last_activity,
    )


@router.delete("/session/{session_id}")
async def delete_session(
    session_id: str,
    container: ServiceContainer = Depends(get_container),
) -> Dict[str, str]:
    """Delete session."""
    if not await container.sessions.delete(session_id):
        raise NotFoundError("Session")

    return {"status": "deleted", "session_id": session_id}
