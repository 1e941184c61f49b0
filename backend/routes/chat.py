from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, field_validator
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from agents import StudyAssistantAgent, get_study_assistant
from config import get_settings
from database import get_session
from exceptions import TugasError
from security import Actor, get_current_actor

logger = structlog.get_logger(__name__)
settings = get_settings()

router = APIRouter()


class ChatRequest(BaseModel):
    message: str
    task_id: Optional[int] = None

    @field_validator('message')
    @classmethod
    def validate_message(cls, v):
        if not v or not v.strip():
            raise ValueError("Message cannot be empty")
        # Kept verbatim; it is forwarded to the model unaltered
        return v


class ChatResponse(BaseModel):
    text: str
    context_used: bool
    success: bool


@router.post("/", response_model=ChatResponse)
async def chat(
    request: ChatRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
    assistant: StudyAssistantAgent = Depends(get_study_assistant),
):
    """
    Ask the study assistant a question, optionally about one task
    """
    try:
        logger.info("Chat request", actor_id=actor.id, task_id=request.task_id)
        reply = await assistant.chat(db, request.message, request.task_id)
        return ChatResponse(text=reply.text, context_used=reply.context_used, success=True)

    except TugasError:
        raise
    except Exception as e:
        logger.error("Chat error", error=str(e))
        if settings.debug:
            raise HTTPException(status_code=500, detail=f"Error processing chat: {str(e)}")
        raise HTTPException(status_code=500, detail="Error processing chat")


@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint"""
    return {"status": "healthy", "service": "chat"}
