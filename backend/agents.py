import asyncio
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional

import structlog
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage
from langchain_openai import ChatOpenAI
from sqlalchemy.ext.asyncio import AsyncSession

from chat_context import assemble_context
from config import get_settings
from exceptions import UpstreamError, ValidationError

logger = structlog.get_logger(__name__)

PERSONA_PROMPT = """Kamu adalah Artemis, asisten AI untuk sistem pendidikan ArtemisSMEA.
Tugasmu adalah membantu siswa memahami materi dan tugas yang diberikan guru.

Prinsip yang harus kamu ikuti:
1. Jelaskan dengan bahasa yang mudah dipahami siswa Indonesia
2. Gunakan pendekatan interaktif, ajukan pertanyaan balik untuk memastikan pemahaman
3. Berikan contoh dan analogi yang relevan
4. JANGAN memberikan jawaban langsung untuk tugas, bimbing siswa menemukan jawabannya sendiri
5. Motivasi dan apresiasi usaha siswa
6. Jika siswa bertanya di luar konteks pembelajaran, arahkan kembali ke topik pendidikan dengan sopan

Ingat: tujuanmu adalah membuat siswa MENGERTI, bukan sekadar memberikan jawaban."""

PERSONA_ACKNOWLEDGEMENT = "Baik, saya siap membantu siswa ArtemisSMEA dengan pendekatan pembelajaran interaktif!"


@dataclass(frozen=True)
class ChatReply:
    text: str
    context_used: bool


class StudyAssistantAgent:
    """Stateless tutor: every call is a fresh persona seed plus one user turn"""

    def __init__(self, llm=None, timeout: Optional[float] = None):
        settings = get_settings()
        self.timeout = timeout or settings.chat_timeout
        self.max_message_length = settings.chat_max_message_length

        if llm is None and settings.openai_api_key:
            llm = ChatOpenAI(
                model=settings.chat_model,
                api_key=settings.openai_api_key,
                temperature=settings.chat_temperature,
                max_tokens=settings.chat_max_tokens,
                timeout=self.timeout,
                max_retries=0,
            )
        self.llm = llm

    def seed_history(self) -> List[BaseMessage]:
        return [
            HumanMessage(content=PERSONA_PROMPT),
            AIMessage(content=PERSONA_ACKNOWLEDGEMENT),
        ]

    async def dispatch(self, prompt: str) -> str:
        """Send one prompt to the chat model and return its text unmodified"""
        if self.llm is None:
            raise UpstreamError(detail="OPENAI_API_KEY is not configured")

        messages = self.seed_history() + [HumanMessage(content=prompt)]
        try:
            response = await asyncio.wait_for(self.llm.ainvoke(messages), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error("Chat model timed out", timeout=self.timeout)
            raise UpstreamError(detail=f"Chat model did not answer within {self.timeout}s")
        except Exception as e:
            logger.error("Chat model request failed", error=str(e))
            raise UpstreamError(detail=str(e)) from e

        return _response_text(response)

    def validate_message(self, message: Optional[str]) -> str:
        if message is None or not message.strip():
            raise ValidationError("Pesan tidak boleh kosong")
        if len(message) > self.max_message_length:
            raise ValidationError(f"Pesan maksimal {self.max_message_length} karakter")
        return message

    async def chat(self, session: AsyncSession, message: str, task_id: Optional[int] = None) -> ChatReply:
        message = self.validate_message(message)
        context = await assemble_context(session, message, task_id)

        logger.info("Dispatching chat message", task_id=task_id, context_used=context.context_used,
                    prompt_length=len(context.prompt))
        text = await self.dispatch(context.prompt)
        return ChatReply(text=text, context_used=context.context_used)


def _response_text(response) -> str:
    content = getattr(response, "content", response)
    if isinstance(content, str):
        return content

    # Some providers answer with a list of content blocks
    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


@lru_cache()
def get_study_assistant() -> StudyAssistantAgent:
    """Shared assistant instance, overridable as a FastAPI dependency"""
    return StudyAssistantAgent()
