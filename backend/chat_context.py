"""
Builds the outbound chat prompt, optionally primed with one task's details.
"""
import re
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from config import get_settings
from models import CollectionMode, Task, as_utc

CONTEXT_OPEN = "[KONTEKS TUGAS]"
CONTEXT_CLOSE = "[/KONTEKS TUGAS]"

# Fixed table so the rendered deadline does not depend on the process locale
MONTH_NAMES = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
               "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

COLLECTION_LABELS = {
    CollectionMode.LINK.value: "Link",
    CollectionMode.IN_PERSON.value: "Langsung",
}

_MARKER_RE = re.compile(r"\[(\s*/?\s*KONTEKS\s+TUGAS\s*)\]", re.IGNORECASE)


@dataclass(frozen=True)
class ChatContext:
    prompt: str
    task_id: Optional[int] = None

    @property
    def context_used(self) -> bool:
        return self.task_id is not None


def format_deadline(value: Optional[datetime], tz: Optional[tzinfo] = None) -> str:
    """Render as ``DD Mon YYYY HH:MM`` in ``tz`` (UTC by default), e.g. ``01 May 2024 10:00``"""
    if value is None:
        return "-"
    value = as_utc(value).astimezone(tz or timezone.utc)
    return f"{value.day:02d} {MONTH_NAMES[value.month - 1]} {value.year} {value.hour:02d}:{value.minute:02d}"


def neutralize_markers(text: Optional[str]) -> str:
    """Keep task fields from opening or closing the context block"""
    if not text:
        return "-"
    return _MARKER_RE.sub(r"(\1)", text)


def render_task_context(task: Task, message: str) -> str:
    teacher_name = task.teacher.name if task.teacher is not None else None
    mode = COLLECTION_LABELS.get(task.collection_mode, task.collection_mode)

    lines = [
        CONTEXT_OPEN,
        f"Judul: {neutralize_markers(task.title)}",
        f"Deskripsi: {neutralize_markers(task.description)}",
        f"Guru: {neutralize_markers(teacher_name)}",
        f"Tipe Pengumpulan: {mode}",
        f"Deadline: {format_deadline(task.deadline, get_settings().display_tzinfo)}",
        CONTEXT_CLOSE,
        "",
        f"Pertanyaan siswa: {message}",
    ]
    return "\n".join(lines)


async def assemble_context(session: AsyncSession, message: str, task_id: Optional[int] = None) -> ChatContext:
    if task_id is None:
        return ChatContext(prompt=message)

    result = await session.execute(
        select(Task).options(selectinload(Task.teacher)).where(Task.id == task_id)
    )
    task = result.scalar_one_or_none()
    if task is None:
        return ChatContext(prompt=message)

    return ChatContext(prompt=render_task_context(task, message), task_id=task.id)


async def build_prompt(session: AsyncSession, message: str, task_id: Optional[int] = None) -> str:
    """The user message, wrapped in task context when the task exists"""
    context = await assemble_context(session, message, task_id)
    return context.prompt
