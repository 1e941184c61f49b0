from fastapi import APIRouter, Depends
from pydantic import BaseModel
from typing import List
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_session
from routes.tasks import UserSummary
from security import Actor, get_current_actor
import task_service

router = APIRouter()


class ClassInfo(BaseModel):
    class_name: str
    major: str
    student_count: int


@router.get("/", response_model=List[UserSummary])
async def get_students(actor: Actor = Depends(get_current_actor), db: AsyncSession = Depends(get_session)):
    students = await task_service.list_students(db, actor)
    return [UserSummary.model_validate(s) for s in students]


@router.get("/classes", response_model=List[ClassInfo])
async def get_classes(actor: Actor = Depends(get_current_actor), db: AsyncSession = Depends(get_session)):
    classes = await task_service.list_classes(db, actor)
    return [ClassInfo(**c) for c in classes]


@router.get("/by-class", response_model=List[UserSummary])
async def get_students_by_class(
    class_name: str,
    major: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    students = await task_service.students_by_class(db, actor, class_name, major)
    return [UserSummary.model_validate(s) for s in students]
