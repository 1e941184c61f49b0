from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, StrictInt, field_validator
from typing import Any, Dict, List, Optional, Union
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_session
from lifecycle import AssignmentLifecycle
from models import CollectionMode, TargetMode
from security import Actor, get_current_actor
import task_service

router = APIRouter()


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    name: str
    phone: Optional[str] = None
    class_name: Optional[str] = None
    major: Optional[str] = None


class ClassGroup(BaseModel):
    class_name: str
    major: str


class StatisticsResponse(BaseModel):
    pending: int
    submitted: int
    accepted: int
    rejected: int
    total: int


class TaskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: Optional[str] = None
    teacher_id: int
    teacher: Optional[UserSummary] = None
    target_mode: str
    target_ids: List[Any]
    collection_mode: str
    starts_at: Optional[datetime] = None
    deadline: Optional[datetime] = None
    file_ref: Optional[str] = None
    show_scores: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AssignmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    task_id: int
    student_id: int
    status: str
    submission_link: Optional[str] = None
    submitted_at: Optional[datetime] = None
    score: Optional[int] = None
    teacher_note: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AssignmentWithStudent(AssignmentResponse):
    student: UserSummary


class TeacherTaskItem(BaseModel):
    task: TaskResponse
    statistics: StatisticsResponse


class StudentTaskItem(BaseModel):
    task: TaskResponse
    assignment: AssignmentResponse


class TaskDetailResponse(BaseModel):
    task: TaskResponse
    statistics: StatisticsResponse
    assignments: List[AssignmentWithStudent]


class TaskCreateRequest(BaseModel):
    title: str
    description: Optional[str] = None
    target_mode: TargetMode
    target_ids: List[Union[int, ClassGroup]]
    collection_mode: CollectionMode
    starts_at: Optional[datetime] = None
    deadline: Optional[datetime] = None
    file_ref: Optional[str] = None
    show_scores: bool = False

    @field_validator('title')
    @classmethod
    def validate_title(cls, v):
        if not v or not v.strip():
            raise ValueError("Title must be a non-empty string")
        return v.strip()


class TaskUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    collection_mode: Optional[CollectionMode] = None
    starts_at: Optional[datetime] = None
    deadline: Optional[datetime] = None
    file_ref: Optional[str] = None
    show_scores: Optional[bool] = None


class SubmitRequest(BaseModel):
    submission_link: Optional[str] = None


class GradeRequest(BaseModel):
    decision: str
    score: Optional[StrictInt] = None
    note: Optional[str] = None


def _student_item(item: Dict[str, Any]) -> StudentTaskItem:
    # Score is replaced by what the task lets students see
    assignment = AssignmentResponse.model_validate(item["assignment"]).model_copy(update={"score": item["score"]})
    return StudentTaskItem(task=TaskResponse.model_validate(item["task"]), assignment=assignment)


@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint"""
    return {"status": "healthy", "service": "tasks"}


@router.get("/", response_model=Union[List[TeacherTaskItem], List[StudentTaskItem]])
async def get_tasks(actor: Actor = Depends(get_current_actor), db: AsyncSession = Depends(get_session)):
    items = await task_service.list_tasks(db, actor)
    if actor.is_teacher:
        return [
            TeacherTaskItem(task=TaskResponse.model_validate(item["task"]),
                            statistics=StatisticsResponse(**item["statistics"]))
            for item in items
        ]
    return [_student_item(item) for item in items]


@router.post("/", response_model=TeacherTaskItem, status_code=201)
async def create_task(
    task: TaskCreateRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    target_ids = [t.model_dump() if isinstance(t, ClassGroup) else t for t in task.target_ids]
    new_task, stats = await task_service.create_task(
        db,
        actor,
        title=task.title,
        description=task.description,
        target_mode=task.target_mode.value,
        target_ids=target_ids,
        collection_mode=task.collection_mode.value,
        starts_at=task.starts_at,
        deadline=task.deadline,
        file_ref=task.file_ref,
        show_scores=task.show_scores,
    )
    return TeacherTaskItem(task=TaskResponse.model_validate(new_task), statistics=StatisticsResponse(**stats))


@router.get("/{task_id}", response_model=TaskDetailResponse)
async def get_task_detail(task_id: int, actor: Actor = Depends(get_current_actor),
                          db: AsyncSession = Depends(get_session)):
    detail = await task_service.get_task_detail(db, task_id, actor)
    return TaskDetailResponse(
        task=TaskResponse.model_validate(detail["task"]),
        statistics=StatisticsResponse(**detail["statistics"]),
        assignments=[AssignmentWithStudent.model_validate(a) for a in detail["assignments"]],
    )


@router.put("/{task_id}", response_model=TaskResponse)
async def update_task(
    task_id: int,
    changes: TaskUpdateRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    data = changes.model_dump(exclude_unset=True)
    if data.get("collection_mode") is not None:
        data["collection_mode"] = data["collection_mode"].value
    task = await task_service.update_task(db, task_id, actor, data)
    return TaskResponse.model_validate(task)


@router.get("/{task_id}/statistics", response_model=StatisticsResponse)
async def get_statistics(task_id: int, actor: Actor = Depends(get_current_actor),
                         db: AsyncSession = Depends(get_session)):
    stats = await AssignmentLifecycle(db).get_statistics(task_id, actor)
    return StatisticsResponse(**stats)


@router.get("/{task_id}/pending", response_model=List[AssignmentWithStudent])
async def get_pending_submissions(task_id: int, actor: Actor = Depends(get_current_actor),
                                  db: AsyncSession = Depends(get_session)):
    assignments = await task_service.pending_submissions(db, task_id, actor)
    return [AssignmentWithStudent.model_validate(a) for a in assignments]


@router.get("/{task_id}/my-assignment", response_model=StudentTaskItem)
async def get_my_assignment(task_id: int, actor: Actor = Depends(get_current_actor),
                            db: AsyncSession = Depends(get_session)):
    item = await task_service.my_assignment(db, task_id, actor)
    return _student_item(item)


@router.post("/{task_id}/submit", response_model=AssignmentResponse)
async def submit_task(
    task_id: int,
    payload: SubmitRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    assignment = await AssignmentLifecycle(db).submit_for_task(task_id, actor, payload.submission_link)
    return AssignmentResponse.model_validate(assignment)


@router.post("/assignments/{assignment_id}/submit", response_model=AssignmentResponse)
async def submit_assignment(
    assignment_id: int,
    payload: SubmitRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    assignment = await AssignmentLifecycle(db).submit(assignment_id, actor, payload.submission_link)
    return AssignmentResponse.model_validate(assignment)


@router.put("/assignments/{assignment_id}/grade", response_model=AssignmentResponse)
async def grade_assignment(
    assignment_id: int,
    payload: GradeRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    assignment = await AssignmentLifecycle(db).grade(
        assignment_id, actor, payload.decision, score=payload.score, note=payload.note
    )
    return AssignmentResponse.model_validate(assignment)
