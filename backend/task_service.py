"""
Task management: creation with bulk assignment fan-out, teacher and student
views, and the student directory used to pick targets.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from exceptions import NotAuthorized, NotFound, ValidationError
from lifecycle import AssignmentLifecycle
from models import Assignment, AssignmentStatus, CollectionMode, Role, TargetMode, Task, User, as_utc
from security import Actor, require_student, require_teacher, sanitize_text_input

logger = structlog.get_logger(__name__)

UPDATABLE_FIELDS = ("title", "description", "starts_at", "deadline", "file_ref", "show_scores")


def _enum_value(enum_cls, value, label: str) -> str:
    try:
        return enum_cls(value).value
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"{label} harus salah satu dari: {allowed}")


def _check_dates(starts_at: Optional[datetime], deadline: Optional[datetime]) -> None:
    if starts_at and deadline and as_utc(starts_at) > as_utc(deadline):
        raise ValidationError("Tanggal mulai tidak boleh setelah deadline")


def _normalize_targets(target_mode: str, target_ids: Sequence[Any]) -> List[Any]:
    if not target_ids:
        raise ValidationError("Target tugas tidak boleh kosong")

    if target_mode == TargetMode.INDIVIDUAL.value:
        ids = []
        for value in target_ids:
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValidationError("Target siswa harus berupa ID siswa")
            if value not in ids:
                ids.append(value)
        return ids

    groups = []
    for value in target_ids:
        if not isinstance(value, dict) or not value.get("class_name") or not value.get("major"):
            raise ValidationError("Target kelas harus berisi class_name dan major")
        group = {"class_name": value["class_name"], "major": value["major"]}
        if group not in groups:
            groups.append(group)
    return groups


async def resolve_students(session: AsyncSession, target_mode: str, targets: List[Any]) -> List[User]:
    """Expand a task's targets into the students who receive an assignment"""
    query = select(User).where(User.role == Role.STUDENT.value).order_by(User.id)

    if target_mode == TargetMode.INDIVIDUAL.value:
        result = await session.execute(query.where(User.id.in_(targets)))
        students = list(result.scalars().all())
        missing = sorted(set(targets) - {student.id for student in students})
        if missing:
            raise ValidationError(f"Siswa tidak ditemukan: {', '.join(str(i) for i in missing)}")
        return students

    conditions = [
        and_(User.class_name == group["class_name"], User.major == group["major"])
        for group in targets
    ]
    result = await session.execute(query.where(or_(*conditions)))
    students = list(result.scalars().all())
    if not students:
        raise ValidationError("Tidak ada siswa di kelas yang dipilih")
    return students


async def _owned_task(session: AsyncSession, task_id: int, actor: Actor, with_assignments: bool = False) -> Task:
    options = [selectinload(Task.teacher)]
    if with_assignments:
        options.append(selectinload(Task.assignments).selectinload(Assignment.student))

    result = await session.execute(
        select(Task).options(*options).where(Task.id == task_id).execution_options(populate_existing=True)
    )
    task = result.scalar_one_or_none()
    if task is None or not actor.is_teacher or task.teacher_id != actor.id:
        raise NotAuthorized()
    return task


async def create_task(
    session: AsyncSession,
    actor: Actor,
    title: str,
    target_mode: str,
    target_ids: Sequence[Any],
    collection_mode: str,
    description: Optional[str] = None,
    starts_at: Optional[datetime] = None,
    deadline: Optional[datetime] = None,
    file_ref: Optional[str] = None,
    show_scores: bool = False,
) -> Tuple[Task, Dict[str, int]]:
    """Create a task and one pending assignment per targeted student"""
    require_teacher(actor)

    title = sanitize_text_input(title)
    if not title:
        raise ValidationError("Judul tugas tidak boleh kosong")
    target_mode = _enum_value(TargetMode, target_mode, "Target")
    collection_mode = _enum_value(CollectionMode, collection_mode, "Tipe pengumpulan")
    starts_at, deadline = as_utc(starts_at), as_utc(deadline)
    _check_dates(starts_at, deadline)

    targets = _normalize_targets(target_mode, target_ids)
    students = await resolve_students(session, target_mode, targets)

    task = Task(
        title=title,
        description=description or None,
        teacher_id=actor.id,
        target_mode=target_mode,
        target_ids=targets,
        collection_mode=collection_mode,
        starts_at=starts_at,
        deadline=deadline,
        file_ref=file_ref or None,
        show_scores=show_scores,
    )
    session.add(task)
    await session.flush()

    session.add_all([
        Assignment(task_id=task.id, student_id=student.id, status=AssignmentStatus.PENDING.value)
        for student in students
    ])
    await session.commit()

    logger.info("Task created", task_id=task.id, teacher_id=actor.id, assignments=len(students))
    task = await _owned_task(session, task.id, actor)
    stats = await AssignmentLifecycle(session).compute_statistics(task.id)
    return task, stats


async def update_task(session: AsyncSession, task_id: int, actor: Actor, changes: Dict[str, Any]) -> Task:
    """Update editable task fields. Collection mode is fixed at creation."""
    task = await _owned_task(session, task_id, actor)

    if "collection_mode" in changes and changes["collection_mode"] is not None:
        if _enum_value(CollectionMode, changes["collection_mode"], "Tipe pengumpulan") != task.collection_mode:
            raise ValidationError("Tipe pengumpulan tidak dapat diubah setelah tugas dibuat")

    if "show_scores" in changes and changes["show_scores"] is None:
        raise ValidationError("show_scores tidak boleh kosong")

    unknown = set(changes) - set(UPDATABLE_FIELDS) - {"collection_mode"}
    if unknown:
        raise ValidationError(f"Field tidak dapat diubah: {', '.join(sorted(unknown))}")

    if "title" in changes:
        title = sanitize_text_input(changes["title"])
        if not title:
            raise ValidationError("Judul tugas tidak boleh kosong")
        changes = dict(changes, title=title)
    for field in ("starts_at", "deadline"):
        if field in changes:
            changes = dict(changes, **{field: as_utc(changes[field])})

    _check_dates(changes.get("starts_at", task.starts_at), changes.get("deadline", task.deadline))

    for field in UPDATABLE_FIELDS:
        if field in changes:
            setattr(task, field, changes[field])
    await session.commit()

    logger.info("Task updated", task_id=task.id, fields=sorted(set(changes) & set(UPDATABLE_FIELDS)))
    return await _owned_task(session, task.id, actor)


def visible_score(assignment: Assignment, task: Task) -> Optional[int]:
    """The score as a student may see it"""
    return assignment.score if task.show_scores else None


async def list_tasks(session: AsyncSession, actor: Actor) -> List[Dict[str, Any]]:
    """Teacher: own tasks with statistics. Student: received tasks with own status."""
    if actor.is_teacher:
        result = await session.execute(
            select(Task).options(selectinload(Task.teacher))
            .where(Task.teacher_id == actor.id)
            .order_by(Task.created_at.desc(), Task.id.desc())
        )
        tasks = list(result.scalars().all())
        stats = await AssignmentLifecycle(session).compute_statistics_many(task.id for task in tasks)
        return [{"task": task, "statistics": stats[task.id]} for task in tasks]

    result = await session.execute(
        select(Assignment)
        .options(selectinload(Assignment.task).selectinload(Task.teacher))
        .where(Assignment.student_id == actor.id)
        .order_by(Assignment.id.desc())
    )
    return [
        {"task": assignment.task, "assignment": assignment,
         "score": visible_score(assignment, assignment.task)}
        for assignment in result.scalars().all()
    ]


async def get_task_detail(session: AsyncSession, task_id: int, actor: Actor) -> Dict[str, Any]:
    task = await _owned_task(session, task_id, actor, with_assignments=True)
    stats = await AssignmentLifecycle(session).compute_statistics(task.id)
    return {"task": task, "statistics": stats, "assignments": list(task.assignments)}


async def pending_submissions(session: AsyncSession, task_id: int, actor: Actor) -> List[Assignment]:
    """Submitted assignments awaiting the teacher's review"""
    task = await _owned_task(session, task_id, actor, with_assignments=True)
    return [a for a in task.assignments if a.status == AssignmentStatus.SUBMITTED.value]


async def my_assignment(session: AsyncSession, task_id: int, actor: Actor) -> Dict[str, Any]:
    require_student(actor)
    result = await session.execute(
        select(Assignment)
        .options(selectinload(Assignment.task).selectinload(Task.teacher))
        .where(Assignment.task_id == task_id, Assignment.student_id == actor.id)
    )
    assignment = result.scalar_one_or_none()
    if assignment is None:
        raise NotAuthorized()
    return {"task": assignment.task, "assignment": assignment,
            "score": visible_score(assignment, assignment.task)}


async def list_students(session: AsyncSession, actor: Actor) -> List[User]:
    require_teacher(actor)
    result = await session.execute(
        select(User).where(User.role == Role.STUDENT.value)
        .order_by(User.class_name, User.major, User.name)
    )
    return list(result.scalars().all())


async def list_classes(session: AsyncSession, actor: Actor) -> List[Dict[str, Any]]:
    require_teacher(actor)
    result = await session.execute(
        select(User.class_name, User.major, func.count(User.id))
        .where(User.role == Role.STUDENT.value, User.class_name.is_not(None))
        .group_by(User.class_name, User.major)
        .order_by(User.class_name, User.major)
    )
    return [
        {"class_name": class_name, "major": major, "student_count": count}
        for class_name, major, count in result.all()
    ]


async def students_by_class(session: AsyncSession, actor: Actor, class_name: str, major: str) -> List[User]:
    require_teacher(actor)
    result = await session.execute(
        select(User).where(User.role == Role.STUDENT.value, User.class_name == class_name, User.major == major)
        .order_by(User.name)
    )
    students = list(result.scalars().all())
    if not students:
        raise NotFound(f"Kelas {class_name} {major} tidak ditemukan")
    return students
