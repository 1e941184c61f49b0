"""
Assignment lifecycle engine.

Each assignment (penugasan) moves through::

    pending -> submitted -> accepted | rejected

Only the student who owns an assignment may submit it, and only the teacher
who owns the parent task may grade it. Every transition is written as a single
conditional UPDATE keyed on the status that was read, so two concurrent
requests can never both move the same assignment.
"""
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, Optional, Union

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from exceptions import InvalidTransition, NotAuthorized, ValidationError
from models import MAX_SCORE, MIN_SCORE, Assignment, AssignmentStatus, CollectionMode, Task
from security import Actor

logger = structlog.get_logger(__name__)

GRADE_DECISIONS = (AssignmentStatus.ACCEPTED, AssignmentStatus.REJECTED)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def empty_statistics() -> Dict[str, int]:
    stats = {status.value: 0 for status in AssignmentStatus}
    stats["total"] = 0
    return stats


class AssignmentLifecycle:
    """Submit/grade transitions and per-task statistics over one session"""

    def __init__(self, session: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.session = session
        self.clock = clock

    async def _load(self, assignment_id: int) -> Optional[Assignment]:
        result = await self.session.execute(
            select(Assignment)
            .options(selectinload(Assignment.task))
            .where(Assignment.id == assignment_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _compare_and_set(self, assignment_id: int, expected: AssignmentStatus, values: dict) -> bool:
        """Write ``values`` only if the assignment still has ``expected`` status"""
        result = await self.session.execute(
            update(Assignment)
            .where(Assignment.id == assignment_id, Assignment.status == expected.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _apply(self, assignment: Assignment, expected: AssignmentStatus, values: dict) -> Assignment:
        if not await self._compare_and_set(assignment.id, expected, values):
            await self.session.rollback()
            logger.info("Transition lost to a concurrent update",
                        assignment_id=assignment.id, expected=expected.value)
            raise InvalidTransition("Status tugas sudah berubah, muat ulang halaman")

        await self.session.commit()
        await self.session.refresh(assignment)
        return assignment

    async def find_assignment(self, task_id: int, student_id: int) -> Optional[Assignment]:
        result = await self.session.execute(
            select(Assignment).where(Assignment.task_id == task_id, Assignment.student_id == student_id)
        )
        return result.scalar_one_or_none()

    async def submit(self, assignment_id: int, actor: Actor, submission_link: Optional[str] = None) -> Assignment:
        """Move a pending assignment to submitted on behalf of its student"""
        assignment = await self._load(assignment_id)
        if assignment is None or not actor.is_student or assignment.student_id != actor.id:
            logger.info("Submit denied", assignment_id=assignment_id, actor_id=actor.id)
            raise NotAuthorized()

        if assignment.status != AssignmentStatus.PENDING.value:
            raise InvalidTransition(f"Tugas tidak dapat dikirim dari status '{assignment.status}'")

        now = self.clock()
        values = {
            "status": AssignmentStatus.SUBMITTED.value,
            "submitted_at": now,
            "updated_at": now,
        }
        # In-person collection ignores any link the client sends
        if assignment.task.collection_mode == CollectionMode.LINK.value:
            link = (submission_link or "").strip()
            if not link:
                raise ValidationError("Link pengumpulan wajib diisi")
            values["submission_link"] = link

        assignment = await self._apply(assignment, AssignmentStatus.PENDING, values)
        logger.info("Assignment submitted", assignment_id=assignment.id,
                    task_id=assignment.task_id, student_id=actor.id)
        return assignment

    async def submit_for_task(self, task_id: int, actor: Actor, submission_link: Optional[str] = None) -> Assignment:
        """Submit the caller's own assignment for a task"""
        if not actor.is_student:
            raise NotAuthorized()
        assignment = await self.find_assignment(task_id, actor.id)
        if assignment is None:
            raise NotAuthorized()
        return await self.submit(assignment.id, actor, submission_link)

    async def grade(
        self,
        assignment_id: int,
        actor: Actor,
        decision: Union[str, AssignmentStatus],
        score: Optional[int] = None,
        note: Optional[str] = None,
    ) -> Assignment:
        """Accept or reject a submitted assignment on behalf of the task's teacher"""
        assignment = await self._load(assignment_id)
        if assignment is None or not actor.is_teacher or assignment.task.teacher_id != actor.id:
            logger.info("Grade denied", assignment_id=assignment_id, actor_id=actor.id)
            raise NotAuthorized()

        if assignment.status != AssignmentStatus.SUBMITTED.value:
            raise InvalidTransition(f"Tugas tidak dapat dinilai dari status '{assignment.status}'")

        decision = _parse_decision(decision)
        if decision == AssignmentStatus.ACCEPTED:
            _check_score(score)
        else:
            # Rejected work never carries a score
            score = None

        note = note.strip() if note else None
        values = {
            "status": decision.value,
            "score": score,
            "teacher_note": note or None,
            "updated_at": self.clock(),
        }

        assignment = await self._apply(assignment, AssignmentStatus.SUBMITTED, values)
        logger.info("Assignment graded", assignment_id=assignment.id, task_id=assignment.task_id,
                    decision=decision.value, score=score)
        return assignment

    async def compute_statistics(self, task_id: int) -> Dict[str, int]:
        """Count a task's assignments per status"""
        stats = await self.compute_statistics_many([task_id])
        return stats[task_id]

    async def compute_statistics_many(self, task_ids: Iterable[int]) -> Dict[int, Dict[str, int]]:
        task_ids = list(task_ids)
        stats = {task_id: empty_statistics() for task_id in task_ids}
        if not task_ids:
            return stats

        result = await self.session.execute(
            select(Assignment.task_id, Assignment.status, func.count(Assignment.id))
            .where(Assignment.task_id.in_(task_ids))
            .group_by(Assignment.task_id, Assignment.status)
        )
        for task_id, status, count in result.all():
            stats[task_id][status] = count
            stats[task_id]["total"] += count
        return stats

    async def get_statistics(self, task_id: int, actor: Actor) -> Dict[str, int]:
        """Statistics for the teacher who owns the task"""
        task = await self.session.get(Task, task_id)
        if task is None or not actor.is_teacher or task.teacher_id != actor.id:
            raise NotAuthorized()
        return await self.compute_statistics(task_id)


def _parse_decision(decision) -> AssignmentStatus:
    try:
        parsed = AssignmentStatus(decision)
    except ValueError:
        parsed = None
    if parsed not in GRADE_DECISIONS:
        raise ValidationError("Keputusan harus 'accepted' atau 'rejected'")
    return parsed


def _check_score(score) -> None:
    if score is None:
        raise ValidationError("Nilai wajib diisi untuk tugas yang diterima")
    if isinstance(score, bool) or not isinstance(score, int):
        raise ValidationError("Nilai harus berupa bilangan bulat")
    if not MIN_SCORE <= score <= MAX_SCORE:
        raise ValidationError(f"Nilai harus antara {MIN_SCORE} dan {MAX_SCORE}")
