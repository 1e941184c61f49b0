"""
Tests for the assignment lifecycle engine: submit, grade, statistics.
"""
import pytest

from conftest import FIXED_NOW, assignment_for
from exceptions import InvalidTransition, NotAuthorized, ValidationError
from lifecycle import AssignmentLifecycle
from models import AssignmentStatus


class TestSubmit:
    async def test_link_task_stores_link_and_time(self, session, lifecycle, link_task, users, actors):
        assignment = await assignment_for(session, link_task, users["andi"])

        result = await lifecycle.submit(assignment.id, actors["andi"], "  https://drive.example.com/x  ")

        assert result.status == AssignmentStatus.SUBMITTED.value
        assert result.submission_link == "https://drive.example.com/x"
        assert result.submitted_at == FIXED_NOW
        assert result.score is None

    @pytest.mark.parametrize("link", [None, "", "   "])
    async def test_link_task_requires_link(self, session, lifecycle, link_task, users, actors, link):
        assignment = await assignment_for(session, link_task, users["andi"])

        with pytest.raises(ValidationError):
            await lifecycle.submit(assignment.id, actors["andi"], link)

        await session.refresh(assignment)
        assert assignment.status == AssignmentStatus.PENDING.value
        assert assignment.submitted_at is None

    async def test_in_person_task_needs_no_link(self, session, lifecycle, in_person_task, users, actors):
        assignment = await assignment_for(session, in_person_task, users["budi"])

        result = await lifecycle.submit(assignment.id, actors["budi"])

        assert result.status == AssignmentStatus.SUBMITTED.value
        assert result.submitted_at == FIXED_NOW

    async def test_in_person_task_ignores_link(self, session, lifecycle, in_person_task, users, actors):
        assignment = await assignment_for(session, in_person_task, users["budi"])

        result = await lifecycle.submit(assignment.id, actors["budi"], "https://ignored.example.com")

        assert result.submission_link is None

    async def test_other_student_is_denied(self, session, lifecycle, link_task, users, actors):
        assignment = await assignment_for(session, link_task, users["andi"])

        with pytest.raises(NotAuthorized):
            await lifecycle.submit(assignment.id, actors["budi"], "https://drive.example.com/x")

    async def test_teacher_cannot_submit(self, session, lifecycle, link_task, users, actors):
        assignment = await assignment_for(session, link_task, users["andi"])

        with pytest.raises(NotAuthorized):
            await lifecycle.submit(assignment.id, actors["siti"], "https://drive.example.com/x")

    async def test_missing_assignment_looks_like_denial(self, lifecycle, users, actors):
        with pytest.raises(NotAuthorized) as exc_info:
            await lifecycle.submit(9999, actors["andi"], "https://drive.example.com/x")
        assert exc_info.value.message == NotAuthorized().message

    async def test_submitting_twice_is_invalid(self, lifecycle, submitted_assignment, actors):
        with pytest.raises(InvalidTransition):
            await lifecycle.submit(submitted_assignment.id, actors["andi"], "https://drive.example.com/y")

    async def test_rejected_assignment_cannot_be_resubmitted(self, lifecycle, submitted_assignment, actors):
        await lifecycle.grade(submitted_assignment.id, actors["siti"], "rejected")

        with pytest.raises(InvalidTransition):
            await lifecycle.submit(submitted_assignment.id, actors["andi"], "https://drive.example.com/y")

    async def test_submit_for_task_resolves_own_assignment(self, lifecycle, link_task, users, actors):
        result = await lifecycle.submit_for_task(link_task.id, actors["budi"], "https://drive.example.com/b")

        assert result.student_id == users["budi"].id
        assert result.status == AssignmentStatus.SUBMITTED.value

    async def test_submit_for_task_without_assignment(self, lifecycle, link_task, actors):
        with pytest.raises(NotAuthorized):
            await lifecycle.submit_for_task(link_task.id, actors["citra"], "https://drive.example.com/c")


class TestGrade:
    @pytest.mark.parametrize("score", [0, 75, 100])
    async def test_accept_stores_score_and_note(self, lifecycle, submitted_assignment, actors, score):
        result = await lifecycle.grade(submitted_assignment.id, actors["siti"], "accepted",
                                       score=score, note=" Bagus ")

        assert result.status == AssignmentStatus.ACCEPTED.value
        assert result.score == score
        assert result.teacher_note == "Bagus"

    @pytest.mark.parametrize("score", [None, -1, 101])
    async def test_accept_requires_score_in_range(self, session, lifecycle, submitted_assignment, actors, score):
        with pytest.raises(ValidationError):
            await lifecycle.grade(submitted_assignment.id, actors["siti"], "accepted", score=score)

        await session.refresh(submitted_assignment)
        assert submitted_assignment.status == AssignmentStatus.SUBMITTED.value
        assert submitted_assignment.score is None

    async def test_accept_rejects_non_integer_score(self, lifecycle, submitted_assignment, actors):
        with pytest.raises(ValidationError):
            await lifecycle.grade(submitted_assignment.id, actors["siti"], "accepted", score=True)

    async def test_reject_discards_score(self, lifecycle, submitted_assignment, actors):
        result = await lifecycle.grade(submitted_assignment.id, actors["siti"], AssignmentStatus.REJECTED,
                                       score=90, note="Link tidak bisa dibuka")

        assert result.status == AssignmentStatus.REJECTED.value
        assert result.score is None
        assert result.teacher_note == "Link tidak bisa dibuka"

    @pytest.mark.parametrize("decision", ["pending", "submitted", "done", ""])
    async def test_unknown_decision(self, lifecycle, submitted_assignment, actors, decision):
        with pytest.raises(ValidationError):
            await lifecycle.grade(submitted_assignment.id, actors["siti"], decision, score=80)

    async def test_grade_pending_is_invalid(self, session, lifecycle, link_task, users, actors):
        assignment = await assignment_for(session, link_task, users["budi"])

        with pytest.raises(InvalidTransition):
            await lifecycle.grade(assignment.id, actors["siti"], "accepted", score=80)

    @pytest.mark.parametrize("first", ["accepted", "rejected"])
    async def test_grade_terminal_is_invalid(self, lifecycle, submitted_assignment, actors, first):
        await lifecycle.grade(submitted_assignment.id, actors["siti"], first, score=70)

        with pytest.raises(InvalidTransition):
            await lifecycle.grade(submitted_assignment.id, actors["siti"], "accepted", score=80)

    async def test_status_is_checked_before_payload(self, lifecycle, submitted_assignment, actors):
        await lifecycle.grade(submitted_assignment.id, actors["siti"], "accepted", score=70)

        with pytest.raises(InvalidTransition):
            await lifecycle.grade(submitted_assignment.id, actors["siti"], "accepted", score=101)

    async def test_other_teacher_is_denied(self, lifecycle, submitted_assignment, actors):
        with pytest.raises(NotAuthorized):
            await lifecycle.grade(submitted_assignment.id, actors["joko"], "accepted", score=80)

    async def test_student_is_denied(self, lifecycle, submitted_assignment, actors):
        with pytest.raises(NotAuthorized):
            await lifecycle.grade(submitted_assignment.id, actors["andi"], "accepted", score=100)


class TestConcurrentGrading:
    async def test_stale_read_loses(self, session_factory, submitted_assignment, actors):
        async with session_factory() as first, session_factory() as second:
            winner = AssignmentLifecycle(first)
            loser = AssignmentLifecycle(second)

            stale = await loser._load(submitted_assignment.id)
            assert stale.status == AssignmentStatus.SUBMITTED.value

            await winner.grade(submitted_assignment.id, actors["siti"], "accepted", score=88)

            with pytest.raises(InvalidTransition):
                await loser._apply(stale, AssignmentStatus.SUBMITTED,
                                   {"status": AssignmentStatus.REJECTED.value, "score": None})

            fresh = await loser._load(submitted_assignment.id)
            assert fresh.status == AssignmentStatus.ACCEPTED.value
            assert fresh.score == 88

    async def test_compare_and_set_only_matches_expected_status(self, session, lifecycle, submitted_assignment):
        assert not await lifecycle._compare_and_set(
            submitted_assignment.id, AssignmentStatus.PENDING, {"status": AssignmentStatus.SUBMITTED.value}
        )
        assert await lifecycle._compare_and_set(
            submitted_assignment.id, AssignmentStatus.SUBMITTED, {"status": AssignmentStatus.REJECTED.value}
        )
        await session.rollback()

    async def test_two_teachers_one_winner(self, session_factory, submitted_assignment, actors):
        async with session_factory() as first, session_factory() as second:
            await AssignmentLifecycle(first).grade(submitted_assignment.id, actors["siti"], "accepted", score=90)

            with pytest.raises(NotAuthorized):
                await AssignmentLifecycle(second).grade(submitted_assignment.id, actors["joko"], "rejected")
            with pytest.raises(InvalidTransition):
                await AssignmentLifecycle(second).grade(submitted_assignment.id, actors["siti"], "rejected")


class TestStatistics:
    async def test_counts_per_status(self, session, lifecycle, link_task, submitted_assignment, actors):
        stats = await lifecycle.compute_statistics(link_task.id)

        assert stats == {"pending": 1, "submitted": 1, "accepted": 0, "rejected": 0, "total": 2}

        await lifecycle.grade(submitted_assignment.id, actors["siti"], "accepted", score=90)
        stats = await lifecycle.compute_statistics(link_task.id)

        assert stats["accepted"] == 1
        assert stats["submitted"] == 0
        assert stats["total"] == 2

    async def test_unknown_task_is_all_zero(self, lifecycle):
        stats = await lifecycle.compute_statistics(12345)

        assert stats == {"pending": 0, "submitted": 0, "accepted": 0, "rejected": 0, "total": 0}

    async def test_many_tasks(self, lifecycle, link_task, in_person_task):
        stats = await lifecycle.compute_statistics_many([link_task.id, in_person_task.id])

        assert stats[link_task.id]["pending"] == 2
        assert stats[in_person_task.id]["total"] == 2

    async def test_get_statistics_requires_owner(self, lifecycle, link_task, actors):
        assert (await lifecycle.get_statistics(link_task.id, actors["siti"]))["total"] == 2

        with pytest.raises(NotAuthorized):
            await lifecycle.get_statistics(link_task.id, actors["joko"])
        with pytest.raises(NotAuthorized):
            await lifecycle.get_statistics(link_task.id, actors["andi"])
