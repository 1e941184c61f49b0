import enum
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, JSON, String, Text,
    UniqueConstraint,
)
from sqlalchemy.types import TypeDecorator
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

MIN_SCORE = 0
MAX_SCORE = 100


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Aware UTC datetime. Naive values are taken to be UTC already."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Stored as naive UTC, loaded as aware UTC.

    SQLite keeps no offset, so values are converted before they are written.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return as_utc(value).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        return as_utc(value)


class Role(str, enum.Enum):
    TEACHER = "teacher"
    STUDENT = "student"


class TargetMode(str, enum.Enum):
    INDIVIDUAL = "individual"
    CLASS = "class"


class CollectionMode(str, enum.Enum):
    LINK = "link"
    IN_PERSON = "in_person"


class AssignmentStatus(str, enum.Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class User(Base):
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    username = Column(String(50), nullable=False, unique=True)
    name = Column(String(100), nullable=False)
    phone = Column(String(20))
    role = Column(String(20), nullable=False)  # 'teacher' or 'student'
    class_name = Column(String(20))  # students only
    major = Column(String(50))  # students only
    created_at = Column(UTCDateTime(), server_default=func.now())
    updated_at = Column(UTCDateTime(), server_default=func.now(), onupdate=func.now())

    tasks = relationship("Task", back_populates="teacher")
    assignments = relationship("Assignment", back_populates="student")

    def __repr__(self):
        return f"<User {self.username} ({self.role})>"


class Task(Base):
    __tablename__ = 'tasks'

    id = Column(Integer, primary_key=True)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    teacher_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    target_mode = Column(String(20), nullable=False)
    # student ids, or [{"class_name": ..., "major": ...}] for class targets
    target_ids = Column(JSON, nullable=False, default=list)
    collection_mode = Column(String(20), nullable=False)
    starts_at = Column(UTCDateTime())
    deadline = Column(UTCDateTime())
    file_ref = Column(String(255))
    show_scores = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime(), server_default=func.now())
    updated_at = Column(UTCDateTime(), server_default=func.now(), onupdate=func.now())

    teacher = relationship("User", back_populates="tasks")
    assignments = relationship("Assignment", back_populates="task", order_by="Assignment.id")


class Assignment(Base):
    """One student's obligation against one task (penugasan)"""

    __tablename__ = 'assignments'
    __table_args__ = (
        UniqueConstraint('task_id', 'student_id', name='uq_assignment_task_student'),
        CheckConstraint(
            f'score IS NULL OR (score >= {MIN_SCORE} AND score <= {MAX_SCORE})',
            name='ck_assignment_score_range',
        ),
        CheckConstraint(
            "(status = 'accepted' AND score IS NOT NULL) OR (status <> 'accepted' AND score IS NULL)",
            name='ck_assignment_score_iff_accepted',
        ),
    )

    id = Column(Integer, primary_key=True)
    task_id = Column(Integer, ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False)
    student_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    status = Column(String(20), nullable=False, default=AssignmentStatus.PENDING.value)
    submission_link = Column(Text)
    submitted_at = Column(UTCDateTime())
    score = Column(Integer)
    teacher_note = Column(Text)
    created_at = Column(UTCDateTime(), server_default=func.now())
    updated_at = Column(UTCDateTime(), server_default=func.now(), onupdate=func.now())

    task = relationship("Task", back_populates="assignments")
    student = relationship("User", back_populates="assignments")
