"""
Shared fixtures: a throwaway SQLite database per test, seeded users and
tasks, and a recording stand-in for the chat model.
Zero network calls.
"""
import os

os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ["OPENAI_API_KEY"] = ""

import asyncio
from datetime import datetime, timezone

import httpx
import pytest
from langchain_core.messages import AIMessage
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from agents import StudyAssistantAgent
from database import create_tables
from lifecycle import AssignmentLifecycle
from models import Assignment, Role, User
from security import Actor, create_access_token
import task_service

FIXED_NOW = datetime(2024, 4, 20, 8, 30, tzinfo=timezone.utc)
DEADLINE = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)


class RecordingChatModel:
    """Stands in for ChatOpenAI; remembers every conversation it receives"""

    def __init__(self, reply="Coba pikirkan dulu: apa yang dibutuhkan tumbuhan?", error=None, delay=0.0):
        self.reply = reply
        self.error = error
        self.delay = delay
        self.calls = []

    async def ainvoke(self, messages):
        self.calls.append(list(messages))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return AIMessage(content=self.reply)


@pytest.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def users(session):
    people = {
        "siti": User(username="siti", name="Bu Siti", phone="0811", role=Role.TEACHER.value),
        "joko": User(username="joko", name="Pak Joko", phone="0812", role=Role.TEACHER.value),
        "andi": User(username="andi", name="Andi", phone="0813", role=Role.STUDENT.value,
                     class_name="XI", major="RPL"),
        "budi": User(username="budi", name="Budi", phone="0814", role=Role.STUDENT.value,
                     class_name="XI", major="RPL"),
        "citra": User(username="citra", name="Citra", phone="0815", role=Role.STUDENT.value,
                      class_name="XII", major="AKL"),
    }
    session.add_all(people.values())
    await session.commit()
    return people


@pytest.fixture
def actors(users):
    return {key: Actor(id=user.id, role=Role(user.role)) for key, user in users.items()}


@pytest.fixture
def lifecycle(session):
    return AssignmentLifecycle(session, clock=lambda: FIXED_NOW)


@pytest.fixture
async def link_task(session, users, actors):
    task, _ = await task_service.create_task(
        session,
        actors["siti"],
        title="Biologi Sel",
        description="Buat ringkasan struktur sel",
        target_mode="individual",
        target_ids=[users["andi"].id, users["budi"].id],
        collection_mode="link",
        deadline=DEADLINE,
    )
    return task


@pytest.fixture
async def in_person_task(session, actors):
    task, _ = await task_service.create_task(
        session,
        actors["siti"],
        title="Praktikum Mikroskop",
        target_mode="class",
        target_ids=[{"class_name": "XI", "major": "RPL"}],
        collection_mode="in_person",
    )
    return task


async def assignment_for(session, task, user) -> Assignment:
    result = await session.execute(
        select(Assignment).where(Assignment.task_id == task.id, Assignment.student_id == user.id)
    )
    return result.scalar_one()


@pytest.fixture
async def submitted_assignment(session, lifecycle, link_task, users, actors):
    assignment = await assignment_for(session, link_task, users["andi"])
    return await lifecycle.submit(assignment.id, actors["andi"], "https://drive.example.com/andi")


@pytest.fixture
def chat_model():
    return RecordingChatModel()


@pytest.fixture
def assistant(chat_model):
    return StudyAssistantAgent(llm=chat_model, timeout=2)


@pytest.fixture
def auth_headers(users):
    def headers(key):
        user = users[key]
        return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}
    return headers


@pytest.fixture
async def client(session_factory, assistant):
    from main import app
    from database import get_session
    from agents import get_study_assistant

    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_study_assistant] = lambda: assistant

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client

    app.dependency_overrides.clear()
