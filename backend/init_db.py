#!/usr/bin/env python3
"""Initialize the database for Artemis Tugas, optionally with demo users"""

import argparse
import asyncio

from sqlalchemy import select

from database import AsyncSessionLocal, DATABASE_URL, create_tables, engine
from models import Role, User
from security import create_access_token

DEMO_USERS = [
    {"username": "siti", "name": "Bu Siti", "phone": "081200000001", "role": Role.TEACHER.value},
    {"username": "andi", "name": "Andi Pratama", "phone": "081200000002", "role": Role.STUDENT.value,
     "class_name": "XI", "major": "RPL"},
    {"username": "budi", "name": "Budi Santoso", "phone": "081200000003", "role": Role.STUDENT.value,
     "class_name": "XI", "major": "RPL"},
    {"username": "citra", "name": "Citra Lestari", "phone": "081200000004", "role": Role.STUDENT.value,
     "class_name": "XII", "major": "AKL"},
]


async def seed_demo_users():
    """Insert the demo users that are missing and print a token for each"""
    async with AsyncSessionLocal() as session:
        for data in DEMO_USERS:
            result = await session.execute(select(User).where(User.username == data["username"]))
            user = result.scalar_one_or_none()
            if user is None:
                user = User(**data)
                session.add(user)
                await session.flush()
            print(f"{user.username:<8} {user.role:<8} {create_access_token(user.id, user.role)}")
        await session.commit()


async def init_database(seed: bool = False):
    """Initialize the database tables"""
    print(f"Initializing database: {DATABASE_URL}")

    try:
        await create_tables()
        print("Database tables created successfully!")
        if seed:
            await seed_demo_users()
    except Exception as e:
        print(f"Error creating database tables: {e}")
        raise
    finally:
        await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--seed", action="store_true", help="create demo users and print their tokens")
    args = parser.parse_args()
    asyncio.run(init_database(seed=args.seed))
