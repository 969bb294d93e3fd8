#!/usr/bin/env python3
"""CLI script to create a broker account with the default pipeline stages.

Usage:
    python scripts/create_user.py --email ana@imobiliaria.com --name "Ana" --password changeme
    python scripts/create_user.py --email ana@imobiliaria.com --name "Ana" --password changeme --company "Imobiliaria Sol"

Connects directly to the database using DATABASE_URL from environment or .env file.
Run `alembic upgrade head` first.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path so we can import src.crm
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


async def create_user(email: str, name: str, password: str, company: str | None) -> None:
    """Insert the user row and its stages in one transaction through StageStore."""
    import uuid

    from src.crm.core.context import UserContext
    from src.crm.core.database import close_db, init_db, user_session
    from src.crm.core.security import hash_password
    from src.crm.models.user import User
    from src.crm.pipeline.repository import PipelineRepository
    from src.crm.pipeline.stages import StageStore

    await init_db()

    user = User(
        id=uuid.uuid4(),
        email=email.lower(),
        name=name,
        company=company,
        hashed_password=hash_password(password),
        is_active=True,
    )
    store = StageStore(PipelineRepository(session_factory=user_session))
    try:
        stages = await store.seed_default_stages(
            UserContext(user_id=str(user.id), email=user.email), account=user
        )
    finally:
        await close_db()

    print("User created:")
    print(f"  ID:     {user.id}")
    print(f"  Email:  {user.email}")
    print(f"  Stages: {', '.join(s.name for s in stages)}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Create a broker account")
    parser.add_argument("--email", required=True, help="Login email")
    parser.add_argument("--name", required=True, help="Display name")
    parser.add_argument("--password", required=True, help="Initial password")
    parser.add_argument("--company", default=None, help="Agency name")
    args = parser.parse_args()

    if len(args.password) < 8:
        parser.error("--password must have at least 8 characters")

    asyncio.run(create_user(args.email, args.name, args.password, args.company))


if __name__ == "__main__":
    main()
