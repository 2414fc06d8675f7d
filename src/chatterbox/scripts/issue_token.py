"""Create a chat identity if needed and print an access token for it.

Usage:
    python -m chatterbox.scripts.issue_token alice
"""
from __future__ import annotations

import argparse
import asyncio

from chatterbox.core.security import create_access_token
from chatterbox.db.session import SessionLocal, create_tables
from chatterbox.repositories.chat_repo import ChatRepository


async def issue_token(username: str) -> tuple[str, str]:
    """Return ``(user_id, token)`` for ``username``."""
    await create_tables()
    user = await ChatRepository(SessionLocal).get_or_create_user(username)
    return user.id, create_access_token(user.id)


def main() -> None:
    parser = argparse.ArgumentParser(description="Issue an access token for a chat user")
    parser.add_argument("username", help="Username to create or look up")
    args = parser.parse_args()

    user_id, token = asyncio.run(issue_token(args.username))
    print(f"user_id={user_id}")
    print(f"token={token}")


if __name__ == "__main__":
    main()
