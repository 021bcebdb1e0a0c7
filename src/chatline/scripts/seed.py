# src/chatline/scripts/seed.py
"""Create tables and seed demo users who are friends with each other.

Usage:
    python -m chatline.scripts.seed alice bob [carol ...]
"""

from __future__ import annotations

import argparse
import asyncio
import itertools
import sys

from chatline.db.session import create_tables
from chatline.models import FriendshipStatus, User
from chatline.repositories.chat_repo import ChatStore
from chatline.services.auth import create_access_token


async def seed(usernames: list[str], store: ChatStore | None = None) -> list[User]:
    """Insert ``usernames`` and accept a friendship between every pair."""
    store = store or ChatStore()
    users = [await store.create_user(name) for name in usernames]
    for first, second in itertools.combinations(users, 2):
        await store.set_friendship(first.id, second.id, FriendshipStatus.ACCEPTED)
    return users


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("usernames", nargs="+", help="Usernames to create (3-20 characters)")
    args = parser.parse_args(argv)

    create_tables()
    users = asyncio.run(seed(args.usernames))
    for user in users:
        print(f"{user.username}\t{user.id}\t{create_access_token(user.id)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
