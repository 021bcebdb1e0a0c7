# src/chatline/scripts/tokens.py
"""Mint a development bearer token for an existing user.

Usage:
    python -m chatline.scripts.tokens <user-id-or-username>
"""

from __future__ import annotations

import argparse
import sys

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from chatline.db.session import SessionLocal
from chatline.models import User
from chatline.services.auth import create_access_token


def find_user(db: Session, identifier: str) -> User | None:
    """Look a user up by id first, then by username."""
    return db.scalars(
        select(User).where(or_(User.id == identifier, User.username == identifier))
    ).first()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("user", help="User id or username")
    args = parser.parse_args(argv)

    db = SessionLocal()
    try:
        user = find_user(db, args.user)
    finally:
        db.close()

    if user is None:
        print(f"No user matches {args.user!r}", file=sys.stderr)
        return 1
    print(create_access_token(user.id))
    return 0


if __name__ == "__main__":
    sys.exit(main())
