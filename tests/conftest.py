# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Callable, Iterator
from itertools import count
from pathlib import Path
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

os.environ.setdefault("PYTEST_RUNNING", "true")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_CREATE_TABLES", "false")

from chatline.db.session import Base
from chatline.main import create_app
from chatline.models import Friendship, FriendshipStatus, User
from chatline.repositories.chat_repo import ChatStore
from chatline.services.auth import create_access_token
from chatline.services.connection import Connection
from chatline.services.gateway import ChatGateway
from tests.helpers import FakeSocket

_USER_COUNTER = count(1)


@pytest.fixture()
def engine(tmp_path: Path) -> Iterator[Engine]:
    engine = create_engine(
        f"sqlite:///{tmp_path / 'chat.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def store(session_factory: sessionmaker[Session]) -> ChatStore:
    return ChatStore(session_factory)


@pytest.fixture()
def make_user(db_session: Session) -> Callable[..., User]:
    """Return a factory inserting users directly through SQLAlchemy."""

    def _make_user(username: str | None = None, **fields: Any) -> User:
        user = User(username=username or f"user{next(_USER_COUNTER)}", **fields)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture()
def alice(make_user: Callable[..., User]) -> User:
    return make_user("alice", display_name="Alice")


@pytest.fixture()
def bob(make_user: Callable[..., User]) -> User:
    return make_user("bob")


@pytest.fixture()
def carol(make_user: Callable[..., User]) -> User:
    return make_user("carol")


@pytest.fixture()
def befriend(db_session: Session) -> Callable[..., Friendship]:
    """Return a helper creating a friendship edge between two users."""

    def _befriend(
        requester: User, addressee: User, status: FriendshipStatus = FriendshipStatus.ACCEPTED
    ) -> Friendship:
        edge = Friendship(requester_id=requester.id, addressee_id=addressee.id, status=status)
        db_session.add(edge)
        db_session.commit()
        return edge

    return _befriend


@pytest.fixture()
def count_rows(db_session: Session) -> Callable[[type], int]:
    def _count(model: type) -> int:
        db_session.expire_all()
        return int(db_session.scalar(select(func.count()).select_from(model)) or 0)

    return _count


@pytest.fixture()
def reload(db_session: Session) -> Callable[[type, Any], Any]:
    """Fetch a fresh copy of a row, bypassing the identity map."""

    def _reload(model: type, key: Any) -> Any:
        db_session.expire_all()
        return db_session.get(model, key)

    return _reload


@pytest.fixture()
def gateway(store: ChatStore) -> ChatGateway:
    return ChatGateway(store)


@pytest.fixture()
def connect_user() -> Callable[..., Connection]:
    """Return a factory building a connection over a FakeSocket."""

    def _connect(user: User, socket: FakeSocket | None = None) -> Connection:
        return Connection(
            socket or FakeSocket(),
            user.id,
            user.username,
            display_name=user.name,
        )

    return _connect


@pytest.fixture()
def app(store: ChatStore) -> FastAPI:
    return create_app(store, create_tables=False)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def token_for() -> Callable[[User], str]:
    def _token(user: User) -> str:
        return create_access_token(user.id)

    return _token


@pytest.fixture()
def auth_headers(token_for: Callable[[User], str]) -> Callable[[User], dict[str, str]]:
    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {token_for(user)}"}

    return _headers

