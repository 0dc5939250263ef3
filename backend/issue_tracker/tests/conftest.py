from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("AUTH_BCRYPT_ROUNDS", "4")
os.environ.setdefault("AUTH_SECRET_KEY", "test-secret")

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from issue_tracker import orm_models  # noqa: F401
from issue_tracker.broadcasting import setup_broadcast_events
from issue_tracker.database import Base, TrackerSession, enable_sqlite_foreign_keys
from issue_tracker.orm_models import ProjectMemberORM, UserORM


class CapturingBroadcaster:
    def __init__(self) -> None:
        self.events: list[tuple[str, object]] = []

    def publish(self, topic: str, payload: object) -> None:
        self.events.append((topic, payload))

    def topics(self) -> list[str]:
        return [topic for topic, _ in self.events]


class TestingSession(TrackerSession):
    """Single session class for tests, so broadcast listeners are registered once."""


setup_broadcast_events(TestingSession)


def make_session_factory(url: str = "sqlite:///:memory:") -> sessionmaker:
    if url == "sqlite:///:memory:":
        engine = create_engine(
            url,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(url, future=True, connect_args={"check_same_thread": False})
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        future=True,
        class_=TestingSession,
    )


def make_user(session, email: str, *, name: str | None = None) -> UserORM:
    user = UserORM(email=email, name=name or email.split("@")[0], password_hash="stub")
    session.add(user)
    session.flush()
    return user


@pytest.fixture()
def session_factory():
    return make_session_factory()


@pytest.fixture()
def session(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture()
def broadcaster():
    return CapturingBroadcaster()


@pytest.fixture()
def owner(session):
    return make_user(session, "owner@tracker.dev", name="Olivia Owner")


@pytest.fixture()
def outsider(session):
    return make_user(session, "outsider@tracker.dev", name="Oscar Outsider")


def project_members(session, project_id: str) -> list[ProjectMemberORM]:
    return session.execute(
        select(ProjectMemberORM).where(ProjectMemberORM.project_id == project_id)
    ).scalars().all()
