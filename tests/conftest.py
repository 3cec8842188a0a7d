"""Test configuration and fixtures."""

from typing import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from work_item_tracker.config import Settings
from work_item_tracker.db import models  # noqa: F401
from work_item_tracker.db.base import Base
from work_item_tracker.spaces import IdentityRepository, SpaceRepository
from work_item_tracker.workitem.repository import WorkItemRepository
from work_item_tracker.workitem.system_types import seed_system_types

BASE_URL = "http://tracker.test"


@pytest.fixture
def settings() -> Settings:
    """Settings handle injected into every component under test."""
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        api_base_url=BASE_URL,
        supported_markups=["PlainText", "Markdown"],
    )


@pytest.fixture
def engine():
    """A fresh in-memory database with the system types seeded."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    with Session(engine) as db:
        seed_system_types(db)
        db.commit()
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine) -> Generator[Session, None, None]:
    session = sessionmaker(bind=engine, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def owner(db_session):
    identity = IdentityRepository(db_session).create("owner", full_name="Space Owner")
    db_session.commit()
    return identity.id


@pytest.fixture
def other_user(db_session):
    identity = IdentityRepository(db_session).create("someone", full_name="Someone Else")
    db_session.commit()
    return identity.id


@pytest.fixture
def space(db_session, owner):
    space = SpaceRepository(db_session).create("Tracker", owner)
    db_session.commit()
    return space.id


@pytest.fixture
def repo(db_session, settings) -> WorkItemRepository:
    return WorkItemRepository(db_session, settings)
