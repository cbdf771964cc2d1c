"""Shared test infrastructure for the rental pipeline test suite.

Provides:
- session_factory / db_session: async SQLite in-memory database with all tables created
- make_user, make_property, make_saved_search: directory row factories
- calendar_mock: mock GoogleCalendarClient returning a Meet link
- recorder_mock: mock JourneyRecorder capturing recorded actions
- make_service: PipelineService wired to the above
"""

import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Import Base first, then models to register all tables
from rental_pipeline.infra.database import Base

import rental_pipeline.domain.models  # noqa: F401

from rental_pipeline.app.config import Settings
from rental_pipeline.domain.models import Property, SavedSearch, User
from rental_pipeline.infra.calendar_client import MeetingInfo
from rental_pipeline.services.authorization import NegotiationAuthorizer
from rental_pipeline.services.pipeline_service import PipelineService


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
async def session_factory():
    """Session factory over a fresh in-memory database.

    StaticPool keeps a single connection so independent sessions (such as the
    journey recorder's) see the same in-memory database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------------------------
# Directory factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_user(db_session):
    """Factory that creates a committed User row.

    Usage:
        owner = await make_user(role="owner")
    """
    async def _factory(
        role: str = "client",
        name: str = "Test User",
        email: str | None = None,
        phone: str | None = "+15551234567",
        is_active: bool = True,
    ) -> User:
        user = User(
            id=str(uuid.uuid4()),
            email=email or f"{uuid.uuid4().hex[:8]}@test.com",
            name=name,
            phone=phone,
            role=role,
            is_active=is_active,
            created_at=datetime.now(timezone.utc),
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _factory


@pytest.fixture
def make_property(db_session, make_user):
    """Factory that creates a committed Property, with a fresh owner if none is given.

    Usage:
        prop = await make_property(owner=owner, title="Loft in Palermo")
    """
    async def _factory(
        owner: User | None = None,
        title: str = "Test Apartment",
        address: str = "123 Test St",
    ) -> Property:
        if owner is None:
            owner = await make_user(role="owner", name="Test Owner")
        prop = Property(
            id=str(uuid.uuid4()),
            title=title,
            address=address,
            owner_id=owner.id,
            created_at=datetime.now(timezone.utc),
        )
        db_session.add(prop)
        await db_session.commit()
        return prop

    return _factory


@pytest.fixture
def make_saved_search(db_session):
    """Factory that creates a committed SavedSearch for a user."""
    async def _factory(
        user: User,
        filters: dict,
        name: str = "My search",
        created_at: datetime | None = None,
    ) -> SavedSearch:
        search = SavedSearch(
            id=str(uuid.uuid4()),
            user_id=user.id,
            name=name,
            filters=filters,
            created_at=created_at or datetime.now(timezone.utc),
        )
        db_session.add(search)
        await db_session.commit()
        return search

    return _factory


# ---------------------------------------------------------------------------
# Collaborator mocks
# ---------------------------------------------------------------------------

@pytest.fixture
def calendar_mock():
    """Mock calendar client whose meetings succeed by default."""
    mock = MagicMock()
    mock.create_meeting = AsyncMock(
        return_value=MeetingInfo(event_id="evt-123", join_link="https://meet.google.com/abc-defg-hij")
    )
    mock.delete_meeting = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def recorder_mock():
    """Mock JourneyRecorder; inspect ``recorder_mock.record.await_args_list``."""
    mock = MagicMock()
    mock.record = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def test_settings():
    return Settings(
        max_active_requests=3,
        calendar_timeout_seconds=0.2,
        visit_duration_minutes=60,
        privileged_roles="owner,seller,admin",
        global_roles="admin,seller",
    )


@pytest.fixture
def make_service(db_session, calendar_mock, recorder_mock, test_settings):
    """Factory for a PipelineService bound to the test session.

    Usage:
        service = make_service()
        service = make_service(calendar=None)
    """
    _unset = object()

    def _factory(calendar=_unset, recorder=_unset, settings: Settings | None = None) -> PipelineService:
        cfg = settings or test_settings
        return PipelineService(
            db_session,
            calendar=calendar_mock if calendar is _unset else calendar,
            recorder=recorder_mock if recorder is _unset else recorder,
            authorizer=NegotiationAuthorizer(cfg.privileged_roles_set, cfg.global_roles_set),
            settings=cfg,
        )

    return _factory
