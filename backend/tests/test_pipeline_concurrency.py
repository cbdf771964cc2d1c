"""Concurrent pipeline calls on separate sessions over a file-backed SQLite database.

Each call gets its own session (and so its own connection), the way two
simultaneous HTTP requests would.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rental_pipeline.app.config import Settings
from rental_pipeline.domain.enums import AppointmentType
from rental_pipeline.domain.models import Appointment, Offer, Property, RentalOpportunityRequest, User
from rental_pipeline.infra.database import Base, build_engine
from rental_pipeline.services.errors import PipelineError
from rental_pipeline.services.pipeline_service import PipelineService

VISIT_AT = datetime(2026, 11, 3, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
async def file_db(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'pipeline.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def settings():
    return Settings(max_active_requests=3, privileged_roles="owner,admin", global_roles="admin")


async def _seed(factory, properties: int = 1) -> tuple[str, list[str]]:
    """Create a client, an owner and ``properties`` listings; return their ids."""
    now = datetime.now(timezone.utc)
    client = User(id=str(uuid.uuid4()), email=f"{uuid.uuid4().hex[:8]}@test.com",
                  name="Client", role="client", is_active=True, created_at=now)
    owner = User(id=str(uuid.uuid4()), email=f"{uuid.uuid4().hex[:8]}@test.com",
                 name="Owner", role="owner", is_active=True, created_at=now)
    props = [
        Property(id=str(uuid.uuid4()), title=f"Apartment {i}", owner_id=owner.id, created_at=now)
        for i in range(properties)
    ]
    async with factory() as session:
        session.add_all([client, owner])
        await session.flush()
        session.add_all(props)
        await session.commit()
    return client.id, [p.id for p in props]


async def _run(factory, settings, call) -> str:
    """Run ``call(service)`` on a fresh session; return "ok" or the error code."""
    async with factory() as session:
        service = PipelineService(session, settings=settings)
        try:
            await call(service)
        except PipelineError as e:
            return e.code
        return "ok"


async def _count(factory, model) -> int:
    async with factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


def _in_step(original, parties: int = 2):
    """Wrap an async method so ``parties`` callers all finish it before any continues.

    Forces concurrent operations to pass their read-only checks together and
    then race to commit.
    """
    arrived = 0
    everyone = asyncio.Event()

    async def _step(*args, **kwargs):
        nonlocal arrived
        result = await original(*args, **kwargs)
        arrived += 1
        if arrived >= parties:
            everyone.set()
        await asyncio.wait_for(everyone.wait(), timeout=5)
        return result

    return _step


class TestConcurrentCreate:
    async def test_parallel_creates_respect_quota(self, file_db, settings):
        client_id, property_ids = await _seed(file_db, properties=6)

        outcomes = await asyncio.gather(*[
            _run(file_db, settings, lambda s, pid=pid: s.create_request(pid, client_id))
            for pid in property_ids
        ])

        assert sorted(outcomes) == ["ok"] * 3 + ["quota_exceeded"] * 3
        assert await _count(file_db, RentalOpportunityRequest) == 3

    async def test_quota_checked_after_other_creators_commit(self, file_db, settings):
        client_id, property_ids = await _seed(file_db, properties=4)
        for pid in property_ids[:2]:
            await _run(file_db, settings, lambda s, pid=pid: s.create_request(pid, client_id))

        # Both callers see two active requests before either inserts.
        with patch.object(PipelineService, "active_count", _in_step(PipelineService.active_count)):
            outcomes = await asyncio.gather(*[
                _run(file_db, settings, lambda s, pid=pid: s.create_request(pid, client_id))
                for pid in property_ids[2:]
            ])

        assert sorted(outcomes) == ["ok", "quota_exceeded"]
        assert await _count(file_db, RentalOpportunityRequest) == 3


class TestConcurrentSubmitOffer:
    async def test_second_offer_hits_unique_constraint(self, file_db, settings):
        client_id, (property_id,) = await _seed(file_db)
        request_id = None

        async def _prepare(service):
            nonlocal request_id
            request = await service.create_request(property_id, client_id)
            request_id = request.id
            await service.schedule_visit(request.id, client_id, VISIT_AT, AppointmentType.IN_PERSON)

        assert await _run(file_db, settings, _prepare) == "ok"

        # Both submitters find no existing offer before either commits.
        with patch.object(PipelineService, "_offer_for", _in_step(PipelineService._offer_for)):
            outcomes = await asyncio.gather(
                _run(file_db, settings, lambda s: s.submit_offer(request_id, client_id, 1500)),
                _run(file_db, settings, lambda s: s.submit_offer(request_id, client_id, 1600)),
            )

        assert sorted(outcomes) == ["duplicate_offer", "ok"]
        assert await _count(file_db, Offer) == 1
        async with file_db() as session:
            request = await session.get(RentalOpportunityRequest, request_id)
            assert request.status == "offer_submitted"


class TestConcurrentScheduleVisit:
    async def test_second_visit_hits_unique_constraint(self, file_db, settings):
        client_id, (property_id,) = await _seed(file_db)
        request_id = None

        async def _prepare(service):
            nonlocal request_id
            request_id = (await service.create_request(property_id, client_id)).id

        assert await _run(file_db, settings, _prepare) == "ok"

        # Both schedulers re-read the request as pending before either commits.
        with patch.object(AsyncSession, "refresh", _in_step(AsyncSession.refresh)):
            outcomes = await asyncio.gather(*[
                _run(
                    file_db, settings,
                    lambda s: s.schedule_visit(request_id, client_id, VISIT_AT, AppointmentType.IN_PERSON),
                )
                for _ in range(2)
            ])

        assert sorted(outcomes) == ["invalid_transition", "ok"]
        assert await _count(file_db, Appointment) == 1
