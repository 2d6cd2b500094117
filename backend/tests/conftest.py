"""
Shared pytest fixtures.

Uses an in-memory SQLite database (via aiosqlite) so tests run without a
live Postgres instance.  The SQLite dialect supports most of our schema;
UUID columns are stored as strings and FOR UPDATE is ignored.

Environment overrides are applied before importing grievance modules so that
Settings() picks up the test database URL.

Service fixtures share one FixedClock (Monday 2024-03-04 09:00 UTC), a fresh
lock registry and an EventPublisher feeding a RecordingEventSink, so tests can
move time deterministically and inspect what would have reached SQS.

Failed mutations roll the session back, which expires every loaded row; tests
therefore hold on to ids and Actor values, and re-read complaints through
the service.
"""
import os
import uuid
from datetime import datetime

# Set test environment BEFORE importing any grievance module
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("DEV_SKIP_AUTH", "true")
os.environ.setdefault("SQLALCHEMY_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("COGNITO_USER_POOL_ID", "")
os.environ.setdefault("COGNITO_APP_CLIENT_ID", "")
os.environ.setdefault("SQS_NOTIFICATION_QUEUE_URL", "")
os.environ.setdefault("SNAPSHOT_SCHEDULER_ENABLED", "false")

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from grievance.core.clock import FixedClock
from grievance.core.db import engine_options
from grievance.core.locks import ComplaintLocks
from grievance.core.rbac import Actor
from grievance.models.base import Base
from grievance.models.user import User
from grievance.models.complaint import Complaint, ComplaintAttachment, ComplaintNote  # noqa: F401
from grievance.models.event import LifecycleEvent  # noqa: F401
from grievance.models.extension import ExtensionRequest  # noqa: F401
from grievance.models.geography import GeoArea
from grievance.models.sequence import ComplaintSequence  # noqa: F401
from grievance.models.snapshot import ComplaintSnapshot  # noqa: F401
from grievance.services import geography
from grievance.services.complaints import ComplaintService
from grievance.services.events import EventPublisher, RecordingEventSink
from grievance.services.extensions import ExtensionArbiter
from grievance.services.snapshots import SnapshotAggregator


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
T0 = datetime(2024, 3, 4, 9, 0, 0)


def complaint_payload(**overrides) -> dict:
    payload = {
        "title": "Broken hand pump",
        "description": "The hand pump near the primary school has been dry for a week.",
        "category": "water",
        "priority": "medium",
        "district_code": "BDN",
        "district_name": "Badaun",
        "subdistrict_code": "BDN-SAH",
        "subdistrict_name": "Sahaswan",
        "village_code": "BDN-SAH-01",
        "village_name": "Mirzapur",
        "latitude": 28.07,
        "longitude": 78.75,
        "contact_name": "Ramesh Kumar",
        "contact_email": "ramesh.kumar@gmail.com",
        "contact_phone": "+91 9876543210",
    }
    payload.update(overrides)
    return payload


@pytest.fixture(autouse=True)
def _clear_geography_cache():
    geography.clear_cache()
    yield
    geography.clear_cache()


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(TEST_DATABASE_URL, **engine_options(TEST_DATABASE_URL))

    # SQLite does not enforce FK by default
    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(engine):
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    async with session_factory() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------------------------
# Time, locks, events
# ---------------------------------------------------------------------------

@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(T0)


@pytest.fixture
def locks() -> ComplaintLocks:
    return ComplaintLocks()


@pytest.fixture
def sink() -> RecordingEventSink:
    return RecordingEventSink()


@pytest_asyncio.fixture
async def publisher(sink: RecordingEventSink):
    publisher = EventPublisher(sink, maxsize=100)
    publisher.start()
    yield publisher
    await publisher.stop(drain=True)


# ---------------------------------------------------------------------------
# Users / actors
# ---------------------------------------------------------------------------

async def _make_user(db: AsyncSession, role: str, full_name: str, email: str) -> User:
    user = User(
        id=uuid.uuid4(),
        cognito_user_id=str(uuid.uuid4()),
        full_name=full_name,
        email=email,
        role=role,
        responsible_district="BDN" if role == "officer" else None,
        is_active=True,
    )
    db.add(user)
    await db.commit()
    return user


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession) -> User:
    return await _make_user(db_session, "admin", "Test Admin", "admin.grievance@gmail.com")


@pytest_asyncio.fixture
async def officer_user(db_session: AsyncSession) -> User:
    return await _make_user(db_session, "officer", "Test Officer", "officer.one@gmail.com")


@pytest_asyncio.fixture
async def other_officer_user(db_session: AsyncSession) -> User:
    return await _make_user(db_session, "officer", "Second Officer", "officer.two@gmail.com")


@pytest_asyncio.fixture
async def citizen_user(db_session: AsyncSession) -> User:
    return await _make_user(db_session, "citizen", "Test Citizen", "citizen@gmail.com")


@pytest.fixture
def admin(admin_user: User) -> Actor:
    return Actor.from_user(admin_user)


@pytest.fixture
def officer(officer_user: User) -> Actor:
    return Actor.from_user(officer_user)


@pytest.fixture
def other_officer(other_officer_user: User) -> Actor:
    return Actor.from_user(other_officer_user)


@pytest.fixture
def citizen(citizen_user: User) -> Actor:
    return Actor.from_user(citizen_user)


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------

@pytest.fixture
def complaint_service(db_session, publisher, clock, locks) -> ComplaintService:
    return ComplaintService(db_session, publisher=publisher, clock=clock, locks=locks)


@pytest.fixture
def arbiter(db_session, complaint_service) -> ExtensionArbiter:
    return ExtensionArbiter(db_session, complaints=complaint_service)


@pytest.fixture
def aggregator(db_session, clock) -> SnapshotAggregator:
    return SnapshotAggregator(db_session, clock=clock)


@pytest.fixture
def create_complaint(complaint_service: ComplaintService, citizen: Actor):
    """Factory: file a complaint as the citizen and return its id."""

    async def _create(**overrides) -> uuid.UUID:
        complaint = await complaint_service.create(complaint_payload(**overrides), citizen)
        return complaint.id

    return _create


@pytest_asyncio.fixture
async def assigned_complaint_id(create_complaint, complaint_service, admin, officer) -> uuid.UUID:
    complaint_id = await create_complaint()
    await complaint_service.assign(complaint_id, officer.id, admin)
    return complaint_id


@pytest_asyncio.fixture
async def geo_tree(db_session: AsyncSession) -> None:
    """
    BDN (Badaun)
    ├── BDN-SAH (Sahaswan) ── BDN-SAH-01 (Mirzapur), BDN-SAH-02 (Kakrala)
    └── BDN-BIS (Bisauli)  ── BDN-BIS-01 (Islamnagar)
    BRY (Bareilly) ── BRY-AON (Aonla)
    """
    levels = [
        [("BDN", "Badaun", "district", None), ("BRY", "Bareilly", "district", None)],
        [
            ("BDN-SAH", "Sahaswan", "subdistrict", "BDN"),
            ("BDN-BIS", "Bisauli", "subdistrict", "BDN"),
            ("BRY-AON", "Aonla", "subdistrict", "BRY"),
        ],
        [
            ("BDN-SAH-01", "Mirzapur", "village", "BDN-SAH"),
            ("BDN-SAH-02", "Kakrala", "village", "BDN-SAH"),
            ("BDN-BIS-01", "Islamnagar", "village", "BDN-BIS"),
        ],
    ]
    for level in levels:
        for code, name, entity_type, parent in level:
            db_session.add(GeoArea(code=code, name=name, entity_type=entity_type, parent_code=parent))
        await db_session.flush()
    await db_session.commit()


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def client(engine, db_session: AsyncSession, admin_user: User, clock, publisher):
    """
    AsyncClient for the FastAPI app with:
    - DB, clock and publisher dependencies overridden to the test fixtures
    - DEV_SKIP_AUTH=true so requests are authenticated as admin_user
      by default (pass X-Dev-User-ID header with a different cognito_user_id
      to switch users).
    """
    from grievance.main import app
    from grievance.core.clock import get_clock
    from grievance.core.db import get_db
    from grievance.services.events import get_publisher

    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_publisher] = lambda: publisher

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://testserver",
        headers={"X-Dev-User-ID": admin_user.cognito_user_id},
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
