"""Pytest configuration and fixtures for backend tests."""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator
from unittest.mock import patch

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import JSON, StaticPool, event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from liftcoach.core.database import Base, get_db
from liftcoach.main import app as main_app


# -------------------------------------------------------------------------
# SQLite JSONB Compatibility - Convert JSONB to JSON for SQLite
# -------------------------------------------------------------------------

@event.listens_for(Base.metadata, "before_create")
def _convert_jsonb_to_json(target, connection, **kw):
    """Convert JSONB columns to JSON for SQLite compatibility."""
    if connection.dialect.name == "sqlite":
        for table in target.tables.values():
            for column in table.columns:
                if isinstance(column.type, JSONB):
                    column.type = JSON()

# Import all models to ensure they're registered with Base
from liftcoach.models import (
    Cycle,
    DailyLookup,
    Day,
    DayPrescription,
    Lift,
    LiftMax,
    Prescription,
    Program,
    User,
    Week,
    WeekDay,
    WeeklyLookup,
)


# -------------------------------------------------------------------------
# Database Fixtures
# -------------------------------------------------------------------------


@pytest.fixture
async def async_engine():
    """Create an async SQLite engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for testing."""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def app(db_session: AsyncSession) -> FastAPI:
    """Create a FastAPI app instance with test database."""

    async def override_get_db():
        yield db_session

    main_app.dependency_overrides[get_db] = override_get_db
    yield main_app
    main_app.dependency_overrides.clear()


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an unauthenticated HTTP client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# -------------------------------------------------------------------------
# User Fixtures
# -------------------------------------------------------------------------


async def _make_user(db: AsyncSession, email: str, is_admin: bool = False) -> User:
    from liftcoach.core.security import hash_password

    user = User(
        email=email,
        password_hash=hash_password("testpassword123", rounds=4),
        display_name=email.split("@")[0],
        is_admin=is_admin,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest.fixture
async def test_user(db_session: AsyncSession) -> User:
    return await _make_user(db_session, "lifter@example.com")


@pytest.fixture
async def other_user(db_session: AsyncSession) -> User:
    return await _make_user(db_session, "other@example.com")


@pytest.fixture
async def admin_user(db_session: AsyncSession) -> User:
    return await _make_user(db_session, "coach@example.com", is_admin=True)


@pytest.fixture
def session_store():
    """In-memory stand-in for the Redis session store."""
    store: dict[str, dict] = {}

    async def mock_create_session(user_id: str, user_data: dict) -> str:
        session_id = f"test_session_{user_id}"
        store[session_id] = {"user_id": user_id, **user_data}
        return session_id

    async def mock_get_session(session_id: str) -> dict | None:
        return store.get(session_id)

    async def mock_delete_session(session_id: str) -> bool:
        return store.pop(session_id, None) is not None

    # Patch at the location where it's imported, not where it's defined
    with patch("liftcoach.api.v1.endpoints.auth.get_session", mock_get_session):
        with patch("liftcoach.api.v1.endpoints.auth.create_session", mock_create_session):
            with patch("liftcoach.api.v1.endpoints.auth.delete_session", mock_delete_session):
                yield {"store": store, "create": mock_create_session}


async def _client_for(app: FastAPI, session_store: dict, user: User) -> AsyncClient:
    session_id = await session_store["create"](str(user.id), {"email": user.email})
    return AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        cookies={"session_id": session_id},
    )


@pytest.fixture
async def auth_client(
    app: FastAPI,
    session_store: dict,
    test_user: User,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client logged in as test_user."""
    async with await _client_for(app, session_store, test_user) as ac:
        yield ac


@pytest.fixture
async def admin_client(
    app: FastAPI,
    session_store: dict,
    admin_user: User,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client logged in as an admin."""
    async with await _client_for(app, session_store, admin_user) as ac:
        yield ac


# -------------------------------------------------------------------------
# Program Fixtures
# -------------------------------------------------------------------------


@pytest.fixture
async def lifts(db_session: AsyncSession) -> dict[str, Lift]:
    squat = Lift(name="Squat", slug="squat")
    bench = Lift(name="Bench Press", slug="bench-press")
    db_session.add_all([squat, bench])
    await db_session.commit()
    return {"squat": squat, "bench": bench}


@pytest.fixture
async def program(db_session: AsyncSession, lifts: dict[str, Lift]) -> dict:
    """A three-week program with a squat day (Mon) and a bench day (Wed).

    Squat: 85% of training max, 3x5, nearest 5.
    Bench: ramp 50/60/70/80/90% of training max, threshold 70.
    """
    cycle = Cycle(name="Three Week Wave", length_weeks=3)
    db_session.add(cycle)
    await db_session.flush()

    squat_day = Day(name="Squat Day", slug="squat-day")
    bench_day = Day(name="Bench Day", slug="bench-day")
    db_session.add_all([squat_day, bench_day])
    await db_session.flush()

    weeks = []
    for number in range(1, 4):
        week = Week(cycle_id=cycle.id, week_number=number)
        db_session.add(week)
        await db_session.flush()
        # Added out of calendar order on purpose
        db_session.add(WeekDay(week_id=week.id, day_id=bench_day.id, day_of_week="WEDNESDAY"))
        db_session.add(WeekDay(week_id=week.id, day_id=squat_day.id, day_of_week="MONDAY"))
        weeks.append(week)

    squat_rx = Prescription(
        lift_id=lifts["squat"].id,
        load_strategy={
            "type": "PERCENT_OF",
            "reference_type": "TRAINING_MAX",
            "percentage": 85,
            "rounding_increment": 5,
        },
        set_scheme={"type": "FIXED", "sets": 3, "reps": 5},
        order=1,
    )
    bench_rx = Prescription(
        lift_id=lifts["bench"].id,
        load_strategy={
            "type": "PERCENT_OF",
            "reference_type": "TRAINING_MAX",
            "percentage": 100,
            "rounding_increment": 5,
        },
        set_scheme={
            "type": "RAMP",
            "steps": [
                {"percentage": 50, "reps": 5},
                {"percentage": 60, "reps": 5},
                {"percentage": 70, "reps": 3},
                {"percentage": 80, "reps": 3},
                {"percentage": 90, "reps": 1},
            ],
            "work_set_threshold": 70,
        },
        order=1,
    )
    db_session.add_all([squat_rx, bench_rx])
    await db_session.flush()
    db_session.add(DayPrescription(day_id=squat_day.id, prescription_id=squat_rx.id, order=1))
    db_session.add(DayPrescription(day_id=bench_day.id, prescription_id=bench_rx.id, order=1))

    prog = Program(name="Wave", slug="wave", cycle_id=cycle.id, default_rounding=2.5)
    db_session.add(prog)
    await db_session.commit()

    return {
        "program": prog,
        "cycle": cycle,
        "weeks": weeks,
        "squat_day": squat_day,
        "bench_day": bench_day,
        "squat_rx": squat_rx,
        "bench_rx": bench_rx,
        "lifts": lifts,
    }


@pytest.fixture
async def training_maxes(
    db_session: AsyncSession, test_user: User, lifts: dict[str, Lift]
) -> dict[str, LiftMax]:
    """Squat TM 400 and bench TM 500, effective a week ago."""
    week_ago = datetime.now(timezone.utc) - timedelta(days=7)
    squat = LiftMax(
        user_id=test_user.id,
        lift_id=lifts["squat"].id,
        max_type="TRAINING_MAX",
        value=400.0,
        effective_date=week_ago,
    )
    bench = LiftMax(
        user_id=test_user.id,
        lift_id=lifts["bench"].id,
        max_type="TRAINING_MAX",
        value=500.0,
        effective_date=week_ago,
    )
    db_session.add_all([squat, bench])
    await db_session.commit()
    return {"squat": squat, "bench": bench}


@pytest.fixture
async def lookup_tables(db_session: AsyncSession) -> dict:
    weekly = WeeklyLookup(
        name="5/3/1",
        entries=[
            {"week_number": 1, "percentages": [65, 75, 85], "reps": [5, 5, 5]},
            {"week_number": 2, "percentages": [70, 80, 90], "reps": [3, 3, 3]},
            {"week_number": 3, "percentage_modifier": 90},
        ],
    )
    daily = DailyLookup(
        name="Heavy/Light",
        entries=[
            {"day_identifier": "squat-day", "percentage_modifier": 100, "intensity_level": "HEAVY"},
            {"day_identifier": "bench-day", "percentage_modifier": 80, "intensity_level": "LIGHT"},
        ],
    )
    db_session.add_all([weekly, daily])
    await db_session.commit()
    return {"weekly": weekly, "daily": daily}
