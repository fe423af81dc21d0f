"""Shared test fixtures for backend tests."""

import os

# Settings are read at import time; point them at throwaway backends first.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["LOG_FORMAT"] = "text"
os.environ["ENVIRONMENT"] = "test"

from types import SimpleNamespace  # noqa: E402
from typing import AsyncGenerator  # noqa: E402

import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.database import Base  # noqa: E402
from app.main import app  # noqa: E402
from app.api.deps import get_redis, get_session_factory  # noqa: E402
from app.auth.jwt import create_access_token  # noqa: E402
from app.auth.passwords import hash_password  # noqa: E402
from app.auth.roles import Role  # noqa: E402
from app.models import (  # noqa: E402
    Client,
    ClientCategory,
    Department,
    Employee,
    Specialization,
    Task,
    TaskCategory,
    User,
)
from app.realtime.hub import NotificationHub  # noqa: E402
from tests.fakes import FakeRedis  # noqa: E402

TEST_PASSWORD = "Passw0rd!"
_PASSWORD_HASH = hash_password(TEST_PASSWORD)


def make_auth_header(user: User) -> dict:
    """Create an Authorization header with a valid JWT."""
    token = create_access_token(user.id, user.email, user.role_level)
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """A fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def org(session_factory) -> SimpleNamespace:
    """
    A small organization:

      department 5 (Marketing)     leader5, employee5, employee5b; client5; task5
      department 7 (Development)   leader7, employee7; client7; task7
      owner, manager, accountant, and a team leader without an employee profile
    """
    async with session_factory() as db:
        marketing = Department(id=5, name_ar="التسويق", name_en="Marketing")
        development = Department(id=7, name_ar="التطوير", name_en="Development")
        db.add_all([marketing, development])
        await db.flush()

        spec5 = Specialization(department_id=5, name_ar="تسويق رقمي", name_en="Digital Marketing")
        spec7 = Specialization(department_id=7, name_ar="تطوير الويب", name_en="Web Development")
        db.add_all([spec5, spec7])
        await db.flush()

        cat5 = ClientCategory(name_ar="حملات", name_en="Campaigns", specialization_id=spec5.id)
        cat7 = ClientCategory(name_ar="مواقع", name_en="Websites", specialization_id=spec7.id)
        db.add_all([cat5, cat7])
        task_cat5 = TaskCategory(name_ar="تصميم", name_en="Design", specialization_id=spec5.id)
        retired_cat = TaskCategory(name_ar="قديم", name_en="Retired", is_active=False)
        db.add_all([task_cat5, retired_cat])
        await db.flush()

        def user(email: str, role: Role, **kw) -> User:
            u = User(email=email, password_hash=_PASSWORD_HASH, role_level=int(role), **kw)
            db.add(u)
            return u

        owner = user("owner@acme.com", Role.OWNER, is_owner=True)
        manager = user("manager@acme.com", Role.DIRECT_MANAGER)
        leader5 = user("leader5@acme.com", Role.TEAM_LEADER)
        leader7 = user("leader7@acme.com", Role.TEAM_LEADER)
        employee5 = user("employee5@acme.com", Role.EMPLOYEE)
        employee5b = user("employee5b@acme.com", Role.EMPLOYEE)
        employee7 = user("employee7@acme.com", Role.EMPLOYEE)
        accountant = user("accountant@acme.com", Role.ACCOUNTANT)
        orphan_leader = user("orphan@acme.com", Role.TEAM_LEADER)
        await db.flush()

        def profile(u: User, number: str, department_id: int | None) -> Employee:
            e = Employee(
                user_id=u.id,
                employee_number=number,
                full_name_ar=u.email.split("@")[0],
                full_name_en=u.email.split("@")[0],
                department_id=department_id,
            )
            db.add(e)
            return e

        emp_leader5 = profile(leader5, "E-005-1", 5)
        emp_leader7 = profile(leader7, "E-007-1", 7)
        emp_employee5 = profile(employee5, "E-005-2", 5)
        emp_employee5b = profile(employee5b, "E-005-3", 5)
        emp_employee7 = profile(employee7, "E-007-2", 7)
        emp_accountant = profile(accountant, "E-FIN-1", None)
        await db.flush()

        client5 = Client(
            full_name_ar="عميل التسويق", full_name_en="Marketing Client",
            primary_phone="0500000005", primary_email="client5@example.com",
            category_id=cat5.id, assigned_employee_id=emp_employee5.id,
            contract_number="CNT-5", created_by=owner.id,
        )
        client7 = Client(
            full_name_ar="عميل التطوير", full_name_en="Development Client",
            primary_phone="0500000007", primary_email="client7@example.com",
            category_id=cat7.id, assigned_employee_id=emp_employee7.id,
            contract_number="CNT-7", created_by=owner.id,
        )
        db.add_all([client5, client7])
        await db.flush()

        task5 = Task(title="Launch campaign", client_id=client5.id,
                     assigned_to=emp_employee5.id, created_by=leader5.id)
        task7 = Task(title="Build landing page", client_id=client7.id,
                     assigned_to=emp_employee7.id, created_by=manager.id)
        unassigned = Task(title="Triage inbox", created_by=manager.id)
        db.add_all([task5, task7, unassigned])
        await db.commit()

        return SimpleNamespace(
            owner=owner, manager=manager, leader5=leader5, leader7=leader7,
            employee5=employee5, employee5b=employee5b, employee7=employee7,
            accountant=accountant, orphan_leader=orphan_leader,
            emp_leader5=emp_leader5, emp_leader7=emp_leader7,
            emp_employee5=emp_employee5, emp_employee5b=emp_employee5b,
            emp_employee7=emp_employee7, emp_accountant=emp_accountant,
            cat5=cat5, cat7=cat7, spec5=spec5, spec7=spec7,
            task_cat5=task_cat5, retired_cat=retired_cat,
            client5=client5, client7=client7,
            task5=task5, task7=task7, unassigned_task=unassigned,
        )


@pytest_asyncio.fixture
async def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest_asyncio.fixture
async def client(session_factory, fake_redis) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated HTTP client over the test database and fake Redis."""
    async def _get_redis():
        yield fake_redis

    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_redis] = _get_redis
    app.state.hub = NotificationHub()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
