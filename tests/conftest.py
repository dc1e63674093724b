# tests/conftest.py — Shared test fixtures
import os
from types import SimpleNamespace

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Settings are read at import time, so the environment goes first
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test_careportal.db"
os.environ["JWT_SECRET"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["OPENAI_API_KEY"] = ""
os.environ["ENV"] = "test"

from careportal.api.deps import get_summarizer
from careportal.core.errors import SummaryGenerationError
from careportal.core.security import hash_password
from careportal.db.base import Base
from careportal.db.models import (
    SOP,
    AdminLevelEnum,
    Hardware,
    HardwareSOP,
    Location,
    LocationAssignment,
    Membership,
    MembershipRoleEnum,
    Organization,
    Principal,
)
from careportal.db.session import get_session
from careportal.main import app
from careportal.services import notifications
from careportal.services.auth import make_token_for_principal

PASSWORD = "Password123!"
_password_hash = None


def password_hash() -> str:
    # bcrypt is slow on purpose; hash once per run
    global _password_hash
    if _password_hash is None:
        _password_hash = hash_password(PASSWORD)
    return _password_hash


def get_auth_headers(principal: Principal) -> dict:
    """Bearer headers for a principal"""
    return {"Authorization": f"Bearer {make_token_for_principal(principal)}"}


class FakeSummarizer:
    def __init__(self, text: str = "Router was rebooted and the uplink restored.", fail_for=()):
        self.text = text
        self.fail_for = set(fail_for)
        self.prompts: list[str] = []

    def summarize(self, ticket_text: str) -> str:
        self.prompts.append(ticket_text)
        if any(marker in ticket_text for marker in self.fail_for):
            raise SummaryGenerationError("Summary generation rate limited")
        return self.text


@pytest_asyncio.fixture(scope="function")
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine):
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def summarizer():
    return FakeSummarizer()


@pytest.fixture(autouse=True)
def enqueued(monkeypatch):
    """Captures queued side effects instead of talking to Redis"""
    calls: list[tuple[str, dict]] = []

    def fake_enqueue(event_type, payload):
        calls.append((event_type, dict(payload)))
        return f"job-{len(calls)}"

    monkeypatch.setattr(notifications, "enqueue", fake_enqueue)
    return calls


@pytest_asyncio.fixture(scope="function")
async def client(db_engine, summarizer):
    """HTTP test client with overridden DB and summarizer dependencies"""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_summarizer] = lambda: summarizer
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ---- factories ----

async def make_principal(db, email, *, platform_admin=False, admin_level=None, is_active=True, name=None):
    p = Principal(
        email=email,
        password_hash=password_hash(),
        display_name=name or email.split("@")[0],
        is_platform_admin=platform_admin,
        admin_level=admin_level,
        is_active=is_active,
    )
    db.add(p)
    await db.commit()
    await db.refresh(p)
    return p


async def make_org(db, name):
    org = Organization(name=name)
    db.add(org)
    await db.commit()
    await db.refresh(org)
    return org


async def make_location(db, org, name):
    loc = Location(org_id=org.id, name=name, city="Lisbon")
    db.add(loc)
    await db.commit()
    await db.refresh(loc)
    return loc


async def add_membership(db, principal, org, role=MembershipRoleEnum.employee):
    db.add(Membership(principal_id=principal.id, org_id=org.id, role=role))
    await db.commit()


async def assign_location(db, principal, location):
    db.add(LocationAssignment(principal_id=principal.id, location_id=location.id))
    await db.commit()


async def make_hardware(db, location, name="Dream Machine Pro", hardware_type="Router"):
    hw = Hardware(org_id=location.org_id, location_id=location.id, name=name, hardware_type=hardware_type)
    db.add(hw)
    await db.commit()
    await db.refresh(hw)
    return hw


async def make_sop(db, org, title, *, hardware=(), content="1. Power cycle.\n2. Check the uplink."):
    sop = SOP(org_id=org.id, title=title, content=content, version=1, is_active=True)
    db.add(sop)
    await db.flush()
    db.add_all([HardwareSOP(sop_id=sop.id, hardware_id=hw.id) for hw in hardware])
    await db.commit()
    await db.refresh(sop)
    return sop


@pytest_asyncio.fixture
async def world(db_session):
    """
    Two tenants:
      Acme   - locations lisbon (employee assigned) and porto, one router with
               a procedure, an org admin and an employee
      Globex - location berlin with its own employee
    plus a super admin and a read-only platform admin.
    """
    acme = await make_org(db_session, "Acme")
    globex = await make_org(db_session, "Globex")
    lisbon = await make_location(db_session, acme, "Lisbon Office")
    porto = await make_location(db_session, acme, "Porto Office")
    berlin = await make_location(db_session, globex, "Berlin Office")

    super_admin = await make_principal(
        db_session, "root@example.com", platform_admin=True, admin_level=AdminLevelEnum.super_admin
    )
    technician = await make_principal(
        db_session, "tech@example.com", platform_admin=True, admin_level=AdminLevelEnum.technician
    )
    read_only = await make_principal(
        db_session, "auditor@example.com", platform_admin=True, admin_level=AdminLevelEnum.read_only
    )

    acme_admin = await make_principal(db_session, "boss@acme.example.com")
    await add_membership(db_session, acme_admin, acme, MembershipRoleEnum.org_admin)

    acme_employee = await make_principal(db_session, "alice@acme.example.com")
    await add_membership(db_session, acme_employee, acme)
    await assign_location(db_session, acme_employee, lisbon)

    globex_employee = await make_principal(db_session, "bob@globex.example.com")
    await add_membership(db_session, globex_employee, globex)
    await assign_location(db_session, globex_employee, berlin)

    router = await make_hardware(db_session, lisbon)
    printer = await make_hardware(db_session, lisbon, name="LaserJet", hardware_type="Printer")
    router_sop = await make_sop(db_session, acme, "Router restart", hardware=[router])

    return SimpleNamespace(
        acme=acme,
        globex=globex,
        lisbon=lisbon,
        porto=porto,
        berlin=berlin,
        super_admin=super_admin,
        technician=technician,
        read_only=read_only,
        acme_admin=acme_admin,
        acme_employee=acme_employee,
        globex_employee=globex_employee,
        router=router,
        printer=printer,
        router_sop=router_sop,
    )


async def create_ticket(client, principal, location, **extra):
    body = {
        "location_id": location.id,
        "title": extra.pop("title", "Internet is down"),
        "description": extra.pop("description", "No connectivity since this morning"),
    }
    body.update(extra)
    res = await client.post("/api/tickets", headers=get_auth_headers(principal), json=body)
    assert res.status_code == 201, res.text
    return res.json()


async def set_status(client, principal, ticket_id, status, comment=None):
    return await client.post(
        f"/api/tickets/{ticket_id}/status",
        headers=get_auth_headers(principal),
        json={"status": status, "comment": comment},
    )


async def close_ticket(client, ticket_id, principal):
    res = await set_status(client, principal, ticket_id, "closed")
    assert res.status_code == 200, res.text
    return res.json()
