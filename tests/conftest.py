"""
Shared pytest fixtures.

Provides:
- An isolated SQLite database per test (tables created from the models)
- A seeded world: two companies, their users, a small catalog and modules
- An HTTP client against the FastAPI app with the test database wired in
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import jwt
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from entitlements.core import config
from entitlements.core.database.engine import get_db, init_db
from entitlements.features.catalog.models import Module, Permission, PermissionTemplate, RoleDefaultPermission
from entitlements.features.companies.models import Company
from entitlements.features.users.models import User


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
async def engine(tmp_path):
    """Fresh SQLite database file for one test."""
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        poolclass=NullPool,
    )
    await init_db(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# ============================================================================
# Seeded world
# ============================================================================

PERMISSIONS = [
    # key, group, requires, is_foundation
    ("dashboard.view", "Dashboard", [], True),
    ("analytics.view", "Dashboard", ["dashboard.view"], True),
    ("expenses.view", "Expenses", [], True),
    ("expenses.create", "Expenses", ["expenses.view"], True),
    ("expenses.review", "Expenses", ["expenses.view"], True),
    ("expenses.approve", "Expenses", ["expenses.view", "expenses.review"], True),
    ("expenses.delete", "Expenses", ["expenses.view"], True),
    ("ingrid.view", "Ingrid AI", [], False),
    ("ingrid.configure", "Ingrid AI", ["ingrid.view"], False),
]

ROLE_DEFAULTS = {
    "user": ["dashboard.view", "expenses.view"],
    "admin": ["dashboard.view", "expenses.view", "expenses.review"],
}


@pytest.fixture
async def world(db):
    """
    Two companies (acme, globex), a super-admin, an admin and a plain user
    per company, the permission catalog above, three modules and role defaults.
    """
    acme = Company(name="Acme")
    globex = Company(name="Globex")
    db.add_all([acme, globex])
    await db.flush()

    users = {
        "root": User(email="root@example.com", full_name="Root", role="super-admin", company_id=acme.id),
        "acme_admin": User(email="admin@acme.test", full_name="Acme Admin", role="admin", company_id=acme.id),
        "alice": User(email="alice@acme.test", full_name="Alice", role="user", company_id=acme.id),
        "bob": User(email="bob@acme.test", full_name="Bob", role="user", company_id=acme.id),
        "globex_admin": User(email="admin@globex.test", full_name="Globex Admin", role="admin", company_id=globex.id),
        "gina": User(email="gina@globex.test", full_name="Gina", role="user", company_id=globex.id),
    }
    db.add_all(users.values())

    permissions = {}
    for order, (key, group, requires, is_foundation) in enumerate(PERMISSIONS):
        permissions[key] = Permission(
            permission_key=key,
            permission_name=key.replace(".", " ").title(),
            permission_group=group,
            ui_display_order=order,
            requires=requires,
            is_foundation=is_foundation,
        )
    db.add_all(permissions.values())

    modules = {
        "dashboard": Module(
            name="Dashboard", tier="core",
            default_monthly_price=Decimal("0"), default_per_user_price=Decimal("0"),
            included_permissions=["dashboard.view", "analytics.view"],
        ),
        "ingrid": Module(
            name="Ingrid AI", tier="premium",
            default_monthly_price=Decimal("50"), default_per_user_price=Decimal("5"),
            included_permissions=["ingrid.view", "ingrid.configure", "ghost.unknown"],
        ),
        "legacy": Module(
            name="Legacy Reports", tier="standard", is_active=False,
            default_monthly_price=Decimal("10"), default_per_user_price=Decimal("1"),
            included_permissions=["expenses.delete"],
        ),
    }
    db.add_all(modules.values())
    await db.flush()

    for role_name, keys in ROLE_DEFAULTS.items():
        for key in keys:
            db.add(RoleDefaultPermission(role_name=role_name, permission_id=permissions[key].id))

    system_template = PermissionTemplate(
        template_name="expense_reviewer",
        display_name="Expense Reviewer",
        target_role="user",
        data_permissions=["expenses.view", "expenses.review", "expenses.approve"],
        modules=[],
        is_system_template=True,
    )
    db.add(system_template)
    await db.commit()

    return SimpleNamespace(
        acme=acme,
        globex=globex,
        users=SimpleNamespace(**users),
        permissions=permissions,
        modules=SimpleNamespace(**modules),
        system_template=system_template,
    )


def future(days: int = 30) -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=days)


def past(days: int = 1) -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=days)


# ============================================================================
# API client Fixtures
# ============================================================================

TEST_JWT_SECRET = "test-secret"


@pytest.fixture
def token_for(monkeypatch):
    """Build a signed bearer token for a user."""
    monkeypatch.setattr(config, "JWT_SECRET", TEST_JWT_SECRET)

    def _token(user: User) -> dict:
        token = jwt.encode(
            {"sub": user.id, "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
            TEST_JWT_SECRET,
            algorithm=config.JWT_ALGORITHM,
        )
        return {"Authorization": f"Bearer {token}"}

    return _token


@pytest.fixture
async def client(session_factory, world):
    """HTTP client against the app, one committed transaction per request."""
    from entitlements.main import app

    async def _get_test_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_test_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http
    app.dependency_overrides.clear()
