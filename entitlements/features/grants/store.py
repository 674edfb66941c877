"""
Shared grant store queries.

Writes go through `upsert`, which issues a dialect-specific
INSERT ... ON CONFLICT DO UPDATE so concurrent writers of the same natural
key serialize in the database instead of racing on a read-then-insert.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Type, TypeVar

from sqlalchemy import func, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.core.database.base import Base
from entitlements.features.catalog.models import Permission, RoleDefaultPermission
from entitlements.features.grants.models import UserDataPermission, UserModule
from entitlements.features.users.models import User
from entitlements.utils import utcnow


ModelT = TypeVar("ModelT", bound=Base)


def not_expired(column):
    """SQL clause: the row has no expiry or expires in the future."""
    return or_(column.is_(None), column > utcnow())


def active_data_grant_clause(user_id: str, company_id: str):
    return (
        UserDataPermission.user_id == user_id,
        UserDataPermission.company_id == company_id,
        not_expired(UserDataPermission.expires_at),
    )


async def get_permission_by_key(db: AsyncSession, permission_key: str) -> Optional[Permission]:
    return await db.scalar(select(Permission).where(Permission.permission_key == permission_key))


async def granted_keys(db: AsyncSession, user_id: str, company_id: str) -> Set[str]:
    """Keys of the user's non-expired positive data grants in the company."""
    result = await db.execute(
        select(Permission.permission_key)
        .join(UserDataPermission, UserDataPermission.permission_id == Permission.id)
        .where(*active_data_grant_clause(user_id, company_id), UserDataPermission.is_granted.is_(True))
    )
    return set(result.scalars().all())


async def denied_keys(db: AsyncSession, user_id: str, company_id: str) -> Set[str]:
    """Keys of the user's non-expired explicit denials in the company."""
    result = await db.execute(
        select(Permission.permission_key)
        .join(UserDataPermission, UserDataPermission.permission_id == Permission.id)
        .where(*active_data_grant_clause(user_id, company_id), UserDataPermission.is_granted.is_(False))
    )
    return set(result.scalars().all())


async def role_default_keys(db: AsyncSession, role_name: str) -> List[str]:
    result = await db.execute(
        select(Permission.permission_key)
        .join(RoleDefaultPermission, RoleDefaultPermission.permission_id == Permission.id)
        .where(RoleDefaultPermission.role_name == role_name)
        .order_by(Permission.permission_key)
    )
    return list(result.scalars().all())


async def active_module_grant_count(db: AsyncSession, company_id: str, module_id: str) -> int:
    """Active company members holding an enabled, non-expired grant of the module."""
    count = await db.scalar(
        select(func.count(UserModule.id))
        .join(User, User.id == UserModule.user_id)
        .where(
            User.company_id == company_id,
            User.is_active.is_(True),
            UserModule.company_id == company_id,
            UserModule.module_id == module_id,
            UserModule.is_enabled.is_(True),
            not_expired(UserModule.expires_at),
        )
    )
    return int(count or 0)


async def upsert(
    db: AsyncSession,
    model: Type[ModelT],
    conflict_columns: Sequence[str],
    values: Dict[str, Any],
    update_columns: Iterable[str],
) -> ModelT:
    """
    Insert a row or update it in place when its natural key already exists.

    Returns the stored row, reloaded so the identity map reflects what the
    database now holds.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        insert = pg_insert
    elif dialect == "sqlite":
        insert = sqlite_insert
    else:
        raise RuntimeError(f"Upsert is not supported on dialect {dialect!r}")

    stmt = insert(model).values(**values)
    update_set = {name: stmt.excluded[name] for name in update_columns}
    update_set["updated_at"] = func.now()
    stmt = stmt.on_conflict_do_update(
        index_elements=[getattr(model, name) for name in conflict_columns],
        set_=update_set,
    )
    await db.execute(stmt)

    key_clause = [getattr(model, name) == values[name] for name in conflict_columns]
    row = await db.scalar(
        select(model).where(*key_clause).execution_options(populate_existing=True)
    )
    if row is None:
        raise RuntimeError(f"{model.__name__} upsert failed to materialise")
    return row


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def snapshot(row: Optional[Base], fields: Sequence[str]) -> Optional[Dict[str, Any]]:
    """JSON-safe copy of selected columns, used for audit before/after values."""
    if row is None:
        return None
    return {name: _jsonable(getattr(row, name)) for name in fields}
