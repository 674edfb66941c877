"""
Catalog reads and authoring.

Permission authoring is where the dependency graph is kept sound: every
`requires` entry must name an existing permission, never the permission
itself, and the graph must stay acyclic.
"""
import re
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.core.errors import ConflictError, NotFoundError, ValidationError
from entitlements.features.catalog.models import Module, ModuleTier, Permission, TIER_ORDER
from entitlements.features.grants.models import CompanyModule, UserDataPermission
from entitlements.features.permissions.validator import find_dependency_cycle, requires_map
from entitlements.features.users.dependencies import get_company, require_super_admin
from entitlements.features.users.models import User
from entitlements.utils import get_logger


log = get_logger(__name__)


PERMISSION_KEY_PATTERN = re.compile(r"^[a-z0-9_]+(\.[a-z0-9_]+)*$")

# Columns editable through update_permission
EDITABLE_FIELDS = (
    "permission_name", "description", "human_description", "permission_group",
    "ui_display_order", "is_foundation", "requires",
)


def validate_permission_key(permission_key: str) -> None:
    """Keys are dotted lowercase segments, e.g. `expenses.approve`."""
    if not permission_key or not PERMISSION_KEY_PATTERN.match(permission_key):
        raise ValidationError("Invalid permission key format", {"permission_key": permission_key})


async def get_permission(db: AsyncSession, permission_key: str) -> Permission:
    permission = await db.scalar(select(Permission).where(Permission.permission_key == permission_key))
    if permission is None:
        raise NotFoundError("Permission not found", {"permission_key": permission_key})
    return permission


async def company_unlocked_keys(db: AsyncSession, company_id: str) -> set:
    """Keys unlocked for a company by core modules or modules it has enabled."""
    result = await db.execute(
        select(Module.included_permissions).where(
            Module.is_active.is_(True),
            or_(
                Module.tier == ModuleTier.CORE.value,
                exists().where(
                    CompanyModule.module_id == Module.id,
                    CompanyModule.company_id == company_id,
                    CompanyModule.is_enabled.is_(True),
                ),
            ),
        )
    )
    keys = set()
    for included in result.scalars().all():
        keys.update(included or [])
    return keys


async def list_permissions(
    db: AsyncSession,
    actor: User,
    *,
    company_id: Optional[str] = None,
    foundation_only: bool = False,
    grouped: bool = False,
) -> Dict[str, Any]:
    """
    List catalog permissions ordered by group, display order and key.

    With `company_id`, only permissions available to that company are
    returned: foundation permissions plus those unlocked by an active module.
    """
    stmt = select(Permission).order_by(
        Permission.permission_group, Permission.ui_display_order, Permission.permission_key
    )
    if foundation_only:
        stmt = stmt.where(Permission.is_foundation.is_(True))

    permissions = list((await db.execute(stmt)).scalars().all())

    if company_id is not None:
        if not actor.is_super_admin and actor.company_id != company_id:
            raise NotFoundError("Company not found")
        await get_company(db, company_id)
        unlocked = await company_unlocked_keys(db, company_id)
        permissions = [p for p in permissions if p.is_foundation or p.permission_key in unlocked]

    payload: Dict[str, Any] = {"permissions": permissions, "total": len(permissions)}
    if grouped:
        groups: Dict[str, List[Permission]] = {}
        for permission in permissions:
            groups.setdefault(permission.permission_group, []).append(permission)
        payload["groups"] = groups
        payload["group_names"] = list(groups)
    return payload


async def get_permission_dependencies(db: AsyncSession, permission_key: str) -> Dict[str, Any]:
    """A permission and its direct prerequisites, in declared order."""
    permission = await get_permission(db, permission_key)
    requires = list(permission.requires or [])

    found: Dict[str, Permission] = {}
    if requires:
        result = await db.execute(select(Permission).where(Permission.permission_key.in_(requires)))
        found = {p.permission_key: p for p in result.scalars().all()}

    return {
        "permission": permission,
        "requires": [found[key] for key in requires if key in found],
        "has_dependencies": bool(requires),
    }


async def list_modules(db: AsyncSession, tier: Optional[str] = None) -> List[Module]:
    """Active modules, core first, then standard, then premium; by name within a tier."""
    stmt = select(Module).where(Module.is_active.is_(True))
    if tier:
        stmt = stmt.where(Module.tier == tier)
    modules = (await db.execute(stmt)).scalars().all()
    return sorted(modules, key=lambda m: (TIER_ORDER.get(m.tier, 99), m.name))


# ============================================================================
# Authoring (super-admin)
# ============================================================================

async def _validate_requires(db: AsyncSession, permission_key: str, requires: Sequence[str]) -> List[str]:
    requires = list(requires)
    if permission_key in requires:
        raise ValidationError("A permission cannot require itself", {"permission_key": permission_key})
    if len(set(requires)) != len(requires):
        raise ValidationError("Duplicate keys in requires", {"requires": requires})

    catalog = list((await db.execute(select(Permission))).scalars().all())
    known = {p.permission_key for p in catalog}
    missing = [key for key in requires if key not in known]
    if missing:
        raise ValidationError("Unknown permissions in requires", {"missing_keys": missing})

    graph = requires_map(catalog)
    graph[permission_key] = requires
    cycle = find_dependency_cycle(graph)
    if cycle:
        raise ValidationError("Permission dependencies would form a cycle", {"cycle": cycle})
    return requires


async def create_permission(db: AsyncSession, actor: User, data: Dict[str, Any]) -> Permission:
    require_super_admin(actor)
    permission_key = data["permission_key"]
    validate_permission_key(permission_key)

    if await db.scalar(select(Permission.id).where(Permission.permission_key == permission_key)):
        raise ConflictError("Permission with this key already exists", {"permission_key": permission_key})

    data = dict(data)
    data["requires"] = await _validate_requires(db, permission_key, data.get("requires") or [])

    permission = Permission(**data)
    db.add(permission)
    await db.flush()
    await db.refresh(permission)

    log.info(f"Created permission {permission_key} (requires={permission.requires})")
    return permission


async def update_permission(
    db: AsyncSession,
    actor: User,
    permission_key: str,
    changes: Dict[str, Any],
) -> Permission:
    """
    Edit a non-system permission.

    `requires` cannot change once any user holds a grant or denial of the
    permission; existing grants were validated against the old list.
    """
    require_super_admin(actor)
    permission = await get_permission(db, permission_key)
    if permission.is_system:
        raise ConflictError("System permissions cannot be modified", {"permission_key": permission_key})

    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError("Fields cannot be updated", {"fields": sorted(unknown)})
    nulled = [f for f, v in changes.items() if v is None and f not in ("description", "human_description", "requires")]
    if nulled:
        raise ValidationError("Fields cannot be null", {"fields": sorted(nulled)})

    if "requires" in changes:
        new_requires = list(changes["requires"] or [])
        if new_requires != list(permission.requires or []):
            in_use = await db.scalar(
                select(exists().where(UserDataPermission.permission_id == permission.id))
            )
            if in_use:
                raise ConflictError(
                    "Dependencies of a granted permission cannot change",
                    {"permission_key": permission_key},
                )
            changes = {**changes, "requires": await _validate_requires(db, permission_key, new_requires)}

    for field, value in changes.items():
        setattr(permission, field, value)
    await db.flush()
    await db.refresh(permission)

    log.info(f"Updated permission {permission_key}: {sorted(changes)}")
    return permission
