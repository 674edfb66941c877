"""
Effective permission resolver.

Merges the three permission sources for one (user, company) pair:

1. role: the user's standard role defaults, supplemented or replaced by an
   active custom role;
2. data: the user's non-expired data grants (explicit denials remove keys);
3. module: every key unlocked by an active module that is core-tier, or that
   the company has enabled and the user holds an enabled, non-expired grant for.

Nothing is cached; every call reads the current catalog and grant state.
"""
from dataclasses import asdict, dataclass
from typing import Dict, List, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.core.errors import NotFoundError
from entitlements.features.catalog.models import Module, Permission, TIER_ORDER
from entitlements.features.grants.models import CompanyModule, CustomRole, UserModule
from entitlements.features.grants.store import denied_keys, granted_keys, not_expired, role_default_keys
from entitlements.features.users.dependencies import get_company
from entitlements.features.users.models import User, UserRole
from entitlements.utils import get_logger


log = get_logger(__name__)


SOURCE_ROLE = "role"
SOURCE_DATA = "data"
SOURCE_MODULE = "module"

# Higher wins when several sources grant the same key
SOURCE_PRIORITY: Dict[str, int] = {SOURCE_ROLE: 1, SOURCE_MODULE: 2, SOURCE_DATA: 3}

DIRECT_GRANT = "direct_grant"


@dataclass(frozen=True)
class EffectivePermission:
    permission_key: str
    permission_name: str
    permission_group: str
    source: str
    granted_via: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


async def _catalog(db: AsyncSession) -> Dict[str, Tuple[str, str]]:
    result = await db.execute(
        select(Permission.permission_key, Permission.permission_name, Permission.permission_group)
    )
    return {key: (name, group) for key, name, group in result.all()}


async def _role_keys(db: AsyncSession, user: User) -> List[Tuple[str, str]]:
    """(key, granted_via) pairs from role defaults and the active custom role."""
    defaults = [(key, user.role) for key in await role_default_keys(db, user.role)]

    if not user.custom_role_id:
        return defaults

    custom_role = await db.scalar(
        select(CustomRole).where(
            CustomRole.id == user.custom_role_id,
            CustomRole.company_id == user.company_id,
            CustomRole.is_active.is_(True),
        )
    )
    if custom_role is None:
        return defaults

    custom = [(key, f"custom_role:{custom_role.name}") for key in custom_role.permissions or []]
    if custom_role.replaces_role_defaults:
        return custom
    return defaults + custom


def module_active_for(module: Module, company_enabled: bool, user_granted: bool) -> bool:
    """Core modules are always active; others need company provisioning and a user grant."""
    return module.is_core or (company_enabled and user_granted)


async def _module_keys(db: AsyncSession, user_id: str, company_id: str) -> List[Tuple[str, str]]:
    """(key, module name) pairs from every module active for the user."""
    modules = (await db.execute(select(Module).where(Module.is_active.is_(True)))).scalars().all()

    enabled_ids = set((await db.execute(
        select(CompanyModule.module_id).where(
            CompanyModule.company_id == company_id,
            CompanyModule.is_enabled.is_(True),
        )
    )).scalars().all())

    granted_ids = set((await db.execute(
        select(UserModule.module_id).where(
            UserModule.user_id == user_id,
            UserModule.company_id == company_id,
            UserModule.is_enabled.is_(True),
            not_expired(UserModule.expires_at),
        )
    )).scalars().all())

    pairs: List[Tuple[str, str]] = []
    for module in sorted(modules, key=lambda m: (TIER_ORDER.get(m.tier, 99), m.name)):
        if module_active_for(module, module.id in enabled_ids, module.id in granted_ids):
            pairs.extend((key, module.name) for key in module.included_permissions or [])
    return pairs


def _ordered(entries: List[EffectivePermission]) -> List[EffectivePermission]:
    return sorted(entries, key=lambda e: (e.permission_group, e.permission_key))


async def resolve(db: AsyncSession, user_id: str, company_id: str) -> List[EffectivePermission]:
    """
    Resolve the effective permission set of a user inside a company.

    Raises:
        NotFoundError: unknown user or company, or the user is not a member
    """
    user = await db.scalar(select(User).where(User.id == user_id))
    if user is None:
        raise NotFoundError("User not found")
    await get_company(db, company_id)

    catalog = await _catalog(db)

    if user.is_super_admin:
        return _ordered([
            EffectivePermission(key, name, group, SOURCE_ROLE, UserRole.SUPER_ADMIN.value)
            for key, (name, group) in catalog.items()
        ])

    if user.company_id != company_id:
        raise NotFoundError("User not found in this company")

    chosen: Dict[str, Tuple[str, str]] = {}

    def offer(key: str, source: str, granted_via: str) -> None:
        if key not in catalog:
            log.debug(f"Skipping unknown permission key {key!r} from {source}:{granted_via}")
            return
        current = chosen.get(key)
        if current is None or SOURCE_PRIORITY[source] > SOURCE_PRIORITY[current[0]]:
            chosen[key] = (source, granted_via)

    for key, via in await _role_keys(db, user):
        offer(key, SOURCE_ROLE, via)
    for key, via in await _module_keys(db, user_id, company_id):
        offer(key, SOURCE_MODULE, via)
    for key in sorted(await granted_keys(db, user_id, company_id)):
        offer(key, SOURCE_DATA, DIRECT_GRANT)

    for key in await denied_keys(db, user_id, company_id):
        chosen.pop(key, None)

    return _ordered([
        EffectivePermission(key, catalog[key][0], catalog[key][1], source, via)
        for key, (source, via) in chosen.items()
    ])


async def has_permission(db: AsyncSession, user_id: str, company_id: str, permission_key: str) -> bool:
    """Membership of `permission_key` in the resolved set."""
    resolved = await resolve(db, user_id, company_id)
    return any(entry.permission_key == permission_key for entry in resolved)
