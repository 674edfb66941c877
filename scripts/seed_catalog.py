"""
Seed script to populate the entitlement catalog.

Run this script after database initialization to create:
- Data permissions (with their prerequisite keys)
- Modules by tier with default pricing
- Role default permission sets
- System permission templates

The catalog is validated before anything is written: every `requires` and
module key must exist and the dependency graph must be acyclic.

Usage:
    python -m scripts.seed_catalog
"""
import asyncio
from decimal import Decimal
from typing import Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.core.database.engine import AsyncSessionLocal, init_db
from entitlements.features.catalog.models import Module, Permission, PermissionTemplate, RoleDefaultPermission
from entitlements.features.permissions.validator import find_dependency_cycle
from entitlements.utils import get_logger


log = get_logger(__name__)


PERMISSION_GROUPS = {
    "company": "Company Configuration",
    "customers": "Customer Relationship Management",
    "vendors": "Vendor and Supplier Management",
    "expenses": "Expense Operations",
    "gl_accounts": "GL Account Management",
    "expense_categories": "Expense Category Management",
    "users": "User Management",
    "notifications": "Notification Management",
    "dashboard": "Dashboard & Analytics",
    "analytics": "Dashboard & Analytics",
    "ingrid": "Ingrid AI",
}


# (key, name, requires, is_foundation, human description)
DEFAULT_PERMISSIONS = [
    ("dashboard.view", "View Dashboard", [], True, "See the company dashboard"),
    ("analytics.view", "View Analytics", ["dashboard.view"], True, "See standard charts and KPIs"),
    ("analytics.advanced", "Advanced Analytics", ["analytics.view"], False, "Build custom reports"),
    ("analytics.export", "Export Analytics", ["analytics.view"], False, "Export reports to Excel or PDF"),

    ("expenses.view", "View Expenses", [], True, "See expenses"),
    ("expenses.create", "Create Expenses", ["expenses.view"], True, "Submit new expenses"),
    ("expenses.edit", "Edit Expenses", ["expenses.view"], True, "Change submitted expenses"),
    ("expenses.review", "Review Expenses", ["expenses.view"], True, "Mark expenses as reviewed"),
    ("expenses.approve", "Approve Expenses", ["expenses.view", "expenses.review"], True, "Approve reviewed expenses"),
    ("expenses.delete", "Delete Expenses", ["expenses.view", "expenses.edit"], True, "Remove expenses"),

    ("vendors.view", "View Vendors", [], True, "See vendors"),
    ("vendors.create", "Create Vendors", ["vendors.view"], True, "Add vendors"),
    ("vendors.edit", "Edit Vendors", ["vendors.view"], True, "Change vendors"),
    ("vendors.delete", "Delete Vendors", ["vendors.view", "vendors.edit"], True, "Remove vendors"),

    ("customers.view", "View Customers", [], True, "See customers"),
    ("customers.create", "Create Customers", ["customers.view"], True, "Add customers"),
    ("customers.edit", "Edit Customers", ["customers.view"], True, "Change customers"),
    ("customers.delete", "Delete Customers", ["customers.view", "customers.edit"], True, "Remove customers"),

    ("gl_accounts.view", "View GL Accounts", [], True, "See the chart of accounts"),
    ("gl_accounts.create", "Create GL Accounts", ["gl_accounts.view"], True, "Add GL accounts"),
    ("gl_accounts.edit", "Edit GL Accounts", ["gl_accounts.view"], True, "Change GL accounts"),
    ("gl_accounts.delete", "Delete GL Accounts", ["gl_accounts.view", "gl_accounts.edit"], True, "Remove GL accounts"),

    ("expense_categories.view", "View Expense Categories", [], True, "See expense categories"),
    ("expense_categories.create", "Create Expense Categories", ["expense_categories.view"], True, "Add categories"),
    ("expense_categories.edit", "Edit Expense Categories", ["expense_categories.view"], True, "Change categories"),
    ("expense_categories.delete", "Delete Expense Categories",
     ["expense_categories.view", "expense_categories.edit"], True, "Remove categories"),

    ("users.view", "View Users", [], True, "See company users"),
    ("users.create", "Create Users", ["users.view"], True, "Invite users"),
    ("users.edit", "Edit Users", ["users.view"], True, "Change user details"),

    ("company.settings.view", "View Company Settings", [], True, "See company settings"),
    ("company.settings.edit", "Edit Company Settings", ["company.settings.view"], True, "Change company settings"),

    ("notifications.view", "View Notifications", [], True, "Receive notifications"),
    ("notifications.manage", "Manage Notifications", ["notifications.view"], True, "Configure notification rules"),

    ("ingrid.view", "Use Ingrid AI", [], False, "Chat with the AI assistant"),
    ("ingrid.approve", "Approve Ingrid Suggestions", ["ingrid.view"], False, "Accept AI suggestions"),
    ("ingrid.configure", "Configure Ingrid AI", ["ingrid.view"], False, "Change AI settings"),
    ("ingrid.analytics", "Ingrid Analytics", ["ingrid.view", "analytics.view"], False, "See AI usage analytics"),
]

# (name, tier, category, monthly, per user, included keys)
DEFAULT_MODULES = [
    ("Dashboard", "core", "core", "0", "0", ["dashboard.view", "analytics.view"]),
    ("Expense Management", "standard", "operations", "25", "3",
     ["expenses.view", "expenses.create", "expenses.edit", "expenses.approve", "expenses.review"]),
    ("Vendors", "standard", "operations", "15", "2",
     ["vendors.view", "vendors.create", "vendors.edit", "vendors.delete"]),
    ("Customers", "standard", "operations", "15", "2",
     ["customers.view", "customers.create", "customers.edit", "customers.delete"]),
    ("GL Accounts", "standard", "finance", "20", "2",
     ["gl_accounts.view", "gl_accounts.create", "gl_accounts.edit", "gl_accounts.delete"]),
    ("Expense Categories", "standard", "finance", "10", "1",
     ["expense_categories.view", "expense_categories.create", "expense_categories.edit", "expense_categories.delete"]),
    ("Advanced Analytics", "premium", "analytics", "40", "6", ["analytics.advanced", "analytics.export"]),
    ("Ingrid AI", "premium", "ai", "50", "5",
     ["ingrid.view", "ingrid.approve", "ingrid.configure", "ingrid.analytics"]),
]

DEFAULT_ROLE_PERMISSIONS: Dict[str, List[str]] = {
    "user": [
        "dashboard.view", "expenses.view", "expenses.create", "notifications.view",
    ],
    "admin": [
        "dashboard.view", "analytics.view",
        "expenses.view", "expenses.create", "expenses.edit", "expenses.review", "expenses.approve",
        "vendors.view", "customers.view",
        "users.view", "users.create", "users.edit",
        "company.settings.view", "company.settings.edit",
        "notifications.view", "notifications.manage",
    ],
}

# (template name, display name, description, target role, permission keys)
SYSTEM_TEMPLATES = [
    ("basic_user", "Basic User", "Standard employee with basic data access", "user",
     ["dashboard.view", "expenses.view", "expenses.create", "notifications.view"]),
    ("expense_reviewer", "Expense Reviewer", "Can review and approve expenses", "user",
     ["dashboard.view", "expenses.view", "expenses.create", "expenses.review", "expenses.approve", "analytics.view"]),
    ("department_manager", "Department Manager", "Manager with full operational access", "admin",
     ["dashboard.view", "analytics.view",
      "expenses.view", "expenses.create", "expenses.edit", "expenses.review", "expenses.approve",
      "vendors.view", "vendors.create", "vendors.edit",
      "customers.view", "customers.create", "customers.edit",
      "users.view", "notifications.view", "notifications.manage"]),
]


def group_for(permission_key: str) -> str:
    prefix = permission_key.split(".", 1)[0]
    return PERMISSION_GROUPS.get(prefix, "General")


def validate_catalog() -> None:
    """
    Check the static catalog before seeding.

    Raises:
        ValueError: unknown key reference or a dependency cycle
    """
    known = {key for key, *_ in DEFAULT_PERMISSIONS}
    requires_by_key = {key: requires for key, _, requires, *_ in DEFAULT_PERMISSIONS}

    for key, requires in requires_by_key.items():
        if key in requires:
            raise ValueError(f"Permission {key} requires itself")
        unknown = [dep for dep in requires if dep not in known]
        if unknown:
            raise ValueError(f"Permission {key} requires unknown keys {unknown}")

    cycle = find_dependency_cycle(requires_by_key)
    if cycle:
        raise ValueError(f"Dependency cycle: {' -> '.join(cycle)}")

    referenced = [key for *_, included in DEFAULT_MODULES for key in included]
    referenced += [key for keys in DEFAULT_ROLE_PERMISSIONS.values() for key in keys]
    referenced += [key for *_, keys in SYSTEM_TEMPLATES for key in keys]
    unknown = sorted(set(referenced) - known)
    if unknown:
        raise ValueError(f"Catalog references unknown permission keys {unknown}")


async def seed_permissions(db: AsyncSession) -> dict[str, Permission]:
    """
    Create default permissions.

    Returns:
        Dictionary mapping permission keys to Permission objects
    """
    log.info("Creating default permissions...")
    permissions_map = {}

    for order, (key, name, requires, is_foundation, human_description) in enumerate(DEFAULT_PERMISSIONS):
        existing = await db.scalar(select(Permission).where(Permission.permission_key == key))
        if existing:
            log.debug(f"Permission '{key}' already exists, skipping")
            permissions_map[key] = existing
            continue

        permission = Permission(
            permission_key=key,
            permission_name=name,
            human_description=human_description,
            permission_group=group_for(key),
            ui_display_order=order,
            requires=list(requires),
            is_foundation=is_foundation,
            is_system=True,
        )
        db.add(permission)
        permissions_map[key] = permission
        log.info(f"Created permission: {key}")

    await db.flush()
    log.info(f"Seeded {len(permissions_map)} permissions")
    return permissions_map


async def seed_modules(db: AsyncSession) -> dict[str, Module]:
    log.info("Creating default modules...")
    modules_map = {}

    for name, tier, category, monthly, per_user, included in DEFAULT_MODULES:
        existing = await db.scalar(select(Module).where(Module.name == name))
        if existing:
            log.debug(f"Module '{name}' already exists, skipping")
            modules_map[name] = existing
            continue

        module = Module(
            name=name,
            tier=tier,
            category=category,
            default_monthly_price=Decimal(monthly),
            default_per_user_price=Decimal(per_user),
            included_permissions=list(included),
            is_active=True,
        )
        db.add(module)
        modules_map[name] = module
        log.info(f"Created module '{name}' ({tier})")

    await db.flush()
    return modules_map


async def seed_role_defaults(db: AsyncSession, permissions_map: dict[str, Permission]):
    """
    Create role default permission rows.

    Args:
        db: Database session
        permissions_map: Dictionary of permission key -> Permission object
    """
    log.info("Creating role default permissions...")

    for role_name, keys in DEFAULT_ROLE_PERMISSIONS.items():
        result = await db.execute(
            select(RoleDefaultPermission.permission_id).where(RoleDefaultPermission.role_name == role_name)
        )
        existing_ids = set(result.scalars().all())

        created = 0
        for key in keys:
            permission = permissions_map[key]
            if permission.id in existing_ids:
                continue
            db.add(RoleDefaultPermission(role_name=role_name, permission_id=permission.id))
            created += 1

        log.info(f"Role '{role_name}': {created} new default permissions")

    await db.flush()


async def seed_templates(db: AsyncSession):
    log.info("Creating system templates...")

    for template_name, display_name, description, target_role, keys in SYSTEM_TEMPLATES:
        existing = await db.scalar(
            select(PermissionTemplate).where(PermissionTemplate.template_name == template_name)
        )
        if existing:
            log.debug(f"Template '{template_name}' already exists, skipping")
            continue

        db.add(PermissionTemplate(
            template_name=template_name,
            display_name=display_name,
            description=description,
            target_role=target_role,
            data_permissions=list(keys),
            modules=[],
            is_system_template=True,
        ))
        log.info(f"Created template: {template_name}")

    await db.flush()


async def seed_catalog(db: AsyncSession) -> None:
    validate_catalog()
    permissions_map = await seed_permissions(db)
    await seed_modules(db)
    await seed_role_defaults(db, permissions_map)
    await seed_templates(db)


async def main():
    """Main function to seed the catalog."""
    log.info("Starting catalog seeding...")

    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()

    async with AsyncSessionLocal() as db:
        try:
            await seed_catalog(db)
            await db.commit()
        except Exception as e:
            log.error(f"Error seeding catalog: {e}", exc_info=True)
            await db.rollback()
            raise

    log.info("Catalog seeding completed successfully!")


if __name__ == "__main__":
    asyncio.run(main())
