"""
Tests for data permission and module grants.
"""
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from entitlements.core.errors import (
    AuthorizationError,
    ConflictError,
    DependencyError,
    NotFoundError,
    ValidationError,
)
from entitlements.features.audit.models import AuditLog, ChangeType
from entitlements.features.audit.service import RequestMeta
from entitlements.features.grants.models import CompanyModule, UserDataPermission, UserModule
from entitlements.features.grants.store import granted_keys
from entitlements.features.permissions.resolver import has_permission
from entitlements.features.permissions.service import (
    available_modules,
    bulk_grant_permissions,
    check_permission,
    effective_permissions,
    grant_module,
    grant_permission,
    list_user_permissions,
    revoke_module,
)
from tests.conftest import future, past


async def grant(db, world, key, *, actor=None, user=None, **kwargs):
    return await grant_permission(
        db,
        actor or world.users.acme_admin,
        (user or world.users.alice).id,
        company_id=world.acme.id,
        permission_key=key,
        **kwargs,
    )


async def audit_count(db, change_type=None):
    query = select(func.count(AuditLog.id))
    if change_type is not None:
        query = query.where(AuditLog.change_type == change_type.value)
    return await db.scalar(query)


class TestGrantPermission:
    """Single data permission grants"""

    async def test_missing_prerequisite_blocks_grant(self, db, world):
        # expenses.view is only a role default, which does not satisfy prerequisites
        with pytest.raises(DependencyError) as excinfo:
            await grant(db, world, "expenses.approve")

        assert excinfo.value.missing == ["expenses.view", "expenses.review"]
        assert excinfo.value.to_dict()["missing_dependencies"] == ["expenses.view", "expenses.review"]
        assert await db.scalar(select(func.count(UserDataPermission.id))) == 0
        assert await audit_count(db) == 0

    async def test_grant_after_prerequisites(self, db, world):
        await grant(db, world, "expenses.view")
        outcome = await grant(db, world, "expenses.create", reason="Needs to file expenses")

        assert outcome["is_granted"] is True
        assert outcome["old_value"] is None
        assert outcome["new_value"]["granted_reason"] == "Needs to file expenses"
        assert outcome["new_value"]["granted_by"] == world.users.acme_admin.id

    async def test_regrant_updates_single_row(self, db, world):
        await grant(db, world, "expenses.view", reason="first")
        outcome = await grant(db, world, "expenses.view", reason="second")

        rows = (await db.execute(select(UserDataPermission))).scalars().all()
        assert len(rows) == 1
        assert rows[0].granted_reason == "second"
        assert outcome["old_value"]["granted_reason"] == "first"
        assert await audit_count(db, ChangeType.GRANT_DATA_PERMISSION) == 2

    async def test_revoke_does_not_cascade(self, db, world):
        await grant(db, world, "expenses.view")
        await grant(db, world, "expenses.create")

        outcome = await grant(db, world, "expenses.view", is_granted=False, reason="Rotation")
        assert outcome["old_value"]["is_granted"] is True
        assert outcome["new_value"]["is_granted"] is False

        dependent = await db.scalar(
            select(UserDataPermission).where(
                UserDataPermission.permission_id == world.permissions["expenses.create"].id
            )
        )
        assert dependent.is_granted is True

        effective = await effective_permissions(db, world.users.acme_admin, world.users.alice.id)
        keys = {entry["permission_key"] for entry in effective["permissions"]}
        assert "expenses.view" not in keys
        assert "expenses.create" in keys
        assert await audit_count(db, ChangeType.REVOKE_DATA_PERMISSION) == 1

    async def test_revoke_skips_dependency_check(self, db, world):
        outcome = await grant(db, world, "expenses.approve", is_granted=False)
        assert outcome["is_granted"] is False

    async def test_unknown_permission(self, db, world):
        with pytest.raises(ValidationError) as excinfo:
            await grant(db, world, "payroll.run")
        assert excinfo.value.message == "Permission not found"

    async def test_malformed_key(self, db, world):
        with pytest.raises(ValidationError):
            await grant(db, world, "Expenses View")

    async def test_expiry_must_be_in_future(self, db, world):
        with pytest.raises(ValidationError):
            await grant(db, world, "expenses.view", expires_at=past())

    async def test_future_expiry_is_stored(self, db, world):
        expires_at = future(7)
        outcome = await grant(db, world, "expenses.view", expires_at=expires_at)
        assert outcome["new_value"]["expires_at"] is not None

    async def test_audit_captures_request_meta(self, db, world):
        await grant(db, world, "expenses.view", meta=RequestMeta(ip_address="10.0.0.1", user_agent="pytest"))

        entry = await db.scalar(select(AuditLog))
        assert entry.ip_address == "10.0.0.1"
        assert entry.user_agent == "pytest"
        assert entry.permission_key == "expenses.view"
        assert entry.affected_user_id == world.users.alice.id
        assert entry.actor_id == world.users.acme_admin.id


class TestGrantScope:
    """Who may grant to whom"""

    async def test_plain_user_cannot_grant(self, db, world):
        with pytest.raises(AuthorizationError):
            await grant(db, world, "expenses.view", actor=world.users.bob)

    async def test_admin_cannot_reach_other_company(self, db, world):
        with pytest.raises(NotFoundError):
            await grant(db, world, "expenses.view", actor=world.users.globex_admin)

    async def test_target_must_belong_to_company(self, db, world):
        with pytest.raises(NotFoundError):
            await grant(db, world, "expenses.view", user=world.users.gina)

    async def test_super_admin_grants_anywhere(self, db, world):
        outcome = await grant_permission(
            db, world.users.root, world.users.gina.id,
            company_id=world.globex.id, permission_key="expenses.view",
        )
        assert outcome["is_granted"] is True


class TestBulkGrant:
    """Ordered batches with per-item failures"""

    async def test_partial_failure(self, db, world):
        result = await bulk_grant_permissions(
            db, world.users.acme_admin, world.users.alice.id,
            company_id=world.acme.id,
            items=[
                {"permission_key": "expenses.view"},
                {"permission_key": "payroll.run"},
                {"permission_key": "dashboard.view"},
            ],
        )

        assert result["summary"] == {"total_requested": 3, "successful": 2, "failed": 1}
        assert [r["index"] for r in result["results"]] == [0, 2]
        assert result["errors"][0]["index"] == 1
        assert result["errors"][0]["permission_key"] == "payroll.run"
        assert result["errors"][0]["error"] == "Permission not found"
        assert await audit_count(db, ChangeType.GRANT_DATA_PERMISSION) == 2
        assert await granted_keys(db, world.users.alice.id, world.acme.id) == {"expenses.view", "dashboard.view"}

    async def test_reissue_is_idempotent(self, db, world):
        items = [
            {"permission_key": "expenses.view"},
            {"permission_key": "expenses.review"},
            {"permission_key": "dashboard.view"},
        ]
        first = await bulk_grant_permissions(
            db, world.users.acme_admin, world.users.alice.id, company_id=world.acme.id, items=items,
        )
        second = await bulk_grant_permissions(
            db, world.users.acme_admin, world.users.alice.id, company_id=world.acme.id, items=items,
        )

        assert first["summary"] == {"total_requested": 3, "successful": 3, "failed": 0}
        assert second["summary"] == first["summary"]
        assert all(r["old_value"]["is_granted"] is True for r in second["results"])

        rows = await db.scalar(
            select(func.count(UserDataPermission.id)).where(UserDataPermission.user_id == world.users.alice.id)
        )
        assert rows == len(items)
        assert await granted_keys(db, world.users.alice.id, world.acme.id) == {
            "expenses.view", "expenses.review", "dashboard.view",
        }

    async def test_later_items_see_earlier_grants(self, db, world):
        result = await bulk_grant_permissions(
            db, world.users.acme_admin, world.users.alice.id,
            company_id=world.acme.id,
            items=[
                {"permission_key": "expenses.view"},
                {"permission_key": "expenses.review"},
                {"permission_key": "expenses.approve"},
            ],
        )
        assert result["summary"]["successful"] == 3

    async def test_order_matters(self, db, world):
        result = await bulk_grant_permissions(
            db, world.users.acme_admin, world.users.alice.id,
            company_id=world.acme.id,
            items=[
                {"permission_key": "expenses.create"},
                {"permission_key": "expenses.view"},
            ],
        )

        assert result["errors"][0]["index"] == 0
        assert result["errors"][0]["missing_dependencies"] == ["expenses.view"]
        assert result["results"][0]["status"] == "granted"

    async def test_mixed_grant_and_revoke(self, db, world):
        result = await bulk_grant_permissions(
            db, world.users.acme_admin, world.users.alice.id,
            company_id=world.acme.id,
            items=[
                {"permission_key": "expenses.view"},
                {"permission_key": "expenses.delete", "is_granted": False, "reason": "No deletes"},
            ],
            reason="Quarterly review",
        )

        statuses = [r["status"] for r in result["results"]]
        assert statuses == ["granted", "revoked"]
        assert result["results"][0]["new_value"]["granted_reason"] == "Quarterly review"
        assert result["results"][1]["new_value"]["granted_reason"] == "No deletes"

    async def test_scope_checked_before_items(self, db, world):
        with pytest.raises(NotFoundError):
            await bulk_grant_permissions(
                db, world.users.globex_admin, world.users.alice.id,
                company_id=world.acme.id,
                items=[{"permission_key": "expenses.view"}],
            )


class TestReads:
    """Listing grants, effective permissions and single checks"""

    async def test_listing_hides_expired_rows(self, db, world):
        await grant(db, world, "expenses.view")
        db.add(UserDataPermission(
            user_id=world.users.alice.id,
            permission_id=world.permissions["dashboard.view"].id,
            company_id=world.acme.id,
            is_granted=True,
            expires_at=past(),
        ))
        await db.commit()

        listing = await list_user_permissions(db, world.users.acme_admin, world.users.alice.id)
        assert [p["permission_key"] for p in listing["data_permissions"]] == ["expenses.view"]
        assert listing["company_id"] == world.acme.id

    async def test_listing_includes_denials(self, db, world):
        await grant(db, world, "expenses.delete", is_granted=False)
        listing = await list_user_permissions(db, world.users.acme_admin, world.users.alice.id)
        assert listing["data_permissions"][0]["is_granted"] is False

    async def test_user_reads_own_permissions(self, db, world):
        effective = await effective_permissions(db, world.users.alice, world.users.alice.id)
        assert effective["total"] == len(effective["permissions"]) == 3

    async def test_user_cannot_read_peer(self, db, world):
        with pytest.raises(NotFoundError):
            await list_user_permissions(db, world.users.bob, world.users.alice.id)

    async def test_admin_cannot_read_other_company(self, db, world):
        with pytest.raises(NotFoundError):
            await effective_permissions(db, world.users.globex_admin, world.users.alice.id)

    async def test_check_permission(self, db, world):
        checked = await check_permission(db, world.users.acme_admin, world.users.alice.id, "expenses.view")
        assert checked["has_permission"] is True

        checked = await check_permission(db, world.users.acme_admin, world.users.alice.id, "expenses.approve")
        assert checked["has_permission"] is False


class TestModuleGrants:
    """Granting and revoking module access"""

    async def provision(self, db, world, module=None):
        db.add(CompanyModule(company_id=world.acme.id, module_id=(module or world.modules.ingrid).id, is_enabled=True))
        await db.commit()

    async def test_unprovisioned_module_conflicts_for_admin(self, db, world):
        with pytest.raises(ConflictError):
            await grant_module(
                db, world.users.acme_admin, world.users.alice.id,
                company_id=world.acme.id, module_id=world.modules.ingrid.id,
            )

    async def test_super_admin_may_pregrant(self, db, world):
        outcome = await grant_module(
            db, world.users.root, world.users.alice.id,
            company_id=world.acme.id, module_id=world.modules.ingrid.id,
        )
        assert outcome["module_name"] == "Ingrid AI"

    async def test_grant_and_revoke(self, db, world):
        await self.provision(db, world)
        outcome = await grant_module(
            db, world.users.acme_admin, world.users.alice.id,
            company_id=world.acme.id, module_id=world.modules.ingrid.id,
            restrictions={"max_queries": 100}, expires_at=future(),
        )
        assert outcome["new_value"]["restrictions"] == {"max_queries": 100}

        revoked = await revoke_module(
            db, world.users.acme_admin, world.users.alice.id,
            company_id=world.acme.id, module_id=world.modules.ingrid.id,
        )
        assert revoked["new_value"]["is_enabled"] is False

        rows = (await db.execute(select(UserModule))).scalars().all()
        assert len(rows) == 1
        assert await audit_count(db, ChangeType.GRANT_MODULE) == 1
        assert await audit_count(db, ChangeType.REVOKE_MODULE) == 1

    async def test_regrant_reenables(self, db, world):
        await self.provision(db, world)
        for _ in range(2):
            await grant_module(
                db, world.users.acme_admin, world.users.alice.id,
                company_id=world.acme.id, module_id=world.modules.ingrid.id,
            )
        rows = (await db.execute(select(UserModule))).scalars().all()
        assert len(rows) == 1

    async def test_core_module_needs_no_provisioning(self, db, world):
        outcome = await grant_module(
            db, world.users.acme_admin, world.users.alice.id,
            company_id=world.acme.id, module_id=world.modules.dashboard.id,
        )
        assert outcome["old_value"] is None

    async def test_inactive_module(self, db, world):
        with pytest.raises(ValidationError):
            await grant_module(
                db, world.users.root, world.users.alice.id,
                company_id=world.acme.id, module_id=world.modules.legacy.id,
            )

    async def test_unknown_module(self, db, world):
        with pytest.raises(NotFoundError):
            await grant_module(
                db, world.users.root, world.users.alice.id,
                company_id=world.acme.id, module_id="01HZZZZZZZZZZZZZZZZZZZZZZZ",
            )

    async def test_revoke_without_grant(self, db, world):
        with pytest.raises(NotFoundError):
            await revoke_module(
                db, world.users.acme_admin, world.users.alice.id,
                company_id=world.acme.id, module_id=world.modules.ingrid.id,
            )

    async def test_module_listing(self, db, world):
        await self.provision(db, world)
        await grant_module(
            db, world.users.acme_admin, world.users.alice.id,
            company_id=world.acme.id, module_id=world.modules.ingrid.id,
        )
        listing = await list_user_permissions(db, world.users.alice, world.users.alice.id)
        assert [m["module_name"] for m in listing["modules"]] == ["Ingrid AI"]


class TestAvailableModules:
    """Per-module provisioning, grant and final access for one user"""

    async def test_core_only_by_default(self, db, world):
        listing = await available_modules(db, world.users.acme_admin, world.users.alice.id)

        assert [m["module_name"] for m in listing["modules"]] == ["Dashboard", "Ingrid AI"]
        dashboard, ingrid = listing["modules"]
        assert dashboard["has_access"] is True
        assert dashboard["company_provisioned"] is False
        assert ingrid["has_access"] is False
        assert ingrid["monthly_price"] == Decimal("50")
        assert ingrid["per_user_price"] == Decimal("5")
        assert ingrid["restrictions"] == {}
        assert listing["summary"] == {
            "total_modules": 2,
            "modules_with_access": 1,
            "company_provisioned": 0,
            "core_modules": 1,
        }

    async def test_provisioned_and_granted(self, db, world):
        db.add_all([
            CompanyModule(
                company_id=world.acme.id, module_id=world.modules.ingrid.id, is_enabled=True,
                monthly_price=Decimal("40"), users_licensed=5,
            ),
            UserModule(
                user_id=world.users.alice.id, module_id=world.modules.ingrid.id, company_id=world.acme.id,
                restrictions={"max_queries": 10}, expires_at=future(),
            ),
        ])
        await db.commit()

        listing = await available_modules(db, world.users.alice, world.users.alice.id)
        ingrid = listing["modules"][1]

        assert ingrid["company_provisioned"] is True
        assert ingrid["user_has_access"] is True
        assert ingrid["has_access"] is True
        assert ingrid["monthly_price"] == Decimal("40")
        assert ingrid["per_user_price"] == Decimal("5")
        assert ingrid["users_licensed"] == 5
        assert ingrid["restrictions"] == {"max_queries": 10}
        assert ingrid["expires_at"] is not None
        assert listing["summary"]["modules_with_access"] == 2
        assert await has_permission(db, world.users.alice.id, world.acme.id, "ingrid.view")

    async def test_grant_without_enabled_provisioning(self, db, world):
        db.add_all([
            CompanyModule(company_id=world.acme.id, module_id=world.modules.ingrid.id, is_enabled=False),
            UserModule(user_id=world.users.alice.id, module_id=world.modules.ingrid.id, company_id=world.acme.id),
        ])
        await db.commit()

        listing = await available_modules(db, world.users.acme_admin, world.users.alice.id)
        ingrid = listing["modules"][1]

        assert ingrid["user_has_access"] is True
        assert ingrid["company_provisioned"] is False
        assert ingrid["has_access"] is False
        assert listing["summary"]["company_provisioned"] == 0
        assert not await has_permission(db, world.users.alice.id, world.acme.id, "ingrid.view")

    async def test_expired_or_disabled_grant(self, db, world):
        db.add_all([
            CompanyModule(company_id=world.acme.id, module_id=world.modules.ingrid.id, is_enabled=True),
            UserModule(
                user_id=world.users.alice.id, module_id=world.modules.ingrid.id, company_id=world.acme.id,
                expires_at=past(),
            ),
            UserModule(
                user_id=world.users.bob.id, module_id=world.modules.ingrid.id, company_id=world.acme.id,
                is_enabled=False,
            ),
        ])
        await db.commit()

        for user in (world.users.alice, world.users.bob):
            listing = await available_modules(db, world.users.acme_admin, user.id)
            ingrid = listing["modules"][1]
            assert ingrid["company_provisioned"] is True
            assert ingrid["user_has_access"] is False
            assert ingrid["has_access"] is False

    async def test_super_admin_target_has_everything(self, db, world):
        listing = await available_modules(db, world.users.root, world.users.root.id)
        assert all(m["has_access"] for m in listing["modules"])
        assert listing["role"] == "super-admin"

    async def test_scope(self, db, world):
        with pytest.raises(NotFoundError):
            await available_modules(db, world.users.globex_admin, world.users.alice.id)
        with pytest.raises(NotFoundError):
            await available_modules(db, world.users.bob, world.users.alice.id)
        with pytest.raises(NotFoundError):
            await available_modules(db, world.users.root, world.users.alice.id, company_id=world.globex.id)
