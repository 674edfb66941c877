"""
Tests for permission templates: authoring and application.
"""
import pytest
from sqlalchemy import func, select

from entitlements.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from entitlements.features.audit.models import AuditLog, ChangeType
from entitlements.features.audit.service import RequestMeta
from entitlements.features.grants.models import UserDataPermission, UserModule
from entitlements.features.permissions.resolver import has_permission
from entitlements.features.templates.service import (
    apply_template,
    create_template,
    delete_template,
    get_template,
    list_templates,
    update_template,
)


def template_data(**overrides):
    data = {
        "template_name": "expense_clerk",
        "display_name": "Expense Clerk",
        "target_role": "user",
        "data_permissions": ["expenses.view", "expenses.create"],
        "modules": [],
    }
    data.update(overrides)
    return data


class TestTemplateAuthoring:
    """Create, update, delete"""

    async def test_create(self, db, world):
        template = await create_template(db, world.users.acme_admin, template_data())

        assert template.created_by == world.users.acme_admin.id
        assert template.is_system_template is False
        assert template.data_permissions == ["expenses.view", "expenses.create"]

    async def test_plain_user_cannot_create(self, db, world):
        with pytest.raises(AuthorizationError):
            await create_template(db, world.users.alice, template_data())

    async def test_duplicate_name(self, db, world):
        await create_template(db, world.users.acme_admin, template_data())
        with pytest.raises(ConflictError):
            await create_template(db, world.users.globex_admin, template_data(display_name="Other"))

    async def test_unknown_contents(self, db, world):
        with pytest.raises(ValidationError) as excinfo:
            await create_template(db, world.users.acme_admin, template_data(
                data_permissions=["expenses.view", "payroll.run"],
                modules=[world.modules.legacy.id],
            ))

        assert excinfo.value.details["missing_keys"] == ["payroll.run"]
        assert excinfo.value.details["invalid_modules"] == [world.modules.legacy.id]

    async def test_creator_updates(self, db, world):
        template = await create_template(db, world.users.acme_admin, template_data())
        updated = await update_template(db, world.users.acme_admin, template.id, {
            "display_name": "Senior Clerk",
            "data_permissions": ["expenses.view"],
        })

        assert updated.display_name == "Senior Clerk"
        assert updated.data_permissions == ["expenses.view"]
        assert updated.template_name == "expense_clerk"

    async def test_other_admin_cannot_update(self, db, world):
        template = await create_template(db, world.users.acme_admin, template_data())
        with pytest.raises(AuthorizationError):
            await update_template(db, world.users.globex_admin, template.id, {"display_name": "Hijacked"})

    async def test_super_admin_can_update_any(self, db, world):
        template = await create_template(db, world.users.acme_admin, template_data())
        updated = await update_template(db, world.users.root, template.id, {"description": "Reviewed"})
        assert updated.description == "Reviewed"

    async def test_rename_conflict(self, db, world):
        template = await create_template(db, world.users.acme_admin, template_data())
        with pytest.raises(ConflictError):
            await update_template(db, world.users.acme_admin, template.id, {"template_name": "expense_reviewer"})

    async def test_system_template_is_read_only(self, db, world):
        with pytest.raises(ConflictError):
            await update_template(db, world.users.root, world.system_template.id, {"display_name": "Changed"})
        with pytest.raises(ConflictError):
            await delete_template(db, world.users.root, world.system_template.id)

    async def test_delete(self, db, world):
        template = await create_template(db, world.users.acme_admin, template_data())
        await delete_template(db, world.users.acme_admin, template.id)

        with pytest.raises(NotFoundError):
            await get_template(db, template.id)

    async def test_authoring_is_audited(self, db, world):
        meta = RequestMeta(ip_address="10.0.0.7", user_agent="pytest")
        template = await create_template(db, world.users.acme_admin, template_data(), meta=meta)
        await update_template(
            db, world.users.acme_admin, template.id, {"data_permissions": ["expenses.view"]}, meta=meta,
        )
        await delete_template(db, world.users.acme_admin, template.id, meta=meta)

        result = await db.execute(
            select(AuditLog).where(AuditLog.template_id == template.id)
        )
        entries = {entry.change_type: entry for entry in result.scalars().all()}
        assert set(entries) == {
            ChangeType.CREATE_TEMPLATE.value,
            ChangeType.UPDATE_TEMPLATE.value,
            ChangeType.DELETE_TEMPLATE.value,
        }

        created = entries[ChangeType.CREATE_TEMPLATE.value]
        assert created.actor_id == world.users.acme_admin.id
        assert created.company_id == world.acme.id
        assert created.old_value is None
        assert created.new_value["template_name"] == "expense_clerk"
        assert created.ip_address == "10.0.0.7"

        updated = entries[ChangeType.UPDATE_TEMPLATE.value]
        assert updated.old_value["data_permissions"] == ["expenses.view", "expenses.create"]
        assert updated.new_value["data_permissions"] == ["expenses.view"]

        deleted = entries[ChangeType.DELETE_TEMPLATE.value]
        assert deleted.old_value["template_name"] == "expense_clerk"
        assert deleted.new_value is None

    async def test_rejected_edit_writes_no_audit(self, db, world):
        with pytest.raises(ConflictError):
            await delete_template(db, world.users.root, world.system_template.id)
        assert await db.scalar(select(func.count(AuditLog.id))) == 0

    async def test_list_puts_system_templates_first(self, db, world):
        await create_template(db, world.users.acme_admin, template_data(display_name="A Clerk"))
        templates = await list_templates(db)

        assert [t.template_name for t in templates] == ["expense_reviewer", "expense_clerk"]
        assert await list_templates(db, target_role="admin") == []


class TestApplyTemplate:
    """Template application through the grant paths"""

    async def test_apply_system_template(self, db, world):
        result = await apply_template(
            db, world.users.acme_admin, world.system_template.id,
            user_id=world.users.alice.id, company_id=world.acme.id,
        )

        assert result["permissions_granted"] == ["expenses.view", "expenses.review", "expenses.approve"]
        assert result["errors"] == []
        assert await has_permission(db, world.users.alice.id, world.acme.id, "expenses.approve")

        grant = await db.scalar(
            select(UserDataPermission).where(
                UserDataPermission.permission_id == world.permissions["expenses.approve"].id
            )
        )
        assert grant.granted_reason == "Applied template: Expense Reviewer"

    async def test_single_audit_record(self, db, world):
        await apply_template(
            db, world.users.acme_admin, world.system_template.id,
            user_id=world.users.alice.id, company_id=world.acme.id,
        )

        assert await db.scalar(select(func.count(AuditLog.id))) == 1
        entry = await db.scalar(select(AuditLog))
        assert entry.change_type == ChangeType.APPLY_TEMPLATE.value
        assert entry.template_id == world.system_template.id
        assert len(entry.new_value["permissions"]) == 3

    async def test_item_failures_are_collected(self, db, world):
        template = await create_template(db, world.users.acme_admin, template_data(
            data_permissions=["expenses.create", "expenses.view"],
            modules=[world.modules.ingrid.id, world.modules.dashboard.id],
        ))

        result = await apply_template(
            db, world.users.acme_admin, template.id,
            user_id=world.users.alice.id, company_id=world.acme.id,
        )

        assert result["permissions_granted"] == ["expenses.view"]
        assert result["modules_granted"] == [world.modules.dashboard.id]
        types = sorted(error["type"] for error in result["errors"])
        assert types == ["data_permission", "module"]

        module_error = next(e for e in result["errors"] if e["type"] == "module")
        assert module_error["module_id"] == world.modules.ingrid.id
        assert module_error["error"] == "Module is not provisioned for this company"

        entry = await db.scalar(select(AuditLog).where(AuditLog.change_type == ChangeType.APPLY_TEMPLATE.value))
        assert len(entry.new_value["errors"]) == 2

    async def test_super_admin_applies_modules_before_provisioning(self, db, world):
        template = await create_template(db, world.users.root, template_data(
            data_permissions=[], modules=[world.modules.ingrid.id],
        ))
        result = await apply_template(
            db, world.users.root, template.id,
            user_id=world.users.gina.id, company_id=world.globex.id,
        )

        assert result["modules_granted"] == [world.modules.ingrid.id]
        assert await db.scalar(select(func.count(UserModule.id))) == 1

    async def test_target_outside_company(self, db, world):
        with pytest.raises(NotFoundError):
            await apply_template(
                db, world.users.acme_admin, world.system_template.id,
                user_id=world.users.gina.id, company_id=world.acme.id,
            )

    async def test_unknown_template(self, db, world):
        with pytest.raises(NotFoundError):
            await apply_template(
                db, world.users.acme_admin, "01HZZZZZZZZZZZZZZZZZZZZZZZ",
                user_id=world.users.alice.id, company_id=world.acme.id,
            )
