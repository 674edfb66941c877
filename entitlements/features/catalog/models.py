"""
Catalog models: the read-mostly definitions everything else refers to.

- Permission: a named capability with declared prerequisites
- Module: a provisionable bundle of permissions with tier and default pricing
- RoleDefaultPermission: the default permission set of each standard role
- PermissionTemplate: a reusable bundle of permission keys and module ids
"""
import enum
from decimal import Decimal
from typing import Dict, List
from sqlalchemy import String, ForeignKey, JSON, Text, Boolean, Integer, Numeric, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from entitlements.core.database.base import Base, TimestampMixin, generate_ulid


class ModuleTier(str, enum.Enum):
    CORE = "core"
    STANDARD = "standard"
    PREMIUM = "premium"


# Display / sort order for tiers
TIER_ORDER: Dict[str, int] = {
    ModuleTier.CORE.value: 1,
    ModuleTier.STANDARD.value: 2,
    ModuleTier.PREMIUM.value: 3,
}


class Permission(Base, TimestampMixin):
    """
    A single boolean capability, e.g. `expenses.approve`.

    `requires` lists the keys a user must already hold (as active data grants)
    before this permission can be granted. The list is checked for cycles
    whenever the catalog is authored.
    """
    __tablename__ = "permissions"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    permission_key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    permission_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    human_description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # UI clustering
    permission_group: Mapped[str] = mapped_column(String(100), nullable=False, default="General", index=True)
    ui_display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Ordered list of prerequisite permission keys
    requires: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    # Foundation permissions are available without any module provisioning
    is_foundation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # System permissions cannot be edited or deleted
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<Permission(id={self.id}, key={self.permission_key!r}, group={self.permission_group!r})>"


class Module(Base, TimestampMixin):
    """
    A provisionable unit of functionality.

    Core-tier modules are active for every company without a provisioning row.
    """
    __tablename__ = "modules"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(50), nullable=True)
    tier: Mapped[str] = mapped_column(String(20), nullable=False, default=ModuleTier.STANDARD.value, index=True)

    default_monthly_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    default_per_user_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))

    # Permission keys unlocked while the module is active
    included_permissions: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    @property
    def is_core(self) -> bool:
        return self.tier == ModuleTier.CORE.value

    def __repr__(self) -> str:
        return f"<Module(id={self.id}, name={self.name!r}, tier={self.tier})>"


class RoleDefaultPermission(Base, TimestampMixin):
    """Default permission set of a standard role (`user`, `admin`)."""
    __tablename__ = "role_default_permissions"
    __table_args__ = (
        UniqueConstraint("role_name", "permission_id", name="uq_role_default_permission"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    role_name: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    permission_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("permissions.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    permission: Mapped["Permission"] = relationship("Permission", lazy="selectin")

    def __repr__(self) -> str:
        return f"<RoleDefaultPermission(role={self.role_name}, permission_id={self.permission_id})>"


class PermissionTemplate(Base, TimestampMixin):
    """
    Named bundle of permission keys and module ids.

    System templates are read-only; they can only be applied.
    """
    __tablename__ = "permission_templates"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    template_name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    target_role: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)

    data_permissions: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    modules: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    is_system_template: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )

    def __repr__(self) -> str:
        return f"<PermissionTemplate(id={self.id}, name={self.template_name!r}, system={self.is_system_template})>"
