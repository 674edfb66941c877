"""
Company (tenant) model.

Every grant, provisioning record and custom role is scoped to one company.
"""
from sqlalchemy import String, Boolean
from sqlalchemy.orm import Mapped, mapped_column, relationship

from entitlements.core.database.base import Base, TimestampMixin, generate_ulid


class Company(Base, TimestampMixin):
    """
    Company model representing a tenant of the back office.
    """
    __tablename__ = "companies"

    # Primary key using ULID
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    users: Mapped[list["User"]] = relationship(  # type: ignore
        "User",
        back_populates="company",
        foreign_keys="User.company_id",
        lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<Company(id={self.id}, name={self.name!r})>"
