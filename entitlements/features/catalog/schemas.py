"""
Pydantic schemas for the permission and module catalog.
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator


# ============================================================================
# Permission Schemas
# ============================================================================

class PermissionBase(BaseModel):
    """Base permission schema."""
    permission_name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    human_description: Optional[str] = Field(None, max_length=2000, description="Plain-language explanation for admins")
    permission_group: str = Field("General", min_length=1, max_length=100)
    ui_display_order: int = 0
    is_foundation: bool = True
    requires: List[str] = Field(default_factory=list, description="Prerequisite permission keys, in order")


class PermissionCreate(PermissionBase):
    """Schema for creating a new permission."""
    permission_key: str = Field(..., min_length=1, max_length=100, description="e.g. 'expenses.approve'")

    @field_validator('permission_key')
    @classmethod
    def key_lowercase(cls, v: str) -> str:
        """Keys are stored lowercase."""
        return v.strip().lower()


class PermissionUpdate(BaseModel):
    """Schema for updating a permission. Only provided fields change."""
    permission_name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    human_description: Optional[str] = Field(None, max_length=2000)
    permission_group: Optional[str] = Field(None, min_length=1, max_length=100)
    ui_display_order: Optional[int] = None
    is_foundation: Optional[bool] = None
    requires: Optional[List[str]] = None


class PermissionResponse(PermissionBase):
    """Schema for permission response."""
    id: str
    permission_key: str
    is_system: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PermissionListResponse(BaseModel):
    permissions: List[PermissionResponse]
    total: int
    groups: Optional[Dict[str, List[PermissionResponse]]] = None
    group_names: Optional[List[str]] = None


class PermissionDependenciesResponse(BaseModel):
    permission: PermissionResponse
    requires: List[PermissionResponse]
    has_dependencies: bool


# ============================================================================
# Module Schemas
# ============================================================================

class ModuleResponse(BaseModel):
    """Schema for module response."""
    id: str
    name: str
    description: Optional[str]
    category: Optional[str]
    tier: str
    default_monthly_price: Decimal
    default_per_user_price: Decimal
    included_permissions: List[str]
    is_active: bool

    model_config = ConfigDict(from_attributes=True)
