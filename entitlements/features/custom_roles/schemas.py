"""
Pydantic schemas for custom roles.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict


class CustomRoleBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    permissions: List[str] = Field(default_factory=list, description="Permission keys")
    replaces_role_defaults: bool = Field(False, description="Replace instead of supplement the standard role defaults")


class CustomRoleCreate(CustomRoleBase):
    company_id: Optional[str] = Field(None, description="Defaults to the caller's company")


class CustomRoleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    permissions: Optional[List[str]] = None
    replaces_role_defaults: Optional[bool] = None
    is_active: Optional[bool] = None


class CustomRoleResponse(CustomRoleBase):
    id: str
    company_id: str
    is_active: bool
    created_by: Optional[str]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
