"""
Pydantic schemas for permission templates.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator


class TemplateBase(BaseModel):
    display_name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    target_role: Optional[str] = Field(None, max_length=50)
    data_permissions: List[str] = Field(default_factory=list, description="Permission keys")
    modules: List[str] = Field(default_factory=list, description="Module ids")


class TemplateCreate(TemplateBase):
    template_name: str = Field(..., min_length=1, max_length=100)

    @field_validator('template_name')
    @classmethod
    def name_slug(cls, v: str) -> str:
        """Validate template name format."""
        if not v.replace('_', '').replace('-', '').isalnum():
            raise ValueError('Template name must contain only alphanumeric characters, underscores, and hyphens')
        return v.lower()


class TemplateUpdate(BaseModel):
    template_name: Optional[str] = Field(None, min_length=1, max_length=100)
    display_name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    target_role: Optional[str] = Field(None, max_length=50)
    data_permissions: Optional[List[str]] = None
    modules: Optional[List[str]] = None


class TemplateResponse(TemplateBase):
    id: str
    template_name: str
    is_system_template: bool
    created_by: Optional[str]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ApplyTemplateRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    company_id: str = Field(..., min_length=1)


class ApplyTemplateResponse(BaseModel):
    """`errors` entries carry `type` ("data_permission" | "module"), `error` and details."""
    template_id: str
    user_id: str
    company_id: str
    permissions_granted: List[str]
    modules_granted: List[str]
    errors: List[Dict[str, Any]]
