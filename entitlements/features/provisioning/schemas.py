"""
Pydantic schemas for module provisioning and cost reports.
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field, ConfigDict


class ProvisionModuleRequest(BaseModel):
    """Enable/disable a module for a company. NULL prices mean "module default"."""
    module_id: str = Field(..., min_length=1)
    is_enabled: bool = True
    pricing_tier: Literal["standard", "custom", "enterprise"] = "standard"
    monthly_price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    per_user_price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    users_licensed: int = Field(0, ge=0)
    billing_notes: Optional[str] = Field(None, max_length=2000)


class CompanyModuleResponse(BaseModel):
    id: str
    company_id: str
    module_id: str
    is_enabled: bool
    pricing_tier: str
    monthly_price: Optional[Decimal]
    per_user_price: Optional[Decimal]
    users_licensed: int
    billing_notes: Optional[str]
    enabled_by: Optional[str]
    enabled_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ModuleCost(BaseModel):
    module_id: str
    module_name: str
    tier: str
    pricing_tier: str
    monthly_price: Decimal
    per_user_price: Decimal
    users_licensed: int
    users_with_access: int
    licensed_monthly_cost: Decimal
    actual_monthly_cost: Decimal
    variance: int = Field(..., description="Licensed seats minus users with access")


class TierCost(BaseModel):
    modules: int
    licensed_cost: Decimal
    actual_cost: Decimal


class CostSummary(BaseModel):
    total_modules: int
    licensed_cost: Decimal
    actual_cost: Decimal
    variance: Decimal = Field(..., description="Licensed cost minus actual cost")
    by_tier: Dict[str, TierCost]


class CompanyModuleCostsResponse(BaseModel):
    company_id: str
    modules: List[ModuleCost]
    summary: CostSummary
