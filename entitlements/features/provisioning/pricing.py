"""
Pure pricing arithmetic.

Monthly cost of a module for a company is `base + per_user * users`, where
each price is the company override when set, else the module default.
Licensing variance is informational; seat counts are never enforced here.
"""
from decimal import Decimal
from typing import Dict, Iterable, Optional, Tuple

from entitlements.features.catalog.models import Module
from entitlements.features.grants.models import CompanyModule


ZERO = Decimal("0")


def _money(value) -> Decimal:
    if value is None:
        return ZERO
    return value if isinstance(value, Decimal) else Decimal(str(value))


def effective_prices(module: Module, provisioning: Optional[CompanyModule]) -> Tuple[Decimal, Decimal]:
    """(monthly base price, per-user price) after applying company overrides."""
    base = module.default_monthly_price
    per_user = module.default_per_user_price
    if provisioning is not None:
        if provisioning.monthly_price is not None:
            base = provisioning.monthly_price
        if provisioning.per_user_price is not None:
            per_user = provisioning.per_user_price
    return _money(base), _money(per_user)


def monthly_cost(module: Module, provisioning: Optional[CompanyModule], licensed_users: int) -> Decimal:
    base, per_user = effective_prices(module, provisioning)
    return base + per_user * licensed_users


def licensing_variance(licensed: int, active: int) -> int:
    """Positive: over-licensed. Negative: under-licensed."""
    return licensed - active


def summarize(rows: Iterable[Dict]) -> Dict:
    """
    Company-level totals over per-module cost rows.

    Each row needs `tier`, `licensed_monthly_cost` and `actual_monthly_cost`.
    The summary `variance` is money: licensed cost minus actual cost.
    """
    licensed_cost = ZERO
    actual_cost = ZERO
    by_tier: Dict[str, Dict] = {}
    total = 0

    for row in rows:
        total += 1
        licensed_cost += row["licensed_monthly_cost"]
        actual_cost += row["actual_monthly_cost"]

        tier = by_tier.setdefault(row["tier"], {"modules": 0, "licensed_cost": ZERO, "actual_cost": ZERO})
        tier["modules"] += 1
        tier["licensed_cost"] += row["licensed_monthly_cost"]
        tier["actual_cost"] += row["actual_monthly_cost"]

    return {
        "total_modules": total,
        "licensed_cost": licensed_cost,
        "actual_cost": actual_cost,
        "variance": licensed_cost - actual_cost,
        "by_tier": by_tier,
    }
