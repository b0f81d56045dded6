from typing import Dict, Optional
from flask import current_app

# Canonical plan ids
PLAN_PRO = "pro"
PLAN_BUSINESS = "business"

BILLING_CYCLES = ("monthly", "yearly")

# List prices in whole dollars, used only for admin MRR estimates
PLAN_LIST_PRICES: Dict[str, Dict[str, int]] = {
    PLAN_PRO: {"monthly": 29, "yearly": 290},
    PLAN_BUSINESS: {"monthly": 99, "yearly": 990},
}

# Config keys holding Stripe Price IDs, per (plan, cycle)
PRICE_CONFIG_KEYS: Dict[tuple, str] = {
    (PLAN_PRO, "monthly"): "STRIPE_PRICE_PRO_MONTHLY",
    (PLAN_PRO, "yearly"): "STRIPE_PRICE_PRO_YEARLY",
    (PLAN_BUSINESS, "monthly"): "STRIPE_PRICE_BUSINESS_MONTHLY",
    (PLAN_BUSINESS, "yearly"): "STRIPE_PRICE_BUSINESS_YEARLY",
}


def _price_map() -> Dict[str, tuple]:
    cfg = current_app.config
    return {
        cfg.get(key): plan_cycle
        for plan_cycle, key in PRICE_CONFIG_KEYS.items()
        if cfg.get(key)
    }


def resolve_plan_id(price_id: Optional[str], default: Optional[str] = None) -> Optional[str]:
    """
    Map a Stripe Price ID to our plan id via the STRIPE_PRICE_* settings.
    Unknown prices fall back to `default`, then the raw price id.
    """
    plan_cycle = _price_map().get(price_id) if price_id else None
    if plan_cycle:
        return plan_cycle[0]
    return default or price_id


def monthly_value(plan_id: Optional[str], price_id: Optional[str] = None) -> float:
    """
    Estimated monthly revenue of one subscription. The billing cycle comes
    from the configured price; without one the plan is valued monthly.
    """
    prices = _price_map()
    plan_cycle = prices.get(price_id) or prices.get(plan_id)
    if plan_cycle:
        plan, cycle = plan_cycle
    else:
        plan, cycle = plan_id, "monthly"
    prices = PLAN_LIST_PRICES.get(plan)
    if not prices:
        return 0.0
    if cycle == "yearly":
        return prices["yearly"] / 12
    return float(prices["monthly"])
