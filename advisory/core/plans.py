import calendar
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional


class BillingPeriod(str, Enum):
    """How long one payment keeps a subscription active."""
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    HALF_YEARLY = "half_yearly"


BILLING_PERIOD_MONTHS: Dict[BillingPeriod, int] = {
    BillingPeriod.MONTHLY: 1,
    BillingPeriod.QUARTERLY: 3,
    BillingPeriod.HALF_YEARLY: 6,
}

# Labels the pricing page sends ("Monthly", "Quarterly", "Half-Yearly")
_BILLING_PERIOD_ALIASES: Dict[str, BillingPeriod] = {
    "monthly": BillingPeriod.MONTHLY,
    "month": BillingPeriod.MONTHLY,
    "quarterly": BillingPeriod.QUARTERLY,
    "quarter": BillingPeriod.QUARTERLY,
    "half_yearly": BillingPeriod.HALF_YEARLY,
    "half-yearly": BillingPeriod.HALF_YEARLY,
    "halfyearly": BillingPeriod.HALF_YEARLY,
}

_RESEARCH_PRICING = {
    BillingPeriod.MONTHLY: Decimal("2499"),
    BillingPeriod.QUARTERLY: Decimal("6499"),
    BillingPeriod.HALF_YEARLY: Decimal("11999"),
}
_TOOLS_PRICING = {
    BillingPeriod.MONTHLY: Decimal("99"),
    BillingPeriod.QUARTERLY: Decimal("249"),
    BillingPeriod.HALF_YEARLY: Decimal("449"),
}

# Plan catalog (prices in rupees; the least a payment must carry to activate the plan)
PLANS: Dict[str, Dict] = {
    "equity-investing": {
        "name": "Equity Investing",
        "pricing": _RESEARCH_PRICING,
    },
    "swing-equity": {
        "name": "Swing Trading – Equity",
        "pricing": _RESEARCH_PRICING,
    },
    "swing-commodity": {
        "name": "Swing Trading – Commodity",
        "pricing": _RESEARCH_PRICING,
    },
    "stock-of-month": {
        "name": "Stock of the Month",
        "pricing": _TOOLS_PRICING,
    },
    "diy-screener": {
        "name": "DIY Stock Screener",
        "pricing": _TOOLS_PRICING,
    },
}


def get_plan(plan_id: Optional[str]) -> Optional[Dict]:
    """Return the catalog entry for plan_id, or None if unknown."""
    if not plan_id:
        return None
    return PLANS.get(str(plan_id).strip().lower())


def parse_billing_period(value: Optional[str]) -> Optional[BillingPeriod]:
    """Map a billing period label onto BillingPeriod. None if unrecognised."""
    if value is None:
        return None
    return _BILLING_PERIOD_ALIASES.get(str(value).strip().lower().replace(" ", "_"))


def plan_price(plan: Dict, period: BillingPeriod) -> Decimal:
    """Catalog price in rupees of one billing period of plan."""
    return plan["pricing"][period]


def add_months(value: datetime, months: int) -> datetime:
    """Calendar month arithmetic; the day is clamped to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def compute_end_date(start: datetime, period: BillingPeriod) -> datetime:
    """
    Last instant a subscription started at `start` stays active.

    start + N months, minus one day, at 23:59:59.999999. A monthly plan bought on
    10 March therefore runs until the end of 9 April.
    """
    end = add_months(start, BILLING_PERIOD_MONTHS[period]) - timedelta(days=1)
    return end.replace(hour=23, minute=59, second=59, microsecond=999999)


def plan_catalog() -> list:
    """Serializable view of PLANS for the pricing endpoint."""
    return [
        {
            "id": plan_id,
            "name": plan["name"],
            "pricing": {period.value: str(price) for period, price in plan["pricing"].items()},
        }
        for plan_id, plan in PLANS.items()
    ]
