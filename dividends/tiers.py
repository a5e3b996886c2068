# dividends/tiers.py
from decimal import Decimal
from typing import Dict, List, Tuple

from errors import ValidationError
from models import DividendType

# Percent rates per tier: (quarterly, yearly)
TIERS = {
    "A1": {
        "fund_range": "RM 25,000 - RM 49,999",
        "min_amount": Decimal("25000"),
        "STANDARD": (Decimal("2.0"), Decimal("8.0")),
        "EXCLUSIVE": (Decimal("2.5"), Decimal("11.0")),
    },
    "A": {
        "fund_range": "RM 50,000 - RM 99,999",
        "min_amount": Decimal("50000"),
        "STANDARD": (Decimal("3.0"), Decimal("12.0")),
        "EXCLUSIVE": (Decimal("3.5"), Decimal("14.2")),
    },
    "B": {
        "fund_range": "RM 100,000 - RM 199,999",
        "min_amount": Decimal("100000"),
        "STANDARD": (Decimal("3.5"), Decimal("14.0")),
        "EXCLUSIVE": (Decimal("4.0"), Decimal("15.5")),
    },
    "C": {
        "fund_range": "RM 200,000 - RM 499,999",
        "min_amount": Decimal("200000"),
        "STANDARD": (Decimal("3.6"), Decimal("14.5")),
        "EXCLUSIVE": (Decimal("4.3"), Decimal("17.0")),
    },
    "D": {
        "fund_range": "RM 500,000 - RM 999,999",
        "min_amount": Decimal("500000"),
        "STANDARD": (Decimal("3.9"), Decimal("15.5")),
        "EXCLUSIVE": (Decimal("5.0"), Decimal("19.5")),
    },
    "E": {
        "fund_range": "RM 1,000,000 and above",
        "min_amount": Decimal("1000000"),
        "STANDARD": (Decimal("4.1"), Decimal("16.5")),
        "EXCLUSIVE": (Decimal("5.5"), Decimal("22.0")),
    },
}

TIER_ORDER = ("A1", "A", "B", "C", "D", "E")
MINIMUM_INVESTMENT = TIERS["A1"]["min_amount"]


def tier_for_amount(amount) -> str:
    """Highest tier whose minimum is at or below the amount."""
    amount = Decimal(str(amount))
    if amount < MINIMUM_INVESTMENT:
        raise ValidationError(f"Minimum investment is RM {MINIMUM_INVESTMENT:,.0f}")

    selected = TIER_ORDER[0]
    for code in TIER_ORDER:
        if amount >= TIERS[code]["min_amount"]:
            selected = code
    return selected


def rates_for(tier: str, dividend_type: str = DividendType.STANDARD.value) -> Tuple[Decimal, Decimal]:
    """(quarterly, yearly) percent rates for a tier and dividend type."""
    if tier not in TIERS:
        raise ValidationError(f"Unknown tier: {tier}")
    if dividend_type not in (DividendType.STANDARD.value, DividendType.EXCLUSIVE.value):
        raise ValidationError(f"Unknown dividend type: {dividend_type}")
    return TIERS[tier][dividend_type]


def tier_table() -> List[Dict]:
    rows = []
    for code in TIER_ORDER:
        tier = TIERS[code]
        std_q, std_y = tier["STANDARD"]
        excl_q, excl_y = tier["EXCLUSIVE"]
        rows.append({
            "tier": code,
            "fund_range": tier["fund_range"],
            "min_amount": float(tier["min_amount"]),
            "standard": {"quarterly_rate": float(std_q), "yearly_rate": float(std_y)},
            "exclusive": {"quarterly_rate": float(excl_q), "yearly_rate": float(excl_y)},
        })
    return rows
