# dividends/calculator.py
import calendar
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, Optional

from dividends.tiers import rates_for
from models import DividendType, InvestmentStatus
from utils import TWO_PLACES, money

DAYS_PER_QUARTER = 90
DEFAULT_PERIOD_YEARS = 5
SIX_PLACES = Decimal("0.000001")


def add_months(start: date, months: int) -> date:
    """Shift a date by whole calendar months, clamping the day to the month end."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def months_since(start: date, as_of: date) -> int:
    """Calendar-month difference between two dates, never negative."""
    months = (as_of.year - start.year) * 12 + (as_of.month - start.month)
    return max(months, 0)


def format_remaining(months: int) -> str:
    months = max(months, 0)
    return f"{months // 12}y {months % 12}m"


def calculate_dividend(amount, quarterly_rate, yearly_rate, start_date: date,
                       as_of: Optional[date] = None,
                       period_years: int = DEFAULT_PERIOD_YEARS,
                       status: str = InvestmentStatus.ACTIVE.value) -> Dict:
    """
    Pro-rate the dividend of one investment as of a given date.

    The current quarter accrues amount x (quarterly_rate / 90) x days / 100,
    completed quarters are added in full. Only the year-to-date figure is capped
    at the yearly dividend; the running total is a plain sum of quarters.
    """
    as_of = as_of or date.today()
    amount = Decimal(str(amount))
    quarterly_rate = Decimal(str(quarterly_rate))
    yearly_rate = Decimal(str(yearly_rate))
    period_months = period_years * 12

    daily_rate = quarterly_rate / DAYS_PER_QUARTER
    quarterly_dividend = amount * quarterly_rate / 100
    yearly_dividend = amount * yearly_rate / 100

    if start_date > as_of:
        months = 0
    else:
        months = months_since(start_date, as_of)
    matured = months >= period_months

    if matured:
        current_year = period_years
        current_quarter = period_years * 4
        quarter_start = add_months(start_date, (current_quarter - 1) * 3)
        next_payment = None
        days = 0
        pro_rated = Decimal("0")
        year_to_date = Decimal("0")
        completed_quarters = current_quarter
    else:
        current_year = months // 12 + 1
        current_quarter = months // 3 + 1
        quarter_start = add_months(start_date, (current_quarter - 1) * 3)
        next_payment = add_months(start_date, current_quarter * 3)
        days = min(max((as_of - quarter_start).days, 0), DAYS_PER_QUARTER)

        if status == InvestmentStatus.ACTIVE.value:
            pro_rated = amount * daily_rate * days / 100
        else:
            pro_rated = Decimal("0")

        completed_quarters_in_year = (months % 12) // 3
        year_to_date = min(completed_quarters_in_year * quarterly_dividend + pro_rated, yearly_dividend)
        completed_quarters = current_quarter - 1

    total_paid = completed_quarters * quarterly_dividend + pro_rated

    return {
        "amount": money(amount),
        "quarterly_rate": quarterly_rate,
        "yearly_rate": yearly_rate,
        "daily_rate": daily_rate.quantize(SIX_PLACES, rounding=ROUND_HALF_UP),
        "start_date": start_date,
        "as_of": as_of,
        "months_elapsed": months,
        "current_year": current_year,
        "current_quarter": current_quarter,
        "quarter_start_date": quarter_start,
        "next_payment_date": next_payment,
        "days_in_current_quarter": days,
        "quarterly_dividend": money(quarterly_dividend),
        "yearly_dividend": money(yearly_dividend),
        "pro_rated_dividend": money(pro_rated),
        "year_to_date": money(year_to_date),
        "total_dividends_paid": money(total_paid),
        "matured": matured,
        "remaining_period": format_remaining(period_months - months),
        "status": status,
    }


def calculate_for_investment(investment, as_of: Optional[date] = None) -> Dict:
    """Run calculate_dividend for a stored Investment row."""
    quarterly_rate, yearly_rate = investment.quarterly_rate, investment.yearly_rate
    if quarterly_rate is None or yearly_rate is None:
        quarterly_rate, yearly_rate = rates_for(
            investment.tier, investment.dividend_type or DividendType.STANDARD.value
        )

    result = calculate_dividend(
        investment.amount,
        quarterly_rate,
        yearly_rate,
        investment.start_date,
        as_of=as_of,
        period_years=investment.period_years or DEFAULT_PERIOD_YEARS,
        status=investment.status,
    )
    result.update({
        "investment_id": investment.id,
        "investor_id": investment.investor_id,
        "investor_name": investment.investor.full_name if investment.investor else None,
        "tier": investment.tier,
        "dividend_type": investment.dividend_type,
    })
    return result


def summarise(calculations: Iterable[Dict]) -> Dict:
    investors = set()
    active_investors = set()
    total_investment = Decimal("0")
    total_paid = Decimal("0")

    for calc in calculations:
        investor_key = calc.get("investor_id", id(calc))
        investors.add(investor_key)
        if calc.get("status") == InvestmentStatus.ACTIVE.value:
            active_investors.add(investor_key)
        total_investment += calc["amount"]
        total_paid += calc["total_dividends_paid"]

    return {
        "total_investors": len(investors),
        "total_investment": total_investment.quantize(TWO_PLACES),
        "total_dividends_paid": total_paid.quantize(TWO_PLACES),
        "active_investors": len(active_investors),
    }


def serialize(calc: Dict) -> Dict:
    """JSON-friendly copy of a calculation (Decimals to float, dates to ISO)."""
    out = {}
    for key, value in calc.items():
        if isinstance(value, Decimal):
            out[key] = float(value)
        elif isinstance(value, date):
            out[key] = value.isoformat()
        else:
            out[key] = value
    return out
