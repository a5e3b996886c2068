# dividends/commission.py
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from flask import current_app

from dividends.calculator import months_since
from dividends.hierarchy import LEVEL_LABELS, AgentHierarchyHelper, level_rank
from extensions import db
from models import AgentLevel, Commission, CommissionType, Investment, InvestmentStatus
from utils import money, utcnow


class CommissionHelper:
    """
    Commission split for consultant sales.
    Seller: 10% one-off on the investment, 2% per annum passive paid per completed quarter.
    Upline overrides: Business Dev 1.5%, Strategy Partner 0.8%, General Manager 0.5%,
    each paid to the nearest upline agent holding at least that rank.
    """

    PASSIVE_RATE = Decimal("2.0")
    ONE_OFF_RATE = Decimal("10.0")

    OVERRIDE_RATES = {
        AgentLevel.BUSINESS_DEV.value: Decimal("1.5"),
        AgentLevel.STRATEGY_PARTNER.value: Decimal("0.8"),
        AgentLevel.GENERAL_MANAGER.value: Decimal("0.5"),
    }

    QUARTERS_PER_YEAR = 4

    @staticmethod
    def commission_structure() -> Dict[str, Any]:
        return {
            "passive": float(CommissionHelper.PASSIVE_RATE),
            "one_off": float(CommissionHelper.ONE_OFF_RATE),
            "overrides": {
                LEVEL_LABELS[level]: float(rate)
                for level, rate in CommissionHelper.OVERRIDE_RATES.items()
            },
        }

    @staticmethod
    def calculate_investment_commissions(investment: Investment) -> List[Dict[str, Any]]:
        """One-off entry for the seller plus the override entries owed up the hierarchy."""
        seller = investment.agent
        if seller is None:
            return []

        amount = Decimal(str(investment.amount))
        entries = [{
            "agent_id": seller.id,
            "source_agent_id": None,
            "commission_type": CommissionType.ONE_OFF.value,
            "override_level": None,
            "percentage": CommissionHelper.ONE_OFF_RATE,
            "amount": money(amount * CommissionHelper.ONE_OFF_RATE / 100),
        }]

        seller_rank = level_rank(seller.level)
        upline = AgentHierarchyHelper.get_upline(seller.id)

        for override_level, rate in CommissionHelper.OVERRIDE_RATES.items():
            required_rank = level_rank(override_level)
            if required_rank <= seller_rank:
                continue

            recipient = next(
                (m for m in upline if level_rank(m["level"]) >= required_rank), None
            )
            if recipient is None:
                current_app.logger.info(
                    f"No upline {override_level} for agent {seller.id}; override not paid"
                )
                continue

            entries.append({
                "agent_id": recipient["agent_id"],
                "source_agent_id": seller.id,
                "commission_type": CommissionType.HIERARCHICAL.value,
                "override_level": override_level,
                "percentage": rate,
                "amount": money(amount * rate / 100),
            })

        return entries

    @staticmethod
    def record_investment_commissions(investment: Investment) -> List[Commission]:
        """Persist the sale commissions once per investment. Caller commits."""
        if investment.commissions_recorded:
            return []

        created = []
        for entry in CommissionHelper.calculate_investment_commissions(investment):
            commission = Commission(investment_id=investment.id, **entry)
            db.session.add(commission)
            created.append(commission)

        investment.commissions_recorded = True
        db.session.flush()

        current_app.logger.info(
            f"Recorded {len(created)} commissions for investment {investment.id}"
        )
        return created

    @staticmethod
    def accrue_passive_commissions(as_of: Optional[date] = None) -> List[Commission]:
        """
        Create one PASSIVE entry per active investment per completed quarter
        that has not been accrued yet. Caller commits.
        """
        as_of = as_of or date.today()
        created = []

        investments = Investment.query.filter(
            Investment.status == InvestmentStatus.ACTIVE.value,
            Investment.agent_id.isnot(None),
            Investment.start_date <= as_of,
        ).all()

        for investment in investments:
            completed = min(
                months_since(investment.start_date, as_of) // 3,
                investment.period_years * CommissionHelper.QUARTERS_PER_YEAR,
            )
            if completed < 1:
                continue

            accrued = {
                row.period_index for row in Commission.query.filter_by(
                    investment_id=investment.id,
                    commission_type=CommissionType.PASSIVE.value,
                ).with_entities(Commission.period_index)
            }

            per_quarter = money(
                Decimal(str(investment.amount)) * CommissionHelper.PASSIVE_RATE / 100
                / CommissionHelper.QUARTERS_PER_YEAR
            )

            for period_index in range(1, completed + 1):
                if period_index in accrued:
                    continue
                commission = Commission(
                    agent_id=investment.agent_id,
                    investment_id=investment.id,
                    commission_type=CommissionType.PASSIVE.value,
                    percentage=CommissionHelper.PASSIVE_RATE,
                    amount=per_quarter,
                    period_index=period_index,
                )
                db.session.add(commission)
                created.append(commission)

        db.session.flush()
        current_app.logger.info(f"Accrued {len(created)} passive commissions as of {as_of}")
        return created

    @staticmethod
    def commission_stats(agent, now=None) -> Dict[str, Any]:
        now = now or utcnow()
        commissions = Commission.query.filter_by(agent_id=agent.id).all()

        total = paid = pending = this_month = Decimal("0")
        by_type = {t.value: Decimal("0") for t in CommissionType}

        for commission in commissions:
            amount = Decimal(str(commission.amount))
            total += amount
            if commission.paid:
                paid += amount
            else:
                pending += amount
            by_type[commission.commission_type] = by_type.get(commission.commission_type, Decimal("0")) + amount
            created = commission.created_at
            if created and created.year == now.year and created.month == now.month:
                this_month += amount

        return {
            "total_commissions": float(total),
            "paid_commissions": float(paid),
            "pending_commissions": float(pending),
            "this_month_commissions": float(this_month),
            "commission_count": len(commissions),
            "by_type": {key: float(value) for key, value in by_type.items()},
        }

    @staticmethod
    def mark_paid(commission_ids: Iterable[int]) -> int:
        """Flag unpaid commissions as paid. Returns how many changed. Caller commits."""
        ids = [int(cid) for cid in commission_ids]
        if not ids:
            return 0

        now = utcnow()
        pending = Commission.query.filter(Commission.id.in_(ids), Commission.paid.is_(False)).all()
        for commission in pending:
            commission.paid = True
            commission.paid_at = now

        current_app.logger.info(f"Marked {len(pending)} commissions as paid")
        return len(pending)
