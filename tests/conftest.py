"""Shared fixtures and data builders for the portal test suite.

The builders (make_*) expect an active application context and commit
their rows; API tests call them inside ``with app.app_context():`` and keep
only ids, since every test request runs in its own context.
"""
from datetime import date, timedelta

import pytest

from accounts import create_user, unique_agent_code
from app import create_app
from config import TestingConfig
from dividends.hierarchy import AgentHierarchyHelper
from dividends.tiers import rates_for, tier_for_amount
from extensions import db
from models import (
    Agent, AgentLevel, Application, DividendType, InviteToken, Investment, InvestmentStatus, Investor,
    KYC_FLAGS, KycStatus, Role,
)
from utils import money, utcnow

PASSWORD = "Passw0rd!"


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def app_ctx(app):
    """For tests that work on the session directly, without the HTTP client."""
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


def login(client, email, password=PASSWORD):
    response = client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.get_json()
    return response.get_json()["user"]


# ===========================================================
# DATA BUILDERS
# ===========================================================

def make_user(email, role=Role.ADMIN.value, full_name=None, password=PASSWORD, **fields):
    user = create_user(email, full_name or email.split("@")[0].title(), password, role)
    for key, value in fields.items():
        setattr(user, key, value)
    db.session.commit()
    return user


def make_agent(email, level=AgentLevel.VC_CONSULTANT.value, parent=None, **profile):
    user = create_user(email, email.split("@")[0].title(), PASSWORD, Role.CONSULTANT.value)
    agent = Agent(
        user_id=user.id,
        agent_code=unique_agent_code(),
        level=level,
        parent_id=parent.id if parent else None,
        **profile,
    )
    db.session.add(agent)
    db.session.flush()
    AgentHierarchyHelper.add_agent(agent.id, parent.id if parent else None)
    db.session.commit()
    return agent


def make_investor(email, agent=None, nric="900101-01-1234"):
    user = create_user(email, email.split("@")[0].title(), PASSWORD, Role.INVESTOR.value)
    investor = Investor(user_id=user.id, agent_id=agent.id if agent else None, nric=nric)
    db.session.add(investor)
    db.session.commit()
    return investor


def make_investment(investor, amount="100000", start_date=None, agent=None,
                    dividend_type=DividendType.STANDARD.value, status=InvestmentStatus.ACTIVE.value,
                    period_years=5):
    tier = tier_for_amount(amount)
    quarterly_rate, yearly_rate = rates_for(tier, dividend_type)
    investment = Investment(
        investor_id=investor.id,
        agent_id=agent.id if agent else investor.agent_id,
        dividend_type=dividend_type,
        tier=tier,
        amount=money(amount),
        quarterly_rate=quarterly_rate,
        yearly_rate=yearly_rate,
        start_date=start_date or date(2024, 1, 1),
        period_years=period_years,
        status=status,
    )
    db.session.add(investment)
    db.session.commit()
    return investment


def make_application(email="applicant@example.com", kyc_complete=False, **fields):
    data = {
        "full_name": "Nur Aisyah",
        "nric": "880808-08-8888",
        "contact_number": "+60123456789",
        "address": "12 Jalan Ampang",
        "city_country": "Kuala Lumpur",
        "bank_name": "Maybank",
        "account_holder_name": "Nur Aisyah",
        "account_number": "5140123456",
        "declaration": True,
    }
    data.update(fields)
    application = Application(email=email, **data)
    if kyc_complete:
        for flag in KYC_FLAGS:
            setattr(application, flag, True)
        application.kyc_status = KycStatus.COMPLETED.value
    db.session.add(application)
    db.session.commit()
    return application


def make_invite(application, token="invite-token-1", expires_in=timedelta(days=7)):
    invite = InviteToken(
        token=token,
        application_id=application.id,
        email=application.email,
        expires_at=utcnow() + expires_in,
    )
    db.session.add(invite)
    db.session.commit()
    return invite
