from datetime import date

import pytest

from extensions import db, mail
from models import Agent, Commission, Investment, Investor, Role, User

from conftest import PASSWORD, login, make_agent, make_investment, make_investor, make_user

NEW_INVESTOR = {
    "email": "investor@example.com",
    "full_name": "Wong Kar Seng",
    "nric": "800505-05-5050",
    "contact_number": "+60122223333",
    "bank_name": "Public Bank",
    "investment": {"amount": 100000, "dividend_type": "EXCLUSIVE", "start_date": "2024-01-01"},
}


@pytest.fixture
def team(app):
    """Business developer with one consultant below."""
    with app.app_context():
        bd = make_agent("bd@example.com", "BUSINESS_DEV")
        vc = make_agent("vc@example.com", parent=bd)
        return {"bd": bd.id, "vc": vc.id, "vc_code": vc.agent_code}


class TestCreateInvestor:

    def test_consultant_registers_investor(self, client, app, team):
        login(client, "vc@example.com")

        with mail.record_messages() as outbox:
            response = client.post("/api/investors", json=NEW_INVESTOR)
        assert response.status_code == 201
        body = response.get_json()
        temporary_password = body["temporary_password"]
        investor = body["investor"]

        assert investor["agent_id"] == team["vc"]
        assert investor["total_investment"] == 100000.0
        assert investor["investments"][0]["tier"] == "B"
        assert investor["investments"][0]["quarterly_rate"] == 4.0
        assert investor["investments"][0]["yearly_rate"] == 15.5
        assert body["email_sent"] is True
        assert temporary_password in outbox[0].body

        with app.app_context():
            commissions = {
                (c.agent_id, c.commission_type): float(c.amount) for c in Commission.query.all()
            }
            assert commissions == {
                (team["vc"], "ONE_OFF"): 10000.0,
                (team["bd"], "HIERARCHICAL"): 1500.0,
            }
            assert Investment.query.one().commissions_recorded is True
            user = User.query.filter_by(email="investor@example.com").one()
            assert user.role == "investor"
            assert user.must_change_password is True

        client.post("/api/auth/logout")
        assert login(client, "investor@example.com", temporary_password)["must_change_password"] is True

    def test_admin_names_the_agent(self, client, app, team):
        with app.app_context():
            make_user("admin@example.com")
        login(client, "admin@example.com")

        response = client.post("/api/investors", json={**NEW_INVESTOR, "agent_code": team["vc_code"]})
        assert response.status_code == 201
        assert response.get_json()["investor"]["agent_id"] == team["vc"]

    def test_admin_unknown_agent(self, client, app):
        with app.app_context():
            make_user("admin@example.com")
        login(client, "admin@example.com")

        response = client.post("/api/investors", json={**NEW_INVESTOR, "agent_id": 999})
        assert response.status_code == 404

    def test_below_minimum_rolls_back(self, client, app, team):
        login(client, "vc@example.com")

        response = client.post("/api/investors", json={**NEW_INVESTOR, "investment": {"amount": 10000}})
        assert response.status_code == 400
        with app.app_context():
            assert User.query.filter_by(email="investor@example.com").first() is None
            assert Investor.query.count() == 0

    def test_nric_required(self, client, app, team):
        login(client, "vc@example.com")
        response = client.post("/api/investors", json={**NEW_INVESTOR, "nric": ""})
        assert response.status_code == 400

    def test_investor_cannot_register_investors(self, client, app):
        with app.app_context():
            make_investor("inv@example.com")
        login(client, "inv@example.com")
        assert client.post("/api/investors", json=NEW_INVESTOR).status_code == 403


class TestViewInvestors:

    @pytest.fixture
    def book(self, app, team):
        with app.app_context():
            vc = db.session.get(Agent, team["vc"])
            other = make_agent("other@example.com")
            mine = make_investor("mine@example.com", agent=vc)
            theirs = make_investor("theirs@example.com", agent=other, nric="700707-07-7070")
            make_investment(mine, "100000", start_date=date(2024, 1, 1))
            make_investment(theirs, "50000", start_date=date(2024, 1, 1))
            return {"mine": mine.id, "theirs": theirs.id}

    def test_consultant_sees_own_book(self, client, book):
        login(client, "vc@example.com")
        body = client.get("/api/investors").get_json()
        assert [i["id"] for i in body["investors"]] == [book["mine"]]

    def test_admin_sees_everyone_and_can_search(self, client, app, book):
        with app.app_context():
            make_user("admin@example.com")
        login(client, "admin@example.com")

        assert client.get("/api/investors").get_json()["count"] == 2
        body = client.get("/api/investors?q=700707").get_json()
        assert [i["id"] for i in body["investors"]] == [book["theirs"]]

    def test_detail_with_dividends(self, client, book):
        login(client, "vc@example.com")
        response = client.get(f"/api/investors/{book['mine']}?as_of=2024-01-31")
        assert response.status_code == 200
        investor = response.get_json()["investor"]
        assert investor["dividends"][0]["pro_rated_dividend"] == 1166.67
        assert investor["summary"]["total_investment"] == 100000.0

    def test_consultant_cannot_open_other_book(self, client, book):
        login(client, "vc@example.com")
        assert client.get(f"/api/investors/{book['theirs']}").status_code == 403

    def test_investor_sees_only_self(self, client, book):
        login(client, "mine@example.com")
        assert client.get(f"/api/investors/{book['mine']}").status_code == 200
        assert client.get(f"/api/investors/{book['theirs']}").status_code == 403
        assert client.get("/api/investors").status_code == 403

    def test_investor_dashboard(self, client, book):
        login(client, "mine@example.com")
        body = client.get("/api/investor/dashboard?as_of=2024-04-01").get_json()
        assert len(body["investments"]) == 1
        assert body["dividends"][0]["current_quarter"] == 2
        assert body["summary"]["total_dividends_paid"] == 3500.0
        assert body["agent"]["email"] == "vc@example.com"


class TestInvestments:

    def test_add_investment(self, client, app, team):
        with app.app_context():
            vc = db.session.get(Agent, team["vc"])
            investor_id = make_investor("mine@example.com", agent=vc).id
        login(client, "vc@example.com")

        response = client.post(f"/api/investors/{investor_id}/investments",
                               json={"amount": "1000000", "start_date": "2024-02-01", "period_years": 3})
        assert response.status_code == 201
        investment = response.get_json()["investment"]
        assert investment["tier"] == "E"
        assert investment["period_years"] == 3
        assert investment["agent_id"] == team["vc"]

    def test_period_bounds(self, client, app):
        with app.app_context():
            investor_id = make_investor("mine@example.com").id
            make_user("admin@example.com")
        login(client, "admin@example.com")

        response = client.post(f"/api/investors/{investor_id}/investments",
                               json={"amount": 50000, "period_years": 40})
        assert response.status_code == 400

    def test_status_change_admin_only(self, client, app):
        with app.app_context():
            investment_id = make_investment(make_investor("mine@example.com"), "50000").id
            make_user("admin@example.com")
            make_user("vc@example.com", role=Role.CONSULTANT.value)

        login(client, "vc@example.com")
        url = f"/api/investments/{investment_id}/status"
        assert client.patch(url, json={"status": "SUSPENDED"}).status_code == 403

        client.post("/api/auth/logout")
        login(client, "admin@example.com", PASSWORD)
        response = client.patch(url, json={"status": "suspended"})
        assert response.status_code == 200
        assert response.get_json()["investment"]["status"] == "SUSPENDED"
        assert client.patch(url, json={"status": "CLOSED"}).status_code == 400
