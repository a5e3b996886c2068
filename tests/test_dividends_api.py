from datetime import date

import pytest

from models import Role

from conftest import login, make_agent, make_investment, make_investor, make_user


@pytest.fixture
def portfolio(app):
    with app.app_context():
        make_user("admin@example.com")
        vc = make_agent("vc@example.com")
        make_agent("other@example.com")
        first = make_investor("first@example.com", agent=vc)
        second = make_investor("second@example.com", agent=vc, nric="700707-07-7070")
        active = make_investment(first, "100000", start_date=date(2024, 1, 1))
        make_investment(first, "50000", start_date=date(2024, 1, 1), status="SUSPENDED")
        make_investment(second, "500000", start_date=date(2024, 1, 1), dividend_type="EXCLUSIVE")
        return {"active": active.id}


class TestOverview:

    def test_admin_overview(self, client, portfolio):
        login(client, "admin@example.com")
        body = client.get("/api/dividends?as_of=2024-01-31").get_json()

        assert body["as_of"] == "2024-01-31"
        assert len(body["calculations"]) == 3
        assert body["summary"]["total_investors"] == 2
        assert body["summary"]["active_investors"] == 2
        assert body["summary"]["total_investment"] == 650000.0
        first = body["calculations"][0]
        assert first["investor_name"] == "First"
        assert first["tier"] == "B"
        assert first["pro_rated_dividend"] == 1166.67

    def test_status_filter(self, client, portfolio):
        login(client, "admin@example.com")
        body = client.get("/api/dividends?as_of=2024-01-31&status=suspended").get_json()
        assert [c["status"] for c in body["calculations"]] == ["SUSPENDED"]
        assert body["calculations"][0]["pro_rated_dividend"] == 0.0

    def test_consultant_lacks_permission(self, client, portfolio):
        login(client, "vc@example.com")
        assert client.get("/api/dividends").status_code == 403

    def test_bad_as_of(self, client, portfolio):
        login(client, "admin@example.com")
        assert client.get("/api/dividends?as_of=31-01-2024").status_code == 400


def test_tier_table_for_any_user(client, app):
    with app.app_context():
        make_user("inv@example.com", role=Role.INVESTOR.value)
    assert client.get("/api/dividends/tiers").status_code == 401

    login(client, "inv@example.com")
    tiers = client.get("/api/dividends/tiers").get_json()["tiers"]
    assert [t["tier"] for t in tiers] == ["A1", "A", "B", "C", "D", "E"]


class TestSingleInvestment:

    def test_owning_investor(self, client, portfolio):
        login(client, "first@example.com")
        response = client.get(f"/api/dividends/investments/{portfolio['active']}?as_of=2024-04-01")
        assert response.status_code == 200
        calculation = response.get_json()["calculation"]
        assert calculation["current_quarter"] == 2
        assert calculation["year_to_date"] == 3500.0
        assert calculation["next_payment_date"] == "2024-07-01"

    def test_owning_consultant(self, client, portfolio):
        login(client, "vc@example.com")
        assert client.get(f"/api/dividends/investments/{portfolio['active']}").status_code == 200

    def test_other_users_denied(self, client, portfolio):
        login(client, "second@example.com")
        assert client.get(f"/api/dividends/investments/{portfolio['active']}").status_code == 403

        client.post("/api/auth/logout")
        login(client, "other@example.com")
        assert client.get(f"/api/dividends/investments/{portfolio['active']}").status_code == 403

    def test_missing(self, client, portfolio):
        login(client, "admin@example.com")
        assert client.get("/api/dividends/investments/999").status_code == 404
