from datetime import date

import pytest

from dividends.commission import CommissionHelper
from dividends.hierarchy import AgentHierarchyHelper
from extensions import db
from models import Agent, AuditLog, Commission, Role

from conftest import login, make_agent, make_investment, make_investor, make_user


@pytest.fixture
def network(app):
    """GM -> BD -> VC, with one sale by the consultant."""
    with app.app_context():
        make_user("admin@example.com")
        gm = make_agent("gm@example.com", "GENERAL_MANAGER")
        bd = make_agent("bd@example.com", "BUSINESS_DEV", parent=gm)
        vc = make_agent("vc@example.com", parent=bd)
        investment = make_investment(make_investor("inv@example.com", agent=vc), "100000",
                                     start_date=date(2024, 1, 1))
        CommissionHelper.record_investment_commissions(investment)
        db.session.commit()
        return {"gm": gm.id, "bd": bd.id, "vc": vc.id}


class TestConsultantViews:

    def test_dashboard(self, client, network):
        login(client, "vc@example.com")
        body = client.get("/api/agent/dashboard").get_json()

        assert body["agent"]["level_label"] == "VC Consultant"
        assert body["investor_count"] == 1
        assert body["investment_volume"] == 100000.0
        assert body["active_investments"] == 1
        assert body["commission_stats"]["total_commissions"] == 10000.0
        assert body["commission_structure"]["one_off"] == 10.0
        assert body["subordinates"] == []
        assert body["profile_completed"] is False

    def test_dashboard_needs_consultant_role(self, client, network):
        login(client, "inv@example.com")
        assert client.get("/api/agent/dashboard").status_code == 403

    def test_upline_commissions(self, client, network):
        login(client, "gm@example.com")
        body = client.get("/api/agent/commissions").get_json()

        levels = sorted(c["override_level"] for c in body["commissions"])
        assert levels == ["GENERAL_MANAGER", "STRATEGY_PARTNER"]
        assert body["stats"]["total_commissions"] == 1300.0
        assert body["commissions"][0]["source_agent"]["id"] == network["vc"]

        body = client.get("/api/agent/commissions?type=one_off").get_json()
        assert body["commissions"] == []

    def test_network(self, client, network):
        login(client, "gm@example.com")
        body = client.get("/api/agent/network").get_json()
        assert body["network"]["total_network_size"] == 2
        assert [m["agent_id"] for m in body["downline"]] == [network["bd"], network["vc"]]

    def test_profile_completion(self, client, app, network):
        login(client, "vc@example.com")
        response = client.put("/api/agent/profile", json={
            "nric": "850101-01-0101",
            "contact_number": "+60111111111",
            "account_holder_name": "Vc",
            "bank_name": "RHB",
        })
        assert response.get_json()["agent"]["profile_completed"] is False

        response = client.put("/api/agent/profile", json={"account_number": "1234567890", "full_name": "Vee Cee"})
        body = response.get_json()
        assert body["agent"]["profile_completed"] is True
        assert body["agent"]["account_number"] == "1234567890"
        assert body["agent"]["full_name"] == "Vee Cee"


class TestAdminAgents:

    def test_list_with_pending_totals(self, client, network):
        login(client, "admin@example.com")
        body = client.get("/api/admin/agents").get_json()

        pending = {a["id"]: a["pending_commissions"] for a in body["agents"]}
        assert pending == {network["gm"]: 1300.0, network["bd"]: 1500.0, network["vc"]: 10000.0}
        assert len(body["levels"]) == 4

        body = client.get("/api/admin/agents?level=business_dev").get_json()
        assert [a["id"] for a in body["agents"]] == [network["bd"]]

    def test_consultant_cannot_use_admin_routes(self, client, network):
        login(client, "gm@example.com")
        assert client.get("/api/admin/agents").status_code == 403

    def test_promote(self, client, app, network):
        login(client, "admin@example.com")
        url = f"/api/admin/agents/{network['vc']}/level"

        response = client.patch(url, json={"level": "STRATEGY_PARTNER"})
        assert response.status_code == 200
        assert response.get_json()["agent"]["level"] == "STRATEGY_PARTNER"
        assert client.patch(url, json={"level": "CEO"}).status_code == 400

        with app.app_context():
            entry = AuditLog.query.filter_by(action="agent_level_changed").one()
            assert entry.details == {"from": "VC_CONSULTANT", "to": "STRATEGY_PARTNER"}

    def test_move_agent(self, client, app, network):
        login(client, "admin@example.com")

        response = client.patch(f"/api/admin/agents/{network['vc']}/parent", json={"parent_id": network["gm"]})
        assert response.status_code == 200
        assert [m["agent_id"] for m in response.get_json()["upline"]] == [network["gm"]]

        with app.app_context():
            assert db.session.get(Agent, network["vc"]).parent_id == network["gm"]
            assert AgentHierarchyHelper.get_downline(network["bd"]) == []

    def test_move_rejects_cycle(self, client, network):
        login(client, "admin@example.com")
        response = client.patch(f"/api/admin/agents/{network['gm']}/parent", json={"parent_id": network["vc"]})
        assert response.status_code == 400

    def test_move_bad_parent_id(self, client, network):
        login(client, "admin@example.com")
        response = client.patch(f"/api/admin/agents/{network['vc']}/parent", json={"parent_id": "abc"})
        assert response.status_code == 400


class TestPayouts:

    def test_mark_paid(self, client, app, network):
        with app.app_context():
            ids = [c.id for c in Commission.query.filter_by(agent_id=network["vc"]).all()]
        login(client, "admin@example.com")

        response = client.post("/api/admin/commissions/mark-paid", json={"commission_ids": ids})
        assert response.get_json()["updated"] == 1
        response = client.post("/api/admin/commissions/mark-paid", json={"commission_ids": ids})
        assert response.get_json()["updated"] == 0

        assert client.post("/api/admin/commissions/mark-paid", json={"commission_ids": []}).status_code == 400
        assert client.post("/api/admin/commissions/mark-paid",
                           json={"commission_ids": ["x"]}).status_code == 400

    def test_accrue_passive(self, client, app, network):
        login(client, "admin@example.com")

        response = client.post("/api/admin/commissions/accrue-passive", json={"as_of": "2024-07-01"})
        assert response.get_json() == {"success": True, "created": 2, "total_amount": 1000.0}

        response = client.post("/api/admin/commissions/accrue-passive", json={"as_of": "2024-07-01"})
        assert response.get_json()["created"] == 0

        with app.app_context():
            passive = Commission.query.filter_by(commission_type="PASSIVE").all()
            assert {c.agent_id for c in passive} == {network["vc"]}


def test_consultant_without_profile(client, app):
    with app.app_context():
        make_user("bare@example.com", role=Role.CONSULTANT.value)
    login(client, "bare@example.com")
    assert client.get("/api/agent/dashboard").status_code == 403
