"""
Tests for the consultant hierarchy (closure table)
"""

import pytest

from dividends.hierarchy import AgentHierarchyHelper, level_rank
from errors import NotFound, ValidationError
from extensions import db
from models import Agent, AgentNetwork

from conftest import make_agent


@pytest.fixture
def chain(app_ctx):
    """General manager -> strategy partner -> business dev -> consultant."""
    gm = make_agent("gm@example.com", "GENERAL_MANAGER")
    sp = make_agent("sp@example.com", "STRATEGY_PARTNER", parent=gm)
    bd = make_agent("bd@example.com", "BUSINESS_DEV", parent=sp)
    vc = make_agent("vc@example.com", "VC_CONSULTANT", parent=bd)
    return gm, sp, bd, vc


def _ids(members):
    return [m["agent_id"] for m in members]


class TestInsert:

    def test_closure_rows_written(self, chain):
        gm, sp, bd, vc = chain
        rows = AgentNetwork.query.filter_by(descendant_id=vc.id).order_by(AgentNetwork.depth).all()
        assert [(r.ancestor_id, r.depth) for r in rows] == [
            (vc.id, 0), (bd.id, 1), (sp.id, 2), (gm.id, 3),
        ]

    def test_upline_nearest_first(self, chain):
        gm, sp, bd, vc = chain
        upline = AgentHierarchyHelper.get_upline(vc.id)
        assert _ids(upline) == [bd.id, sp.id, gm.id]
        assert [m["depth"] for m in upline] == [1, 2, 3]
        assert upline[0]["level_label"] == "Business Dev"
        assert upline[-1]["email"] == "gm@example.com"

    def test_standalone_agent_has_no_upline(self, app_ctx):
        agent = make_agent("solo@example.com")
        assert AgentHierarchyHelper.get_upline(agent.id) == []
        assert AgentNetwork.query.filter_by(descendant_id=agent.id, depth=0).count() == 1

    def test_self_parent_rejected(self, chain):
        gm = chain[0]
        with pytest.raises(ValidationError):
            AgentHierarchyHelper.add_agent(gm.id, gm.id)

    def test_cycle_rejected(self, chain):
        gm, sp, bd, vc = chain
        with pytest.raises(ValidationError):
            AgentHierarchyHelper.add_agent(gm.id, vc.id)

    def test_is_descendant(self, chain):
        gm, sp, bd, vc = chain
        assert AgentHierarchyHelper.is_descendant(gm.id, vc.id)
        assert not AgentHierarchyHelper.is_descendant(vc.id, gm.id)
        assert not AgentHierarchyHelper.is_descendant(vc.id, vc.id)


class TestDownline:

    def test_full_downline(self, chain):
        gm, sp, bd, vc = chain
        assert _ids(AgentHierarchyHelper.get_downline(gm.id)) == [sp.id, bd.id, vc.id]

    def test_downline_depth_limit(self, chain):
        gm, sp, bd, vc = chain
        assert _ids(AgentHierarchyHelper.get_downline(gm.id, max_depth=2)) == [sp.id, bd.id]
        assert _ids(AgentHierarchyHelper.direct_subordinates(gm.id)) == [sp.id]

    def test_network_summary(self, chain):
        gm, sp, bd, vc = chain
        extra = make_agent("vc2@example.com", parent=gm)

        summary = AgentHierarchyHelper.network_summary(gm.id)
        assert summary["upline_count"] == 0
        assert summary["direct_count"] == 2
        assert summary["total_network_size"] == 4
        assert summary["network_depth"] == 3
        assert summary["downline_by_level"] == {
            "VC_CONSULTANT": 2,
            "BUSINESS_DEV": 1,
            "STRATEGY_PARTNER": 1,
            "GENERAL_MANAGER": 0,
        }
        assert extra.id in _ids(summary["direct_subordinates"])


class TestMove:

    def test_subtree_follows_the_moved_agent(self, chain):
        gm, sp, bd, vc = chain
        gm2 = make_agent("gm2@example.com", "GENERAL_MANAGER")

        AgentHierarchyHelper.move_agent(bd.id, gm2.id)
        db.session.commit()

        assert _ids(AgentHierarchyHelper.get_upline(vc.id)) == [bd.id, gm2.id]
        assert _ids(AgentHierarchyHelper.get_upline(bd.id)) == [gm2.id]
        assert AgentHierarchyHelper.get_downline(sp.id) == []
        assert db.session.get(Agent, bd.id).parent_id == gm2.id

    def test_detach_to_root(self, chain):
        gm, sp, bd, vc = chain
        AgentHierarchyHelper.move_agent(bd.id, None)
        db.session.commit()

        assert _ids(AgentHierarchyHelper.get_upline(vc.id)) == [bd.id]
        assert AgentHierarchyHelper.get_upline(bd.id) == []
        assert db.session.get(Agent, bd.id).parent_id is None

    def test_move_into_own_downline_rejected(self, chain):
        gm, sp, bd, vc = chain
        with pytest.raises(ValidationError):
            AgentHierarchyHelper.move_agent(sp.id, vc.id)

    def test_unknown_agent(self, chain):
        with pytest.raises(NotFound):
            AgentHierarchyHelper.move_agent(9999, None)


def test_level_rank_order():
    assert level_rank("VC_CONSULTANT") < level_rank("BUSINESS_DEV") < level_rank("STRATEGY_PARTNER") \
        < level_rank("GENERAL_MANAGER")
    with pytest.raises(ValidationError):
        level_rank("CEO")
