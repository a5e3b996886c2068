# dividends/hierarchy.py
import logging
from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from errors import NotFound, ValidationError
from extensions import db
from models import Agent, AgentLevel

logger = logging.getLogger(__name__)

MAX_NETWORK_DEPTH = 20

LEVEL_ORDER = (
    AgentLevel.VC_CONSULTANT.value,
    AgentLevel.BUSINESS_DEV.value,
    AgentLevel.STRATEGY_PARTNER.value,
    AgentLevel.GENERAL_MANAGER.value,
)

LEVEL_LABELS = {
    AgentLevel.VC_CONSULTANT.value: "VC Consultant",
    AgentLevel.BUSINESS_DEV.value: "Business Dev",
    AgentLevel.STRATEGY_PARTNER.value: "Strategy Partner",
    AgentLevel.GENERAL_MANAGER.value: "General Manager",
}


def level_rank(level: str) -> int:
    try:
        return LEVEL_ORDER.index(level)
    except ValueError:
        raise ValidationError(f"Unknown consultant level: {level}")


def _row_to_member(row) -> Dict[str, Any]:
    return {
        "agent_id": row.id,
        "agent_code": row.agent_code,
        "full_name": row.full_name,
        "email": row.email,
        "level": row.level,
        "level_label": LEVEL_LABELS.get(row.level, row.level),
        "depth": row.depth,
    }


class AgentHierarchyHelper:
    """
    Consultant hierarchy on top of the agent_network closure table.
    Every agent owns a depth-0 self row; each ancestor owns one row per descendant.
    Writes happen inside the caller's transaction (no commit here).
    """

    @staticmethod
    def is_descendant(ancestor_id: int, descendant_id: int) -> bool:
        """True if ancestor_id sits above descendant_id (depth >= 1)."""
        row = db.session.execute(
            text(
                """
                SELECT 1 FROM agent_network
                WHERE ancestor_id = :ancestor AND descendant_id = :descendant AND depth >= 1
                LIMIT 1
                """
            ),
            {"ancestor": ancestor_id, "descendant": descendant_id},
        ).scalar()
        return bool(row)

    @staticmethod
    def _ensure_self_row(agent_id: int):
        db.session.execute(
            text(
                """
                INSERT INTO agent_network (ancestor_id, descendant_id, depth)
                VALUES (:aid, :aid, 0)
                ON CONFLICT (ancestor_id, descendant_id) DO NOTHING
                """
            ),
            {"aid": agent_id},
        )

    @staticmethod
    def initialize_standalone(agent_id: int) -> bool:
        """Register an agent with no parent (root of its own branch)."""
        AgentHierarchyHelper._ensure_self_row(agent_id)
        current_app.logger.info(f"Initialized standalone agent {agent_id} in hierarchy")
        return True

    @staticmethod
    def add_agent(agent_id: int, parent_id: Optional[int]) -> bool:
        """
        Insert agent_id under parent_id: its self row plus one row per ancestor of the parent.
        Raises ValidationError on self-parenting or cycles.
        """
        if parent_id is None:
            return AgentHierarchyHelper.initialize_standalone(agent_id)

        if agent_id == parent_id:
            raise ValidationError("An agent cannot be its own parent")

        if AgentHierarchyHelper.is_descendant(agent_id, parent_id):
            current_app.logger.warning(
                f"Cycle detected: parent {parent_id} is a descendant of agent {agent_id}"
            )
            raise ValidationError("Parent agent is part of this agent's downline")

        try:
            AgentHierarchyHelper._ensure_self_row(agent_id)
            AgentHierarchyHelper._ensure_self_row(parent_id)

            db.session.execute(
                text(
                    """
                    INSERT INTO agent_network (ancestor_id, descendant_id, depth)
                    SELECT ancestor_id, :new_id, depth + 1
                    FROM agent_network
                    WHERE descendant_id = :parent_id AND depth < :max_depth
                    ON CONFLICT (ancestor_id, descendant_id) DO NOTHING
                    """
                ),
                {"new_id": agent_id, "parent_id": parent_id, "max_depth": MAX_NETWORK_DEPTH},
            )
        except SQLAlchemyError:
            current_app.logger.error(f"Hierarchy insert failed for agent {agent_id}", exc_info=True)
            raise

        current_app.logger.info(f"Agent {agent_id} added under parent {parent_id}")
        return True

    @staticmethod
    def get_upline(agent_id: int, max_levels: int = MAX_NETWORK_DEPTH) -> List[Dict[str, Any]]:
        """Ancestors of an agent, nearest first."""
        result = db.session.execute(
            text(
                """
                SELECT a.id, a.agent_code, a.level, u.full_name, u.email, an.depth
                FROM agent_network an
                JOIN agents a ON an.ancestor_id = a.id
                JOIN users u ON a.user_id = u.id
                WHERE an.descendant_id = :agent_id
                AND an.depth BETWEEN 1 AND :max_levels
                ORDER BY an.depth ASC
                """
            ),
            {"agent_id": agent_id, "max_levels": max_levels},
        )
        return [_row_to_member(row) for row in result]

    @staticmethod
    def get_downline(agent_id: int, max_depth: Optional[int] = None) -> List[Dict[str, Any]]:
        """Descendants of an agent ordered by depth, optionally limited to max_depth."""
        result = db.session.execute(
            text(
                """
                SELECT a.id, a.agent_code, a.level, u.full_name, u.email, an.depth
                FROM agent_network an
                JOIN agents a ON an.descendant_id = a.id
                JOIN users u ON a.user_id = u.id
                WHERE an.ancestor_id = :agent_id
                AND an.depth BETWEEN 1 AND :max_depth
                ORDER BY an.depth ASC, a.id ASC
                """
            ),
            {"agent_id": agent_id, "max_depth": max_depth or MAX_NETWORK_DEPTH},
        )
        return [_row_to_member(row) for row in result]

    @staticmethod
    def direct_subordinates(agent_id: int) -> List[Dict[str, Any]]:
        return AgentHierarchyHelper.get_downline(agent_id, max_depth=1)

    @staticmethod
    def network_summary(agent_id: int) -> Dict[str, Any]:
        upline = AgentHierarchyHelper.get_upline(agent_id)
        downline = AgentHierarchyHelper.get_downline(agent_id)

        by_level = {level: 0 for level in LEVEL_ORDER}
        for member in downline:
            by_level[member["level"]] = by_level.get(member["level"], 0) + 1

        return {
            "agent_id": agent_id,
            "upline": upline,
            "upline_count": len(upline),
            "direct_subordinates": [m for m in downline if m["depth"] == 1],
            "direct_count": sum(1 for m in downline if m["depth"] == 1),
            "total_network_size": len(downline),
            "network_depth": max((m["depth"] for m in downline), default=0),
            "downline_by_level": by_level,
        }

    @staticmethod
    def move_agent(agent_id: int, new_parent_id: Optional[int]) -> Agent:
        """
        Re-parent an agent together with its whole subtree.
        Rows linking the subtree to its old ancestors are dropped, then rebuilt
        from the new parent's ancestors.
        """
        agent = db.session.get(Agent, agent_id)
        if not agent:
            raise NotFound("Agent not found")

        if new_parent_id is not None:
            if new_parent_id == agent_id:
                raise ValidationError("An agent cannot be its own parent")
            if not db.session.get(Agent, new_parent_id):
                raise NotFound("Parent agent not found")
            if AgentHierarchyHelper.is_descendant(agent_id, new_parent_id):
                raise ValidationError("Parent agent is part of this agent's downline")

        AgentHierarchyHelper._ensure_self_row(agent_id)

        db.session.execute(
            text(
                """
                DELETE FROM agent_network
                WHERE descendant_id IN (
                    SELECT descendant_id FROM agent_network WHERE ancestor_id = :aid
                )
                AND ancestor_id NOT IN (
                    SELECT descendant_id FROM agent_network WHERE ancestor_id = :aid
                )
                """
            ),
            {"aid": agent_id},
        )

        if new_parent_id is not None:
            AgentHierarchyHelper._ensure_self_row(new_parent_id)
            db.session.execute(
                text(
                    """
                    INSERT INTO agent_network (ancestor_id, descendant_id, depth)
                    SELECT supertree.ancestor_id, subtree.descendant_id,
                           supertree.depth + subtree.depth + 1
                    FROM agent_network AS supertree
                    CROSS JOIN agent_network AS subtree
                    WHERE supertree.descendant_id = :parent_id
                    AND subtree.ancestor_id = :aid
                    AND supertree.depth + subtree.depth + 1 <= :max_depth
                    ON CONFLICT (ancestor_id, descendant_id) DO NOTHING
                    """
                ),
                {"parent_id": new_parent_id, "aid": agent_id, "max_depth": MAX_NETWORK_DEPTH},
            )

        agent.parent_id = new_parent_id
        logger.info("Moved agent %s under %s", agent_id, new_parent_id)
        return agent

