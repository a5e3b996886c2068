# accounts.py - Shared user/agent creation used by registration, invites and admin tools
from flask import current_app

from dividends.hierarchy import AgentHierarchyHelper
from errors import Conflict, ValidationError
from extensions import db
from models import Agent, AgentLevel, Role, User
from utils import generate_agent_code, validate_email, validate_password


def unique_agent_code(attempts=10):
    for _ in range(attempts):
        code = generate_agent_code()
        if not Agent.query.filter_by(agent_code=code).first():
            return code
    raise Conflict("Could not allocate a unique agent code")


def create_user(email, full_name, password, role, must_change_password=False, check_policy=True):
    """Add a User to the session (not committed). Raises on bad input or duplicate email."""
    email = (email or "").strip().lower()
    full_name = (full_name or "").strip()

    if not email or not full_name or not password:
        raise ValidationError("Email, full name and password are required")
    if not validate_email(email):
        raise ValidationError("Invalid email address")
    if role not in {r.value for r in Role}:
        raise ValidationError(f"Unknown role: {role}")

    if check_policy:
        ok, errors = validate_password(password)
        if not ok:
            raise ValidationError("Password does not meet requirements", details=errors)

    if User.query.filter_by(email=email).first():
        raise Conflict("Email already registered")

    user = User(
        email=email,
        full_name=full_name,
        role=role,
        must_change_password=must_change_password,
    )
    user.set_password(password)
    db.session.add(user)
    db.session.flush()
    return user


def create_agent(user, introducer_code=None, application=None, **profile):
    """
    Create the Agent row for a consultant user and place it in the hierarchy.
    The introducer, when its code matches an existing agent, becomes the parent.
    """
    parent = None
    if introducer_code:
        parent = Agent.query.filter_by(agent_code=introducer_code.strip().upper()).first()
        if not parent:
            current_app.logger.info(f"Introducer code {introducer_code} did not match an agent")

    agent = Agent(
        user_id=user.id,
        agent_code=unique_agent_code(),
        level=AgentLevel.VC_CONSULTANT.value,
        parent_id=parent.id if parent else None,
        application_id=application.id if application else None,
        introducer_code=introducer_code,
        **profile,
    )
    db.session.add(agent)
    db.session.flush()

    AgentHierarchyHelper.add_agent(agent.id, parent.id if parent else None)
    current_app.logger.info(
        f"Created agent {agent.agent_code} for user {user.id} (parent={agent.parent_id})"
    )
    return agent
