from datetime import datetime, timedelta

from dividends.hierarchy import AgentHierarchyHelper
from extensions import db
from models import (
    AgentNetwork, AuditLog, InviteToken, LoginAttempt, PasswordResetCode, UserSettings, WebhookEvent,
)
from utils import utcnow

from conftest import make_agent, make_application, make_user


class TestSerialisation:

    def test_invite_hides_token_by_default(self, app_ctx):
        application = make_application()
        invite = InviteToken(token="abc", application_id=application.id, email=application.email,
                             expires_at=utcnow() - timedelta(days=1))
        db.session.add(invite)
        db.session.commit()

        data = invite.to_dict()
        assert "token" not in data
        assert data["is_expired"] is True
        assert data["is_used"] is False
        assert invite.to_dict(include_token=True)["token"] == "abc"

    def test_reset_code_never_exposes_hash(self, app_ctx):
        user = make_user("inv@example.com")
        code = PasswordResetCode(user_id=user.id, expires_at=datetime(2024, 1, 1, 10, 0))
        code.set_code("123456")
        db.session.add(code)
        db.session.commit()

        data = code.to_dict()
        assert "code_hash" not in data
        assert data["expires_at"] == "2024-01-01T10:00:00"
        assert data["attempts"] == 0

    def test_audit_and_login_records(self, app_ctx):
        user = make_user("admin@example.com")
        entry = AuditLog.record("user_updated", actor_id=user.id, target=user,
                                details={"is_active": False}, ip_address="10.0.0.1")
        attempt = LoginAttempt(email="admin@example.com", ip_address="10.0.0.1", success=False)
        db.session.add(attempt)
        db.session.commit()

        assert entry.to_dict()["target_type"] == "User"
        assert entry.to_dict()["details"] == {"is_active": False}
        assert attempt.to_dict()["success"] is False
        assert attempt.to_dict()["timestamp"]

    def test_webhook_payload_opt_in(self, app_ctx):
        event = WebhookEvent(provider="jotform", submission_id="S1", payload={"answers": {}})
        db.session.add(event)
        event.mark_processed(success=False, remarks="Duplicate email")
        db.session.commit()

        data = event.to_dict()
        assert data["status"] == "failed"
        assert "payload" not in data
        assert event.to_dict(include_payload=True)["payload"] == {"answers": {}}

    def test_settings_and_network_rows(self, app_ctx):
        user = make_user("inv@example.com")
        settings = UserSettings(user_id=user.id, data={"theme": "dark"})
        db.session.add(settings)
        parent = make_agent("bd@example.com", "BUSINESS_DEV")
        child = make_agent("vc@example.com", parent=parent)
        db.session.commit()

        assert settings.to_dict()["settings"] == {"theme": "dark"}
        row = AgentNetwork.query.filter_by(ancestor_id=parent.id, descendant_id=child.id).one()
        assert row.to_dict() == {"ancestor_id": parent.id, "descendant_id": child.id, "depth": 1}
        assert AgentHierarchyHelper.is_descendant(parent.id, child.id)
