# models.py - Flask-SQLAlchemy models for the investor portal
from decimal import Decimal
from enum import Enum
from flask_login import UserMixin
from sqlalchemy import UniqueConstraint, Index
from werkzeug.security import check_password_hash, generate_password_hash
from extensions import db
from utils import utcnow

# ===========================================================
# ENUM DEFINITIONS
# ===========================================================

class Role(Enum):
    ADMIN = "admin"
    CONSULTANT = "consultant"
    INVESTOR = "investor"


class AgentLevel(Enum):
    VC_CONSULTANT = "VC_CONSULTANT"
    BUSINESS_DEV = "BUSINESS_DEV"
    STRATEGY_PARTNER = "STRATEGY_PARTNER"
    GENERAL_MANAGER = "GENERAL_MANAGER"


class DividendType(Enum):
    STANDARD = "STANDARD"
    EXCLUSIVE = "EXCLUSIVE"


class InvestmentStatus(Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    SUSPENDED = "SUSPENDED"


class CommissionType(Enum):
    PASSIVE = "PASSIVE"
    ONE_OFF = "ONE_OFF"
    HIERARCHICAL = "HIERARCHICAL"


class ApplicationStatus(Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class KycStatus(Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"


KYC_FLAGS = (
    "kyc_identity_verified",
    "kyc_address_verified",
    "kyc_bank_verified",
    "kyc_agreement_verified",
)


def _iso(value):
    return value.isoformat() if value else None


def _num(value):
    return float(value) if value is not None else 0.0


# ===========================================================
# BASE MIXIN FOR COMMON FIELDS
# ===========================================================

class BaseMixin:
    """Provides created_at and updated_at timestamps to inheriting models."""
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

# ===========================================================
# USERS
# ===========================================================

class User(UserMixin, db.Model, BaseMixin):
    """Login identity. The role decides which profile row (agent or investor) hangs off it."""
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(254), unique=True, nullable=False, index=True)
    full_name = db.Column(db.String(150), nullable=False)
    role = db.Column(db.String(20), nullable=False, default=Role.CONSULTANT.value, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    must_change_password = db.Column(db.Boolean, default=False, nullable=False)
    last_login_at = db.Column(db.DateTime, nullable=True)

    agent = db.relationship('Agent', uselist=False, back_populates='user', foreign_keys='Agent.user_id')
    investor = db.relationship('Investor', uselist=False, back_populates='user')
    settings = db.relationship('UserSettings', uselist=False, back_populates='user', cascade="all,delete-orphan")

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    @property
    def is_admin(self):
        return self.role == Role.ADMIN.value

    @property
    def is_consultant(self):
        return self.role == Role.CONSULTANT.value

    @property
    def is_investor(self):
        return self.role == Role.INVESTOR.value

    def to_dict(self, include_permissions=False):
        from security import permissions_for

        result = {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "level": self.agent.level if self.agent else None,
            "agent_code": self.agent.agent_code if self.agent else None,
            "is_active": self.is_active,
            "must_change_password": self.must_change_password,
            "last_login_at": _iso(self.last_login_at),
            "created_at": _iso(self.created_at),
        }
        if include_permissions:
            result["permissions"] = sorted(permissions_for(self.role))
        return result


class LoginAttempt(db.Model):
    __tablename__ = 'login_attempts'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    email = db.Column(db.String(254))
    ip_address = db.Column(db.String(45))
    success = db.Column(db.Boolean, default=False)
    timestamp = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "email": self.email,
            "ip_address": self.ip_address,
            "success": self.success,
            "timestamp": _iso(self.timestamp),
        }


class PasswordResetCode(db.Model, BaseMixin):
    __tablename__ = 'password_reset_codes'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    code_hash = db.Column(db.String(255), nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    used_at = db.Column(db.DateTime, nullable=True)
    attempts = db.Column(db.Integer, default=0, nullable=False)

    def set_code(self, code: str):
        self.code_hash = generate_password_hash(code)

    def check_code(self, code: str) -> bool:
        return check_password_hash(self.code_hash, code)

    def to_dict(self):
        # the code hash never leaves the model
        return {
            "id": self.id,
            "user_id": self.user_id,
            "expires_at": _iso(self.expires_at),
            "used_at": _iso(self.used_at),
            "attempts": self.attempts,
        }


class UserSettings(db.Model, BaseMixin):
    __tablename__ = 'user_settings'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), unique=True, nullable=False)
    data = db.Column(db.JSON, nullable=False, default=dict)

    user = db.relationship('User', back_populates='settings')

    def to_dict(self):
        return {
            "user_id": self.user_id,
            "settings": self.data or {},
            "updated_at": _iso(self.updated_at),
        }

# ===========================================================
# CONSULTANTS (AGENTS)
# ===========================================================

class Agent(db.Model, BaseMixin):
    __tablename__ = 'agents'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), unique=True, nullable=False)
    agent_code = db.Column(db.String(20), unique=True, nullable=False, index=True)
    level = db.Column(db.String(30), nullable=False, default=AgentLevel.VC_CONSULTANT.value, index=True)
    parent_id = db.Column(db.Integer, db.ForeignKey('agents.id', ondelete='SET NULL'), nullable=True, index=True)
    application_id = db.Column(db.Integer, db.ForeignKey('applications.id', ondelete='SET NULL'), nullable=True)

    nric = db.Column(db.String(50))
    date_of_birth = db.Column(db.Date)
    contact_number = db.Column(db.String(32))
    address = db.Column(db.String(255))
    postcode = db.Column(db.String(20))
    city = db.Column(db.String(100))
    country = db.Column(db.String(100), default='Malaysia')

    account_holder_name = db.Column(db.String(150))
    bank_name = db.Column(db.String(100))
    account_number = db.Column(db.String(50))

    introducer_name = db.Column(db.String(150))
    introducer_code = db.Column(db.String(20))
    profile_completed = db.Column(db.Boolean, default=False, nullable=False)

    user = db.relationship('User', back_populates='agent', foreign_keys=[user_id])
    parent = db.relationship('Agent', remote_side=[id], backref='children')
    investors = db.relationship('Investor', back_populates='agent')
    commissions = db.relationship(
        'Commission', back_populates='agent', foreign_keys='Commission.agent_id', lazy='dynamic'
    )

    @property
    def full_name(self):
        return self.user.full_name if self.user else None

    def to_dict(self, include_bank=False):
        result = {
            "id": self.id,
            "user_id": self.user_id,
            "agent_code": self.agent_code,
            "full_name": self.full_name,
            "email": self.user.email if self.user else None,
            "level": self.level,
            "parent_id": self.parent_id,
            "contact_number": self.contact_number,
            "city": self.city,
            "country": self.country,
            "introducer_name": self.introducer_name,
            "introducer_code": self.introducer_code,
            "profile_completed": self.profile_completed,
            "created_at": _iso(self.created_at),
        }
        if include_bank:
            result.update({
                "nric": self.nric,
                "account_holder_name": self.account_holder_name,
                "bank_name": self.bank_name,
                "account_number": self.account_number,
            })
        return result


class AgentNetwork(db.Model):
    """Closure table of the consultant hierarchy (ancestor -> descendant at depth)."""
    __tablename__ = 'agent_network'

    id = db.Column(db.Integer, primary_key=True)
    ancestor_id = db.Column(db.Integer, db.ForeignKey('agents.id', ondelete='CASCADE'), nullable=False, index=True)
    descendant_id = db.Column(db.Integer, db.ForeignKey('agents.id', ondelete='CASCADE'), nullable=False, index=True)
    depth = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint('ancestor_id', 'descendant_id', name='uq_agent_network_relationship'),
        Index('idx_agent_network_ancestor_depth', 'ancestor_id', 'depth'),
        Index('idx_agent_network_descendant_depth', 'descendant_id', 'depth'),
    )

    def to_dict(self):
        return {
            "ancestor_id": self.ancestor_id,
            "descendant_id": self.descendant_id,
            "depth": self.depth,
        }

# ===========================================================
# INVESTORS & INVESTMENTS
# ===========================================================

class Investor(db.Model, BaseMixin):
    __tablename__ = 'investors'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), unique=True, nullable=False)
    agent_id = db.Column(db.Integer, db.ForeignKey('agents.id', ondelete='SET NULL'), nullable=True, index=True)

    nric = db.Column(db.String(50), nullable=False, index=True)
    date_of_birth = db.Column(db.Date)
    company_name = db.Column(db.String(150))
    occupation = db.Column(db.String(100))
    address = db.Column(db.String(255))
    postcode = db.Column(db.String(20))
    city = db.Column(db.String(100))
    country = db.Column(db.String(100), default='Malaysia')
    contact_number = db.Column(db.String(32))
    gender = db.Column(db.String(10))
    nationality = db.Column(db.String(60))
    race = db.Column(db.String(60))

    source_of_income = db.Column(db.String(255))
    estimated_annual_income = db.Column(db.String(60))
    years_of_investment_experience = db.Column(db.String(30))
    politically_exposed = db.Column(db.Boolean, default=False)

    bank_account_beneficiary_name = db.Column(db.String(150))
    bank_name = db.Column(db.String(100))
    bank_branch = db.Column(db.String(100))
    account_no = db.Column(db.String(50))
    swift_code = db.Column(db.String(20))

    emergency_contact_name = db.Column(db.String(150))
    emergency_contact_relationship = db.Column(db.String(60))
    emergency_contact_mobile = db.Column(db.String(32))
    emergency_contact_email = db.Column(db.String(254))

    user = db.relationship('User', back_populates='investor')
    agent = db.relationship('Agent', back_populates='investors')
    investments = db.relationship('Investment', back_populates='investor', cascade="all,delete-orphan")

    @property
    def full_name(self):
        return self.user.full_name if self.user else None

    def to_dict(self, include_investments=False):
        result = {
            "id": self.id,
            "user_id": self.user_id,
            "full_name": self.full_name,
            "email": self.user.email if self.user else None,
            "nric": self.nric,
            "contact_number": self.contact_number,
            "city": self.city,
            "country": self.country,
            "agent_id": self.agent_id,
            "agent_code": self.agent.agent_code if self.agent else None,
            "total_investment": float(sum((i.amount for i in self.investments), Decimal("0"))),
            "created_at": _iso(self.created_at),
        }
        if include_investments:
            result["investments"] = [i.to_dict() for i in self.investments]
        return result


class Investment(db.Model, BaseMixin):
    __tablename__ = 'investments'

    id = db.Column(db.Integer, primary_key=True)
    investor_id = db.Column(db.Integer, db.ForeignKey('investors.id', ondelete='CASCADE'), nullable=False, index=True)
    agent_id = db.Column(db.Integer, db.ForeignKey('agents.id', ondelete='SET NULL'), nullable=True, index=True)
    dividend_type = db.Column(db.String(20), nullable=False, default=DividendType.STANDARD.value)
    tier = db.Column(db.String(5), nullable=False)
    amount = db.Column(db.Numeric(18, 2), nullable=False)
    quarterly_rate = db.Column(db.Numeric(6, 3), nullable=False)
    yearly_rate = db.Column(db.Numeric(6, 3), nullable=False)
    start_date = db.Column(db.Date, nullable=False)
    period_years = db.Column(db.Integer, nullable=False, default=5)
    status = db.Column(db.String(20), nullable=False, default=InvestmentStatus.ACTIVE.value, index=True)
    commissions_recorded = db.Column(db.Boolean, default=False, nullable=False)

    investor = db.relationship('Investor', back_populates='investments')
    agent = db.relationship('Agent')
    commissions = db.relationship('Commission', back_populates='investment', cascade="all,delete-orphan")

    __table_args__ = (
        Index('idx_investment_agent_status', 'agent_id', 'status'),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "investor_id": self.investor_id,
            "investor_name": self.investor.full_name if self.investor else None,
            "agent_id": self.agent_id,
            "dividend_type": self.dividend_type,
            "tier": self.tier,
            "amount": _num(self.amount),
            "quarterly_rate": _num(self.quarterly_rate),
            "yearly_rate": _num(self.yearly_rate),
            "start_date": _iso(self.start_date),
            "period_years": self.period_years,
            "status": self.status,
            "created_at": _iso(self.created_at),
        }


class Commission(db.Model, BaseMixin):
    __tablename__ = 'commissions'

    id = db.Column(db.Integer, primary_key=True)
    agent_id = db.Column(db.Integer, db.ForeignKey('agents.id', ondelete='CASCADE'), nullable=False, index=True)
    investment_id = db.Column(db.Integer, db.ForeignKey('investments.id', ondelete='CASCADE'), nullable=False, index=True)
    source_agent_id = db.Column(db.Integer, db.ForeignKey('agents.id', ondelete='SET NULL'), nullable=True)
    commission_type = db.Column(db.String(20), nullable=False, index=True)
    override_level = db.Column(db.String(30), nullable=True)
    percentage = db.Column(db.Numeric(6, 3), nullable=False)
    amount = db.Column(db.Numeric(18, 2), nullable=False)
    period_index = db.Column(db.Integer, nullable=True)
    paid = db.Column(db.Boolean, default=False, nullable=False, index=True)
    paid_at = db.Column(db.DateTime, nullable=True)

    agent = db.relationship('Agent', back_populates='commissions', foreign_keys=[agent_id])
    source_agent = db.relationship('Agent', foreign_keys=[source_agent_id])
    investment = db.relationship('Investment', back_populates='commissions')

    __table_args__ = (
        UniqueConstraint('investment_id', 'agent_id', 'commission_type', 'override_level', 'period_index',
                         name='uq_commission_period'),
    )

    def to_dict(self):
        investment = self.investment
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "commission_type": self.commission_type,
            "override_level": self.override_level,
            "percentage": _num(self.percentage),
            "amount": _num(self.amount),
            "period_index": self.period_index,
            "paid": self.paid,
            "paid_at": _iso(self.paid_at),
            "created_at": _iso(self.created_at),
            "investment": {
                "id": investment.id,
                "amount": _num(investment.amount),
                "tier": investment.tier,
                "investor_name": investment.investor.full_name if investment.investor else None,
            } if investment else None,
            "source_agent": {
                "id": self.source_agent.id,
                "agent_code": self.source_agent.agent_code,
                "full_name": self.source_agent.full_name,
                "level": self.source_agent.level,
            } if self.source_agent else None,
        }

# ===========================================================
# CONSULTANT APPLICATIONS & ONBOARDING
# ===========================================================

class Application(db.Model, BaseMixin):
    __tablename__ = 'applications'

    id = db.Column(db.Integer, primary_key=True)

    # Section A - details of applicant
    full_name = db.Column(db.String(150), nullable=False)
    nric = db.Column(db.String(50), nullable=False)
    date_of_birth = db.Column(db.Date)
    address = db.Column(db.String(255))
    marital_status = db.Column(db.String(30))
    postcode = db.Column(db.String(20))
    gender = db.Column(db.String(10))
    city_country = db.Column(db.String(150))
    contact_number = db.Column(db.String(32), nullable=False)
    email = db.Column(db.String(254), nullable=False, unique=True, index=True)
    introducer_name = db.Column(db.String(150))
    introducer_id = db.Column(db.String(20))

    # Section B - bank details
    account_holder_name = db.Column(db.String(150))
    bank_name = db.Column(db.String(100))
    account_number = db.Column(db.String(50))

    # Section C - additional information
    previous_experience = db.Column(db.Text)
    currently_promoting = db.Column(db.Text)
    working_style = db.Column(db.String(30))

    # Section D - beneficiary
    beneficiary_full_name = db.Column(db.String(150))
    beneficiary_nric = db.Column(db.String(50))
    beneficiary_date_of_birth = db.Column(db.Date)
    beneficiary_postcode = db.Column(db.String(20))
    beneficiary_city_country = db.Column(db.String(150))
    beneficiary_relation = db.Column(db.String(60))
    beneficiary_contact_number = db.Column(db.String(32))
    beneficiary_email_address = db.Column(db.String(254))
    beneficiary_account_holder_name = db.Column(db.String(150))
    beneficiary_bank_name = db.Column(db.String(100))
    beneficiary_account_number = db.Column(db.String(50))

    # Section E - authorization
    declaration = db.Column(db.Boolean, default=False, nullable=False)
    applicant_signature = db.Column(db.String(150))
    signature_date = db.Column(db.Date)
    signature_name = db.Column(db.String(150))

    # Review workflow
    application_status = db.Column(db.String(20), nullable=False, default=ApplicationStatus.PENDING.value, index=True)
    kyc_status = db.Column(db.String(20), nullable=False, default=KycStatus.PENDING.value, index=True)
    kyc_identity_verified = db.Column(db.Boolean, default=False, nullable=False)
    kyc_address_verified = db.Column(db.Boolean, default=False, nullable=False)
    kyc_bank_verified = db.Column(db.Boolean, default=False, nullable=False)
    kyc_agreement_verified = db.Column(db.Boolean, default=False, nullable=False)
    kyc_notes = db.Column(db.Text, default='')
    kyc_verified_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    kyc_verified_at = db.Column(db.DateTime, nullable=True)
    reviewed_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    reviewed_at = db.Column(db.DateTime, nullable=True)
    rejection_reason = db.Column(db.Text)
    more_info_requested_at = db.Column(db.DateTime, nullable=True)
    invite_sent = db.Column(db.Boolean, default=False, nullable=False)

    source = db.Column(db.String(20), default='portal', nullable=False)
    jotform_submission_id = db.Column(db.String(64), unique=True, nullable=True, index=True)
    jotform_form_id = db.Column(db.String(64), nullable=True)

    documents = db.relationship('ApplicationDocument', back_populates='application', cascade="all,delete-orphan")
    invites = db.relationship('InviteToken', back_populates='application', cascade="all,delete-orphan")

    SUMMARY_FIELDS = (
        "id", "full_name", "email", "contact_number", "nric", "introducer_name", "introducer_id",
        "application_status", "kyc_status", *KYC_FLAGS, "kyc_notes", "invite_sent", "source",
    )

    def kyc_flags(self):
        return {flag: bool(getattr(self, flag)) for flag in KYC_FLAGS}

    def to_dict(self, detail=False):
        if not detail:
            result = {field: getattr(self, field) for field in self.SUMMARY_FIELDS}
            result["created_at"] = _iso(self.created_at)
            return result

        result = {}
        for column in self.__table__.columns:
            value = getattr(self, column.name)
            if hasattr(value, "isoformat"):
                value = value.isoformat()
            result[column.name] = value
        result["documents"] = [d.to_dict() for d in self.documents]
        result["invites"] = [i.to_dict() for i in self.invites]
        return result


class ApplicationDocument(db.Model, BaseMixin):
    __tablename__ = 'application_documents'

    id = db.Column(db.Integer, primary_key=True)
    application_id = db.Column(db.Integer, db.ForeignKey('applications.id', ondelete='CASCADE'), nullable=True, index=True)
    submission_id = db.Column(db.String(64), index=True)
    field_name = db.Column(db.String(150))
    file_url = db.Column(db.String(500), nullable=False)
    document_type = db.Column(db.String(20), nullable=False, default='other')

    application = db.relationship('Application', back_populates='documents')

    def to_dict(self):
        return {
            "id": self.id,
            "field_name": self.field_name,
            "file_url": self.file_url,
            "document_type": self.document_type,
        }


class InviteToken(db.Model, BaseMixin):
    """Single-use onboarding credential issued when an application is approved."""
    __tablename__ = 'invite_tokens'

    id = db.Column(db.Integer, primary_key=True)
    token = db.Column(db.String(64), unique=True, nullable=False, index=True)
    application_id = db.Column(db.Integer, db.ForeignKey('applications.id', ondelete='CASCADE'), nullable=False)
    email = db.Column(db.String(254), nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    used_at = db.Column(db.DateTime, nullable=True)
    used_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)

    application = db.relationship('Application', back_populates='invites')

    def is_expired(self, now=None):
        return (now or utcnow()) > self.expires_at

    @property
    def is_used(self):
        return self.used_at is not None

    def to_dict(self, include_token=False):
        data = {
            "id": self.id,
            "application_id": self.application_id,
            "email": self.email,
            "expires_at": _iso(self.expires_at),
            "used_at": _iso(self.used_at),
            "used_by": self.used_by,
            "is_used": self.is_used,
            "is_expired": self.is_expired(),
        }
        if include_token:
            data["token"] = self.token
        return data

# ===========================================================
# AUDITING, WEBHOOKS & ALERTS
# ===========================================================

class AuditLog(db.Model, BaseMixin):
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    actor_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    action = db.Column(db.String(255))
    target_type = db.Column(db.String(50))
    target_id = db.Column(db.Integer)
    details = db.Column(db.JSON)
    ip_address = db.Column(db.String(50))

    @staticmethod
    def record(action, actor_id=None, target=None, details=None, ip_address=None):
        entry = AuditLog(
            actor_id=actor_id,
            action=action,
            target_type=type(target).__name__ if target is not None else None,
            target_id=getattr(target, "id", None),
            details=details,
            ip_address=ip_address,
        )
        db.session.add(entry)
        return entry

    def to_dict(self):
        return {
            "id": self.id,
            "actor_id": self.actor_id,
            "action": self.action,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "details": self.details,
            "ip_address": self.ip_address,
            "created_at": _iso(self.created_at),
        }


class WebhookEvent(db.Model, BaseMixin):
    __tablename__ = 'webhook_events'

    id = db.Column(db.Integer, primary_key=True)
    provider = db.Column(db.String(50), nullable=False)
    event_type = db.Column(db.String(100))
    submission_id = db.Column(db.String(64), index=True)
    payload = db.Column(db.JSON, nullable=True)
    signature = db.Column(db.String(255))
    processed = db.Column(db.Boolean, default=False)
    processed_at = db.Column(db.DateTime)
    status = db.Column(db.String(50), default='pending')
    remarks = db.Column(db.String(255))

    def mark_processed(self, success=True, remarks=None):
        self.processed = True
        self.status = 'success' if success else 'failed'
        self.remarks = remarks
        self.processed_at = utcnow()

    def to_dict(self, include_payload=False):
        data = {
            "id": self.id,
            "provider": self.provider,
            "event_type": self.event_type,
            "submission_id": self.submission_id,
            "processed": self.processed,
            "processed_at": _iso(self.processed_at),
            "status": self.status,
            "remarks": self.remarks,
            "created_at": _iso(self.created_at),
        }
        if include_payload:
            data["payload"] = self.payload
        return data


class ActivityAlert(db.Model, BaseMixin):
    """Entries shown in the admin notification panel."""
    __tablename__ = 'activity_alerts'

    id = db.Column(db.Integer, primary_key=True)
    alert_type = db.Column(db.String(50), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text)
    severity = db.Column(db.String(20), default='info', nullable=False)
    target_type = db.Column(db.String(50))
    target_id = db.Column(db.Integer)
    is_read = db.Column(db.Boolean, default=False, nullable=False, index=True)
    read_at = db.Column(db.DateTime, nullable=True)
    read_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)

    @staticmethod
    def raise_alert(alert_type, title, message=None, severity='info', target=None):
        alert = ActivityAlert(
            alert_type=alert_type,
            title=title,
            message=message,
            severity=severity,
            target_type=type(target).__name__ if target is not None else None,
            target_id=getattr(target, "id", None),
        )
        db.session.add(alert)
        return alert

    def to_dict(self):
        return {
            "id": self.id,
            "alert_type": self.alert_type,
            "title": self.title,
            "message": self.message,
            "severity": self.severity,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "is_read": self.is_read,
            "created_at": _iso(self.created_at),
        }
