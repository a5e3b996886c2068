import re
import html
import secrets
import string
from datetime import datetime, date, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from errors import ValidationError

TWO_PLACES = Decimal("0.01")
PASSWORD_SPECIALS = r"""!@#$%^&*()_.,?":{}|<>\-+=\[\]"""


def utcnow():
    """Naive UTC timestamp, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def validate_email(email):
    if not email or len(email) > 254:
        return False
    return re.match(r'^[^\s@]+@[^\s@]+\.[^\s@]+$', email) is not None


def validate_phone(phone):
    phone = re.sub(r"[\s\-()]", "", str(phone or ""))
    return re.match(r"^\+?\d{9,15}$", phone) is not None


def validate_password(password):
    """
    Check a password against the portal policy.
    Returns (is_valid, errors).
    """
    errors = []
    password = password or ""

    if len(password) < 8:
        errors.append("Password must be at least 8 characters long")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        errors.append("Password must contain at least one number")
    if not re.search(f"[{PASSWORD_SPECIALS}]", password):
        errors.append("Password must contain at least one special character")

    return len(errors) == 0, errors


def sanitize_input(value):
    """HTML-escape and trim free text coming from forms."""
    if value is None:
        return None
    return html.escape(str(value), quote=True).strip()


def to_decimal(value, field="amount"):
    try:
        result = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"Invalid {field}: {value!r}")
    if not result.is_finite():
        raise ValidationError(f"Invalid {field}: {value!r}")
    return result


def money(value):
    return Decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def parse_date(value, field="date"):
    """Parse YYYY-MM-DD (or an ISO timestamp) into a date."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f"Invalid {field}: expected YYYY-MM-DD")


def generate_agent_code():
    return "AGT" + "".join(secrets.choice(string.digits) for _ in range(6))


def generate_temporary_password(length=12):
    """Temporary password that satisfies validate_password."""
    chars = string.ascii_letters + string.digits
    body = "".join(secrets.choice(chars) for _ in range(length - 4))
    return (
        secrets.choice(string.ascii_uppercase)
        + secrets.choice(string.ascii_lowercase)
        + secrets.choice(string.digits)
        + body
        + "!"
    )


def generate_reset_code():
    """Generate a 6-digit reset code"""
    return "".join(secrets.choice(string.digits) for _ in range(6))


def client_ip(request):
    """Peer address as seen by WSGI. Behind a proxy, ProxyFix rewrites it from X-Forwarded-For."""
    return request.remote_addr or "unknown"
