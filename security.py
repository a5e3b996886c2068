# security.py - Role gates, rate limiting and response hardening
import time
from functools import wraps

from flask import current_app, request
from flask_login import current_user
from redis import Redis
from redis.exceptions import RedisError

from errors import AuthenticationError, PermissionDenied, RateLimitExceeded
from logger import log_security_event
from models import Role
from utils import client_ip

# ===========================================================
# ROLE -> PERMISSION MAP
# ===========================================================

ROLE_PERMISSIONS = {
    Role.ADMIN.value: {
        "manage_users",
        "manage_consultants",
        "manage_investors",
        "view_all_data",
        "manage_dividends",
        "register_investors",
        "view_all_investors",
        "view_reports",
        "view_analytics",
        "manage_applications",
        "approve_applications",
        "manage_system_settings",
    },
    Role.CONSULTANT.value: {
        "register_investors",
        "view_own_investors",
        "view_commissions",
        "view_reports",
        "manage_own_profile",
    },
    Role.INVESTOR.value: {
        "view_own_data",
        "view_dividends",
        "manage_own_profile",
    },
}


def permissions_for(role):
    return ROLE_PERMISSIONS.get(role, set())


def _require_login():
    if not current_user.is_authenticated:
        raise AuthenticationError("Authentication required")
    if not current_user.is_active:
        raise AuthenticationError("Account is deactivated")


def roles_required(*roles):
    """
    Restrict a view to authenticated users holding one of `roles`.
    With no roles any signed-in, active user passes.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            _require_login()
            if roles and current_user.role not in roles:
                log_security_event(
                    "role_denied",
                    {"ip": client_ip(request), "path": request.path, "role": current_user.role},
                    user_id=current_user.id,
                )
                raise PermissionDenied("Access denied")
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def permission_required(*permissions):
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            _require_login()
            granted = permissions_for(current_user.role)
            missing = [p for p in permissions if p not in granted]
            if missing:
                log_security_event(
                    "permission_denied",
                    {"ip": client_ip(request), "path": request.path, "missing": missing},
                    user_id=current_user.id,
                )
                raise PermissionDenied(f"Permission '{missing[0]}' required")
            return f(*args, **kwargs)
        return decorated_function
    return decorator


login_required = roles_required()
admin_required = roles_required(Role.ADMIN.value)

# ===========================================================
# RATE LIMITING
# ===========================================================

class RateLimiter:
    """Fixed-window request counter per client IP and path; the path prefix picks the limit."""

    # (prefix, requests, window seconds); first match wins
    RATE_LIMITS = (
        ("/api/auth", 5, 15 * 60),
        ("/api/admin", 20, 60),
        ("/api", 100, 60),
    )
    DEFAULT_LIMIT = ("default", 200, 60)

    def __init__(self, redis_url=None):
        self.redis = Redis.from_url(redis_url, decode_responses=True) if redis_url else None
        self._counters = {}

    def limit_for(self, path):
        for prefix, requests, window in self.RATE_LIMITS:
            if path.startswith(prefix):
                return prefix, requests, window
        return self.DEFAULT_LIMIT

    def hit(self, ip, path, now=None):
        """Count one request. Returns (allowed, retry_after_seconds)."""
        _, max_requests, window = self.limit_for(path)
        key = f"rate_limit:{ip}:{path}"

        if self.redis is not None:
            try:
                return self._hit_redis(key, max_requests, window)
            except RedisError:
                current_app.logger.error("Rate limit store unavailable; allowing request", exc_info=True)
                return True, 0

        return self._hit_memory(key, max_requests, window, now if now is not None else time.monotonic())

    def _hit_redis(self, key, max_requests, window):
        pipeline = self.redis.pipeline()
        pipeline.incr(key, 1)
        pipeline.ttl(key)
        count, ttl = pipeline.execute()
        if ttl is None or ttl < 0:
            self.redis.expire(key, window)
            ttl = window
        if count > max_requests:
            return False, ttl
        return True, 0

    def _purge_expired(self, now):
        expired = [key for key, (_, reset_at) in self._counters.items() if reset_at <= now]
        for key in expired:
            del self._counters[key]

    def _hit_memory(self, key, max_requests, window, now):
        self._purge_expired(now)
        count, reset_at = self._counters.get(key, (0, now + window))

        if count >= max_requests:
            return False, max(int(reset_at - now + 0.999), 1)

        self._counters[key] = (count + 1, reset_at)
        return True, 0

    def reset(self):
        self._counters.clear()


def check_rate_limit():
    """before_request hook body; raises RateLimitExceeded once the bucket is full."""
    limiter = current_app.extensions.get("rate_limiter")
    if limiter is None or not current_app.config.get("RATELIMIT_ENABLED", True):
        return

    ip = client_ip(request)
    allowed, retry_after = limiter.hit(ip, request.path)
    if not allowed:
        log_security_event("rate_limit_exceeded", {"ip": ip, "path": request.path})
        raise RateLimitExceeded("Too many requests. Please try again later.", retry_after=retry_after)


def check_admin_ip():
    whitelist = current_app.config.get("ADMIN_IP_WHITELIST") or []
    if not whitelist or not request.path.startswith("/api/admin"):
        return

    ip = client_ip(request)
    if ip not in whitelist:
        log_security_event("admin_ip_blocked", {"ip": ip, "path": request.path})
        raise PermissionDenied("Access denied")

# ===========================================================
# RESPONSE HEADERS
# ===========================================================

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Content-Security-Policy": "default-src 'self'; img-src 'self' data: https:; frame-ancestors 'none'",
}


def apply_security_headers(response):
    for header, value in SECURITY_HEADERS.items():
        response.headers.setdefault(header, value)
    return response
