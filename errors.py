# errors.py - Exception types raised by services and turned into JSON by the app
from flask import jsonify


class PortalError(Exception):
    """Base class for business-rule failures surfaced to API callers."""
    status_code = 400

    def __init__(self, message, status_code=None, details=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details

    def to_dict(self):
        payload = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(PortalError):
    status_code = 400


class AuthenticationError(PortalError):
    status_code = 401


class PermissionDenied(PortalError):
    status_code = 403


class NotFound(PortalError):
    status_code = 404


class Conflict(PortalError):
    status_code = 409


class RateLimitExceeded(PortalError):
    status_code = 429

    def __init__(self, message, retry_after=60):
        super().__init__(message)
        self.retry_after = retry_after


def register_error_handlers(app):
    """Map PortalError subclasses and common HTTP errors to JSON responses."""

    @app.errorhandler(PortalError)
    def handle_portal_error(error):
        response = jsonify(error.to_dict())
        response.status_code = error.status_code
        if isinstance(error, RateLimitExceeded):
            response.headers["Retry-After"] = str(error.retry_after)
        return response

    @app.errorhandler(401)
    def handle_unauthorized(error):
        return jsonify({"error": "Authentication required"}), 401

    @app.errorhandler(403)
    def handle_forbidden(error):
        return jsonify({"error": "Access denied"}), 403

    @app.errorhandler(404)
    def handle_not_found(error):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(error):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(500)
    def handle_internal_error(error):
        return jsonify({"error": "Internal server error"}), 500
