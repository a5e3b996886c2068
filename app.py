import os
from flask import Flask
from werkzeug.middleware.proxy_fix import ProxyFix
from config import Config
from extensions import db, login_manager, init_extensions
from errors import register_error_handlers
from logger import configure_app_logging
from models import User
from security import RateLimiter, apply_security_headers, check_admin_ip, check_rate_limit
from utils import utcnow


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    if not app.config.get("SECRET_KEY"):
        raise ValueError("SECRET_KEY environment variable is required")

    if not app.debug and not app.testing:
        app.config.update(
            SESSION_COOKIE_SECURE=True,
            REMEMBER_COOKIE_SECURE=True,
        )

    configure_app_logging(app)

    proxies = app.config.get("PROXY_FIX_X_FOR", 0)
    if proxies:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=proxies, x_proto=proxies)

    # ------------------------------------------------------------------------------------------------------------
    # DATABASE URI Fix
    # ------------------------------------------------------------------------------------------------------------
    DATABASE_URI = app.config.get("SQLALCHEMY_DATABASE_URI")

    if DATABASE_URI.startswith("sqlite:///"):
        os.makedirs(os.path.dirname(DATABASE_URI[len("sqlite:///"):]) or ".", exist_ok=True)

    if DATABASE_URI.startswith("postgres://"):
        DATABASE_URI = DATABASE_URI.replace("postgres://", "postgresql+pg8000://", 1)
        app.config["SQLALCHEMY_DATABASE_URI"] = DATABASE_URI

    # ------------------------------------------------------------------------------------------------------------
    # Initialize extensions
    # ------------------------------------------------------------------------------------------------------------
    init_extensions(app)
    app.extensions["rate_limiter"] = RateLimiter(app.config.get("RATELIMIT_REDIS_URL"))
    register_error_handlers(app)

    register_blueprints(app)

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    # ----------------------
    # Request hooks
    # ----------------------
    @app.before_request
    def enforce_request_limits():
        check_rate_limit()
        check_admin_ip()

    @app.after_request
    def add_security_headers(response):
        return apply_security_headers(response)

    @app.route("/healthz")
    def healthz():
        return {"status": "ok", "timestamp": utcnow().isoformat()}, 200

    app.logger.info("Investor portal app created")
    return app


def register_blueprints(app):
    from blueprints.auth import bp as auth_bp
    from blueprints.applications import bp as applications_bp
    from blueprints.invites import bp as invites_bp
    from blueprints.webhooks import bp as webhooks_bp
    from blueprints.investors import bp as investors_bp
    from blueprints.dividends import bp as dividends_bp
    from blueprints.agents import bp as agents_bp
    from blueprints.admin import admin_bp
    from blueprints.activity import bp as activity_bp
    from blueprints.settings import bp as settings_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(applications_bp)
    app.register_blueprint(invites_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(investors_bp)
    app.register_blueprint(dividends_bp)
    app.register_blueprint(agents_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(activity_bp)
    app.register_blueprint(settings_bp)


if __name__ == "__main__":
    app = create_app()
    with app.app_context():
        db.create_all()
    port = int(os.environ.get("PORT", 5000))
    app.run(debug=app.config.get("DEBUG", False), host="0.0.0.0", port=port)
