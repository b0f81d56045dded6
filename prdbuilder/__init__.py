import os
from flask import Flask, jsonify

# Load .env only for local/dev. In prod, env vars come from the platform.
if os.getenv("APP_ENV", "development") != "production":
    from dotenv import load_dotenv
    load_dotenv(".env")


from .config import get_config
from .errors import BillingError
from .extensions import db, migrate, csrf, login_manager, limiter, mail
from .security import init_security
from .observability import init_logging, init_sentry

def create_app():
    app = Flask(__name__, template_folder="templates")

    # ---- Rate limiting storage ----
    app_env = (os.getenv("APP_ENV", "development") or "development").lower()
    use_redis = app_env in ("staging", "production")
    storage_uri = os.environ.get("REDIS_URL") if use_redis else "memory://"
    if use_redis and not storage_uri:
        # Hard fail in stage/prod so we never silently run without RL storage
        raise RuntimeError("REDIS_URL is required in staging/production for rate limiting")

    app.config["RATELIMIT_STORAGE_URI"] = storage_uri
    app.config.setdefault("RATELIMIT_DEFAULTS", ["1000 per hour"])
    app.config.setdefault("RATELIMIT_HEADERS_ENABLED", True)

    # Config: clean, explicit, class-based
    app.config.from_object(get_config())

    # --- Required env validation for prod-like envs (staging/production) ---
    def _require(name: str):
        val = os.getenv(name) or app.config.get(name)
        if not val:
            raise RuntimeError(f"Missing required environment variable: {name}")
        return val

    if app_env in ("staging", "production"):
        # Enforce hard requirements at startup (not at import time)
        _require("SECRET_KEY")
        _require("DATABASE_URL")
        _require("STRIPE_SECRET_KEY")
        _require("STRIPE_WEBHOOK_SECRET")

    # --- Observability & Security ---
    init_logging(app)
    init_sentry(app)

    # Apply HTTPS, HSTS & CSP only in staging/production
    if app_env in ("staging", "production"):
        init_security(app)

    # Init extensions
    db.init_app(app)
    migrate.init_app(app, db, directory="migrations")
    csrf.init_app(app)
    login_manager.init_app(app)
    limiter.init_app(app)
    mail.init_app(app)

    # Blueprints (explicit, consistent prefixes)
    from .blueprints.billing import bp as billing_bp
    from .blueprints.webhooks import bp as webhooks_bp
    from .blueprints.workspace import bp as workspace_bp
    from .blueprints.admin import bp as admin_bp

    app.register_blueprint(billing_bp, url_prefix="/api/billing")
    app.register_blueprint(webhooks_bp, url_prefix="/api/stripe")
    app.register_blueprint(workspace_bp, url_prefix="/api/workspace")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")

    # JSON API authenticated by a SameSite=Lax session cookie; no form tokens
    for bp in (billing_bp, workspace_bp, admin_bp):
        csrf.exempt(bp)

    @app.get("/healthz")
    @limiter.exempt
    def healthz():
        return {"status": "ok"}, 200

    # ---- Error handlers: every API error is {error, message, ...} ----
    @app.errorhandler(BillingError)
    def handle_billing_error(e: BillingError):
        if e.status_code >= 500:
            app.logger.error(
                "api.error",
                extra={"error": e.error, "error_message": e.message, "status": e.status_code},
                exc_info=e.original_error or e,
            )
        return jsonify(e.to_dict()), e.status_code

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "Unauthorized", "message": "Authentication required"}), 401

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found", "message": "The requested resource does not exist"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed", "message": str(e.description)}), 405

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal error", "message": "An unexpected error occurred"}), 500

    # CSRF error handler (clean 400 instead of generic 500)
    from flask_wtf.csrf import CSRFError
    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        return jsonify({"error": "CSRF validation failed", "message": e.description}), 400

    # 429 Too Many Requests with Retry-After
    @app.errorhandler(429)
    def too_many_requests(e):
        retry_after = getattr(e, "retry_after", None)
        headers = {}
        payload = {"error": "Too many requests", "message": f"Rate limit exceeded: {e.description}"}
        if retry_after is not None:
            headers["Retry-After"] = str(int(retry_after))
            payload["retry_after"] = int(retry_after)
        return jsonify(payload), 429, headers

    # CLI commands (ops-grade utilities)
    from .cli import register_cli
    register_cli(app)

    # Ensure the Stripe SDK is initialized for every worker/process.
    import stripe

    key = app.config.get("STRIPE_SECRET_KEY")
    if key:
        stripe.api_key = key
    else:
        app.logger.warning(
            "Stripe secret key missing; billing features will not work"
        )

    return app
