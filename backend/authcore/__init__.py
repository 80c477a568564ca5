# backend/authcore/__init__.py
from flask import Flask, g, jsonify, request

from .config import Config
from .errors import AuthError, Forbidden, RateLimited
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    """
    Application factory.

    Refuses to start (ConfigurationError) when the policy table is malformed.
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401
    from .models import EventType, Outcome, install_model_guards
    from .services.scope_service import install_scope_enforcement, unbind

    # MULTI-TENANT: every ORM statement on db.session is scope-checked from here on
    install_model_guards(db.session)
    install_scope_enforcement(db.session)

    from .core import AuthCore, get_core
    app.extensions["authcore"] = AuthCore.from_config(app.config)

    # Register blueprints
    from .routes.auth import auth_bp
    from .routes.customers import customers_bp
    from .routes.admin import admin_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(customers_bp)
    app.register_blueprint(admin_bp)

    @app.errorhandler(AuthError)
    def handle_auth_error(exc: AuthError):
        db.session.rollback()

        if isinstance(exc, Forbidden):
            context = g.get("session_context")
            get_core().record_audit_event(
                EventType.ACCESS_DENIED,
                principal=g.get("current_principal"),
                session=context.session.id if context is not None else None,
                outcome=Outcome.FAILURE,
                origin=request.remote_addr,
                client_signature=request.headers.get("User-Agent"),
                resource_type="path",
                resource_id=request.path,
                action=request.method,
            )

        response = jsonify(exc.to_dict())
        response.status_code = exc.status_code
        if isinstance(exc, RateLimited) and exc.retry_after_seconds:
            response.headers["Retry-After"] = str(exc.retry_after_seconds)
        return response

    @app.teardown_request
    def release_scope(exc):
        # Requests can share a session and g (tests reuse one app context)
        unbind(db.session)
        for name in ("current_principal", "session_context", "access_token"):
            g.pop(name, None)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = set(app.config.get("CORS_ALLOWED_ORIGINS", ()))
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type, X-Device-Id"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
