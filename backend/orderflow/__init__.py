# backend/orderflow/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate



def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Shared resources: built once, handed to services explicitly
    from .services.channels import build_channels
    from .services.signatures import WebhookVerifier

    app.extensions["orderflow"] = {
        "verifier": WebhookVerifier(
            app.config.get("WEBHOOK_SECRET"),
            tolerance_seconds=int(app.config.get("WEBHOOK_TOLERANCE_SECONDS", 300)),
        ),
        "channels": build_channels(app.config),
    }

    # Register blueprints
    from .routes.system import system_bp
    from .routes.webhooks import webhooks_bp
    from .routes.noshows import noshows_bp
    from .routes.recovery import recovery_bp
    from .routes.notifications import notifications_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(noshows_bp)
    app.register_blueprint(recovery_bp)
    app.register_blueprint(notifications_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
