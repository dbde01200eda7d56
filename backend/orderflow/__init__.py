# backend/orderflow/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # External collaborators (payment gateway, carrier) and post-commit dispatch
    from .services import payment_gateway, carrier_service, dispatch
    payment_gateway.init_app(app)
    carrier_service.init_app(app)
    dispatch.init_app(app)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.cart import cart_bp
    from .routes.orders import orders_bp, admin_orders_bp
    from .routes.pricing import pricing_bp
    from .routes.rules import rules_bp
    from .routes.returns import returns_bp, admin_returns_bp
    from .routes.partners import partners_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(cart_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(admin_orders_bp)
    app.register_blueprint(pricing_bp)
    app.register_blueprint(rules_bp)
    app.register_blueprint(returns_bp)
    app.register_blueprint(admin_returns_bp)
    app.register_blueprint(partners_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
