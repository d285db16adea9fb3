import logging

import click
from flask import Flask, jsonify
from flask_migrate import Migrate

from config import Config
from models import db
from routes import health_bp, auth_bp, two_factor_bp
from security.results import AuthStoreError
from utils.auth_context import load_current_user

logger = logging.getLogger(__name__)


def create_app(overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    logging.basicConfig(
        level=getattr(logging, app.config.get("LOG_LEVEL", "INFO"), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(two_factor_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    @app.before_request
    def _load_user():
        load_current_user()

    @app.errorhandler(AuthStoreError)
    def _store_unavailable(exc):
        logger.error("Authentication store failure: %s", exc)
        return jsonify(error="Service temporarily unavailable. Please retry."), 503

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Cache-Control"] = "no-store"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app

#-------------------------
from models.user import User
from security.password import hash_password

def register_cli(app):
    @app.cli.command("create-account")
    @click.argument("email")
    @click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
    @click.option("--full-name", default=None)
    def create_account(email, password, full_name):
        """Create a console account (bootstrap)."""
        email = email.strip().lower()
        if User.query.filter_by(email=email).first():
            click.echo("Account already exists")
            return

        db.session.add(User(email=email, password_hash=hash_password(password), full_name=full_name))
        db.session.commit()
        click.echo(f"{email} created")

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
