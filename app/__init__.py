from __future__ import annotations

import logging

import click
from flask import Flask, jsonify, redirect, render_template, request, url_for
from werkzeug.exceptions import HTTPException

from app.checkin import checkin_bp
from app.core.auth import auth_bp
from app.core.config import Config
from app.core.extensions import db, login_manager, migrate
from app.core.models import User, seed_demo_data

logger = logging.getLogger(__name__)


def create_app(config_object: type[Config] | None = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_object or Config)
    configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    app.register_blueprint(auth_bp)
    app.register_blueprint(checkin_bp)

    register_cli(app)
    register_routes(app)
    register_error_handlers(app)

    from app.checkin.scheduler import init_scheduler

    init_scheduler(app)
    return app


def configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    app.logger.setLevel(level)


def register_routes(app: Flask) -> None:
    @app.get("/")
    def home():
        return redirect(url_for("auth.current_user_view"))

    @app.get("/health")
    def health():
        return jsonify({"status": "ok"})


HTML_ENDPOINTS = frozenset({"checkin.confirm_check_in", "checkin.confirm_contact_check_in"})


def _wants_json() -> bool:
    # emailed check-in links open in a browser
    return request.path.startswith("/api/") and request.endpoint not in HTML_ENDPOINTS


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(404)
    def not_found(_error):
        if _wants_json():
            return jsonify({"message": "Not found"}), 404
        return render_template("errors/404.html"), 404

    @app.errorhandler(Exception)
    def unhandled(error):
        if isinstance(error, HTTPException):
            return error
        db.session.rollback()
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        if _wants_json():
            return jsonify({"message": "Internal server error"}), 500
        return render_template("errors/500.html"), 500


def register_cli(app: Flask) -> None:
    @app.cli.command("seed-demo")
    @click.option("--reset", is_flag=True, help="Delete existing data before seed.")
    def seed_demo(reset: bool) -> None:
        """Seed demo users, contacts and wills."""
        if reset:
            db.drop_all()
            db.create_all()
        if not User.query.first():
            seed_demo_data(db.session)
            click.echo("Demo data seeded.")
        else:
            click.echo("Seed skipped: existing users found.")

    @app.cli.command("check-in-run")
    def check_in_run() -> None:
        """Send the weekly check-in emails to every user that is due."""
        from app.checkin.scheduler import send_weekly_check_in_emails

        result = send_weekly_check_in_emails()
        click.echo(
            f"users={result.users_processed} sent={result.emails_sent} "
            f"failed={result.emails_failed} advanced={result.clocks_advanced}"
        )

    @app.cli.command("death-verification-start")
    @click.option("--user-id", type=int, required=True, help="User whose wills are pending verification.")
    def death_verification_start(user_id: int) -> None:
        """Email a fresh round of death-verification codes to trusted contacts."""
        from app.checkin.verification import start_death_verification

        try:
            sent = start_death_verification(user_id)
        except ValueError as exc:
            raise click.ClickException(str(exc)) from exc
        click.echo(f"Verification codes delivered: {sent}")


@login_manager.user_loader
def load_user(user_id: str) -> User | None:
    return db.session.get(User, int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"message": "Not authenticated"}), 401
