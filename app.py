from flask import Flask, jsonify
from flask_migrate import Migrate
from sqlalchemy import inspect

from config import Config
from models import db
from models.db import use_immediate_transactions
from routes import (
    admin_bp,
    booking_bp,
    health_bp,
    payments_bp,
    sessions_bp,
    tickets_bp,
    webhook_bp,
)
from services.errors import BookingError
from utils.auth_context import load_current_user
from utils.scheduler import init_scheduler
from utils.seed import seed_roles


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(sessions_bp)
    app.register_blueprint(booking_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(webhook_bp)
    app.register_blueprint(tickets_bp)
    app.register_blueprint(admin_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    with app.app_context():
        # must run before the first pooled connection is opened
        use_immediate_transactions(db.engine)
        if app.config.get("CREATE_TABLES"):
            db.create_all()
        # Seed default roles at startup (safe & idempotent); skipped until `flask db upgrade` ran
        if inspect(db.engine).has_table("roles"):
            seed_roles()

    @app.before_request
    def _load_user():
        load_current_user()

    @app.errorhandler(BookingError)
    def _booking_error(exc):
        return jsonify(**exc.to_dict()), exc.status_code

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)
    init_scheduler(app)

    return app

#-------------------------
import time

import click

from models.user import User
from security.tokens import issue_token
from services.birthday import allocate_birthday_tickets
from services.reaper import release_unpaid_bookings
from utils.scheduler import shutdown_scheduler
from utils.seed import get_role


def register_cli(app):
    @app.cli.command("make-admin")
    @click.argument("email")
    def make_admin(email):
        """Promote a user to ADMIN by email (bootstrap)."""
        user = db.session.execute(
            db.select(User).filter_by(email=email.strip().lower())
        ).scalar_one_or_none()
        if not user:
            click.echo("User not found")
            return

        admin_role = get_role("ADMIN")
        if admin_role not in user.roles:
            user.roles.append(admin_role)
            db.session.commit()

        click.echo(f"{user.email} promoted to ADMIN")

    @app.cli.command("issue-token")
    @click.argument("email")
    def issue_token_command(email):
        """Print a fresh bearer token for a user (identity lives upstream)."""
        user = db.session.execute(
            db.select(User).filter_by(email=email.strip().lower())
        ).scalar_one_or_none()
        if not user:
            click.echo("User not found")
            return
        click.echo(issue_token(user.id))

    @app.cli.command("release-unpaid")
    def release_unpaid():
        """Run one sweep of the unpaid-booking reaper."""
        result = release_unpaid_bookings()
        click.echo(f"released={len(result.released)} skipped={len(result.skipped)} failed={len(result.failed)}")

    @app.cli.command("birthday-tickets")
    @click.option("--date", "day", type=click.DateTime(formats=["%Y-%m-%d"]), default=None,
                  help="Run as if today were this date (YYYY-MM-DD).")
    def birthday_tickets(day):
        """Grant today's birthday bonus tickets."""
        granted = allocate_birthday_tickets(day.date() if day else None)
        click.echo(f"granted={granted}")

    @app.cli.command("run-jobs")
    def run_jobs():
        """Run the background scheduler in this process until interrupted."""
        app.config["SCHEDULER_ENABLED"] = True
        init_scheduler(app)
        click.echo("Scheduler running, press Ctrl+C to stop")
        try:
            while True:
                time.sleep(1)
        except (KeyboardInterrupt, SystemExit):
            shutdown_scheduler()

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
