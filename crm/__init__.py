import os
import logging

import click
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException
from werkzeug.security import generate_password_hash

from crm.config import config_by_name
from crm.extensions import db, migrate, login_manager, csrf, limiter


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from crm import models  # noqa: F401

    # --- Register blueprints ---
    from crm.blueprints.auth import auth_bp
    from crm.blueprints.pipeline import pipeline_bp
    from crm.blueprints.admin import admin_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(pipeline_bp)
    app.register_blueprint(admin_bp)

    # JSON APIs are CSRF-exempt: session auth + application/json bodies only
    csrf.exempt(auth_bp)
    csrf.exempt(pipeline_bp)
    csrf.exempt(admin_bp)

    # --- Health check ---
    @app.route("/")
    def index():
        return jsonify({"status": "ok"})

    # --- Error handlers ---
    @app.errorhandler(HTTPException)
    def http_error(e):
        return jsonify({"error": e.description}), e.code

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal server error"}), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"
        # Control referrer information
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # API responses never embed or load anything
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none';"
        )
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("create-admin")
    @click.option("--email", required=True, help="Admin email")
    @click.option("--password", required=True, help="Admin password")
    @click.option("--name", default="Admin", help="Full name")
    def create_admin(email, password, name):
        """Create an admin user (no-op if the email already exists).

        Usage:
            flask create-admin --email admin@example.com --password s3cret
        """
        from crm.models.user import User

        email = email.lower().strip()
        existing = User.query.filter_by(email=email).first()
        if existing:
            click.echo(f"User already exists: {email} ({existing.role})")
            return

        admin = User(
            email=email,
            password_hash=generate_password_hash(password),
            full_name=name,
            role="admin",
        )
        db.session.add(admin)
        db.session.commit()
        click.echo(f"Created admin user: {email}")

    @app.cli.command("import-prospects")
    @click.argument("csv_file", type=click.File("r", encoding="utf-8-sig"))
    def import_prospects(csv_file):
        """Bulk-import the prospect sheet.

        Usage:
            flask import-prospects prospects.csv
        """
        from crm.services.csv_service import import_prospects as run_import

        result = run_import(csv_file, batch_size=app.config["IMPORT_BATCH_SIZE"])
        click.echo(
            f"Done. Inserted: {result.success}, Failed: {result.failed}, "
            f"Skipped: {result.skipped}"
        )

    @app.cli.command("import-leads")
    @click.argument("csv_file", type=click.File("r", encoding="utf-8-sig"))
    def import_leads(csv_file):
        """Bulk-import rows marked "Lead" from the field lead sheet.

        Prospects are matched by restaurant name + pincode; KAM names are
        mapped to emails through KAM_EMAIL_MAP.

        Usage:
            flask import-leads lead.csv
        """
        from crm.services.csv_service import import_leads as run_import

        result = run_import(
            csv_file,
            kam_map=app.config["KAM_EMAIL_MAP"],
            batch_size=app.config["IMPORT_BATCH_SIZE"],
        )
        click.echo(
            f"Done. Inserted: {result.success}, Failed: {result.failed}, "
            f"Skipped: {result.skipped}"
        )

    @app.cli.command("export-prospects")
    @click.argument("csv_file", type=click.File("w", encoding="utf-8"))
    def export_prospects(csv_file):
        """Export id, restaurant_name, pincode, locality for lead matching.

        Usage:
            flask export-prospects prospects-export.csv
        """
        from crm.services.csv_service import export_prospects as run_export

        count = run_export(csv_file)
        click.echo(f"Exported {count} prospects")
