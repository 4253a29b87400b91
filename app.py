import logging
import os

import click
from flask import Flask, jsonify
from flask_wtf.csrf import CSRFError, CSRFProtect

from config import Config
from models import db
from utils.db_conn import DatabaseConnection

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

csrf = CSRFProtect()
database = DatabaseConnection()


def register_blueprints(app: Flask):
    from blueprints.compute_routes import compute_bp
    from blueprints.gradebuilder_routes import gradebuilder_bp
    from blueprints.reports_routes import reports_bp
    from blueprints.statistics_routes import statistics_bp
    from blueprints.submission_routes import submission_bp

    app.register_blueprint(submission_bp)
    app.register_blueprint(compute_bp)
    app.register_blueprint(gradebuilder_bp)
    app.register_blueprint(reports_bp)
    app.register_blueprint(statistics_bp)


def register_commands(app: Flask):
    @app.cli.command("init-db")
    def init_db_command():
        """Create all tables."""
        if not database.init_database():
            raise click.ClickException("Database initialization failed")
        click.echo("Database initialized.")

    @app.cli.command("seed-demo")
    @click.option("--owner-id", default=1, show_default=True, help="Teacher user id.")
    def seed_demo_command(owner_id):
        """Create a demo class with the default transmutation table."""
        from utils.seed_data import seed_demo_class

        db.create_all()
        cls = seed_demo_class(owner_id)
        click.echo(f"Seeded demo class {cls.id} ({cls.name}).")


def create_app(config_class=Config) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_class)

    csrf.init_app(app)
    database.init_app(app)

    register_blueprints(app)
    register_commands(app)

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        logger.warning(f"CSRF validation failed: {e.description}")
        return jsonify({"error": "csrf_failed", "message": e.description}), 400

    # Route: GET "/api/health"
    # Used by: deployment probes
    @app.route("/api/health", methods=["GET"])
    def health():
        try:
            db.session.execute(db.text("SELECT 1"))
            return jsonify({"status": "ok", "database": "ok"}), 200
        except Exception as e:
            logger.error(f"Health check database probe failed: {str(e)}")
            return jsonify({"status": "degraded", "database": "unreachable"}), 503

    logger.info(f"Application created (environment: {app.config.get('ENVIRONMENT')})")
    return app


if __name__ == "__main__":
    logger.info("Application startup initiated")
    app = create_app()
    if not database.init_database():
        logger.error("🔴 Startup checks failed. Aborting launch.")
        raise SystemExit(1)

    # Only start the reloader in development
    use_reloader = os.environ.get("WERKZEUG_RUN_MAIN") != "true"
    app.run(host="127.0.0.1", port=5000, debug=True, use_reloader=use_reloader)
