import logging

import click
from flask import Flask, render_template

import admin
import attachments
import auth
import public
from config import Config
from errors import CategoryNotFound, ExcessiveDepth, InvalidUrlGeneration
from links import attachment_url, category_url, post_url
from models import db
from roles import is_admin
from storage import init_storage


def configure_logging(app):
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    app.logger.setLevel(level)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


# ===== DB setup =====
def init_db():
    """Create the tables, the roles and the super admin (safe to run repeatedly)."""
    db.create_all()
    auth.init_roles()


def register_error_handlers(app):
    @app.errorhandler(403)
    def forbidden(error):
        return render_template("errors/403.html"), 403

    @app.errorhandler(404)
    def not_found(error):
        return render_template("errors/404.html"), 404

    # Broken category data or a misconfigured URL builder: log loudly, answer 500
    @app.errorhandler(ExcessiveDepth)
    @app.errorhandler(InvalidUrlGeneration)
    @app.errorhandler(CategoryNotFound)
    def broken_links(error):
        app.logger.exception("Cannot build a link: %s", error)
        return render_template("errors/500.html"), 500


def create_app(test_config=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    configure_logging(app)

    db.init_app(app)
    auth.login_manager.init_app(app)
    init_storage(app)

    app.register_blueprint(public.bp)
    app.register_blueprint(auth.bp)
    app.register_blueprint(admin.bp)
    app.register_blueprint(attachments.bp)
    register_error_handlers(app)

    app.jinja_env.globals.update(
        category_url=category_url,
        post_url=post_url,
        attachment_url=attachment_url,
        is_admin=is_admin,
    )

    @app.cli.command("init-db")
    def init_db_command():
        """Create tables, roles and the super admin."""
        init_db()
        click.echo("Database initialized.")

    # Initialize DB at startup (Flask 3.x & Gunicorn safe)
    if app.config.get("INIT_DB_ON_STARTUP", True):
        with app.app_context():
            try:
                init_db()
            except Exception:
                app.logger.exception("Cannot initialize the database.")
                raise

    return app


# Local dev entrypoint (production: gunicorn "app:create_app()")
if __name__ == "__main__":
    create_app().run(debug=True, host="127.0.0.1", port=5000)
