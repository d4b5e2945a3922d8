import logging

from flask import Flask

from shelfmark.api import api_bp
from shelfmark.config import Config
from shelfmark.extensions import db, login_manager, migrate
from shelfmark.jobs.scheduler import start_scheduler
from shelfmark.schema_migrations import run_schema_migrations
from shelfmark.store import enable_sqlite_savepoints


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)
    level = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    app.logger.setLevel(getattr(logging, level, logging.INFO))

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    app.register_blueprint(api_bp)

    @app.cli.command("init-db")
    def init_db_command():
        db.create_all()
        run_schema_migrations()
        print("Initialized Shelfmark database.")

    with app.app_context():
        if db.engine.dialect.name == "sqlite":
            enable_sqlite_savepoints(db.engine)
        db.create_all()
        run_schema_migrations()

    start_scheduler(app)
    return app
