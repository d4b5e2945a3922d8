import os

from apscheduler.schedulers.background import BackgroundScheduler

from shelfmark.extensions import db
from shelfmark.models import UserSettings
from shelfmark.services.backup import backup_to_remote
from shelfmark.services.common import to_bool


scheduler = BackgroundScheduler()


def run_auto_backups(app) -> int:
    """Back up every user with WebDAV auto sync enabled; returns the success count."""
    succeeded = 0
    with app.app_context():
        rows = UserSettings.query.filter(UserSettings.webdav_config.isnot(None)).all()
        user_ids = [
            row.user_id
            for row in rows
            if isinstance(row.webdav_config, dict)
            and to_bool(row.webdav_config.get("auto_sync"), default=False)
        ]
        for user_id in user_ids:
            try:
                backup_to_remote(user_id)
                succeeded += 1
            except Exception as exc:
                db.session.rollback()
                app.logger.warning("Auto backup failed for user %s: %s", user_id, exc)
        db.session.remove()
    return succeeded


def start_scheduler(app):
    if not app.config.get("SCHEDULER_ENABLED", True):
        return
    if os.environ.get("WERKZEUG_RUN_MAIN") == "false":
        return

    interval_minutes = app.config["AUTO_BACKUP_INTERVAL_MINUTES"]
    if not scheduler.get_jobs():
        scheduler.add_job(
            run_auto_backups,
            "interval",
            minutes=interval_minutes,
            kwargs={"app": app},
            id="webdav_auto_backup",
            replace_existing=True,
        )
        scheduler.start()
