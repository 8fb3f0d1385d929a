import logging

from .events import GameEvent, SessionEnded

logger = logging.getLogger(__name__)


def archive_ended_sessions(app, engine) -> None:
    """Persist the final snapshot of every ended or evicted session."""
    from picture_this import db
    from picture_this.models import ArchivedSession

    def _on_event(event: GameEvent) -> None:
        if not isinstance(event, SessionEnded):
            return
        with app.app_context():
            try:
                db.session.add(ArchivedSession.from_snapshot(event.snapshot, event.reason))
                db.session.commit()
            except Exception:
                db.session.rollback()
                logger.exception(f"[archive] game={event.code} failed")
                return
        logger.info(f"[archive] game={event.code} reason={event.reason}")

    engine.events.subscribe(_on_event)
