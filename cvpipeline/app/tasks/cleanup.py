"""
Periodic cleanup: remove finished jobs past the retention window and expired processing sessions.
The queue's cleanup thread runs this every queue_cleanup_interval_seconds; it can also be run by hand:
python -c "from cvpipeline.app.tasks.cleanup import run_cleanup; print(run_cleanup())"
"""
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cvpipeline.app.core.config import settings
from cvpipeline.app.core.logging_config import get_logger
from cvpipeline.app.db import session as db_session
from cvpipeline.app.models.processing_job import ProcessingJob, TERMINAL_STATUSES
from cvpipeline.app.models.processing_session import ProcessingSession

logger = get_logger("tasks.cleanup")


def cleanup_old_jobs(db: Session, retention_hours: int | None = None, now: datetime | None = None) -> int:
    """
    Delete completed/failed/cancelled jobs that finished more than retention_hours ago.
    Queued and processing jobs are never touched.
    """
    hours = settings.job_retention_hours if retention_hours is None else retention_hours
    cutoff = (now or datetime.utcnow()) - timedelta(hours=hours)
    deleted = (
        db.query(ProcessingJob)
        .filter(ProcessingJob.status.in_(TERMINAL_STATUSES))
        .filter(func.coalesce(ProcessingJob.completed_at, ProcessingJob.created_at) < cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted


def cleanup_expired_sessions(db: Session, now: datetime | None = None) -> int:
    """Delete processing sessions whose delayed cleanup never ran."""
    deleted = (
        db.query(ProcessingSession)
        .filter(ProcessingSession.expires_at < (now or datetime.utcnow()))
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted


def run_cleanup(session_factory: Callable[[], Session] | None = None) -> dict:
    """Run both sweeps using a new DB session."""
    db = (session_factory or db_session.SessionLocal)()
    try:
        jobs = cleanup_old_jobs(db)
        sessions = cleanup_expired_sessions(db)
        if jobs or sessions:
            logger.info("Cleanup removed %d old jobs and %d expired sessions", jobs, sessions)
        return {"jobs_deleted": jobs, "sessions_deleted": sessions}
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Cleanup failed")
        return {"error": str(e), "jobs_deleted": 0, "sessions_deleted": 0}
    finally:
        db.close()
