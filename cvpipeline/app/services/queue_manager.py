"""
Processing queue - persisted jobs with a single in-process worker.

Job lifecycle: queued -> processing -> completed | failed, or queued -> cancelled.
Only the worker moves jobs out of queued/processing; cancel is a guarded UPDATE that only
matches queued rows. Positions of queued jobs are derived from created_at at read time.
"""
from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta
from typing import Callable, Protocol

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cvpipeline.app.core.config import (
    MSG_INTERRUPTED,
    MSG_PROVIDER_UNAVAILABLE,
    MSG_QUOTA,
    MSG_TIMEOUT,
    settings,
)
from cvpipeline.app.core.errors import ExtractionFatalError, JobNotFoundError, ProviderUnavailableError
from cvpipeline.app.core.logging_config import get_logger
from cvpipeline.app.db import session as db_session
from cvpipeline.app.models.processing_job import JobStatus, ProcessingJob
from cvpipeline.app.models.source_document import SourceDocument
from cvpipeline.app.schemas.job import EnqueueResult, JobOut, QueueStats
from cvpipeline.app.schemas.profile import ExtractedProfile
from cvpipeline.app.services.cv_extractor import CVExtractor
from cvpipeline.app.tasks.cleanup import run_cleanup

logger = get_logger("services.queue_manager")

_QUOTA_MARKERS = ("api_key_invalid", "quota", "invalid api key", "incorrect api key", "usage limit")
_UNAVAILABLE_MARKERS = ("econnrefused", "fetch failed", "connection error", "connect")


class TextSource(Protocol):
    """Supplies already-extracted plain text for a job's sourceRef."""

    def get_text(self, source_ref: str, user_id: str) -> str: ...


class Extractor(Protocol):
    def extract(self, text: str, user_id: str) -> ExtractedProfile: ...


class DatabaseTextSource:
    """Text source backed by the source_documents table."""

    def __init__(self, session_factory: Callable[[], Session] | None = None) -> None:
        self._session_factory = session_factory or (lambda: db_session.SessionLocal())

    def save_document(self, user_id: str, filename: str, mime_type: str, size_bytes: int, text: str) -> str:
        db = self._session_factory()
        try:
            doc = SourceDocument(
                user_id=str(user_id),
                filename=filename or "",
                mime_type=mime_type,
                size_bytes=size_bytes,
                extracted_text=text,
            )
            db.add(doc)
            db.commit()
            return doc.id
        finally:
            db.close()

    def get_text(self, source_ref: str, user_id: str) -> str:
        db = self._session_factory()
        try:
            doc = db.query(SourceDocument).filter(SourceDocument.id == source_ref).first()
            if not doc or doc.user_id != str(user_id):
                raise ExtractionFatalError(f"Source document {source_ref} not found")
            if not (doc.extracted_text or "").strip():
                raise ExtractionFatalError(f"Source document {source_ref} has no extractable text")
            return doc.extracted_text
        finally:
            db.close()


def friendly_error_message(exc: BaseException) -> str:
    """User-facing failure message for a job. Infrastructure failures get fixed wording."""
    text = str(exc)
    lower = text.lower()
    if "timeout" in lower or "timed out" in lower:
        return MSG_TIMEOUT
    if isinstance(exc, ProviderUnavailableError) or any(m in lower for m in _UNAVAILABLE_MARKERS):
        return MSG_PROVIDER_UNAVAILABLE
    if any(m in lower for m in _QUOTA_MARKERS):
        return MSG_QUOTA
    return text or exc.__class__.__name__


def _job_out(job: ProcessingJob, position: int, wait_minutes: int) -> JobOut:
    return JobOut(
        jobId=job.id,
        userId=job.user_id,
        sourceRef=job.source_ref,
        status=job.status,
        position=position,
        estimatedWaitMinutes=wait_minutes,
        createdAt=job.created_at,
        startedAt=job.started_at,
        completedAt=job.completed_at,
        structuredData=job.structured_data,
        errorMessage=job.error_message,
        processingTimeSeconds=job.processing_time_seconds,
    )


class QueueManager:
    """Single-concurrency job queue driving the CV extractor."""

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        extractor_factory: Callable[[], Extractor] | None = None,
        text_source: TextSource | None = None,
        poll_interval: float | None = None,
        minutes_per_job: int | None = None,
        cleanup_interval: float | None = None,
        stats_window_hours: int | None = None,
    ) -> None:
        self._session_factory = session_factory or (lambda: db_session.SessionLocal())
        self._extractor_factory = extractor_factory or CVExtractor
        self._extractor: Extractor | None = None
        self.text_source = text_source or DatabaseTextSource(self._session_factory)
        self.poll_interval = settings.queue_poll_interval_seconds if poll_interval is None else poll_interval
        self.minutes_per_job = settings.queue_minutes_per_job if minutes_per_job is None else minutes_per_job
        self.cleanup_interval = (
            settings.queue_cleanup_interval_seconds if cleanup_interval is None else cleanup_interval
        )
        self.stats_window_hours = (
            settings.queue_stats_window_hours if stats_window_hours is None else stats_window_hours
        )

        self.is_processing = False
        self._process_lock = threading.Lock()
        # Terminal write that failed; retried before another job is claimed
        self._pending_outcome: tuple | None = None
        self._insert_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._wakeup = threading.Event()
        self._worker_thread: threading.Thread | None = None
        self._cleanup_thread: threading.Thread | None = None

    def _db(self) -> Session:
        return self._session_factory()

    def _wait_minutes(self, position: int) -> int:
        return max(1, position * self.minutes_per_job) if position > 0 else 0

    def get_extractor(self) -> Extractor:
        if self._extractor is None:
            self._extractor = self._extractor_factory()
        return self._extractor

    # --- Public operations ---
    def add_job(self, user_id: str, source_ref: str) -> EnqueueResult:
        """Create a queued job. Position = queued jobs ahead + 1."""
        db = self._db()
        try:
            with self._insert_lock:
                now = datetime.utcnow()
                latest = db.query(func.max(ProcessingJob.created_at)).scalar()
                if latest is not None and now <= latest:
                    # created_at orders the queue, so it must be strictly increasing
                    now = latest + timedelta(microseconds=1)
                queued = (
                    db.query(func.count(ProcessingJob.id))
                    .filter(ProcessingJob.status == JobStatus.QUEUED.value)
                    .scalar()
                )
                position = queued + 1
                job = ProcessingJob(
                    user_id=str(user_id),
                    source_ref=source_ref,
                    status=JobStatus.QUEUED.value,
                    position=position,
                    estimated_wait_minutes=self._wait_minutes(position),
                    created_at=now,
                )
                db.add(job)
                db.commit()
                job_id = job.id
        finally:
            db.close()
        self._wakeup.set()
        logger.info("Job %s queued for user %s at position %d", job_id, user_id, position)
        return EnqueueResult(jobId=job_id, position=position, estimatedWaitMinutes=self._wait_minutes(position))

    def _live_position(self, db: Session, job: ProcessingJob) -> int:
        if job.status != JobStatus.QUEUED.value:
            return 0
        ahead = (
            db.query(func.count(ProcessingJob.id))
            .filter(ProcessingJob.status == JobStatus.QUEUED.value)
            .filter(ProcessingJob.created_at < job.created_at)
            .scalar()
        )
        return ahead + 1

    def get_job_status(self, job_id: str) -> JobOut:
        """Current job state. Queued jobs get a position computed now, not the stored one."""
        db = self._db()
        try:
            job = db.query(ProcessingJob).filter(ProcessingJob.id == job_id).first()
            if not job:
                raise JobNotFoundError(f"Job {job_id} not found")
            position = self._live_position(db, job)
            return _job_out(job, position, self._wait_minutes(position))
        finally:
            db.close()

    def get_user_jobs(self, user_id: str, limit: int | None = None) -> list[JobOut]:
        db = self._db()
        try:
            jobs = (
                db.query(ProcessingJob)
                .filter(ProcessingJob.user_id == str(user_id))
                .order_by(ProcessingJob.created_at.desc())
                .limit(limit or settings.user_jobs_limit)
                .all()
            )
            result = []
            for job in jobs:
                position = self._live_position(db, job)
                result.append(_job_out(job, position, self._wait_minutes(position)))
            return result
        finally:
            db.close()

    def cancel_job(self, job_id: str, user_id: str) -> bool:
        """Cancel a job the user owns. Only succeeds while the job is still queued."""
        db = self._db()
        try:
            updated = (
                db.query(ProcessingJob)
                .filter(
                    ProcessingJob.id == job_id,
                    ProcessingJob.user_id == str(user_id),
                    ProcessingJob.status == JobStatus.QUEUED.value,
                )
                .update(
                    {
                        ProcessingJob.status: JobStatus.CANCELLED.value,
                        ProcessingJob.completed_at: datetime.utcnow(),
                        ProcessingJob.position: 0,
                        ProcessingJob.estimated_wait_minutes: 0,
                    },
                    synchronize_session=False,
                )
            )
            db.commit()
            if updated:
                self._update_queue_positions(db)
        finally:
            db.close()
        if updated:
            logger.info("Job %s cancelled by user %s", job_id, user_id)
        else:
            logger.info("Job %s not cancellable for user %s", job_id, user_id)
        return bool(updated)

    def get_queue_stats(self) -> QueueStats:
        """Live queued/processing counts; terminal counts and average time over the stats window."""
        since = datetime.utcnow() - timedelta(hours=self.stats_window_hours)
        db = self._db()
        try:
            counts = dict(
                db.query(ProcessingJob.status, func.count(ProcessingJob.id))
                .filter(
                    (ProcessingJob.created_at >= since)
                    | ProcessingJob.status.in_((JobStatus.QUEUED.value, JobStatus.PROCESSING.value))
                )
                .group_by(ProcessingJob.status)
                .all()
            )
            avg_time = (
                db.query(func.avg(ProcessingJob.processing_time_seconds))
                .filter(ProcessingJob.status == JobStatus.COMPLETED.value)
                .filter(ProcessingJob.created_at >= since)
                .scalar()
            )
        finally:
            db.close()
        return QueueStats(
            queued=counts.get(JobStatus.QUEUED.value, 0),
            processing=counts.get(JobStatus.PROCESSING.value, 0),
            completed=counts.get(JobStatus.COMPLETED.value, 0),
            failed=counts.get(JobStatus.FAILED.value, 0),
            cancelled=counts.get(JobStatus.CANCELLED.value, 0),
            avgProcessingTimeSeconds=round(float(avg_time), 2) if avg_time is not None else None,
        )

    # --- Worker ---
    def _update_queue_positions(self, db: Session) -> None:
        """Rewrite stored position snapshots of queued jobs in created_at order."""
        queued = (
            db.query(ProcessingJob)
            .filter(ProcessingJob.status == JobStatus.QUEUED.value)
            .order_by(ProcessingJob.created_at)
            .all()
        )
        for index, job in enumerate(queued, start=1):
            job.position = index
            job.estimated_wait_minutes = self._wait_minutes(index)
        db.commit()

    def _claim_next_job(self) -> ProcessingJob | None:
        """Atomically flip the oldest queued job to processing."""
        db = self._db()
        try:
            while True:
                candidate = (
                    db.query(ProcessingJob)
                    .filter(ProcessingJob.status == JobStatus.QUEUED.value)
                    .order_by(ProcessingJob.created_at)
                    .first()
                )
                if not candidate:
                    return None
                claimed = (
                    db.query(ProcessingJob)
                    .filter(ProcessingJob.id == candidate.id, ProcessingJob.status == JobStatus.QUEUED.value)
                    .update(
                        {
                            ProcessingJob.status: JobStatus.PROCESSING.value,
                            ProcessingJob.started_at: datetime.utcnow(),
                            ProcessingJob.position: 0,
                            ProcessingJob.estimated_wait_minutes: 0,
                        },
                        synchronize_session=False,
                    )
                )
                db.commit()
                if claimed:
                    self._update_queue_positions(db)
                    job = db.query(ProcessingJob).filter(ProcessingJob.id == candidate.id).first()
                    db.expunge(job)
                    return job
                # Cancelled between select and update; try the next one
                db.expire_all()
        finally:
            db.close()

    def _finish_job(
        self,
        job_id: str,
        status: JobStatus,
        elapsed: float,
        structured_data: dict | None = None,
        error_message: str | None = None,
    ) -> None:
        db = self._db()
        try:
            db.query(ProcessingJob).filter(
                ProcessingJob.id == job_id,
                ProcessingJob.status == JobStatus.PROCESSING.value,
            ).update(
                {
                    ProcessingJob.status: status.value,
                    ProcessingJob.completed_at: datetime.utcnow(),
                    ProcessingJob.structured_data: structured_data,
                    ProcessingJob.error_message: error_message,
                    ProcessingJob.processing_time_seconds: round(elapsed, 3),
                },
                synchronize_session=False,
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

    def _record_outcome(self, job_id: str, status: JobStatus, elapsed: float, **fields) -> bool:
        """
        Write a job's terminal state. On a database error the outcome is kept and
        retried before the next claim, so a job is never left processing while
        another one starts.
        """
        try:
            self._finish_job(job_id, status, elapsed, **fields)
        except SQLAlchemyError:
            logger.exception("Could not record %s for job %s; retrying before the next claim", status.value, job_id)
            self._pending_outcome = (job_id, status, elapsed, fields)
            return False
        self._pending_outcome = None
        return True

    def _flush_pending_outcome(self) -> bool:
        if self._pending_outcome is None:
            return True
        job_id, status, elapsed, fields = self._pending_outcome
        return self._record_outcome(job_id, status, elapsed, **fields)

    def _run_job(self, job: ProcessingJob) -> None:
        started = time.monotonic()
        logger.info("Job %s processing (user=%s, source=%s)", job.id, job.user_id, job.source_ref)
        try:
            text = self.text_source.get_text(job.source_ref, job.user_id)
            profile = self.get_extractor().extract(text, job.user_id)
        except Exception as e:
            # Any failure ends the job, never the worker
            elapsed = time.monotonic() - started
            logger.exception("Job %s failed after %.2fs", job.id, elapsed)
            self._record_outcome(job.id, JobStatus.FAILED, elapsed, error_message=friendly_error_message(e))
            return
        elapsed = time.monotonic() - started
        if self._record_outcome(
            job.id, JobStatus.COMPLETED, elapsed, structured_data=profile.model_dump(mode="json")
        ):
            logger.info("Job %s completed in %.2fs", job.id, elapsed)

    def extract_now(self, text: str, user_id: str) -> ExtractedProfile:
        """Synchronous extraction, run under the worker's lock so only one extraction runs at a time."""
        with self._process_lock:
            return self.get_extractor().extract(text, user_id)

    def process_next_job(self) -> str | None:
        """
        Process the oldest queued job, if any, and return its id.
        Returns None immediately when another call is already processing, or when
        the previous job's terminal state still cannot be written.
        """
        if not self._process_lock.acquire(blocking=False):
            return None
        try:
            self.is_processing = True
            if not self._flush_pending_outcome():
                return None
            job = self._claim_next_job()
            if job is None:
                return None
            self._run_job(job)
            return job.id
        finally:
            self.is_processing = False
            self._process_lock.release()

    def recover_inflight_jobs(self) -> int:
        """Fail jobs a previous process left in processing."""
        db = self._db()
        try:
            recovered = (
                db.query(ProcessingJob)
                .filter(ProcessingJob.status == JobStatus.PROCESSING.value)
                .update(
                    {
                        ProcessingJob.status: JobStatus.FAILED.value,
                        ProcessingJob.completed_at: datetime.utcnow(),
                        ProcessingJob.error_message: MSG_INTERRUPTED,
                    },
                    synchronize_session=False,
                )
            )
            db.commit()
        finally:
            db.close()
        if recovered:
            logger.warning("Marked %d interrupted jobs as failed", recovered)
        return recovered

    def cleanup(self) -> dict:
        return run_cleanup(self._session_factory)

    # --- Threads ---
    def _worker_loop(self) -> None:
        logger.info("Queue worker started (poll every %.1fs)", self.poll_interval)
        while not self._stop_event.is_set():
            try:
                processed = self.process_next_job()
            except Exception:
                logger.exception("Queue worker iteration failed")
                processed = None
            if processed:
                continue
            self._wakeup.wait(self.poll_interval)
            self._wakeup.clear()
        logger.info("Queue worker stopped")

    def _cleanup_loop(self) -> None:
        while not self._stop_event.wait(self.cleanup_interval):
            try:
                self.cleanup()
            except Exception:
                logger.exception("Queue cleanup iteration failed")

    def start(self) -> None:
        """Recover interrupted jobs, then start the worker and cleanup threads."""
        if self._worker_thread and self._worker_thread.is_alive():
            return
        self._stop_event.clear()
        self.recover_inflight_jobs()
        self._worker_thread = threading.Thread(target=self._worker_loop, name="cv-queue-worker", daemon=True)
        self._cleanup_thread = threading.Thread(target=self._cleanup_loop, name="cv-queue-cleanup", daemon=True)
        self._worker_thread.start()
        self._cleanup_thread.start()

    def shutdown(self, timeout: float = 10.0) -> None:
        """Signal both threads to stop and wait for them. A running job finishes first."""
        self._stop_event.set()
        self._wakeup.set()
        for thread in (self._worker_thread, self._cleanup_thread):
            if thread and thread.is_alive():
                thread.join(timeout=timeout)
        self._worker_thread = None
        self._cleanup_thread = None