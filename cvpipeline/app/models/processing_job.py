"""
ProcessingJob - persisted queue entry driven by the single background worker
"""
import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Column, DateTime, Float, Integer, String, Text

from cvpipeline.app.db.base import Base


class JobStatus(str, Enum):
    """Lifecycle: queued -> processing -> completed/failed, or queued -> cancelled."""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = (JobStatus.COMPLETED.value, JobStatus.FAILED.value, JobStatus.CANCELLED.value)


class ProcessingJob(Base):
    __tablename__ = "processing_jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), nullable=False, index=True)
    source_ref = Column(String(64), nullable=False)

    status = Column(String(20), default=JobStatus.QUEUED.value, nullable=False, index=True)
    position = Column(Integer, default=0)  # snapshot only; live value derived for queued jobs
    estimated_wait_minutes = Column(Integer, default=0)

    structured_data = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    processing_time_seconds = Column(Float, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
