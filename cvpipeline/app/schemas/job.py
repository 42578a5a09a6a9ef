"""
Job / queue Pydantic schemas for request/response validation
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

SectionName = Literal["experience", "skills", "education", "projects", "certifications"]


class EnqueueRequest(BaseModel):
    """Schema for enqueueing an extraction job"""
    sourceRef: str = Field(min_length=1)


class EnqueueResult(BaseModel):
    """Schema for enqueue response"""
    jobId: str
    position: int
    estimatedWaitMinutes: int


class JobOut(BaseModel):
    """Schema for job status response"""
    jobId: str
    userId: str
    sourceRef: str
    status: str
    position: int = 0
    estimatedWaitMinutes: int = 0
    createdAt: Optional[datetime] = None
    startedAt: Optional[datetime] = None
    completedAt: Optional[datetime] = None
    structuredData: Optional[Dict[str, Any]] = None
    errorMessage: Optional[str] = None
    processingTimeSeconds: Optional[float] = None


class QueueStats(BaseModel):
    """Counts by status over the stats window plus average processing time"""
    queued: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    avgProcessingTimeSeconds: Optional[float] = None


class JobListResponse(BaseModel):
    jobs: List[JobOut]
    queueStats: QueueStats


class CancelResponse(BaseModel):
    success: bool
    message: Optional[str] = None


class UploadResponse(BaseModel):
    """Schema for upload response - sourceRef plus the job when enqueued"""
    sourceRef: str
    filename: str
    characters: int
    job: Optional[EnqueueResult] = None


class ExtractRequest(BaseModel):
    text: str


class StructuredToTextRequest(BaseModel):
    section: SectionName
    data: Any = None


class TextToStructuredRequest(BaseModel):
    section: SectionName
    text: str
    anchor: Any = None


class ReconcileTextResponse(BaseModel):
    section: str
    text: str


class ReconcileStructuredResponse(BaseModel):
    section: str
    data: Any
