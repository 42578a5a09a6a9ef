"""
CV pipeline API - upload, processing queue, synchronous extraction and section reconciliation
"""
from pathlib import Path

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from cvpipeline.app.core.config import SUPPORTED_UPLOAD_TYPES, settings
from cvpipeline.app.core.dependencies import (
    get_current_user_id,
    get_db,
    get_llm,
    get_queue_manager,
)
from cvpipeline.app.core.errors import ExtractionFatalError, JobNotFoundError, ProviderError
from cvpipeline.app.core.logging_config import get_logger
from cvpipeline.app.models.source_document import SourceDocument
from cvpipeline.app.schemas.job import (
    CancelResponse,
    EnqueueRequest,
    EnqueueResult,
    ExtractRequest,
    JobListResponse,
    JobOut,
    QueueStats,
    ReconcileStructuredResponse,
    ReconcileTextResponse,
    StructuredToTextRequest,
    TextToStructuredRequest,
    UploadResponse,
)
from cvpipeline.app.schemas.profile import ExtractedProfile
from cvpipeline.app.services.cv_extractor import ResilientLLMClient
from cvpipeline.app.services.cv_extractor.pdf_utils import extract_text_from_upload
from cvpipeline.app.services.queue_manager import QueueManager
from cvpipeline.app.services.reconciler import reconcile_structured_to_text, reconcile_text_to_structured

logger = get_logger("api.cv")

router = APIRouter(prefix="/cv", tags=["cv"])

_SUFFIX_KINDS = {".pdf": "pdf", ".txt": "txt"}
_MIME_TYPES = {kind: mime for mime, kind in SUPPORTED_UPLOAD_TYPES.items()}


def _upload_kind(file: UploadFile) -> str | None:
    kind = SUPPORTED_UPLOAD_TYPES.get((file.content_type or "").split(";")[0].strip().lower())
    return kind or _SUFFIX_KINDS.get(Path(file.filename or "").suffix.lower())


def _owned_job(queue: QueueManager, job_id: str, user_id: str) -> JobOut:
    try:
        job = queue.get_job_status(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    if job.userId != user_id:
        raise HTTPException(status_code=403, detail="Not allowed to access this job")
    return job


@router.post("/upload", response_model=UploadResponse)
async def upload_cv(
    file: UploadFile = File(...),
    enqueue: bool = Query(False, description="Queue an extraction job for the uploaded document"),
    user_id: str = Depends(get_current_user_id),
    queue: QueueManager = Depends(get_queue_manager),
):
    """
    Upload a CV (PDF or plain text) and store its extracted text.

    Returns:
        - **sourceRef**: reference to pass to POST /jobs
        - **job**: enqueue result when enqueue=true
    """
    kind = _upload_kind(file)
    if not kind:
        raise HTTPException(status_code=400, detail="Invalid file type. Allowed: PDF, TXT")

    contents = await file.read()
    if not contents:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    if len(contents) > settings.upload_max_bytes:
        raise HTTPException(status_code=413, detail="File too large")

    try:
        text = extract_text_from_upload(contents, kind)
    except Exception as e:
        logger.warning("Text extraction failed for %s: %s", file.filename, e)
        raise HTTPException(status_code=400, detail=f"Could not read file: {str(e)}")
    if not text.strip():
        raise HTTPException(status_code=400, detail="No text could be extracted from the file")

    source_ref = queue.text_source.save_document(
        user_id, file.filename or "", _MIME_TYPES[kind], len(contents), text
    )
    logger.info("Stored source document %s for user %s (%d chars)", source_ref, user_id, len(text))

    job = queue.add_job(user_id, source_ref) if enqueue else None
    return UploadResponse(sourceRef=source_ref, filename=file.filename or "", characters=len(text), job=job)


@router.post("/jobs", response_model=EnqueueResult)
def enqueue_job(
    body: EnqueueRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    queue: QueueManager = Depends(get_queue_manager),
):
    """Queue an extraction job for a stored source document."""
    doc = db.query(SourceDocument).filter(SourceDocument.id == body.sourceRef).first()
    if not doc or doc.user_id != user_id:
        raise HTTPException(status_code=404, detail="Source document not found")
    return queue.add_job(user_id, body.sourceRef)


@router.get("/jobs", response_model=JobListResponse)
def list_jobs(
    limit: int | None = Query(None, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    queue: QueueManager = Depends(get_queue_manager),
):
    """Most recent jobs for the current user, newest first, with queue stats."""
    return JobListResponse(jobs=queue.get_user_jobs(user_id, limit), queueStats=queue.get_queue_stats())


@router.get("/jobs/{job_id}", response_model=JobOut)
def get_job(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    queue: QueueManager = Depends(get_queue_manager),
):
    return _owned_job(queue, job_id, user_id)


@router.delete("/jobs/{job_id}", response_model=CancelResponse)
def cancel_job(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    queue: QueueManager = Depends(get_queue_manager),
):
    """Cancel a queued job. Jobs already processing or finished cannot be cancelled."""
    job = _owned_job(queue, job_id, user_id)
    if not queue.cancel_job(job_id, user_id):
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": f"Job cannot be cancelled (status: {job.status})"},
        )
    return CancelResponse(success=True, message="Job cancelled")


@router.get("/queue/stats", response_model=QueueStats)
def queue_stats(
    user_id: str = Depends(get_current_user_id),
    queue: QueueManager = Depends(get_queue_manager),
):
    return queue.get_queue_stats()


@router.post("/extract", response_model=ExtractedProfile)
def extract_cv(
    body: ExtractRequest,
    user_id: str = Depends(get_current_user_id),
    queue: QueueManager = Depends(get_queue_manager),
):
    """Run the three-phase extraction synchronously on plain CV text. Waits for a running queue job."""
    try:
        return queue.extract_now(body.text, user_id)
    except ExtractionFatalError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ProviderError as e:
        logger.warning("Synchronous extraction failed for user %s: %s", user_id, e)
        raise HTTPException(status_code=503, detail=str(e))


@router.post("/reconcile/text", response_model=ReconcileTextResponse)
def structured_to_text(body: StructuredToTextRequest, user_id: str = Depends(get_current_user_id)):
    """Render a structured section as editable text."""
    try:
        text = reconcile_structured_to_text(body.section, body.data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ReconcileTextResponse(section=body.section, text=text)


@router.post("/reconcile/structured", response_model=ReconcileStructuredResponse)
def text_to_structured(body: TextToStructuredRequest, user_id: str = Depends(get_current_user_id)):
    """Parse edited section text back to structured data, reusing the anchor where entries line up."""
    try:
        data = reconcile_text_to_structured(body.section, body.text, body.anchor)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ReconcileStructuredResponse(section=body.section, data=data)


@router.get("/health/llm")
def llm_health(llm: ResilientLLMClient = Depends(get_llm)):
    """Provider connection test."""
    connected = llm.test_connection()
    return {"status": "connected" if connected else "unavailable", "model": llm.current_model}
