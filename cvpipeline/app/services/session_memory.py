"""
Session memory for multi-step extraction.

One processing_sessions row per extraction attempt. Each phase appends a StepResult; later
phases read a flattened knownFacts projection of what earlier phases found. After the final
result is assembled the row is deleted on a short delay (late diagnostic reads still work),
and anything left behind is swept once expires_at passes.
"""
from __future__ import annotations

import re
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, Iterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cvpipeline.app.core.config import settings
from cvpipeline.app.core.errors import SessionNotFoundError
from cvpipeline.app.core.logging_config import get_logger
from cvpipeline.app.db import session as db_session
from cvpipeline.app.models.processing_session import ProcessingSession
from cvpipeline.app.schemas.profile import (
    AdditionalInfo,
    ExtractedProfile,
    KnownFacts,
    PersonalInfo,
    ProcessingInfo,
    ProfessionalInfo,
    SessionContext,
    StepResult,
)
from cvpipeline.app.services.scoring import ConfidenceScorer, completeness_confidence
from cvpipeline.app.tasks.cleanup import cleanup_expired_sessions

logger = get_logger("services.session_memory")

STEP_BASIC_INFO = "basic_info"
STEP_PROFESSIONAL = "professional"
STEP_ADDITIONAL = "additional"

METHOD_DEGRADED = "degraded"

_PROFESSION_KEYWORDS = [
    ("software_developer", ("software", "developer", "engineer", "programmer")),
    ("healthcare", ("nurse", "medical", "healthcare", "physician")),
    ("education", ("teacher", "educator", "professor", "lecturer")),
    ("culinary", ("cook", "chef", "culinary")),
    ("sales_business", ("sales", "account", "business")),
]
_YEAR = re.compile(r"\b(19|20)\d{2}\b")
_ONGOING = re.compile(r"present|current|now|ongoing", re.IGNORECASE)


def detect_profession(current_title: str | None) -> str:
    """Keyword lookup over the current title."""
    if not current_title:
        return "general"
    title = current_title.lower()
    for profession, keywords in _PROFESSION_KEYWORDS:
        if any(k in title for k in keywords):
            return profession
    return "general"


def estimate_years(entry: dict) -> float:
    """Years spent in one position. Undated or unparseable entries count as one year."""
    start = _YEAR.search(str(entry.get("startDate") or ""))
    end_raw = str(entry.get("endDate") or "")
    end = _YEAR.search(end_raw)
    if not start:
        return 1.0
    start_year = int(start.group(0))
    if end:
        end_year = int(end.group(0))
    elif _ONGOING.search(end_raw):
        end_year = datetime.utcnow().year
    else:
        return 1.0
    return float(max(end_year - start_year, 1))


def determine_experience_level(experience: list[dict]) -> str:
    if not experience:
        return "entry_level"
    total = sum(estimate_years(e) for e in experience)
    if total < 2:
        return "entry_level"
    if total < 5:
        return "mid_level"
    if total < 10:
        return "senior_level"
    return "executive_level"


def extract_known_facts(steps: dict[str, StepResult]) -> KnownFacts:
    """Project completed steps onto the facts later phases need. Missing phases stay empty."""
    facts = KnownFacts()
    basic = steps.get(STEP_BASIC_INFO)
    if basic:
        info = PersonalInfo.model_validate(basic.data)
        facts.name = info.name or None
        facts.email = info.email or None
        facts.currentTitle = info.currentTitle or None
        facts.profession = detect_profession(info.currentTitle)
    professional = steps.get(STEP_PROFESSIONAL)
    if professional:
        prof = ProfessionalInfo.model_validate(professional.data)
        facts.skills = list(prof.skills.technical)
        facts.experienceLevel = determine_experience_level([e.model_dump() for e in prof.experience])
    return facts


def merge_steps(session_id: str, steps: dict[str, StepResult], processor: str = "") -> ExtractedProfile:
    """Merge step results into an ExtractedProfile. Missing phases become empty defaults."""
    basic = steps.get(STEP_BASIC_INFO)
    professional = steps.get(STEP_PROFESSIONAL)
    additional = steps.get(STEP_ADDITIONAL)

    personal = PersonalInfo.model_validate(basic.data if basic else {})
    prof = ProfessionalInfo.model_validate(professional.data if professional else {})
    extra = AdditionalInfo.model_validate(additional.data if additional else {})

    professional_degraded = bool(professional and professional.metadata.get("method") == METHOD_DEGRADED)
    if not personal.currentTitle and prof.experience and not professional_degraded:
        personal.currentTitle = prof.experience[0].title

    facts = extract_known_facts(steps)
    return ExtractedProfile(
        personalInfo=personal,
        experience=prof.experience,
        education=prof.education,
        skills=prof.skills,
        projects=extra.projects,
        certifications=extra.certifications,
        awards=extra.awards,
        publications=extra.publications,
        volunteer=extra.volunteer,
        processingInfo=ProcessingInfo(
            sessionId=session_id,
            stepsCompleted=len(steps),
            profession=facts.profession,
            experienceLevel=facts.experienceLevel,
            confidenceScores={name: step.confidence for name, step in steps.items()},
            processor=processor,
            degradedSteps=[name for name, step in steps.items() if step.metadata.get("method") == METHOD_DEGRADED],
        ),
    )


class SessionMemoryStore:
    """Persistent per-attempt memory keyed by an opaque session id."""

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        scorer: ConfidenceScorer = completeness_confidence,
    ) -> None:
        self._session_factory = session_factory or (lambda: db_session.SessionLocal())
        self._scorer = scorer

    @contextmanager
    def _db(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        finally:
            db.close()

    def create_session(self, user_id: str, preview_text: str = "", metadata: dict | None = None) -> str:
        now = datetime.utcnow()
        with self._db() as db:
            row = ProcessingSession(
                user_id=str(user_id),
                preview_text=(preview_text or "")[: settings.session_preview_chars],
                steps={},
                step_count=0,
                session_metadata=dict(metadata or {}),
                created_at=now,
                updated_at=now,
                expires_at=now + timedelta(minutes=settings.session_ttl_minutes),
            )
            db.add(row)
            db.commit()
            session_id = row.id
        logger.info("Created processing session %s for user %s", session_id, user_id)
        return session_id

    def store_step_result(
        self,
        session_id: str,
        step_name: str,
        data: dict,
        confidence: float | None = None,
        metadata: dict | None = None,
    ) -> bool:
        """
        Append a step result. Returns False (logged, never raised) when the session is gone
        or the step was already recorded - the caller's main result must not depend on this.
        """
        try:
            with self._db() as db:
                row = db.query(ProcessingSession).filter(ProcessingSession.id == session_id).first()
                if not row or row.expires_at < datetime.utcnow():
                    logger.warning("Session %s not found; dropping step %s", session_id, step_name)
                    return False
                steps = dict(row.steps or {})
                if step_name in steps:
                    logger.warning("Session %s already has step %s; keeping the first result", session_id, step_name)
                    return False
                step_metadata = {"stepIndex": len(steps) + 1}
                step_metadata.update(metadata or {})
                result = StepResult(
                    stepName=step_name,
                    data=data or {},
                    confidence=self._scorer(data or {}) if confidence is None else confidence,
                    metadata=step_metadata,
                    timestamp=datetime.utcnow().isoformat(),
                )
                steps[step_name] = result.model_dump()
                # Reassign so the JSON column is flagged dirty
                row.steps = steps
                row.step_count = len(steps)
                row.current_step = step_name
                row.updated_at = datetime.utcnow()
                db.commit()
        except SQLAlchemyError:
            logger.exception("Failed to store step %s for session %s", step_name, session_id)
            return False
        logger.info("Session %s stored step %s (confidence=%.2f)", session_id, step_name, result.confidence)
        return True

    def get_session_context(self, session_id: str) -> SessionContext:
        with self._db() as db:
            row = db.query(ProcessingSession).filter(ProcessingSession.id == session_id).first()
            if not row or row.expires_at < datetime.utcnow():
                raise SessionNotFoundError(f"Session {session_id} not found or expired")
            steps = {name: StepResult.model_validate(value) for name, value in (row.steps or {}).items()}
            metadata = dict(row.session_metadata or {})
        return SessionContext(
            sessionId=session_id,
            knownFacts=extract_known_facts(steps),
            previousSteps=steps,
            stepCount=len(steps),
            metadata=metadata,
        )

    def get_final_result(self, session_id: str) -> ExtractedProfile:
        """Merge all stored steps into an ExtractedProfile. Missing phases become empty defaults."""
        context = self.get_session_context(session_id)
        return merge_steps(session_id, context.previousSteps, str(context.metadata.get("processor", "")))

    def cleanup_session(self, session_id: str) -> bool:
        with self._db() as db:
            deleted = db.query(ProcessingSession).filter(ProcessingSession.id == session_id).delete(
                synchronize_session=False
            )
            db.commit()
        if deleted:
            logger.info("Cleaned up session %s", session_id)
        return bool(deleted)

    def schedule_cleanup(self, session_id: str, delay_seconds: float | None = None) -> threading.Timer:
        """Delete the session after a delay on a daemon timer thread."""
        delay = settings.session_cleanup_delay_seconds if delay_seconds is None else delay_seconds

        def _run() -> None:
            try:
                self.cleanup_session(session_id)
            except SQLAlchemyError:
                logger.exception("Delayed cleanup failed for session %s", session_id)

        timer = threading.Timer(delay, _run)
        timer.daemon = True
        timer.start()
        return timer

    def cleanup_expired_sessions(self, now: datetime | None = None) -> int:
        """Delete sessions past expires_at. Returns the number removed."""
        with self._db() as db:
            deleted = cleanup_expired_sessions(db, now)
        if deleted:
            logger.info("Removed %d expired processing sessions", deleted)
        return deleted

    def session_exists(self, session_id: str) -> bool:
        with self._db() as db:
            return db.query(ProcessingSession.id).filter(ProcessingSession.id == session_id).first() is not None

