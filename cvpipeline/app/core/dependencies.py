"""
Dependency injection utilities
"""
from fastapi import Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from cvpipeline.app.db import session as db_session
from cvpipeline.app.services.cv_extractor import ResilientLLMClient, get_llm_client
from cvpipeline.app.services.queue_manager import QueueManager


def get_db() -> Session:
    """Get database session"""
    db = db_session.SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """
    Caller identity from the X-User-Id header.
    Authentication happens upstream; this service only needs a stable user id.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return x_user_id.strip()


def get_queue_manager(request: Request) -> QueueManager:
    """The application's queue manager (created at startup, stored on app.state)"""
    return request.app.state.queue_manager


def get_llm() -> ResilientLLMClient:
    return get_llm_client()
