"""
ProcessingSession - short-lived memory shared between the extraction phases of one attempt
"""
import uuid
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text

from cvpipeline.app.db.base import Base


class ProcessingSession(Base):
    __tablename__ = "processing_sessions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), nullable=False, index=True)

    preview_text = Column(Text, default="")
    steps = Column(JSON, default=dict)  # step name -> StepResult dict, insertion ordered
    step_count = Column(Integer, default=0)
    current_step = Column(String(50), nullable=True)
    session_metadata = Column("metadata", JSON, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    expires_at = Column(DateTime, nullable=False, index=True)
