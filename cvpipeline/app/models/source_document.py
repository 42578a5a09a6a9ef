"""
SourceDocument - pre-extracted CV text the queue processes (referenced by jobs as source_ref)
"""
import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String, Text

from cvpipeline.app.db.base import Base


class SourceDocument(Base):
    __tablename__ = "source_documents"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), nullable=False, index=True)

    filename = Column(String(255), default="")
    mime_type = Column(String(100), default="text/plain")
    size_bytes = Column(Integer, default=0)
    extracted_text = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
