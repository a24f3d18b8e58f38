"""
SQLAlchemy ORM models for the SQL-backed document store.
These are separate from domain models; a row holds one raw document.
"""
from datetime import datetime
from sqlalchemy import Column, DateTime, String
from triptuner.infrastructure.database import Base
from triptuner.infrastructure.db_types import DocumentData


class DocumentModel(Base):
    """A single document, addressed by its full slash-separated path."""
    __tablename__ = "documents"

    path = Column(String(1024), primary_key=True)
    # Parent collection path, indexed for collection reads and listeners
    collection = Column(String(1024), nullable=False, index=True)
    doc_id = Column(String(255), nullable=False)
    data = Column(DocumentData, nullable=False)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
