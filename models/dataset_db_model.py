from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, JSON, LargeBinary, String

from database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp; SQLite drops tzinfo so all stored times are naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class DatasetDB(Base):
    __tablename__ = "datasets"

    id = Column(String(32), primary_key=True, index=True)
    filename = Column(String, nullable=False)
    original_name = Column(String, nullable=False)
    file_size = Column(Integer, nullable=False)
    mime_type = Column(String, nullable=False, default="")
    file_type = Column(String, nullable=False, default="dataset")

    # Raw reassembled bytes for dataset/document uploads; images keep derived data only.
    content = Column(LargeBinary, nullable=True)
    preview = Column(JSON, nullable=True)
    batch_info = Column(JSON, default=dict)

    status = Column(String, nullable=False, default="pending", index=True)
    staging_ref = Column(String, nullable=True, index=True)

    uploaded_at = Column(DateTime, default=utcnow)
    expires_at = Column(DateTime, nullable=True, index=True)
    finalized_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
