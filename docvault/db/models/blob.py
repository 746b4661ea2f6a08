from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Integer, LargeBinary, String, UUID
from sqlalchemy.orm import relationship

from docvault.core.db import Base


class Blob(Base):
    __tablename__ = "document_blobs"

    # Same id as the document the content belongs to
    id = Column(UUID(as_uuid=True), primary_key=True)
    filename = Column(String(255), nullable=False)
    length = Column(BigInteger, nullable=False, default=0)
    chunk_count = Column(Integer, nullable=False, default=0)
    uploaded_at = Column(DateTime(timezone=True), nullable=False)

    # Relationships
    chunks = relationship("BlobChunk", back_populates="blob", cascade="all, delete-orphan", passive_deletes=True)


class BlobChunk(Base):
    __tablename__ = "document_blob_chunks"

    blob_id = Column(UUID(as_uuid=True), ForeignKey("document_blobs.id", ondelete="CASCADE"), primary_key=True)
    chunk_index = Column(Integer, primary_key=True)
    data = Column(LargeBinary, nullable=False)

    # Relationships
    blob = relationship("Blob", back_populates="chunks")
