"""
Pydantic models for images in the protected collection.
"""

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ImageRecord(BaseModel):
    """An image known to the screening pipeline.

    Records are immutable values. Background indexing fills in
    ``fingerprint``, ``embedding`` and ``description`` by replacing the
    record with an updated copy, each field at most once.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Opaque image identifier")
    name: str = Field(..., description="Display name, usually the uploaded filename")
    mime_type: str = Field(default="image/jpeg", description="MIME type of the stored bytes")
    uploaded_at: datetime = Field(default_factory=utcnow)
    fingerprint: Optional[str] = Field(None, description="dHash bit string ('0'/'1'), 64 bits by default")
    embedding: Optional[List[float]] = Field(None, exclude=True, repr=False, description="Semantic embedding vector")
    description: Optional[str] = Field(None, description="Visual description produced by the embedding oracle")
    indexing: bool = Field(default=False, description="Set while the background indexer works on this record")

    @computed_field
    @property
    def has_embedding(self) -> bool:
        return bool(self.embedding)

    @property
    def needs_indexing(self) -> bool:
        return not self.fingerprint or not self.embedding


class IndexResult(BaseModel):
    """Output of an embedding oracle. An empty embedding means "no embedding"."""
    description: str = ""
    embedding: List[float] = Field(default_factory=list)
