"""
In-memory protected collection.

Holds the image records in upload order together with their raw bytes.
Record fields are written only through begin_indexing/finish_indexing,
which the background indexer alone calls; everything else reads snapshots.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

import structlog

from copyguard.errors import FetchError
from copyguard.models.image import ImageRecord
from .utils import new_image_id

logger = structlog.get_logger()


@dataclass(frozen=True)
class StoredImage:
    data: bytes
    mime_type: str


class ImageCollection:
    """Ordered store of collection records and their image bytes."""

    def __init__(self):
        self._records: Dict[str, ImageRecord] = {}
        self._blobs: Dict[str, StoredImage] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, image_id: str) -> bool:
        return image_id in self._records

    def add(self, name: str, data: bytes, mime_type: str, image_id: Optional[str] = None) -> ImageRecord:
        """Register a new image. Fingerprint and embedding are filled in later by the indexer."""
        image_id = image_id or new_image_id()
        if image_id in self._records:
            raise ValueError(f"Image {image_id} already exists")

        record = ImageRecord(id=image_id, name=name, mime_type=mime_type)
        self._records[image_id] = record
        self._blobs[image_id] = StoredImage(data=data, mime_type=mime_type)

        logger.info("Added image to collection", image_id=image_id, name=name, size=len(data))
        return record

    def remove(self, image_id: str) -> bool:
        record = self._records.pop(image_id, None)
        self._blobs.pop(image_id, None)
        if record is not None:
            logger.info("Removed image from collection", image_id=image_id)
        return record is not None

    def get(self, image_id: str) -> Optional[ImageRecord]:
        return self._records.get(image_id)

    def records(self) -> List[ImageRecord]:
        """Snapshot of all records in upload order."""
        return list(self._records.values())

    def fetch(self, image_id: str) -> StoredImage:
        """Return the stored bytes of an image."""
        blob = self._blobs.get(image_id)
        if blob is None:
            raise FetchError(f"No image data for {image_id}")
        return blob

    def pending(self) -> List[ImageRecord]:
        """Records missing a fingerprint or embedding that nobody is working on."""
        return [r for r in self._records.values() if r.needs_indexing and not r.indexing]

    def begin_indexing(self, image_id: str) -> Optional[ImageRecord]:
        """Flag a record as in progress. Returns None if it is gone or already claimed."""
        record = self._records.get(image_id)
        if record is None or record.indexing:
            return None
        record = record.model_copy(update={"indexing": True})
        self._records[image_id] = record
        return record

    def finish_indexing(self, image_id: str,
                        fingerprint: Optional[str] = None,
                        embedding: Optional[List[float]] = None,
                        description: Optional[str] = None) -> Optional[ImageRecord]:
        """
        Commit indexing output and clear the in-progress flag.

        Only fields that are still empty are written, so each one is
        populated at most once. Returns the updated record, or None if the
        image was removed meanwhile.
        """
        record = self._records.get(image_id)
        if record is None:
            return None

        update = {"indexing": False}
        if fingerprint and not record.fingerprint:
            update["fingerprint"] = fingerprint
        if embedding and not record.embedding:
            update["embedding"] = list(embedding)
        if description and not record.description:
            update["description"] = description

        record = record.model_copy(update=update)
        self._records[image_id] = record
        return record

    def stats(self) -> Dict[str, int]:
        records = self._records.values()
        return {
            "total": len(self._records),
            "fingerprinted": sum(1 for r in records if r.fingerprint),
            "embedded": sum(1 for r in records if r.embedding),
            "indexing": sum(1 for r in records if r.indexing),
        }
