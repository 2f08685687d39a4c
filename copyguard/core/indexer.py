"""
Background population of collection fingerprints and embeddings.

A single worker processes one record at a time so background indexing
never competes with a foreground assessment for the embedding oracle.
Records whose indexing fails stay eligible and are retried on a later pass.
"""

import asyncio
from typing import Dict, Optional

import structlog

from copyguard import config
from copyguard.errors import DecodeError, FetchError, OracleError
from copyguard.services import image_hash
from copyguard.services.oracles import EmbeddingOracle
from .collection import ImageCollection

logger = structlog.get_logger()


class CollectionIndexer:
    """Scheduler loop with a worker pool of size one over ``ImageCollection.pending()``."""

    def __init__(self,
                 collection: ImageCollection,
                 embedding_oracle: EmbeddingOracle,
                 poll_interval: float = config.INDEX_POLL_INTERVAL,
                 hash_size: int = config.FINGERPRINT_HASH_SIZE):
        self.collection = collection
        self.embedding_oracle = embedding_oracle
        self.poll_interval = poll_interval
        self.hash_size = hash_size
        self._lock = asyncio.Lock()
        self._wakeup = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def notify(self) -> None:
        """Wake the worker early, e.g. after an upload."""
        self._wakeup.set()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run_forever(), name="collection-indexer")
        logger.info("Collection indexer started", poll_interval=self.poll_interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Collection indexer stopped")

    async def _run_forever(self) -> None:
        while True:
            self._wakeup.clear()
            try:
                await self.run_pending()
            except Exception as e:
                logger.error("Indexing pass failed", error=str(e))

            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

    async def run_pending(self) -> Dict[str, int]:
        """Make one pass over every record that currently needs indexing."""
        async with self._lock:
            pending = self.collection.pending()
            indexed = 0
            for record in pending:
                try:
                    if await self.index_record(record.id):
                        indexed += 1
                except Exception as e:
                    # The record stays pending; the pass moves on
                    logger.error("Indexing record raised", image_id=record.id, error=str(e))

            if pending:
                logger.info("Indexing pass finished", attempted=len(pending), indexed=indexed)
            return {"attempted": len(pending), "indexed": indexed, "incomplete": len(pending) - indexed}

    async def index_record(self, image_id: str) -> bool:
        """
        Fill in the missing fields of one record.

        Returns True when the record ends up with both a fingerprint and an
        embedding. The in-progress flag is always cleared, even on failure.
        """
        record = self.collection.begin_indexing(image_id)
        if record is None:
            return False

        fingerprint = None
        embedding = None
        description = None
        try:
            blob = self.collection.fetch(image_id)

            if not record.fingerprint:
                try:
                    fingerprint = await asyncio.to_thread(image_hash.fingerprint, blob.data, self.hash_size)
                except DecodeError as e:
                    logger.warning("Fingerprint unavailable", image_id=image_id, error=str(e))

            if not record.embedding:
                result = await asyncio.to_thread(self.embedding_oracle.index, blob.data, blob.mime_type)
                if result.embedding:
                    embedding = result.embedding
                    description = result.description or None
                else:
                    logger.warning("Embedding unavailable", image_id=image_id)

        except (FetchError, OracleError) as e:
            logger.warning("Indexing failed", image_id=image_id, error=str(e))
        finally:
            updated = self.collection.finish_indexing(
                image_id, fingerprint=fingerprint, embedding=embedding, description=description
            )

        return updated is not None and not updated.needs_indexing
