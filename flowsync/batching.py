"""
Bounded write batches.

The hosted store caps the number of operations per batch. BatchWriter
buffers writes and commits a batch each time the cap is reached; ``flush()``
commits the remainder. Batches are atomic individually, never as a group:
a failure leaves earlier batches committed.
"""

import logging
from typing import Any, Optional

from .protocol import Address, RemoteStoreProtocol, WriteBatchProtocol

logger = logging.getLogger(__name__)


class BatchWriter:
    """Accumulates merge/set writes and commits them in bounded batches."""

    def __init__(self, remote: RemoteStoreProtocol, *, limit: Optional[int] = None):
        self._remote = remote
        self._limit = limit or remote.batch_limit
        if self._limit < 1:
            raise ValueError(f"Batch limit must be >= 1, got {self._limit}")
        self._batch: Optional[WriteBatchProtocol] = None
        self._count = 0
        self.commits = 0
        self.operations = 0

    @property
    def limit(self) -> int:
        return self._limit

    async def set(self, address: Address, data: dict[str, Any], *, merge: bool = True) -> None:
        """Queue a write; commits the current batch when it reaches the limit."""
        if self._batch is None:
            self._batch = self._remote.batch()
        self._batch.set(address, data, merge=merge)
        self._count += 1
        self.operations += 1
        if self._count >= self._limit:
            await self._commit()

    async def flush(self) -> None:
        """Commit whatever is queued."""
        if self._count > 0:
            await self._commit()

    async def _commit(self) -> None:
        batch, count = self._batch, self._count
        self._batch = None
        self._count = 0
        await batch.commit()
        self.commits += 1
        logger.debug("Committed batch of %d operations", count)
