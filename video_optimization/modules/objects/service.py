"""Bulk deletion of stored objects."""

import asyncio
import logging
from typing import Sequence

from video_optimization.core.storage import ObjectStore, StorageError

logger = logging.getLogger(__name__)


class ObjectDeleteError(Exception):
    """Raised when one object of a batch could not be deleted."""

    def __init__(self, key: str, deleted: list[str], message: str):
        self.key = key
        self.deleted = deleted
        super().__init__(message)


class ObjectService:
    """Deletes objects one by one, stopping at the first failure.

    Objects deleted before the failure are not restored.
    """

    def __init__(self, store: ObjectStore):
        self.store = store

    async def delete_all(self, keys: Sequence[str]) -> list[str]:
        """Delete ``keys`` in order.

        Returns:
            The keys that were deleted

        Raises:
            ObjectDeleteError: on the first key that fails
        """
        deleted: list[str] = []
        for key in keys:
            try:
                await asyncio.to_thread(self.store.delete, key)
            except StorageError as e:
                raise ObjectDeleteError(key, deleted, str(e)) from e
            deleted.append(key)

        logger.info("Deleted objects", extra={"count": len(deleted)})
        return deleted
