"""Group enumerated entries into fixed-size transfer batches."""

from __future__ import annotations

import posixpath
from collections.abc import AsyncIterable, AsyncIterator

from bulk_transfer_engine.application.services.streaming_enumerator import normalize_path
from bulk_transfer_engine.domain.checkpoint_models import TransferItem
from bulk_transfer_engine.domain.entities import FileEntry, TransferBatch
from bulk_transfer_engine.domain.errors import TransferValidationError


class BatchPlanner:
    """Turn a stream of entries into batches of at most ``batch_size`` files."""

    def __init__(self, source_root: str, destination_root: str, batch_size: int) -> None:
        if batch_size < 1:
            raise TransferValidationError("batch_size must be >= 1.")
        self._source_root = normalize_path(source_root)
        self._destination_root = normalize_path(destination_root)
        self._batch_size = batch_size
        self.total_files = 0
        self.total_bytes = 0
        self.skipped_directories = 0

    def to_transfer_item(self, entry: FileEntry) -> TransferItem:
        """Map a source entry to its destination under the destination root."""

        source_path = normalize_path(entry.path)
        relative = posixpath.relpath(source_path, self._source_root)
        if relative == "." or relative.startswith("../") or relative == "..":
            raise TransferValidationError(
                f"Entry {source_path!r} is not below source root {self._source_root!r}."
            )
        return TransferItem(
            source_path=source_path,
            destination_path=posixpath.join(self._destination_root, relative),
            size=entry.size,
            checksum=entry.checksum,
        )

    async def batches(self, entries: AsyncIterable[FileEntry]) -> AsyncIterator[TransferBatch]:
        """Yield batches in enumeration order; the last one may be short."""

        pending: list[TransferItem] = []
        sequence = 0
        async for entry in entries:
            if entry.is_dir:
                self.skipped_directories += 1
                continue
            item = self.to_transfer_item(entry)
            self.total_files += 1
            self.total_bytes += item.size
            pending.append(item)
            if len(pending) == self._batch_size:
                yield TransferBatch(sequence=sequence, items=tuple(pending))
                sequence += 1
                pending = []
        if pending:
            yield TransferBatch(sequence=sequence, items=tuple(pending))


__all__ = ["BatchPlanner"]
