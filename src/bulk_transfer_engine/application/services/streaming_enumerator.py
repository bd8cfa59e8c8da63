"""Lazy, concurrent walk of a remote directory tree."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import posixpath
from collections.abc import AsyncIterator
from dataclasses import dataclass
from types import TracebackType

from bulk_transfer_engine.application.services.retry_policy import BackoffPolicy, call_with_backoff
from bulk_transfer_engine.domain.entities import FileEntry, ListingPage
from bulk_transfer_engine.domain.errors import EnumerationError, TransferValidationError
from bulk_transfer_engine.domain.ports import TransferBackend

logger = logging.getLogger(__name__)

_END = object()
_CLOSE_POLL_SECONDS = 0.05


@dataclass(slots=True, frozen=True)
class EnumeratorOptions:
    """Traversal options."""

    recursive: bool = True
    show_hidden: bool = True
    max_depth: int = -1
    concurrency: int = 4
    buffer_size: int | None = None

    @property
    def output_buffer_size(self) -> int:
        """Maximum number of entries buffered ahead of the consumer."""

        return self.buffer_size or self.concurrency * 100


def normalize_path(path: str) -> str:
    """Return a canonical absolute POSIX path."""

    return posixpath.normpath("/" + path.strip().lstrip("/"))


class StreamingEnumerator:
    """Yield every entry below a root, files and directories alike.

    A fixed pool of workers drains a queue of directories seeded with the
    root. Entries go through a bounded output queue, so a slow consumer
    throttles listing. Entries from different directories interleave in no
    particular order. The first listing failure is kept in ``error`` and
    ends the iteration early.
    """

    def __init__(
        self,
        backend: TransferBackend,
        endpoint_id: str,
        root_path: str,
        options: EnumeratorOptions | None = None,
        backoff_policy: BackoffPolicy | None = None,
    ) -> None:
        if not root_path.strip():
            raise TransferValidationError("root_path cannot be empty.")
        self._backend = backend
        self._endpoint_id = endpoint_id
        self._root = normalize_path(root_path)
        self._options = options or EnumeratorOptions()
        self._backoff_policy = backoff_policy
        if self._options.concurrency < 1:
            raise TransferValidationError("concurrency must be >= 1.")
        self._reset_state()

    def _reset_state(self) -> None:
        self._output: asyncio.Queue[object] | None = None
        self._directories: asyncio.Queue[tuple[str, int]] | None = None
        self._visited: set[str] = set()
        self._stop = asyncio.Event()
        self._crawler: asyncio.Task[None] | None = None
        self._error: EnumerationError | None = None
        self._exhausted = False
        self._directories_listed = 0

    @property
    def root_path(self) -> str:
        """Normalized root of the walk."""

        return self._root

    @property
    def error(self) -> EnumerationError | None:
        """First listing failure, if any."""

        return self._error

    @property
    def directories_listed(self) -> int:
        """Number of directories listed so far."""

        return self._directories_listed

    def raise_for_error(self) -> None:
        """Raise the recorded listing failure, if any."""

        if self._error is not None:
            raise self._error

    def start(self) -> None:
        """Start the worker pool; iteration starts it implicitly."""

        if self._crawler is not None or self._exhausted:
            return
        self._output = asyncio.Queue(maxsize=self._options.output_buffer_size)
        self._directories = asyncio.Queue()
        self._crawler = asyncio.create_task(self._crawl())

    def __aiter__(self) -> AsyncIterator[FileEntry]:
        return self

    async def __anext__(self) -> FileEntry:
        if self._exhausted or self._error is not None:
            self._exhausted = True
            raise StopAsyncIteration
        self.start()
        assert self._output is not None
        item = await self._output.get()
        if item is _END or self._error is not None:
            self._exhausted = True
            raise StopAsyncIteration
        assert isinstance(item, FileEntry)
        return item

    async def __aenter__(self) -> StreamingEnumerator:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Stop the walk; listings in flight finish and are discarded."""

        self._stop.set()
        self._exhausted = True
        crawler = self._crawler
        if crawler is None:
            return
        while not crawler.done():
            self._drain_output()
            await asyncio.wait({crawler}, timeout=_CLOSE_POLL_SECONDS)
        self._drain_output()

    async def reset(self) -> None:
        """Discard all state and restart from the root on next iteration."""

        await self.aclose()
        self._reset_state()

    def _drain_output(self) -> None:
        if self._output is None:
            return
        while not self._output.empty():
            self._output.get_nowait()

    async def _crawl(self) -> None:
        assert self._directories is not None and self._output is not None
        self._visited.add(self._root)
        self._directories.put_nowait((self._root, 0))
        workers = [
            asyncio.create_task(self._worker()) for _ in range(self._options.concurrency)
        ]
        try:
            await self._directories.join()
        finally:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            await self._output.put(_END)

    async def _worker(self) -> None:
        assert self._directories is not None
        while True:
            path, depth = await self._directories.get()
            try:
                if not self._stop.is_set():
                    await self._list_directory(path, depth)
            except Exception as exc:  # noqa: BLE001
                self._record_failure(path, exc)
            finally:
                self._directories.task_done()

    async def _list_directory(self, path: str, depth: int) -> None:
        assert self._directories is not None and self._output is not None
        options = self._options
        page_token: str | None = None
        while True:
            page = await self._fetch_page(path, page_token)
            if self._stop.is_set():
                return
            for listed in page.entries:
                if not options.show_hidden and listed.name.startswith("."):
                    continue
                entry = dataclasses.replace(
                    listed,
                    path=posixpath.join(path, listed.name),
                    depth=depth + 1,
                )
                if entry.is_dir and self._should_descend(entry.path, depth):
                    self._visited.add(entry.path)
                    self._directories.put_nowait((entry.path, depth + 1))
                await self._output.put(entry)
                if self._stop.is_set():
                    return
            if page.next_page_token is None:
                self._directories_listed += 1
                return
            page_token = page.next_page_token

    async def _fetch_page(self, path: str, page_token: str | None) -> ListingPage:
        async def fetch() -> ListingPage:
            return await self._backend.list_directory(
                self._endpoint_id,
                path,
                show_hidden=self._options.show_hidden,
                page_token=page_token,
            )

        if self._backoff_policy is None:
            return await fetch()
        return await call_with_backoff(fetch, self._backoff_policy)

    def _should_descend(self, path: str, depth: int) -> bool:
        options = self._options
        if not options.recursive:
            return False
        if options.max_depth >= 0 and depth >= options.max_depth:
            return False
        return path not in self._visited

    def _record_failure(self, path: str, exc: Exception) -> None:
        if self._error is None:
            logger.warning("Listing %s on endpoint %s failed: %s", path, self._endpoint_id, exc)
            self._error = EnumerationError(f"Failed to list {path!r}: {exc}")
            self._error.__cause__ = exc
        self._stop.set()


async def collect_entries(enumerator: StreamingEnumerator) -> list[FileEntry]:
    """Materialize every entry; raises the listing failure, if any."""

    async with enumerator:
        entries = [entry async for entry in enumerator]
    enumerator.raise_for_error()
    return entries


__all__ = ["EnumeratorOptions", "StreamingEnumerator", "collect_entries", "normalize_path"]
