"""Split a byte stream into temporary files of a fixed size, in the background."""

from __future__ import annotations

import os
import queue
import tempfile
import threading
from collections.abc import Iterator
from contextlib import suppress
from typing import IO, Any

__all__ = ["PartProducer", "cleanup_temp_file"]

TEMP_FILE_PREFIX = "tusd-s3-tmp-"

_CHUNK_SIZE = 64 * 1024
_POLL_INTERVAL = 0.05
_SENTINEL = object()


def cleanup_temp_file(file: IO[bytes]) -> None:
    """Close a temporary file and remove it from disk."""
    file.close()
    with suppress(FileNotFoundError):
        os.remove(file.name)


class PartProducer:
    """Read *reader* in a background thread and hand out parts as temporary files.

    Each yielded file holds at most *part_size* bytes and is positioned at its
    start; the consumer owns it and must remove it (see :func:`cleanup_temp_file`).
    At most *max_buffered* finished parts wait on disk for the consumer.
    A failure while reading or writing ends the stream and is kept in
    :attr:`error`.
    """

    def __init__(
        self,
        reader: Any,
        part_size: int,
        temporary_directory: str | os.PathLike[str] | None = None,
        max_buffered: int = 1,
    ) -> None:
        if part_size <= 0:
            raise ValueError("part_size must be positive")
        self._reader = reader
        self.part_size = part_size
        self.temporary_directory = temporary_directory or None
        self._queue: queue.Queue[Any] = queue.Queue(maxsize=max(1, max_buffered))
        self._done = threading.Event()
        self._thread: threading.Thread | None = None
        self.error: BaseException | None = None

    @property
    def running(self) -> bool:
        """Whether the background thread is still working."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> PartProducer:
        """Start producing parts; calling it again has no effect."""
        if self._thread is None:
            self._thread = threading.Thread(target=self._produce, name="part-producer", daemon=True)
            self._thread.start()
        return self

    def __iter__(self) -> Iterator[IO[bytes]]:
        self.start()
        assert self._thread is not None
        while True:
            try:
                item = self._queue.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                if self._done.is_set() or not self._thread.is_alive():
                    return
                continue
            if item is _SENTINEL:
                return
            yield item

    def close(self) -> None:
        """Stop producing, wait for the thread and remove every part not handed out."""
        self._done.set()
        thread = self._thread
        while True:
            self._drain()
            if thread is None or not thread.is_alive():
                break
            thread.join(_POLL_INTERVAL)
        self._drain()

    def __enter__(self) -> PartProducer:
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _drain(self) -> None:
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return
            if item is not _SENTINEL:
                cleanup_temp_file(item)

    def _put(self, item: Any) -> bool:
        while not self._done.is_set():
            try:
                self._queue.put(item, timeout=_POLL_INTERVAL)
            except queue.Full:
                continue
            return True
        return False

    def _produce(self) -> None:
        try:
            while not self._done.is_set():
                try:
                    part = self._next_part()
                except Exception as exc:  # noqa: BLE001 - kept for the consumer
                    self.error = exc
                    return
                if part is None:
                    return
                if not self._put(part):
                    cleanup_temp_file(part)
                    return
        finally:
            self._put(_SENTINEL)

    def _next_part(self) -> IO[bytes] | None:
        file = tempfile.NamedTemporaryFile(
            mode="w+b",
            dir=self.temporary_directory,
            prefix=TEMP_FILE_PREFIX,
            delete=False,
        )
        try:
            remaining = self.part_size
            while remaining > 0:
                chunk = self._reader.read(min(remaining, _CHUNK_SIZE))
                if not chunk:
                    break
                chunk = chunk[:remaining]
                file.write(chunk)
                remaining -= len(chunk)
            if remaining == self.part_size:
                cleanup_temp_file(file)
                return None
            file.flush()
            file.seek(0)
            return file
        except BaseException:
            cleanup_temp_file(file)
            raise