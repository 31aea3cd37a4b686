"""
Replayable input streams.

A StreamBuffer lets the extraction policy feed the same document bytes to
more than one parser without going back to the original source (upload,
network, disk). Seekable sources are used in place; non-seekable sources are
spooled into a SpooledTemporaryFile first, bounded by a maximum size.

Usage:
    from docharvest.core.stream import StreamBuffer

    with StreamBuffer.wrap(upload.file) as buffer:
        buffer.mark()
        first = parser_a.parse(buffer)
        buffer.reset()
        second = parser_b.parse(buffer)
"""

from __future__ import annotations

import io
import logging
import tempfile
from contextlib import contextmanager
from typing import BinaryIO, Iterator, Union

from docharvest.exceptions import DocumentTooLargeError, UnsupportedOperationError

from .constants import MAX_DOCUMENT_SIZE, SPOOL_MEMORY_THRESHOLD, STREAM_CHUNK_SIZE

logger = logging.getLogger(__name__)

__all__ = ["StreamBuffer", "StreamSource"]

StreamSource = Union[bytes, bytearray, memoryview, BinaryIO, "StreamBuffer"]


def _is_seekable(stream: BinaryIO) -> bool:
    seekable = getattr(stream, "seekable", None)
    if seekable is None:
        return False
    try:
        return bool(seekable())
    except (OSError, ValueError):
        # Closed or broken file objects report as unseekable
        return False


class StreamBuffer:
    """
    Seekable, replayable wrapper around a binary input stream.

    Supports mark/reset so the same bytes can be parsed more than once.
    position() reports bytes consumed since the last mark.
    """

    def __init__(
        self,
        source: BinaryIO,
        spool: bool = True,
        max_size: int = MAX_DOCUMENT_SIZE,
    ):
        """
        Args:
            source: Binary file-like object to read from
            spool: Copy non-seekable sources into a temporary spool so they
                   become replayable. When False such sources stay
                   read-once and reset() raises UnsupportedOperationError.
            max_size: Upper bound on spooled bytes
        """
        self._owns_raw = False
        self._read_since_mark = 0

        if _is_seekable(source):
            self._raw: BinaryIO = source
            self._replayable = True
        elif spool:
            self._raw = self._spool(source, max_size)
            self._owns_raw = True
            self._replayable = True
        else:
            self._raw = source
            self._replayable = False

        self._mark = self._raw.tell() if self._replayable else 0

    @classmethod
    def wrap(cls, source: StreamSource, max_size: int = MAX_DOCUMENT_SIZE) -> "StreamBuffer":
        """Build a replayable buffer from bytes, a file object, or an existing buffer."""
        if isinstance(source, StreamBuffer):
            return source
        if isinstance(source, (bytes, bytearray, memoryview)):
            if len(source) > max_size:
                raise DocumentTooLargeError(max_size, details={"size": len(source)})
            return cls(io.BytesIO(bytes(source)), max_size=max_size)
        return cls(source, max_size=max_size)

    @staticmethod
    def _spool(source: BinaryIO, max_size: int) -> BinaryIO:
        """Copy a non-seekable stream into a temporary spool, enforcing max_size."""
        spool = tempfile.SpooledTemporaryFile(max_size=SPOOL_MEMORY_THRESHOLD)
        total = 0
        try:
            while True:
                chunk = source.read(STREAM_CHUNK_SIZE)
                if not chunk:
                    break
                total += len(chunk)
                if total > max_size:
                    raise DocumentTooLargeError(max_size)
                spool.write(chunk)
        except BaseException:
            spool.close()
            raise

        spool.seek(0)
        logger.debug(f"Spooled non-seekable stream ({total} bytes)")
        return spool

    @property
    def replayable(self) -> bool:
        """True if reset() can rewind this buffer."""
        return self._replayable

    def mark(self) -> None:
        """Record the current position as the restart point."""
        if self._replayable:
            self._mark = self._raw.tell()
        self._read_since_mark = 0

    def reset(self) -> None:
        """Rewind to the last mark."""
        if not self._replayable:
            raise UnsupportedOperationError(
                "Stream does not support mark/reset",
                operation="reset",
            )
        self._raw.seek(self._mark)
        self._read_since_mark = 0

    def position(self) -> int:
        """Bytes consumed since the last mark."""
        if self._replayable:
            return self._raw.tell() - self._mark
        return self._read_since_mark

    def read(self, size: int = -1) -> bytes:
        data = self._raw.read(size)
        if not self._replayable:
            self._read_since_mark += len(data)
        return data

    def read_all(self) -> bytes:
        """Read everything from the current position to the end."""
        return self.read(-1)

    def peek(self, size: int) -> bytes:
        """Return up to ``size`` bytes without moving the position."""
        with self.preserving_position() as raw:
            return raw.read(size)

    @contextmanager
    def preserving_position(self) -> Iterator[BinaryIO]:
        """
        Yield the underlying file object and restore the position afterwards.

        Used for non-destructive inspection (e.g. zip directory sniffing).
        """
        if not self._replayable:
            raise UnsupportedOperationError(
                "Stream does not support non-destructive reads",
                operation="peek",
            )
        saved = self._raw.tell()
        try:
            yield self._raw
        finally:
            self._raw.seek(saved)

    def close(self) -> None:
        """Close the spool if this buffer created one. Caller-owned streams are left open."""
        if self._owns_raw:
            self._raw.close()

    def __enter__(self) -> "StreamBuffer":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
