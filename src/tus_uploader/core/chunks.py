"""Chunk planning and per-chunk views of the source file."""

import io
import os
from dataclasses import dataclass
from typing import List, Optional


class FileSection(io.RawIOBase):
    """Read-only view of ``[offset, offset + size)`` of a file.

    Every section owns its own file handle, so sections of the same file can
    be read from different threads without sharing a cursor.
    """

    def __init__(self, path: str, offset: int, size: int) -> None:
        super().__init__()
        self._file = None
        if offset < 0 or size < 0:
            raise ValueError("offset and size must be >= 0")
        self.path = path
        self.offset = offset
        self.size = size
        self._pos = 0
        self._file = open(path, "rb")

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def tell(self) -> int:
        return self._pos

    def seek(self, pos: int, whence: int = io.SEEK_SET) -> int:
        if whence == io.SEEK_SET:
            new_pos = pos
        elif whence == io.SEEK_CUR:
            new_pos = self._pos + pos
        elif whence == io.SEEK_END:
            new_pos = self.size + pos
        else:
            raise ValueError(f"Invalid whence: {whence}")
        if new_pos < 0:
            raise ValueError("Negative seek position")
        self._pos = new_pos
        return self._pos

    def readinto(self, buffer) -> int:
        remaining = self.size - self._pos
        if remaining <= 0:
            return 0
        view = memoryview(buffer)[: min(len(buffer), remaining)]
        self._file.seek(self.offset + self._pos)
        n = self._file.readinto(view)
        self._pos += n
        return n

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
        super().close()


@dataclass(frozen=True)
class ChunkDescriptor:
    """One contiguous byte range of the source file."""

    index: int
    offset: int
    size: int
    source: Optional[str] = None

    @property
    def end(self) -> int:
        return self.offset + self.size

    def open(self) -> FileSection:
        """Open an independent view of this chunk's bytes."""
        if self.source is None:
            raise ValueError(f"Chunk {self.index} has no source file")
        return FileSection(self.source, self.offset, self.size)


def plan_chunks(
    file_size: int, chunk_size: int, source: Optional[str] = None
) -> List[ChunkDescriptor]:
    """Split ``[0, file_size)`` into chunks of ``chunk_size`` bytes.

    Indices start at 1. Every chunk but the last is exactly ``chunk_size``
    bytes; the last holds the remainder. An empty file yields no chunks.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")

    chunks = []
    offset = 0
    index = 0
    while offset < file_size:
        index += 1
        end = min(offset + chunk_size, file_size)
        chunks.append(ChunkDescriptor(index=index, offset=offset, size=end - offset, source=source))
        offset = end
    return chunks


def plan_file_chunks(path: str, chunk_size: int) -> List[ChunkDescriptor]:
    """Plan the chunks of a file on disk."""
    return plan_chunks(os.path.getsize(path), chunk_size, source=str(path))
