"""
Backing sources for an image.

A disk image is re-opened for every operation that needs raw file access
and closed again on exit. A memory-mapped image keeps one stream for its
whole lifetime; handing it out must never close it. Both variants expose
the same open() context manager so callers never decide lifetimes
themselves.
"""

import enum
import io
import logging
import mmap
from abc import ABC, abstractmethod
from contextlib import AbstractContextManager, contextmanager
from pathlib import Path
from typing import BinaryIO, Iterator

logger = logging.getLogger(__name__)


class ImageKind(enum.Enum):
    """Where the image layout came from."""

    DISK = "disk"
    MAPPED_MEMORY = "mapped"


class ImageSource(ABC):
    """Acquisition point for the stream an image was loaded from."""

    kind: ImageKind

    @abstractmethod
    def open(self, mode: str = "rb") -> AbstractContextManager[BinaryIO]:
        """Yield a seekable binary stream for the duration of a with-block."""
        ...

    def close(self) -> None:
        """Release any resource held for the image's lifetime."""
        pass


class DiskSource(ImageSource):
    """Raw file on disk; a fresh handle per open()."""

    kind = ImageKind.DISK

    def __init__(self, path: Path):
        self.path = Path(path)

    @contextmanager
    def open(self, mode: str = "rb") -> Iterator[BinaryIO]:
        with open(self.path, mode) as f:
            yield f

    def __repr__(self) -> str:
        return f"DiskSource({str(self.path)!r})"


class MappedSource(ImageSource):
    """Image already in its virtual (RVA-addressed) layout.

    The stream is created once and stays open until close(). Only read
    modes are supported.
    """

    kind = ImageKind.MAPPED_MEMORY

    def __init__(self, stream: BinaryIO, path: Path | None = None):
        self._stream = stream
        self._file: BinaryIO | None = None
        self.path = path

    @classmethod
    def from_buffer(cls, data: bytes | bytearray | memoryview) -> "MappedSource":
        """Wrap a memory dump of a loaded module."""
        return cls(io.BytesIO(bytes(data)))

    @classmethod
    def from_file(cls, path: Path) -> "MappedSource":
        """Map a dump file read-only for the lifetime of the source."""
        path = Path(path)
        f = open(path, "rb")
        try:
            mapped = mmap.mmap(f.fileno(), 0, access=mmap.ACCESS_READ)
        except (OSError, ValueError):
            f.close()
            raise
        logger.debug("Mapped %s (%d bytes)", path, len(mapped))
        source = cls(mapped, path)
        source._file = f
        return source

    def __repr__(self) -> str:
        return f"MappedSource({str(self.path) if self.path else None!r})"

    @property
    def closed(self) -> bool:
        return self._stream.closed

    @contextmanager
    def open(self, mode: str = "rb") -> Iterator[BinaryIO]:
        if any(c in mode for c in "wa+"):
            raise ValueError(f"Mapped image source is read-only (mode {mode!r})")
        if self._stream.closed:
            raise ValueError("Mapped image source has been closed")
        yield self._stream

    def close(self) -> None:
        self._stream.close()
        if self._file is not None:
            self._file.close()
            self._file = None


def stream_size(stream: BinaryIO) -> int:
    """Total size of a seekable stream; the position is restored."""
    position = stream.tell()
    stream.seek(0, io.SEEK_END)
    size = stream.tell()
    stream.seek(position)
    return size
