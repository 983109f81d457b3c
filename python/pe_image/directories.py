"""
Data directory table.

The optional header declares NumberOfRvaAndSizes entries, but the table
physically ends where the section headers begin. Loading is clamped to
that boundary so a lying count can never make us read section headers
as directories.
"""

import logging
from typing import BinaryIO, Iterator

from .msg import MessageLog
from .types import DATA_DIRECTORY_SIZE, DataDirectory

logger = logging.getLogger(__name__)


class DataDirectories:
    """Ordered data directory entries of one image."""

    def __init__(self) -> None:
        self._dirs: list[DataDirectory] = []

    def __len__(self) -> int:
        return len(self._dirs)

    def __iter__(self) -> Iterator[DataDirectory]:
        return iter(self._dirs)

    def __getitem__(self, index: int) -> DataDirectory:
        return self._dirs[index]

    def clear(self) -> None:
        self._dirs.clear()

    def get(self, index: int) -> DataDirectory | None:
        """Get a data directory by index."""
        if 0 <= index < len(self._dirs):
            return self._dirs[index]
        return None

    def load_from_stream(
        self,
        stream: BinaryIO,
        msg: MessageLog,
        start: int,
        end: int,
        declared_count: int,
    ) -> int:
        """Read directory entries from [start, end).

        Args:
            stream: Binary stream of the image
            msg: Diagnostic sink
            start: File offset of the first entry
            end: File offset of the section header table
            declared_count: NumberOfRvaAndSizes from the optional header

        Returns:
            Number of entries loaded
        """
        self.clear()

        room = max(end - start, 0)
        if room % DATA_DIRECTORY_SIZE:
            msg.write(
                "Data directory area (%d bytes) is not a multiple of %d.",
                room,
                DATA_DIRECTORY_SIZE,
            )

        count = declared_count
        max_count = room // DATA_DIRECTORY_SIZE
        if count > max_count:
            msg.write(
                "Declared %d data directories, only %d fit before section headers.",
                declared_count,
                max_count,
            )
            count = max_count

        stream.seek(start)
        for i in range(count):
            raw = stream.read(DATA_DIRECTORY_SIZE)
            if len(raw) < DATA_DIRECTORY_SIZE:
                msg.write("Found %d of %d data directories.", i, count)
                break
            self._dirs.append(DataDirectory.from_bytes(raw))

        logger.debug("Loaded %d data directories", len(self._dirs))
        return len(self._dirs)
