"""
COFF string table.

Section names longer than eight characters are stored in the COFF string
table and referenced from the section header as "/<decimal offset>". The
table sits right after the COFF symbol table: a 4-byte little-endian
size (which counts itself) followed by null-terminated strings. Offsets
are relative to the start of the table, so the first string lives at 4.
"""

import logging
import struct
from typing import BinaryIO

from .msg import MessageLog
from .types import FileHeader

logger = logging.getLogger(__name__)

STRING_TABLE_SIZE_FIELD = 4


class CoffStringTable:
    """In-memory copy of the COFF string table."""

    # Reject absurd size fields instead of allocating them
    MAX_STRING_TABLE_SIZE = 0x1000000

    def __init__(self) -> None:
        self._data = b""

    @property
    def data(self) -> bytes:
        """Raw table contents, including the leading size field."""
        return self._data

    def __len__(self) -> int:
        return len(self._data)

    def clear(self) -> None:
        self._data = b""

    def load_from_stream(
        self, stream: BinaryIO, file_header: FileHeader, msg: MessageLog
    ) -> bool:
        """Load the string table referenced by the file header.

        The stream position is left unspecified afterwards.

        Args:
            stream: Seekable binary stream positioned anywhere
            file_header: Decoded COFF file header
            msg: Diagnostic sink for truncation reports

        Returns:
            True if a table was loaded (or there is none to load)
        """
        self.clear()

        table_offset = file_header.string_table_offset
        if table_offset == 0:
            return True

        stream.seek(table_offset)
        size_field = stream.read(STRING_TABLE_SIZE_FIELD)
        if len(size_field) < STRING_TABLE_SIZE_FIELD:
            msg.write("COFF string table at 0x%x is beyond end of file.", table_offset)
            return False

        (size,) = struct.unpack("<I", size_field)
        if size < STRING_TABLE_SIZE_FIELD or size > self.MAX_STRING_TABLE_SIZE:
            msg.write("COFF string table has invalid size 0x%x.", size)
            return False

        body = stream.read(size - STRING_TABLE_SIZE_FIELD)
        if len(body) < size - STRING_TABLE_SIZE_FIELD:
            msg.write(
                "COFF string table truncated: %d of %d bytes.",
                len(body) + STRING_TABLE_SIZE_FIELD,
                size,
            )
            return False

        self._data = size_field + body
        logger.debug("Loaded COFF string table: %d bytes at 0x%x", size, table_offset)
        return True

    def get_string(self, offset: int) -> str | None:
        """Look up the string starting at a table offset.

        Returns:
            The decoded string (possibly empty), or None if offset does not
            point into the string area of the table
        """
        if offset < STRING_TABLE_SIZE_FIELD or offset >= len(self._data):
            return None
        end = self._data.find(b"\x00", offset)
        if end < 0:
            end = len(self._data)
        return self._data[offset:end].decode("utf-8", errors="replace")
