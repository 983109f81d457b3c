"""
Cursor-based typed access to an image's virtual address space.

A VirtualStream holds one RVA cursor over an Image. Reads and writes go
to whichever loaded section backs the cursor. Bulk read()/write() fail
softly (nothing transferred when the cursor is unmapped); the fixed-width
scalar reads come in a hard form that raises ReadError and a soft try_
form that returns None.

Cursor advance rule: a successful read()/write() moves the cursor by the
*requested* count, even if the section buffer ended sooner and fewer
bytes were transferred. Callers are expected to request fixed structure
sizes they have already validated; use read_exact() when a short
transfer must be detected.
"""

import struct
from typing import TYPE_CHECKING

from .address import ADDRESS_MASK
from .errors import ReadError

if TYPE_CHECKING:
    from .image import Image

_U8 = struct.Struct("<B")
_U16 = struct.Struct("<H")
_U32 = struct.Struct("<I")
_U64 = struct.Struct("<Q")


class VirtualStream:
    """Seek/read/write cursor over an image's RVA space.

    Usage:
        stream = image.open_stream()
        if stream.seek_rva(0x1000):
            magic = stream.read_u32()
    """

    def __init__(self, image: "Image", rva: int = 0):
        self._image = image
        self._rva = rva

    # =========================================================================
    # Position
    # =========================================================================

    @property
    def position_rva(self) -> int:
        """Current cursor; may point into unmapped space."""
        return self._rva

    @position_rva.setter
    def position_rva(self, value: int) -> None:
        self._rva = value & ADDRESS_MASK

    @property
    def position_va(self) -> int:
        return self._image.translator.rva_to_va(self._rva)

    @position_va.setter
    def position_va(self, value: int) -> None:
        self._rva = self._image.translator.va_to_rva(value)

    def seek_rva(self, rva: int) -> bool:
        """Move the cursor to rva if some section maps it.

        Returns:
            True on success; on failure the cursor is left unchanged
        """
        if self._image.translator.rva_to_section(rva) is None:
            return False
        self._rva = rva
        return True

    def seek_va(self, va: int) -> bool:
        return self.seek_rva(self._image.translator.va_to_rva(va))

    def skip(self, count: int) -> None:
        """Move the cursor by a signed delta without any I/O."""
        self._rva = (self._rva + count) & ADDRESS_MASK

    # =========================================================================
    # Bulk transfer
    # =========================================================================

    def read(self, count: int) -> bytes:
        """Read up to count bytes at the cursor.

        Returns:
            The bytes copied from the backing section buffer, empty if the
            cursor is unmapped. When mapped, the cursor advances by count.
        """
        if count <= 0:
            return b""
        location = self._image.translator.rva_to_memory(self._rva)
        if location is None:
            return b""
        mem = location.section.mem
        data = bytes(mem[location.offset : location.offset + count])
        self._rva = (self._rva + count) & ADDRESS_MASK
        return data

    def read_exact(self, count: int) -> bytes | None:
        """Read exactly count bytes, or return None."""
        data = self.read(count)
        if len(data) != count:
            return None
        return data

    def write(self, data: bytes | bytearray) -> int:
        """Write data into the section buffer at the cursor.

        Bytes that would fall past the end of the backing buffer are
        dropped; the buffer never grows.

        Returns:
            Number of bytes stored, 0 if the cursor is unmapped
        """
        if not data:
            return 0
        location = self._image.translator.rva_to_memory(self._rva)
        if location is None:
            return 0
        mem = location.section.mem
        count = min(len(data), len(mem) - location.offset)
        mem[location.offset : location.offset + count] = data[:count]
        self._rva = (self._rva + len(data)) & ADDRESS_MASK
        return count

    # =========================================================================
    # Scalars
    # =========================================================================

    def _try_unpack(self, codec: struct.Struct) -> int | None:
        data = self.read_exact(codec.size)
        if data is None:
            return None
        return codec.unpack(data)[0]

    def _unpack(self, codec: struct.Struct) -> int:
        rva = self._rva
        value = self._try_unpack(codec)
        if value is None:
            raise ReadError(f"Read error: {codec.size} bytes at RVA 0x{rva:x}")
        return value

    def try_read_u8(self) -> int | None:
        return self._try_unpack(_U8)

    def try_read_u16(self) -> int | None:
        return self._try_unpack(_U16)

    def try_read_u32(self) -> int | None:
        return self._try_unpack(_U32)

    def try_read_u64(self) -> int | None:
        return self._try_unpack(_U64)

    def try_read_native(self) -> int | None:
        """Read a pointer-sized value (4 or 8 bytes per image width).

        Returns None on a short read.

        Raises:
            ReadError: If the image bit-width is unknown
        """
        return self._try_unpack(self._native_codec())

    def read_u8(self) -> int:
        return self._unpack(_U8)

    def read_u16(self) -> int:
        return self._unpack(_U16)

    def read_u32(self) -> int:
        return self._unpack(_U32)

    def read_u64(self) -> int:
        return self._unpack(_U64)

    def read_native(self) -> int:
        """Hard pointer-sized read; raises ReadError on any failure."""
        return self._unpack(self._native_codec())

    def _native_codec(self) -> struct.Struct:
        bits = self._image.image_bits
        if bits == 32:
            return _U32
        if bits == 64:
            return _U64
        raise ReadError(f"Unsupported image bit-width for native read: {bits}")

    # =========================================================================
    # Strings
    # =========================================================================

    def read_ansi_string(self) -> bytes:
        """Read bytes up to a zero terminator or the end of mapped space.

        The terminator is consumed but not returned.
        """
        result = bytearray()
        while True:
            byte = self.read_exact(1)
            if byte is None or byte == b"\x00":
                break
            result += byte
        return bytes(result)

    def read_unicode_string(self) -> str:
        """Read a UTF-16LE string with a 2-byte code-unit count prefix.

        Units past the end of mapped space read as zero.

        Raises:
            ReadError: If the length prefix cannot be read
        """
        length = self.read_u16()
        raw = bytearray()
        for _ in range(length):
            raw += self.read(2).ljust(2, b"\x00")
        return raw.decode("utf-16-le", errors="surrogatepass")
