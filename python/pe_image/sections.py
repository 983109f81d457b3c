"""
Sections and the section table.

A Section pairs its decoded header with a display name (which may be a
resolved long name) and, once loaded, an owned byte buffer holding the
section's virtual image. All memory access goes through index arithmetic
on that buffer: RVA - section RVA gives the buffer offset.
"""

from dataclasses import dataclass
from typing import BinaryIO, Iterator

from .types import SectionHeader


@dataclass
class Section:
    """One section of the image, combining header with loaded data."""

    header: SectionHeader
    name: str
    mem: bytearray | None = None

    # Refuse to allocate buffers for sections claiming more than this
    MAX_ALLOCATION = 0x10000000

    @classmethod
    def from_header(cls, header: SectionHeader) -> "Section":
        return cls(header=header, name=header.name_str)

    @property
    def raw_name(self) -> bytes:
        """The 8-byte name field exactly as stored in the section table."""
        return self.header.Name

    @property
    def rva(self) -> int:
        return self.header.VirtualAddress

    @property
    def virtual_size(self) -> int:
        return self.header.VirtualSize

    @property
    def raw_offset(self) -> int:
        return self.header.PointerToRawData

    @property
    def raw_size(self) -> int:
        return self.header.SizeOfRawData

    @property
    def end_rva(self) -> int:
        """RVA just past the end of the section in memory."""
        return self.rva + self.virtual_size

    @property
    def end_raw_offset(self) -> int:
        """File offset just past the end of the section data."""
        return self.raw_offset + self.raw_size

    @property
    def has_valid_raw_data(self) -> bool:
        """A section is file-backed only if both raw offset and size are set."""
        return self.raw_offset != 0 and self.raw_size != 0

    @property
    def is_loaded(self) -> bool:
        return self.mem is not None

    @property
    def allocated_size(self) -> int:
        """Size of the loaded buffer, 0 when not loaded."""
        return len(self.mem) if self.mem is not None else 0

    def contains_rva(self, rva: int) -> bool:
        """Check if an RVA falls within this section's virtual range."""
        return self.rva <= rva < self.end_rva

    def contains_file_offset(self, offset: int) -> bool:
        """Check if a file offset falls within this section's raw data."""
        if self.raw_size == 0:
            return False
        return self.raw_offset <= offset < self.end_raw_offset

    def load_data(self, stream: BinaryIO) -> bool:
        """Load section contents from the raw file layout.

        The buffer covers the larger of the virtual and raw sizes; the
        virtual tail beyond the raw data is zero-filled.

        Returns:
            False if the raw data could not be read in full
        """
        size = max(self.virtual_size, self.raw_size)
        if size > self.MAX_ALLOCATION:
            return False
        mem = bytearray(size)
        if self.raw_size != 0:
            stream.seek(self.raw_offset)
            data = stream.read(self.raw_size)
            if len(data) != self.raw_size:
                return False
            mem[: len(data)] = data
        self.mem = mem
        return True

    def load_data_mapped(self, stream: BinaryIO) -> bool:
        """Load section contents from a mapped layout, addressed by RVA."""
        if self.virtual_size > self.MAX_ALLOCATION:
            return False
        stream.seek(self.rva)
        data = stream.read(self.virtual_size)
        if len(data) != self.virtual_size:
            return False
        self.mem = bytearray(data)
        return True


class SectionTable:
    """Ordered sections with lookup by RVA and file offset.

    Lookups return the first match in table order. Overlapping virtual
    ranges are not rejected; see overlapping_pairs().
    """

    def __init__(self) -> None:
        self._sections: list[Section] = []

    def __len__(self) -> int:
        return len(self._sections)

    def __iter__(self) -> Iterator[Section]:
        return iter(self._sections)

    def __getitem__(self, index: int) -> Section:
        return self._sections[index]

    def append(self, section: Section) -> None:
        self._sections.append(section)

    def clear(self) -> None:
        self._sections.clear()

    @property
    def first(self) -> Section | None:
        return self._sections[0] if self._sections else None

    @property
    def last(self) -> Section | None:
        return self._sections[-1] if self._sections else None

    def find(self, name: str) -> Section | None:
        """Find a section by display name."""
        for section in self._sections:
            if section.name == name:
                return section
        return None

    def rva_to_section(self, rva: int) -> Section | None:
        """First section whose virtual range contains rva."""
        for section in self._sections:
            if section.contains_rva(rva):
                return section
        return None

    def rva_to_offset(self, rva: int) -> int | None:
        """Convert RVA to file offset.

        Returns:
            File offset, or None if rva is unmapped or lies in the part of
            its section that has no raw data (BSS tail)
        """
        section = self.rva_to_section(rva)
        if section is None:
            return None
        delta = rva - section.rva
        if delta >= section.raw_size:
            return None
        return section.raw_offset + delta

    def offset_to_rva(self, offset: int) -> int | None:
        """Convert file offset to RVA via the first section holding it."""
        for section in self._sections:
            if section.contains_file_offset(offset):
                return section.rva + (offset - section.raw_offset)
        return None

    def fill_memory(self, rva: int, size: int, value: int) -> int:
        """Fill a virtual range with a byte value, crossing sections.

        Stops at the first unmapped or unloaded address.

        Returns:
            Number of bytes filled
        """
        filled = 0
        while filled < size:
            section = self.rva_to_section(rva + filled)
            if section is None or section.mem is None:
                break
            start = rva + filled - section.rva
            count = min(size - filled, section.allocated_size - start)
            if count <= 0:
                break
            section.mem[start : start + count] = bytes([value]) * count
            filled += count
        return filled

    def overlapping_pairs(self) -> list[tuple[int, int]]:
        """Index pairs of sections whose virtual ranges overlap."""
        pairs = []
        for i, first in enumerate(self._sections):
            if first.virtual_size == 0:
                continue
            for j in range(i + 1, len(self._sections)):
                second = self._sections[j]
                if second.virtual_size == 0:
                    continue
                if first.rva < second.end_rva and second.rva < first.end_rva:
                    pairs.append((i, j))
        return pairs
