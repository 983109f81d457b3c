"""
Address translation between file offsets, RVAs and VAs.

Three coordinate spaces are in play:
- file offset: position in the raw on-disk layout
- RVA: offset from the image base once mapped
- VA: RVA + ImageBase

The translator is a pure value over a section table, an image base and
an image bit-width; it owns no state of its own.
"""

from dataclasses import dataclass
from typing import NamedTuple

from .sections import Section, SectionTable

ADDRESS_MASK = 0xFFFFFFFFFFFFFFFF

NATIVE_SIZE_BY_BITS = {32: 4, 64: 8}


class MemoryLocation(NamedTuple):
    """A position inside a loaded section buffer."""

    section: Section
    offset: int  # Index into section.mem


@dataclass(frozen=True)
class AddressTranslator:
    """Converts between RVA, VA and file offset for one image."""

    sections: SectionTable
    image_base: int
    bits: int

    @property
    def native_size(self) -> int:
        """Byte size of pointer-sized fields: 4, 8, or 0 for unknown width."""
        return NATIVE_SIZE_BY_BITS.get(self.bits, 0)

    def rva_to_section(self, rva: int) -> Section | None:
        """First section (in table order) whose virtual range holds rva."""
        return self.sections.rva_to_section(rva)

    def rva_to_offset(self, rva: int) -> int | None:
        """File offset for rva, or None if it has no raw backing."""
        return self.sections.rva_to_offset(rva)

    def offset_to_rva(self, offset: int) -> int | None:
        return self.sections.offset_to_rva(offset)

    def rva_to_va(self, rva: int) -> int:
        return (rva + self.image_base) & ADDRESS_MASK

    def va_to_rva(self, va: int) -> int:
        """VA - ImageBase.

        Wraps around for va < ImageBase; the result must be validated
        (e.g. with rva_to_section) before use.
        """
        return (va - self.image_base) & ADDRESS_MASK

    def rva_to_memory(self, rva: int) -> MemoryLocation | None:
        """Locate rva inside its section's loaded buffer.

        Returns:
            MemoryLocation, or None if rva is unmapped, the section data is
            not loaded, or rva falls past the end of the buffer
        """
        section = self.sections.rva_to_section(rva)
        if section is None or section.mem is None:
            return None
        offset = rva - section.rva
        if offset >= len(section.mem):
            return None
        return MemoryLocation(section, offset)

    def va_to_offset(self, va: int) -> int | None:
        return self.rva_to_offset(self.va_to_rva(va))

    def va_to_section(self, va: int) -> Section | None:
        return self.rva_to_section(self.va_to_rva(va))

    def va_to_memory(self, va: int) -> MemoryLocation | None:
        return self.rva_to_memory(self.va_to_rva(va))
