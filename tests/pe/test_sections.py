"""Tests for Section, SectionTable and AddressTranslator."""

import io

import pytest

from pe_image.address import AddressTranslator
from pe_image.sections import Section, SectionTable
from pe_image.types import SectionHeader, section_name_to_bytes


def make_section(
    name: str, rva: int, vsize: int, raw_offset: int, raw_size: int
) -> Section:
    header = SectionHeader(
        section_name_to_bytes(name), vsize, rva, raw_size, raw_offset, 0, 0, 0, 0, 0
    )
    return Section.from_header(header)


@pytest.fixture
def table() -> SectionTable:
    """.text with raw data, .data with a BSS tail, .bss without raw data."""
    sections = SectionTable()
    sections.append(make_section(".text", 0x1000, 0x200, 0x400, 0x200))
    sections.append(make_section(".data", 0x2000, 0x300, 0x600, 0x100))
    sections.append(make_section(".bss", 0x3000, 0x100, 0, 0))
    return sections


class TestSection:
    """Tests for individual sections."""

    def test_properties(self):
        """Test header-derived properties."""
        section = make_section(".text", 0x1000, 0x180, 0x400, 0x200)
        assert section.name == ".text"
        assert section.raw_name == b".text\x00\x00\x00"
        assert section.end_rva == 0x1180
        assert section.end_raw_offset == 0x600
        assert section.has_valid_raw_data
        assert not section.is_loaded
        assert section.allocated_size == 0

    def test_valid_raw_data_needs_offset_and_size(self):
        """Test that both raw offset and raw size must be nonzero."""
        assert not make_section(".a", 0x1000, 0x10, 0, 0x200).has_valid_raw_data
        assert not make_section(".b", 0x1000, 0x10, 0x400, 0).has_valid_raw_data

    def test_load_data_zero_fills_virtual_tail(self):
        """Test that the buffer covers the virtual size past the raw data."""
        section = make_section(".data", 0x2000, 0x300, 0x10, 0x100)
        stream = io.BytesIO(bytes(0x10) + b"\x11" * 0x100)
        assert section.load_data(stream)
        assert section.allocated_size == 0x300
        assert section.mem[:0x100] == b"\x11" * 0x100
        assert section.mem[0x100:] == bytes(0x200)

    def test_load_data_raw_larger_than_virtual(self):
        """Test that the buffer keeps all raw bytes when raw size is larger."""
        section = make_section(".text", 0x1000, 0x80, 0, 0)
        section.header.PointerToRawData = 0x10
        section.header.SizeOfRawData = 0x100
        assert section.load_data(io.BytesIO(bytes(0x110)))
        assert section.allocated_size == 0x100

    def test_load_data_short_read(self):
        """Test that truncated raw data leaves the section unloaded."""
        section = make_section(".text", 0x1000, 0x200, 0x400, 0x200)
        assert not section.load_data(io.BytesIO(bytes(0x500)))
        assert section.mem is None

    def test_load_data_mapped(self):
        """Test loading from a virtual layout by RVA."""
        section = make_section(".text", 0x10, 0x8, 0x400, 0x200)
        stream = io.BytesIO(bytes(0x10) + b"ABCDEFGH")
        assert section.load_data_mapped(stream)
        assert bytes(section.mem) == b"ABCDEFGH"

    def test_load_refuses_huge_sections(self):
        """Test the allocation guard."""
        section = make_section(".huge", 0x1000, Section.MAX_ALLOCATION + 1, 0, 0)
        assert not section.load_data(io.BytesIO(b""))
        assert not section.load_data_mapped(io.BytesIO(b""))


class TestSectionTable:
    """Tests for section lookup."""

    def test_find(self, table: SectionTable):
        """Test lookup by name."""
        assert table.find(".data") is table[1]
        assert table.find(".rsrc") is None
        assert table.first is table[0]
        assert table.last is table[2]

    def test_rva_to_section(self, table: SectionTable):
        """Test RVA ranges, including boundaries."""
        assert table.rva_to_section(0x1000).name == ".text"
        assert table.rva_to_section(0x11FF).name == ".text"
        assert table.rva_to_section(0x1200) is None
        assert table.rva_to_section(0x22FF).name == ".data"
        assert table.rva_to_section(0x0) is None

    def test_rva_to_offset(self, table: SectionTable):
        """Test RVA to file offset, including the virtual-only tail."""
        assert table.rva_to_offset(0x1010) == 0x410
        assert table.rva_to_offset(0x20FF) == 0x6FF
        # Beyond raw size inside .data
        assert table.rva_to_offset(0x2100) is None
        # .bss has no raw data at all
        assert table.rva_to_offset(0x3000) is None
        assert table.rva_to_offset(0x5000) is None

    def test_offset_to_rva(self, table: SectionTable):
        """Test file offset to RVA."""
        assert table.offset_to_rva(0x410) == 0x1010
        assert table.offset_to_rva(0x650) == 0x2050
        assert table.offset_to_rva(0x100) is None

    def test_first_match_on_overlap(self):
        """Test that overlapping ranges resolve to the first section."""
        sections = SectionTable()
        sections.append(make_section(".a", 0x1000, 0x200, 0x400, 0x200))
        sections.append(make_section(".b", 0x1100, 0x200, 0x600, 0x200))
        assert sections.rva_to_section(0x1150).name == ".a"
        assert sections.rva_to_section(0x1250).name == ".b"
        assert sections.overlapping_pairs() == [(0, 1)]

    def test_no_overlap_for_adjacent(self, table: SectionTable):
        """Test that adjacent and empty sections are not reported."""
        table.append(make_section(".empty", 0x1000, 0, 0, 0))
        assert table.overlapping_pairs() == []

    def test_fill_memory_crosses_sections(self):
        """Test filling a range that spans two contiguous sections."""
        sections = SectionTable()
        first = make_section(".a", 0x1000, 0x10, 0, 0)
        second = make_section(".b", 0x1010, 0x10, 0, 0)
        first.mem = bytearray(0x10)
        second.mem = bytearray(0x10)
        sections.append(first)
        sections.append(second)

        assert sections.fill_memory(0x1008, 0x10, 0xCC) == 0x10
        assert first.mem == bytes(8) + b"\xcc" * 8
        assert second.mem == b"\xcc" * 8 + bytes(8)

    def test_fill_memory_stops_at_unloaded(self, table: SectionTable):
        """Test that filling stops at an unloaded section."""
        assert table.fill_memory(0x1000, 0x10, 0xCC) == 0


class TestAddressTranslator:
    """Tests for RVA/VA/offset translation."""

    def test_round_trip(self, table: SectionTable):
        """Test va_to_rva(rva_to_va(r)) == r and the offset formula."""
        translator = AddressTranslator(table, 0x400000, 32)
        for section in table:
            for rva in (section.rva, section.rva + 1, section.end_rva - 1):
                assert translator.va_to_rva(translator.rva_to_va(rva)) == rva
                if rva - section.rva < section.raw_size:
                    assert translator.rva_to_offset(rva) == (
                        section.raw_offset + (rva - section.rva)
                    )

    def test_va_conversion(self, table: SectionTable):
        """Test VA helpers."""
        translator = AddressTranslator(table, 0x140000000, 64)
        assert translator.rva_to_va(0x1000) == 0x140001000
        assert translator.va_to_rva(0x140002000) == 0x2000
        assert translator.va_to_offset(0x140001010) == 0x410
        assert translator.va_to_section(0x140003000).name == ".bss"

    def test_va_below_image_base_wraps(self, table: SectionTable):
        """Test that a VA below the image base gives an unmapped RVA."""
        translator = AddressTranslator(table, 0x400000, 32)
        rva = translator.va_to_rva(0x1000)
        assert rva == (0x1000 - 0x400000) & 0xFFFFFFFFFFFFFFFF
        assert translator.rva_to_section(rva) is None
        assert translator.va_to_section(0x1000) is None

    def test_rva_to_va_masks_to_64_bits(self, table: SectionTable):
        """Test that VA arithmetic stays within 64 bits."""
        translator = AddressTranslator(table, 0xFFFFFFFFFFFFF000, 64)
        assert translator.rva_to_va(0x2000) == 0x1000

    def test_native_size(self, table: SectionTable):
        """Test pointer size per bit-width."""
        assert AddressTranslator(table, 0, 32).native_size == 4
        assert AddressTranslator(table, 0, 64).native_size == 8
        assert AddressTranslator(table, 0, 0).native_size == 0

    def test_rva_to_memory(self, table: SectionTable):
        """Test buffer lookup for loaded and unloaded sections."""
        translator = AddressTranslator(table, 0x400000, 32)
        assert translator.rva_to_memory(0x1000) is None

        table[0].mem = bytearray(0x200)
        location = translator.rva_to_memory(0x1010)
        assert location.section is table[0]
        assert location.offset == 0x10
        assert translator.va_to_memory(0x401010) == location
        assert translator.rva_to_memory(0x5000) is None
