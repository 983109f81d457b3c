"""
Multi-stage PE image loader.

The loader turns a seekable byte stream into headers, a section table
and section data on an Image, then hands the populated image to the
registered directory parsers. Stages run strictly in order:

 1. DOS header (MZ magic)
 2. header offset alignment
 3. DOS block between the DOS header and the PE header
 4. PE signature
 5. COFF file header
 6. COFF string table
 7. section headers
 8. long section name resolution
 9. gap between the section table and the first section's data
10. optional header and data directories
11. section data
12. directory parsers

A failure in stages 1-5 (or an unreadable optional header magic) fails
the load. Everything after that is recorded in the image's message log
and the load still succeeds.
"""

import logging
import struct
from typing import TYPE_CHECKING, BinaryIO, Iterable

from .parsers.base import ParseResult, ParseStage
from .sections import Section
from .source import ImageKind, stream_size
from .types import (
    DOS_HEADER_SIZE,
    FILE_HEADER_SIZE,
    HEADER_OFFSET_ALIGNMENT,
    OPTIONAL_HEADER_BY_MAGIC,
    PE_SIGNATURE,
    PE_SIGNATURE_SIZE,
    SECTION_HEADER_SIZE,
    DosHeader,
    FileHeader,
    SectionHeader,
)

if TYPE_CHECKING:
    from .image import Image

logger = logging.getLogger(__name__)


class ImageLoader:
    """Runs the load pipeline against one Image.

    Usage:
        loader = ImageLoader(image)
        ok = loader.load(stream, DEFAULT_PARSE_STAGES, ImageKind.DISK)
    """

    def __init__(self, image: "Image"):
        self._image = image

    def load(
        self,
        stream: BinaryIO,
        parse_stages: Iterable[ParseStage],
        kind: ImageKind,
    ) -> bool:
        """Load an image from stream.

        Args:
            stream: Seekable stream; raw file layout for DISK, virtual
                (RVA-addressed) layout for MAPPED_MEMORY
            parse_stages: Directory parse stages to run after loading
            kind: Layout of stream

        Returns:
            True once section data has been loaded, False on a fatal
            header error
        """
        image = self._image
        image.reset()
        image.kind = kind
        image.file_size = stream_size(stream)

        # Stage 1: DOS header
        stream.seek(0)
        try:
            image.dos_header = DosHeader.from_bytes(stream.read(DOS_HEADER_SIZE))
        except ValueError as e:
            logger.debug("DOS header rejected: %s", e)
            return False
        lfanew = image.dos_header.e_lfanew

        # Stage 2: header offset
        if lfanew % HEADER_OFFSET_ALIGNMENT:
            image.msg.write("PE header is not 8-byte aligned.")
            return False
        if lfanew > image.file_size:
            logger.debug("e_lfanew 0x%x is beyond end of file", lfanew)
            return False
        image.header_offset = lfanew

        # Stage 3: DOS block
        image.dos_block = self._read_dos_block(stream, lfanew)

        # Stage 4: signature
        stream.seek(lfanew)
        if stream.read(PE_SIGNATURE_SIZE) != PE_SIGNATURE:
            logger.debug("No PE signature at 0x%x", lfanew)
            return False

        # Stage 5: file header
        raw = stream.read(FILE_HEADER_SIZE)
        if len(raw) < FILE_HEADER_SIZE:
            logger.debug("File header truncated at 0x%x", lfanew + PE_SIGNATURE_SIZE)
            return False
        image.file_header = FileHeader.from_bytes(raw)

        opt_hdr_ofs = lfanew + PE_SIGNATURE_SIZE + FILE_HEADER_SIZE
        sec_hdr_ofs = opt_hdr_ofs + image.file_header.SizeOfOptionalHeader
        sec_hdr_end_ofs = (
            sec_hdr_ofs + image.file_header.NumberOfSections * SECTION_HEADER_SIZE
        )

        # Stage 6: COFF strings
        image.coff_strings.load_from_stream(stream, image.file_header, image.msg)

        # Stage 7: section headers
        self._load_section_headers(stream, sec_hdr_ofs)

        # A mapped image has no file bytes past its sections
        if kind is ImageKind.MAPPED_MEMORY:
            image.file_size = image.calc_raw_size_of_image()

        # Stage 8: long names
        self._resolve_section_names()

        # Stage 9: section header gap
        image.section_header_gap = self._read_section_header_gap(
            stream, sec_hdr_end_ofs
        )

        # Stage 10: optional header and data directories
        if not self._load_optional_header(stream, opt_hdr_ofs, sec_hdr_ofs):
            return False

        # Stage 11: section data
        self._load_section_data(stream, kind)

        # Stage 12: directory parsers
        self._run_parsers(parse_stages)

        logger.debug(
            "Loaded %d-bit image: %d sections, %d data directories",
            image.image_bits,
            len(image.sections),
            len(image.data_directories),
        )
        return True

    # =========================================================================
    # Stages
    # =========================================================================

    def _read_dos_block(self, stream: BinaryIO, lfanew: int) -> bytes:
        size = lfanew - DOS_HEADER_SIZE
        if size <= 0:
            return b""
        stream.seek(DOS_HEADER_SIZE)
        data = stream.read(size)
        if len(data) != size:
            return b""
        return data

    def _load_section_headers(self, stream: BinaryIO, offset: int) -> int:
        image = self._image
        declared = image.file_header.NumberOfSections

        stream.seek(offset)
        for index in range(declared):
            raw = stream.read(SECTION_HEADER_SIZE)
            if len(raw) < SECTION_HEADER_SIZE:
                break
            section = Section.from_header(SectionHeader.from_bytes(raw))
            if not section.header.is_name_safe:
                section.name = f"sec_{index:04x}"
                image.msg.write(
                    "Section has not safe name. Overriding to %s", section.name
                )
            image.sections.append(section)

        if len(image.sections) != declared:
            image.msg.write(
                "Found %d of %d section headers.", len(image.sections), declared
            )

        for first, second in image.sections.overlapping_pairs():
            image.msg.write(
                "Sections %s and %s have overlapping virtual ranges.",
                image.sections[first].name,
                image.sections[second].name,
            )

        return len(image.sections)

    def _resolve_section_names(self) -> None:
        image = self._image
        for section in image.sections:
            if not section.name.startswith("/"):
                continue
            digits = section.name[1:]
            if not digits.isdigit():
                continue
            long_name = image.coff_strings.get_string(int(digits))
            if long_name:
                logger.debug("Resolved section %s to %r", section.name, long_name)
                section.name = long_name

    def _read_section_header_gap(self, stream: BinaryIO, sec_hdr_end_ofs: int) -> bytes:
        first = self._image.sections.first
        if first is None or first.raw_offset < sec_hdr_end_ofs:
            return b""
        size = min(
            first.raw_offset - sec_hdr_end_ofs,
            max(stream_size(stream) - sec_hdr_end_ofs, 0),
        )
        if size == 0:
            return b""
        stream.seek(sec_hdr_end_ofs)
        return stream.read(size)

    def _load_optional_header(
        self, stream: BinaryIO, opt_hdr_ofs: int, sec_hdr_ofs: int
    ) -> bool:
        image = self._image

        stream.seek(opt_hdr_ofs)
        raw_magic = stream.read(2)
        if len(raw_magic) < 2:
            logger.debug("Optional header magic unreadable at 0x%x", opt_hdr_ofs)
            return False
        (image.magic,) = struct.unpack("<H", raw_magic)

        header_type = OPTIONAL_HEADER_BY_MAGIC.get(image.magic)
        if header_type is None:
            image.msg.write("Unknown optional header magic 0x%x.", image.magic)
            return True

        stream.seek(opt_hdr_ofs)
        raw = stream.read(header_type.SIZE)
        if len(raw) < header_type.SIZE:
            image.msg.write(
                "Optional header truncated: %d of %d bytes.",
                len(raw),
                header_type.SIZE,
            )
        image.optional_header = header_type.from_bytes(
            raw.ljust(header_type.SIZE, b"\x00")
        )

        image.data_directories.load_from_stream(
            stream,
            image.msg,
            opt_hdr_ofs + len(raw),
            sec_hdr_ofs,
            image.optional_header.NumberOfRvaAndSizes,
        )
        return True

    def _load_section_data(self, stream: BinaryIO, kind: ImageKind) -> int:
        image = self._image
        loaded = 0
        for section in image.sections:
            if kind is ImageKind.DISK:
                ok = section.load_data(stream)
            else:
                ok = section.load_data_mapped(stream)
            if ok:
                loaded += 1
            else:
                image.msg.write("Failed to load data of section %s.", section.name)
        logger.debug("Loaded data of %d of %d sections", loaded, len(image.sections))
        return loaded

    def _run_parsers(self, parse_stages: Iterable[ParseStage]) -> None:
        image = self._image
        for stage in parse_stages:
            factory = image.parsers.get(stage)
            if factory is None:
                continue
            parser = factory()
            try:
                result = parser.parse(image)
            except Exception as e:
                logger.debug("[%s] parser raised %s: %s", parser, type(e).__name__, e)
                result = ParseResult.ERROR

            if result is ParseResult.ERROR:
                image.msg.write("[%s] Parser returned error.", parser)
            elif result is ParseResult.SUSPICIOUS:
                image.msg.write("[%s] Parser returned status SUSPICIOUS.", parser)
