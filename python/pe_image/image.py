"""
PE image aggregate.

Image owns everything decoded from a PE file: headers, the section table
with loaded section data, data directories, the COFF string table and
the results of the directory parsers. It exposes address translation,
cursor streams over the virtual address space and overlay editing.

Usage:
    with Image() as image:
        if image.load_from_file(Path("app.exe")):
            stream = image.open_stream()
            if stream.seek_va(image.image_base + image.entry_point_rva):
                first = stream.read(16)
"""

import logging
from dataclasses import fields
from pathlib import Path
from typing import BinaryIO, Iterable

from .address import AddressTranslator, MemoryLocation
from .coff import CoffStringTable
from .directories import DataDirectories
from .errors import MappedImageError, PEFormatError
from .format_detect import is_pe, is_pe_file
from .loader import ImageLoader
from .msg import MessageCallback, MessageLog
from .overlay import COPY_BUFFER_SIZE, Overlay, OverlayManager
from .parsers import (
    DEFAULT_PARSE_STAGES,
    ExportSymbol,
    ImportLibrary,
    ParserRegistry,
    ParseStage,
    Relocation,
)
from .sections import Section, SectionTable
from .source import DiskSource, ImageKind, ImageSource, MappedSource
from .stream import VirtualStream
from .types import (
    DATA_DIRECTORY_SIZE,
    FILE_HEADER_SIZE,
    HEADERS_SIZE_NOT_ALIGNED,
    OPTIONAL_HEADER_BY_MAGIC,
    PE_SIGNATURE_SIZE,
    SECTION_HEADER_SIZE,
    DosHeader,
    FileHeader,
    OptionalHeader,
    OptionalHeader32,
    OptionalHeader64,
    bits_from_magic,
    round_up_to_alignment,
)

logger = logging.getLogger(__name__)

REGION_REMOVE_FILL = 0xCC


class Image:
    """A PE/COFF image loaded from disk or from a mapped memory dump."""

    def __init__(
        self,
        msg_callback: MessageCallback | None = None,
        parsers: ParserRegistry | None = None,
    ):
        """
        Args:
            msg_callback: Called with every diagnostic as it is recorded
            parsers: Directory parsers to run after load; defaults to the
                built-in export, import and relocation parsers
        """
        self.msg = MessageLog(msg_callback)
        self.parsers = parsers if parsers is not None else ParserRegistry.default()

        self.kind = ImageKind.DISK
        self.source: ImageSource | None = None
        self.file_name: Path | None = None
        self.file_size = 0

        self.dos_header = DosHeader.blank()
        self.header_offset = 0
        self.dos_block = b""
        self.section_header_gap = b""
        self.file_header = FileHeader.blank()
        self.magic = 0
        self.optional_header: OptionalHeader | None = None

        self.coff_strings = CoffStringTable()
        self.data_directories = DataDirectories()
        self.sections = SectionTable()

        # Directory parser results
        self.exported_name = ""
        self.exports: list[ExportSymbol] = []
        self.imports: list[ImportLibrary] = []
        self.relocs: list[Relocation] = []

        self._overlay = OverlayManager(self)
        self._stream = VirtualStream(self)

    def __repr__(self) -> str:
        return (
            f"Image(file_name={str(self.file_name) if self.file_name else None!r}, "
            f"kind={self.kind.value}, bits={self.image_bits}, "
            f"sections={len(self.sections)})"
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def __enter__(self) -> "Image":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        """Release the backing source (the persistent stream of a mapped image)."""
        if self.source is not None:
            self.source.close()
            self.source = None

    def reset(self) -> None:
        """Drop everything a previous load populated.

        Unlike clear(), this also forgets the optional header and is
        allowed on mapped images. Used by the loader before each load.
        """
        self.dos_header = DosHeader.blank()
        self.file_header = FileHeader.blank()
        self.magic = 0
        self.optional_header = None
        self._clear_collections()
        self._stream.position_rva = 0

    def clear(self) -> None:
        """Empty the image while keeping its identity (bit-width, kind).

        Raises:
            MappedImageError: For memory-mapped images
        """
        if self.kind is ImageKind.MAPPED_MEMORY:
            raise MappedImageError("Can't clear mapped in-memory image.")
        self._clear_collections()

    def _clear_collections(self) -> None:
        self.header_offset = 0
        self.dos_block = b""
        self.section_header_gap = b""
        self.coff_strings.clear()
        self.data_directories.clear()
        self.sections.clear()
        self.exported_name = ""
        self.exports.clear()
        self.imports.clear()
        self.relocs.clear()

    # =========================================================================
    # Loading
    # =========================================================================

    @staticmethod
    def is_pe(target: BinaryIO | Path | str, offset: int = 0) -> bool:
        """Check the MZ and PE signatures of a stream or file."""
        if isinstance(target, (str, Path)):
            return is_pe_file(Path(target), offset)
        return is_pe(target, offset)

    def load_from_stream(
        self,
        stream: BinaryIO,
        parse_stages: Iterable[ParseStage] = DEFAULT_PARSE_STAGES,
        kind: ImageKind = ImageKind.DISK,
    ) -> bool:
        """Load from an already open stream.

        A DISK stream is only used for the duration of the call, so the
        overlay of such an image can't be edited afterwards. A
        MAPPED_MEMORY stream is retained and closed by close().
        """
        if kind is ImageKind.MAPPED_MEMORY:
            return self._load(MappedSource(stream), parse_stages)
        self.close()
        self.file_name = None
        return ImageLoader(self).load(stream, parse_stages, kind)

    def load_from_file(
        self,
        path: Path | str,
        parse_stages: Iterable[ParseStage] = DEFAULT_PARSE_STAGES,
    ) -> bool:
        """Load an image from its on-disk file layout."""
        path = Path(path)
        if not path.is_file():
            self.msg.write("File not found.")
            return False
        return self._load(DiskSource(path), parse_stages, path)

    def load_from_mapped_image(
        self,
        source: bytes | bytearray | memoryview | Path | str,
        parse_stages: Iterable[ParseStage] = DEFAULT_PARSE_STAGES,
    ) -> bool:
        """Load a module dumped from memory (sections at their RVAs).

        Args:
            source: Dump contents, or the path of a dump file which is
                mapped read-only until close()
            parse_stages: Directory parse stages to run
        """
        if isinstance(source, (bytes, bytearray, memoryview)):
            return self._load(MappedSource.from_buffer(source), parse_stages)

        path = Path(source)
        if not path.is_file():
            self.msg.write("File not found.")
            return False
        try:
            mapped = MappedSource.from_file(path)
        except (OSError, ValueError) as e:
            self.msg.write("Can't map %s: %s", path, e)
            return False
        return self._load(mapped, parse_stages, path)

    def _load(
        self,
        source: ImageSource,
        parse_stages: Iterable[ParseStage],
        file_name: Path | None = None,
    ) -> bool:
        self.close()
        self.source = source
        self.file_name = file_name
        with source.open() as f:
            ok = ImageLoader(self).load(f, parse_stages, source.kind)
        logger.debug("Load of %s %s", source, "succeeded" if ok else "failed")
        return ok

    # =========================================================================
    # Header properties
    # =========================================================================

    def _require_optional_header(self) -> OptionalHeader:
        if self.optional_header is None:
            raise PEFormatError("Image has no optional header")
        return self.optional_header

    @property
    def image_bits(self) -> int:
        """32, 64, or 0 if the optional header magic is unknown."""
        return bits_from_magic(self.magic)

    def set_image_bits(self, bits: int) -> None:
        """Switch the optional header layout to the given width.

        Fields shared by both layouts keep their values.

        Raises:
            ValueError: If bits is not 32 or 64 (the magic is reset first)
        """
        if bits == 32:
            header_type: type[OptionalHeader32] | type[OptionalHeader64] = (
                OptionalHeader32
            )
        elif bits == 64:
            header_type = OptionalHeader64
        else:
            self.magic = 0
            self.optional_header = None
            raise ValueError(f"Unsupported image bit-width: {bits}")

        header = header_type.blank()
        if self.optional_header is not None:
            for f in fields(header):
                if f.name != "Magic" and hasattr(self.optional_header, f.name):
                    setattr(header, f.name, getattr(self.optional_header, f.name))
        self.optional_header = header
        self.magic = header_type.MAGIC

    @property
    def is_32bit(self) -> bool:
        return self.magic == OptionalHeader32.MAGIC

    @property
    def is_64bit(self) -> bool:
        return self.magic == OptionalHeader64.MAGIC

    @property
    def is_dll(self) -> bool:
        return self.file_header.is_dll

    @property
    def image_base(self) -> int:
        return self.optional_header.ImageBase if self.optional_header else 0

    @image_base.setter
    def image_base(self, value: int) -> None:
        self._require_optional_header().ImageBase = value

    @property
    def size_of_image(self) -> int:
        return self.optional_header.SizeOfImage if self.optional_header else 0

    @size_of_image.setter
    def size_of_image(self, value: int) -> None:
        self._require_optional_header().SizeOfImage = value

    @property
    def entry_point_rva(self) -> int:
        return self.optional_header.AddressOfEntryPoint if self.optional_header else 0

    @entry_point_rva.setter
    def entry_point_rva(self, value: int) -> None:
        self._require_optional_header().AddressOfEntryPoint = value

    @property
    def file_alignment(self) -> int:
        return self.optional_header.FileAlignment if self.optional_header else 0

    @file_alignment.setter
    def file_alignment(self, value: int) -> None:
        self._require_optional_header().FileAlignment = value

    @property
    def section_alignment(self) -> int:
        return self.optional_header.SectionAlignment if self.optional_header else 0

    @section_alignment.setter
    def section_alignment(self, value: int) -> None:
        self._require_optional_header().SectionAlignment = value

    # =========================================================================
    # Address translation
    # =========================================================================

    @property
    def translator(self) -> AddressTranslator:
        """Translator over the current sections, image base and width."""
        return AddressTranslator(self.sections, self.image_base, self.image_bits)

    def rva_to_section(self, rva: int) -> Section | None:
        return self.translator.rva_to_section(rva)

    def rva_to_offset(self, rva: int) -> int | None:
        return self.translator.rva_to_offset(rva)

    def rva_to_va(self, rva: int) -> int:
        return self.translator.rva_to_va(rva)

    def rva_to_memory(self, rva: int) -> MemoryLocation | None:
        return self.translator.rva_to_memory(rva)

    def va_to_rva(self, va: int) -> int:
        return self.translator.va_to_rva(va)

    def va_to_section(self, va: int) -> Section | None:
        return self.translator.va_to_section(va)

    def va_to_offset(self, va: int) -> int | None:
        return self.translator.va_to_offset(va)

    def va_to_memory(self, va: int) -> MemoryLocation | None:
        return self.translator.va_to_memory(va)

    def offset_to_rva(self, offset: int) -> int | None:
        return self.translator.offset_to_rva(offset)

    def rva_exists(self, rva: int) -> bool:
        return self.rva_to_section(rva) is not None

    def va_exists(self, va: int) -> bool:
        return self.va_to_section(va) is not None

    # =========================================================================
    # Cursor streams
    # =========================================================================

    @property
    def stream(self) -> VirtualStream:
        """The image's default cursor."""
        return self._stream

    def open_stream(self, rva: int = 0) -> VirtualStream:
        """Create an independent cursor, positioned at rva."""
        return VirtualStream(self, rva)

    # =========================================================================
    # Layout calculations
    # =========================================================================

    def get_last_section_with_valid_raw_data(self) -> Section | None:
        for section in reversed(list(self.sections)):
            if section.has_valid_raw_data:
                return section
        return None

    def calc_headers_size_not_aligned(self) -> int:
        return HEADERS_SIZE_NOT_ALIGNED

    def calc_size_of_pure_optional_header(self) -> int:
        """Optional header size without data directories, 0 if width unknown."""
        header_type = OPTIONAL_HEADER_BY_MAGIC.get(self.magic)
        return header_type.SIZE if header_type is not None else 0

    def calc_section_headers_offset(self) -> int:
        return (
            self.header_offset
            + PE_SIGNATURE_SIZE
            + FILE_HEADER_SIZE
            + self.calc_size_of_pure_optional_header()
            + len(self.data_directories) * DATA_DIRECTORY_SIZE
        )

    def calc_section_headers_end_offset(self) -> int:
        return (
            self.calc_section_headers_offset()
            + len(self.sections) * SECTION_HEADER_SIZE
        )

    def calc_virtual_size_of_image(self) -> int:
        """End of the last section in memory, aligned to SectionAlignment."""
        last = self.sections.last
        if last is not None:
            return round_up_to_alignment(last.end_rva, self.section_alignment)
        return round_up_to_alignment(
            self.calc_headers_size_not_aligned(), self.section_alignment
        )

    def calc_raw_size_of_image(self) -> int:
        """End of the last file-backed section, 0 if there is none."""
        last = self.get_last_section_with_valid_raw_data()
        return last.end_raw_offset if last is not None else 0

    def fix_size_of_headers(self) -> None:
        self._require_optional_header().SizeOfHeaders = round_up_to_alignment(
            self.calc_headers_size_not_aligned(), self.file_alignment
        )

    def fix_size_of_image(self) -> None:
        self.size_of_image = self.calc_virtual_size_of_image()

    # =========================================================================
    # Overlay
    # =========================================================================

    def get_overlay(self) -> Overlay | None:
        return self._overlay.get()

    def remove_overlay(self) -> bool:
        return self._overlay.remove()

    def load_overlay_from_file(
        self, path: Path | str, offset: int = 0, size: int = 0
    ) -> bool:
        return self._overlay.load_from_file(Path(path), offset, size)

    def save_overlay_to_file(self, path: Path | str, append: bool = False) -> bool:
        return self._overlay.save_to_file(Path(path), append)

    # =========================================================================
    # Region helpers
    # =========================================================================

    def dump_region_to_stream(self, stream: BinaryIO, rva: int, size: int) -> int:
        """Write a region of one section's memory to stream.

        The region is clamped to the end of the section holding rva.

        Returns:
            Number of bytes written
        """
        location = self.rva_to_memory(rva)
        if location is None:
            return 0
        mem = memoryview(location.section.mem)
        end = min(location.offset + size, len(mem))
        written = 0
        for start in range(location.offset, end, COPY_BUFFER_SIZE):
            written += stream.write(mem[start : min(start + COPY_BUFFER_SIZE, end)])
        return written

    def dump_region_to_file(self, path: Path | str, rva: int, size: int) -> int:
        with open(path, "wb") as f:
            return self.dump_region_to_stream(f, rva, size)

    def region_remove(self, rva: int, size: int) -> int:
        """Mark a virtual region as free by filling it with 0xCC.

        Returns:
            Number of bytes filled
        """
        return self.sections.fill_memory(rva, size, REGION_REMOVE_FILL)

    # =========================================================================
    # Writing to external streams
    # =========================================================================

    def stream_write(self, stream: BinaryIO, data: bytes) -> bool:
        return stream.write(data) == len(data)

    def stream_write_rva(self, stream: BinaryIO, rva: int) -> bool:
        """Write rva as a pointer-sized value; False if the width is unknown."""
        size = self.translator.native_size
        if size == 0:
            return False
        mask = (1 << (size * 8)) - 1
        return self.stream_write(stream, (rva & mask).to_bytes(size, "little"))

    def stream_write_ansi_string(self, stream: BinaryIO, value: bytes) -> None:
        """Write value followed by a zero terminator."""
        stream.write(value + b"\x00")
