"""
Import directory parser.

Walks the IMAGE_IMPORT_DESCRIPTOR array up to the all-zero terminator.
For each library the lookup table (or the IAT when there is no separate
lookup table) is read with pointer-sized thunks: the top bit marks an
import by ordinal, otherwise the value is the RVA of a hint/name entry.
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ..types import IMAGE_DIRECTORY_ENTRY_IMPORT, ImportDescriptor
from .base import DirectoryParser, ParseResult

if TYPE_CHECKING:
    from ..image import Image

logger = logging.getLogger(__name__)


@dataclass
class ImportFunction:
    """One imported function, by name or by ordinal."""

    iat_rva: int  # RVA of the IAT slot patched by the loader
    name: str | None = None
    hint: int = 0
    ordinal: int | None = None


@dataclass
class ImportLibrary:
    """All functions imported from one DLL."""

    name: str
    iat_rva: int
    functions: list[ImportFunction] = field(default_factory=list)


class ImportParser(DirectoryParser):
    name = "Import"

    # Reasonable limits to prevent DoS from malformed files
    MAX_IMPORT_LIBRARIES = 4096
    MAX_THUNKS = 0x10000

    def parse(self, image: "Image") -> ParseResult:
        image.imports.clear()

        directory = image.data_directories.get(IMAGE_DIRECTORY_ENTRY_IMPORT)
        if directory is None or not directory.is_present:
            return ParseResult.OK

        native_size = image.translator.native_size
        if native_size == 0:
            return ParseResult.ERROR
        ordinal_flag = 1 << (native_size * 8 - 1)

        stream = image.open_stream()
        result = ParseResult.OK

        for index in range(self.MAX_IMPORT_LIBRARIES):
            rva = directory.VirtualAddress + index * ImportDescriptor.SIZE
            if not stream.seek_rva(rva):
                return ParseResult.ERROR
            raw = stream.read_exact(ImportDescriptor.SIZE)
            if raw is None:
                return ParseResult.ERROR
            descriptor = ImportDescriptor.from_bytes(raw)
            if descriptor.is_terminator:
                break

            if not stream.seek_rva(descriptor.Name):
                result = ParseResult.SUSPICIOUS
                continue
            library = ImportLibrary(
                name=stream.read_ansi_string().decode("ascii", errors="replace"),
                iat_rva=descriptor.FirstThunk,
            )
            if not self._parse_thunks(image, descriptor, library, ordinal_flag):
                result = ParseResult.SUSPICIOUS
            image.imports.append(library)
        else:
            result = ParseResult.SUSPICIOUS

        logger.debug("Parsed imports from %d libraries", len(image.imports))
        return result

    def _parse_thunks(
        self,
        image: "Image",
        descriptor: ImportDescriptor,
        library: ImportLibrary,
        ordinal_flag: int,
    ) -> bool:
        """Read one library's thunk array; False if it ended abnormally."""
        lookup_rva = descriptor.OriginalFirstThunk or descriptor.FirstThunk
        native_size = image.translator.native_size

        thunks = image.open_stream()
        names = image.open_stream()
        if not thunks.seek_rva(lookup_rva):
            return False

        for index in range(self.MAX_THUNKS):
            value = thunks.try_read_native()
            if value is None:
                return False
            if value == 0:
                return True

            function = ImportFunction(
                iat_rva=descriptor.FirstThunk + index * native_size
            )
            if value & ordinal_flag:
                function.ordinal = value & 0xFFFF
            elif names.seek_rva(value & 0x7FFFFFFF):
                hint = names.try_read_u16()
                if hint is None:
                    return False
                function.hint = hint
                function.name = names.read_ansi_string().decode(
                    "ascii", errors="replace"
                )
            else:
                return False
            library.functions.append(function)

        return False
