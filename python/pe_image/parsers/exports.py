"""
Export directory parser.

Reads IMAGE_EXPORT_DIRECTORY and its three arrays (function RVAs, name
RVAs, name ordinals). A function RVA that points back inside the export
directory is a forwarder string ("OTHERDLL.Func") rather than code.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..types import IMAGE_DIRECTORY_ENTRY_EXPORT, ExportDirectory
from .base import DirectoryParser, ParseResult

if TYPE_CHECKING:
    from ..image import Image

logger = logging.getLogger(__name__)


@dataclass
class ExportSymbol:
    """One exported function."""

    ordinal: int
    rva: int
    name: str | None = None
    forwarder: str | None = None

    @property
    def is_forwarder(self) -> bool:
        return self.forwarder is not None


def _decode(raw: bytes) -> str:
    return raw.decode("ascii", errors="replace")


class ExportParser(DirectoryParser):
    name = "Export"

    # Reasonable limits to prevent DoS from malformed files
    MAX_EXPORTS = 0x10000

    def parse(self, image: "Image") -> ParseResult:
        image.exports.clear()
        image.exported_name = ""

        directory = image.data_directories.get(IMAGE_DIRECTORY_ENTRY_EXPORT)
        if directory is None or not directory.is_present:
            return ParseResult.OK

        stream = image.open_stream()
        if not stream.seek_rva(directory.VirtualAddress):
            return ParseResult.ERROR
        raw = stream.read_exact(ExportDirectory.SIZE)
        if raw is None:
            return ParseResult.ERROR
        export_dir = ExportDirectory.from_bytes(raw)

        result = ParseResult.OK

        if export_dir.Name and stream.seek_rva(export_dir.Name):
            image.exported_name = _decode(stream.read_ansi_string())

        num_functions = export_dir.NumberOfFunctions
        num_names = export_dir.NumberOfNames
        if num_functions > self.MAX_EXPORTS or num_names > self.MAX_EXPORTS:
            return ParseResult.SUSPICIOUS

        # Function RVAs, indexed by ordinal - Base
        function_rvas: list[int] = []
        if num_functions and not stream.seek_rva(export_dir.AddressOfFunctions):
            return ParseResult.ERROR
        for _ in range(num_functions):
            rva = stream.try_read_u32()
            if rva is None:
                result = ParseResult.SUSPICIOUS
                break
            function_rvas.append(rva)

        symbols: dict[int, ExportSymbol] = {}
        for index, rva in enumerate(function_rvas):
            if rva == 0:
                continue  # Unused ordinal slot
            symbol = ExportSymbol(ordinal=export_dir.Base + index, rva=rva)
            if directory.contains_rva(rva) and stream.seek_rva(rva):
                symbol.forwarder = _decode(stream.read_ansi_string())
            symbols[index] = symbol

        for i in range(num_names):
            if not stream.seek_rva(export_dir.AddressOfNames + 4 * i):
                result = ParseResult.SUSPICIOUS
                break
            name_rva = stream.try_read_u32()
            if not stream.seek_rva(export_dir.AddressOfNameOrdinals + 2 * i):
                result = ParseResult.SUSPICIOUS
                break
            index = stream.try_read_u16()
            if name_rva is None or index is None:
                result = ParseResult.SUSPICIOUS
                break
            symbol = symbols.get(index)
            if symbol is None or not stream.seek_rva(name_rva):
                result = ParseResult.SUSPICIOUS
                continue
            symbol.name = _decode(stream.read_ansi_string())

        image.exports.extend(symbols[k] for k in sorted(symbols))
        logger.debug(
            "Parsed %d exports of %r", len(image.exports), image.exported_name
        )
        return result
