"""
Base relocation directory parser.

The table is a sequence of blocks, each covering one 4KB page: an
8-byte header (page RVA, block size) followed by 2-byte TypeOffset
entries. ABSOLUTE entries are padding and are skipped.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..types import (
    IMAGE_DIRECTORY_ENTRY_BASERELOC,
    BaseRelocationBlock,
    BaseRelocationEntry,
)
from .base import DirectoryParser, ParseResult

if TYPE_CHECKING:
    from ..image import Image

logger = logging.getLogger(__name__)


@dataclass
class Relocation:
    """One base relocation target."""

    rva: int  # Full RVA being relocated
    type: int  # IMAGE_REL_BASED_*


class RelocationParser(DirectoryParser):
    name = "Relocs"

    def parse(self, image: "Image") -> ParseResult:
        image.relocs.clear()

        directory = image.data_directories.get(IMAGE_DIRECTORY_ENTRY_BASERELOC)
        if directory is None or not directory.is_present:
            return ParseResult.OK

        stream = image.open_stream()
        current = directory.VirtualAddress
        end = directory.VirtualAddress + directory.Size

        while current < end:
            if not stream.seek_rva(current):
                return ParseResult.ERROR
            raw = stream.read_exact(BaseRelocationBlock.SIZE)
            if raw is None:
                return ParseResult.ERROR
            block = BaseRelocationBlock.from_bytes(raw)
            if block.BlockSize == 0:
                break
            # A block smaller than its own header would never advance
            if block.BlockSize < BaseRelocationBlock.SIZE:
                return ParseResult.SUSPICIOUS

            for _ in range(block.num_entries):
                value = stream.try_read_u16()
                if value is None:
                    return ParseResult.SUSPICIOUS
                entry = BaseRelocationEntry(value)
                if not entry.is_absolute:
                    image.relocs.append(
                        Relocation(block.PageRVA + entry.offset, entry.reloc_type)
                    )

            current += block.BlockSize

        logger.debug("Parsed %d base relocations", len(image.relocs))
        return ParseResult.OK
