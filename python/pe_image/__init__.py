"""
PE/COFF image loading and virtual address space access.

Main entry point is Image: load a file (or a memory dump), translate
between file offsets, RVAs and VAs, read and write the mapped image
through VirtualStream cursors, and inspect or edit the overlay.
"""

from .address import AddressTranslator, MemoryLocation
from .errors import MappedImageError, PEFormatError, ReadError
from .format_detect import UnsupportedBinaryFormat, is_pe, is_pe_file
from .image import Image
from .layout import (
    layout_manifest,
    load_layout_manifest,
    pack_layout_manifest,
    save_layout_manifest,
    unpack_layout_manifest,
)
from .msg import MessageLog
from .overlay import Overlay
from .parsers import (
    DEFAULT_PARSE_STAGES,
    DirectoryParser,
    ParseResult,
    ParserRegistry,
    ParseStage,
)
from .sections import Section, SectionTable
from .source import DiskSource, ImageKind, MappedSource
from .stream import VirtualStream

__all__ = [
    "AddressTranslator",
    "DEFAULT_PARSE_STAGES",
    "DirectoryParser",
    "DiskSource",
    "Image",
    "ImageKind",
    "MappedImageError",
    "MappedSource",
    "MemoryLocation",
    "MessageLog",
    "Overlay",
    "PEFormatError",
    "ParseResult",
    "ParseStage",
    "ParserRegistry",
    "ReadError",
    "Section",
    "SectionTable",
    "UnsupportedBinaryFormat",
    "VirtualStream",
    "is_pe",
    "is_pe_file",
    "layout_manifest",
    "load_layout_manifest",
    "pack_layout_manifest",
    "save_layout_manifest",
    "unpack_layout_manifest",
]
