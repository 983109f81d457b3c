"""
Directory parsers run by the loader after section data is in place.

- base: ParseStage / ParseResult enums and the DirectoryParser contract
- registry: stage -> parser mapping
- exports, imports, relocs: built-in parsers
"""

from .base import (
    DEFAULT_PARSE_STAGES,
    DirectoryParser,
    ParseResult,
    ParseStage,
)
from .registry import ParserFactory, ParserRegistry
from .exports import ExportParser, ExportSymbol
from .imports import ImportFunction, ImportLibrary, ImportParser
from .relocs import Relocation, RelocationParser

__all__ = [
    "DEFAULT_PARSE_STAGES",
    "DirectoryParser",
    "ParseResult",
    "ParseStage",
    "ParserFactory",
    "ParserRegistry",
    "ExportParser",
    "ExportSymbol",
    "ImportFunction",
    "ImportLibrary",
    "ImportParser",
    "Relocation",
    "RelocationParser",
]
