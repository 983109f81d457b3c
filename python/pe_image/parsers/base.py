"""
Directory parser contract.

After the loader has populated headers, sections and section data, it
runs one parser per requested parse stage. A parser reads the image
through its own cursor stream, fills the matching result attribute on
the image and reports how it went.
"""

import enum
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..image import Image


class ParseStage(enum.Enum):
    """Post-load directory parsing passes, in dispatch order."""

    EXPORT = "export"
    IMPORT = "import"
    RELOCS = "relocs"
    TLS = "tls"
    RESOURCES = "resources"


class ParseResult(enum.Enum):
    """Outcome of one directory parser."""

    OK = "ok"
    SUSPICIOUS = "suspicious"
    ERROR = "error"


DEFAULT_PARSE_STAGES: tuple[ParseStage, ...] = tuple(ParseStage)


class DirectoryParser(ABC):
    """Single-method capability invoked against a fully loaded image."""

    name: str = "Parser"

    @abstractmethod
    def parse(self, image: "Image") -> ParseResult:
        """Parse one directory into the image.

        Args:
            image: Image with headers, sections and section data loaded

        Returns:
            ParseResult classifying the outcome
        """
        ...

    def __str__(self) -> str:
        return self.name
