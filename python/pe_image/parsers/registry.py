"""
Mapping from parse stage to directory parser.
"""

from typing import Callable

from .base import DirectoryParser, ParseStage

ParserFactory = Callable[[], DirectoryParser]


class ParserRegistry:
    """Stage -> parser factory table.

    A stage without a registered factory is skipped at dispatch time.
    Factories are called once per load, so parsers may keep state.
    """

    def __init__(self) -> None:
        self._factories: dict[ParseStage, ParserFactory] = {}

    @classmethod
    def default(cls) -> "ParserRegistry":
        """Registry with the built-in export, import and relocation parsers."""
        from .exports import ExportParser
        from .imports import ImportParser
        from .relocs import RelocationParser

        registry = cls()
        registry.register(ParseStage.EXPORT, ExportParser)
        registry.register(ParseStage.IMPORT, ImportParser)
        registry.register(ParseStage.RELOCS, RelocationParser)
        return registry

    def register(self, stage: ParseStage, factory: ParserFactory) -> None:
        self._factories[stage] = factory

    def unregister(self, stage: ParseStage) -> None:
        self._factories.pop(stage, None)

    def get(self, stage: ParseStage) -> ParserFactory | None:
        return self._factories.get(stage)

    def __contains__(self, stage: object) -> bool:
        return stage in self._factories
