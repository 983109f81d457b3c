"""
Diagnostic message log.

The loader and the directory parsers never abort on recoverable
anomalies; they write a message here instead and carry on. Messages are
kept in order, forwarded to the module logger and, optionally, handed to
a user callback as they arrive.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterator

logger = logging.getLogger(__name__)

MessageCallback = Callable[[str], None]


@dataclass
class MessageLog:
    """Ordered collection of non-fatal diagnostics."""

    callback: MessageCallback | None = None
    messages: list[str] = field(default_factory=list)

    def write(self, fmt: str, *args: object) -> str:
        """Format and record a diagnostic.

        Args:
            fmt: %-style format string
            args: Format arguments

        Returns:
            The formatted message
        """
        message = fmt % args if args else fmt
        self.messages.append(message)
        logger.warning(message)
        if self.callback is not None:
            self.callback(message)
        return message

    def clear(self) -> None:
        self.messages.clear()

    def __len__(self) -> int:
        return len(self.messages)

    def __iter__(self) -> Iterator[str]:
        return iter(self.messages)

    def __contains__(self, message: object) -> bool:
        return message in self.messages

    def __str__(self) -> str:
        """Human-readable summary."""
        if not self.messages:
            return "No diagnostics"
        lines = [f"Diagnostics ({len(self.messages)}):"]
        for m in self.messages:
            lines.append(f"  - {m}")
        return "\n".join(lines)
