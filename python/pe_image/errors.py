"""
Exception types raised by pe_image.

Malformed struct input raises plain ValueError from the types layer.
The classes below cover the conditions callers are expected to catch.
"""


class PEFormatError(ValueError):
    """Base class for pe_image errors."""

    pass


class ReadError(PEFormatError):
    """Raised by the hard cursor reads when fewer bytes than requested exist."""

    pass


class MappedImageError(PEFormatError):
    """Raised when a structural edit is attempted on a memory-mapped image."""

    pass
