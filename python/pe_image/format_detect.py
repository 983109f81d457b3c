"""
Quick PE format detection.

These checks only look at the two signatures ("MZ" and "PE\\0\\0") and
do not validate anything else, so a True result does not guarantee that
a full load will succeed.
"""

from pathlib import Path
from typing import BinaryIO

from .source import stream_size
from .types import DOS_HEADER_SIZE, PE_SIGNATURE, PE_SIGNATURE_SIZE, DosHeader


class UnsupportedBinaryFormat(ValueError):
    """Raised when a binary is not PE/COFF format."""

    pass


def check_pe(stream: BinaryIO, offset: int = 0) -> int:
    """Validate the DOS and PE signatures of an image embedded in stream.

    Args:
        stream: Seekable binary stream
        offset: Position of the DOS header within stream

    Returns:
        Absolute stream offset of the PE signature

    Raises:
        UnsupportedBinaryFormat: If either signature is missing
    """
    size = stream_size(stream)
    stream.seek(offset)
    try:
        dos = DosHeader.from_bytes(stream.read(DOS_HEADER_SIZE))
    except ValueError as e:
        raise UnsupportedBinaryFormat(str(e)) from e

    pe_offset = offset + dos.e_lfanew
    if pe_offset >= size:
        raise UnsupportedBinaryFormat(
            f"PE header offset {pe_offset:#x} is beyond end of stream ({size:#x})"
        )
    stream.seek(pe_offset)
    if stream.read(PE_SIGNATURE_SIZE) != PE_SIGNATURE:
        raise UnsupportedBinaryFormat(f"No PE signature at {pe_offset:#x}")
    return pe_offset


def is_pe(stream: BinaryIO, offset: int = 0) -> bool:
    """Check if stream holds a PE image starting at offset.

    The stream position is restored afterwards.
    """
    position = stream.tell()
    try:
        check_pe(stream, offset)
        return True
    except UnsupportedBinaryFormat:
        return False
    finally:
        stream.seek(position)


def is_pe_file(path: Path, offset: int = 0) -> bool:
    """Check if a file is PE/COFF format.

    Args:
        path: Path to binary file
        offset: Position of the DOS header within the file

    Returns:
        True if PE/COFF, False otherwise (including missing files)
    """
    try:
        with open(path, "rb") as f:
            return is_pe(f, offset)
    except FileNotFoundError:
        return False
