"""
Overlay management.

The overlay is whatever the file holds past the raw data of the last
file-backed section (installers, signatures, appended archives). It is
not mapped by the Windows loader. A memory-mapped image has no file
layout beyond its sections, so it never has an overlay and refuses every
operation that would change the file.
"""

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO

from .source import DiskSource, ImageKind, stream_size

if TYPE_CHECKING:
    from .image import Image

logger = logging.getLogger(__name__)

COPY_BUFFER_SIZE = 8192


@dataclass(frozen=True)
class Overlay:
    """Location of trailing file data."""

    offset: int
    size: int


def copy_range(src: BinaryIO, dst: BinaryIO, offset: int, size: int) -> int:
    """Copy size bytes starting at src offset to dst's current position.

    Returns:
        Number of bytes copied (less than size if src ends early)
    """
    src.seek(offset)
    copied = 0
    while copied < size:
        chunk = src.read(min(COPY_BUFFER_SIZE, size - copied))
        if not chunk:
            break
        dst.write(chunk)
        copied += len(chunk)
    return copied


class OverlayManager:
    """Overlay queries and file edits for one image."""

    def __init__(self, image: "Image"):
        self._image = image

    def get(self) -> Overlay | None:
        """Compute the overlay from the section table and tracked file size."""
        last = self._image.get_last_section_with_valid_raw_data()
        if last is None:
            return None
        offset = last.end_raw_offset
        if offset >= self._image.file_size:
            return None
        return Overlay(offset, self._image.file_size - offset)

    def _disk_source(self, action: str) -> DiskSource | None:
        image = self._image
        if image.kind is ImageKind.MAPPED_MEMORY:
            image.msg.write("Can't %s mapped image.", action)
            return None
        if not isinstance(image.source, DiskSource):
            image.msg.write("Can't %s image without a backing file.", action)
            return None
        return image.source

    def remove(self) -> bool:
        """Truncate the backing file so it ends at the overlay offset.

        Returns:
            True on success or when there is no overlay
        """
        source = self._disk_source("remove overlay from")
        if source is None:
            return False

        overlay = self.get()
        if overlay is None or overlay.size == 0:
            return True

        try:
            with source.open("r+b") as f:
                new_size = stream_size(f) - overlay.size
                f.truncate(new_size)
        except OSError as e:
            self._image.msg.write("Failed to remove overlay: %s", e)
            return False

        self._image.file_size = new_size
        logger.debug("Removed %d overlay bytes from %s", overlay.size, source.path)
        return True

    def load_from_file(self, path: Path, offset: int = 0, size: int = 0) -> bool:
        """Replace the overlay with a byte range of another file.

        Args:
            path: File providing the new overlay bytes
            offset: Start of the range in path
            size: Length of the range; offset=size=0 takes the whole file

        Returns:
            False if the image is mapped, the range exceeds the file, or
            an I/O error occurred. The image file is not touched before
            the range has been validated.
        """
        source = self._disk_source("append overlay to")
        if source is None:
            return False

        try:
            with open(path, "rb") as src:
                src_size = stream_size(src)
                if offset == 0 and size == 0:
                    size = src_size
                if size == 0:
                    return True
                if offset + size > src_size:
                    self._image.msg.write(
                        "Overlay range 0x%x+0x%x exceeds source size 0x%x.",
                        offset,
                        size,
                        src_size,
                    )
                    return False

                overlay = self.get()
                with source.open("r+b") as dst:
                    if overlay is not None and overlay.size != 0:
                        dst.truncate(stream_size(dst) - overlay.size)
                    else:
                        # Pad a short file out to the end of its raw data
                        dst.truncate(
                            max(stream_size(dst), self._image.calc_raw_size_of_image())
                        )
                    dst.seek(0, io.SEEK_END)
                    copy_range(src, dst, offset, size)
                    self._image.file_size = dst.tell()
        except OSError as e:
            self._image.msg.write("Failed to load overlay from %s: %s", path, e)
            return False

        return True

    def save_to_file(self, path: Path, append: bool = False) -> bool:
        """Copy the overlay bytes to path.

        Args:
            path: Destination file
            append: Append to path if it exists instead of replacing it

        Returns:
            True on success, or trivially when there is nothing to save
        """
        overlay = self.get()
        if overlay is None or overlay.size == 0:
            return True

        source = self._image.source
        if source is None:
            self._image.msg.write("Can't read overlay of image without a source.")
            return False

        try:
            with source.open("rb") as src, open(path, "ab" if append else "wb") as dst:
                copy_range(src, dst, overlay.offset, overlay.size)
        except OSError as e:
            self._image.msg.write("Failed to save overlay to %s: %s", path, e)
            return False
        return True
