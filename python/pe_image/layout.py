"""
Layout manifest serialization.

A loaded image keeps everything needed to write it back byte-for-byte:
the header offset, the DOS block, the gap after the section table, the
section order with both stored and resolved names, and the overlay. The
manifest captures that metadata as a plain dict and serializes it with
msgpack so a separate writer (or a later run) can consume it.

Manifest layout:
    {
        "version": 1,
        "image_bits": 32 | 64 | 0,
        "header_offset": int,
        "dos_block": bytes,
        "section_header_gap": bytes,
        "image_base": int,
        "sections": [
            {"raw_name": bytes, "name": str, "rva": int, "virtual_size": int,
             "raw_offset": int, "raw_size": int, "characteristics": int},
            ...
        ],
        "overlay": {"offset": int, "size": int} | None,
    }
"""

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import msgpack

if TYPE_CHECKING:
    from .image import Image

logger = logging.getLogger(__name__)

LAYOUT_MANIFEST_VERSION = 1

_REQUIRED_KEYS = ("version", "header_offset", "sections")


def layout_manifest(image: "Image") -> dict[str, Any]:
    """Collect the round-trip layout metadata of a loaded image."""
    overlay = image.get_overlay()
    return {
        "version": LAYOUT_MANIFEST_VERSION,
        "image_bits": image.image_bits,
        "header_offset": image.header_offset,
        "dos_block": bytes(image.dos_block),
        "section_header_gap": bytes(image.section_header_gap),
        "image_base": image.image_base,
        "sections": [
            {
                "raw_name": section.raw_name,
                "name": section.name,
                "rva": section.rva,
                "virtual_size": section.virtual_size,
                "raw_offset": section.raw_offset,
                "raw_size": section.raw_size,
                "characteristics": section.header.Characteristics,
            }
            for section in image.sections
        ],
        "overlay": (
            {"offset": overlay.offset, "size": overlay.size}
            if overlay is not None
            else None
        ),
    }


def pack_layout_manifest(image: "Image") -> bytes:
    """Serialize the layout manifest of image with msgpack."""
    return msgpack.packb(layout_manifest(image), use_bin_type=True)


def unpack_layout_manifest(data: bytes) -> dict[str, Any]:
    """Deserialize a layout manifest.

    Raises:
        ValueError: If data is not a msgpack map with the expected keys
            or has an unsupported version
    """
    try:
        manifest = msgpack.unpackb(data, raw=False, strict_map_key=True)
    except (msgpack.exceptions.UnpackException, ValueError) as e:
        raise ValueError(f"Failed to parse layout manifest: {e}") from e

    if not isinstance(manifest, dict):
        raise ValueError(
            f"Invalid layout manifest: expected dict, got {type(manifest).__name__}"
        )
    missing = [key for key in _REQUIRED_KEYS if key not in manifest]
    if missing:
        raise ValueError(f"Invalid layout manifest: missing keys {missing}")
    if manifest["version"] != LAYOUT_MANIFEST_VERSION:
        raise ValueError(
            f"Unsupported layout manifest version {manifest['version']} "
            f"(expected {LAYOUT_MANIFEST_VERSION})"
        )
    return manifest


def save_layout_manifest(image: "Image", path: Path) -> None:
    data = pack_layout_manifest(image)
    Path(path).write_bytes(data)
    logger.debug("Wrote layout manifest to %s (%d bytes)", path, len(data))


def load_layout_manifest(path: Path) -> dict[str, Any]:
    return unpack_layout_manifest(Path(path).read_bytes())
