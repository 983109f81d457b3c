"""Tests for the msgpack layout manifest."""

import io
from pathlib import Path

import msgpack
import pytest

from pe_image import (
    Image,
    layout_manifest,
    load_layout_manifest,
    pack_layout_manifest,
    save_layout_manifest,
    unpack_layout_manifest,
)
from pe_test_utils import SectionSpec, build_pe, dos_block_pattern


@pytest.fixture
def image() -> Image:
    """Image with a long section name, a DOS block and an overlay."""
    sections = [
        SectionSpec(".text", 0x1000, 0x200, 0x400, 0x200),
        SectionSpec("/4", 0x2000, 0x100, 0x600, 0x200),
    ]
    data = build_pe(sections, string_table=b".debug_line\x00", overlay=b"sig!")
    image = Image()
    assert image.load_from_stream(io.BytesIO(data))
    return image


class TestLayoutManifest:
    """Tests for manifest contents and serialization."""

    def test_contents(self, image: Image):
        """Test that the manifest carries everything a writer needs."""
        manifest = layout_manifest(image)
        assert manifest["version"] == 1
        assert manifest["image_bits"] == 32
        assert manifest["header_offset"] == 0x80
        assert manifest["dos_block"] == dos_block_pattern(0x40)
        assert manifest["section_header_gap"] == image.section_header_gap
        assert [s["name"] for s in manifest["sections"]] == [".text", ".debug_line"]
        assert manifest["sections"][1]["raw_name"] == b"/4\x00\x00\x00\x00\x00\x00"
        assert manifest["sections"][1]["raw_offset"] == 0x600
        # String table (4 + 12 bytes) and the appended bytes follow .debug_line
        assert manifest["overlay"] == {"offset": 0x800, "size": 16 + 4}

    def test_pack_roundtrip(self, image: Image):
        """Test msgpack serialization keeps bytes and strings apart."""
        manifest = unpack_layout_manifest(pack_layout_manifest(image))
        assert manifest == layout_manifest(image)
        assert isinstance(manifest["dos_block"], bytes)
        assert isinstance(manifest["sections"][0]["name"], str)

    def test_file_roundtrip(self, image: Image, tmp_path: Path):
        """Test saving and loading a manifest file."""
        path = tmp_path / "layout.msgpack"
        save_layout_manifest(image, path)
        assert load_layout_manifest(path)["sections"][0]["rva"] == 0x1000

    def test_no_overlay(self, loaded_pe32: Image):
        """Test that a missing overlay is stored as None."""
        assert layout_manifest(loaded_pe32)["overlay"] is None

    def test_rejects_garbage(self):
        """Test that non-msgpack data is rejected."""
        with pytest.raises(ValueError, match="Failed to parse layout manifest"):
            unpack_layout_manifest(b"\xc1")

    def test_rejects_non_dict(self):
        """Test that a non-map payload is rejected."""
        with pytest.raises(ValueError, match="expected dict"):
            unpack_layout_manifest(msgpack.packb([1, 2, 3]))

    def test_rejects_missing_keys(self):
        """Test that required keys are checked."""
        with pytest.raises(ValueError, match="missing keys"):
            unpack_layout_manifest(msgpack.packb({"version": 1}))

    def test_rejects_unknown_version(self, image: Image):
        """Test that a future version is refused."""
        manifest = layout_manifest(image)
        manifest["version"] = 99
        with pytest.raises(ValueError, match="Unsupported layout manifest version"):
            unpack_layout_manifest(msgpack.packb(manifest, use_bin_type=True))
