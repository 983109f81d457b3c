"""Tests for overlay queries and file edits."""

import io
from pathlib import Path

from pe_image import Image, Overlay
from pe_test_utils import (
    SectionSpec,
    build_pe,
    map_image,
    minimal_pe,
    minimal_sections,
    write_pe,
)


class TestGetOverlay:
    """Tests for overlay computation."""

    def test_overlay_present(self, overlay_pe_file: Path):
        """Test that trailing bytes are reported as the overlay."""
        with Image() as image:
            assert image.load_from_file(overlay_pe_file)
            assert image.get_overlay() == Overlay(0x600, 0x40)

    def test_no_overlay(self, loaded_pe32: Image):
        """Test that a file ending at the last section has no overlay."""
        assert loaded_pe32.get_overlay() is None

    def test_skips_trailing_virtual_section(self):
        """Test that a section without raw data is not the overlay anchor."""
        sections = minimal_sections() + [SectionSpec(".bss", 0x2000, 0x100, 0, 0)]
        image = Image()
        assert image.load_from_stream(io.BytesIO(build_pe(sections, overlay=b"x" * 8)))
        assert image.get_overlay() == Overlay(0x600, 8)

    def test_no_raw_sections(self):
        """Test that an image without file-backed sections has no overlay."""
        data = build_pe([SectionSpec(".bss", 0x1000, 0x100, 0, 0)], overlay=b"x" * 8)
        image = Image()
        assert image.load_from_stream(io.BytesIO(data))
        assert image.get_overlay() is None

    def test_mapped_image_has_no_overlay(self):
        """Test that a mapped image never reports an overlay."""
        data = minimal_pe(overlay=b"x" * 0x40)
        image = Image()
        assert image.load_from_mapped_image(map_image(data, minimal_sections()))
        assert image.file_size == 0x600
        assert image.get_overlay() is None


class TestOverlayLifecycle:
    """Save, remove, and load of overlay data."""

    def test_save_then_remove(self, overlay_pe_file: Path, tmp_path: Path):
        """Test that removing the overlay shrinks the file by its size."""
        saved = tmp_path / "overlay.bin"
        original_size = overlay_pe_file.stat().st_size

        with Image() as image:
            assert image.load_from_file(overlay_pe_file)
            assert image.save_overlay_to_file(saved)
            assert saved.read_bytes() == b"\xab" * 0x40

            assert image.remove_overlay()
            assert overlay_pe_file.stat().st_size == original_size - 0x40
            assert image.file_size == original_size - 0x40
            assert image.get_overlay() is None

    def test_save_append(self, overlay_pe_file: Path, tmp_path: Path):
        """Test appending the overlay to an existing file."""
        saved = tmp_path / "overlay.bin"
        saved.write_bytes(b"head")
        with Image() as image:
            assert image.load_from_file(overlay_pe_file)
            assert image.save_overlay_to_file(saved, append=True)
        assert saved.read_bytes() == b"head" + b"\xab" * 0x40

    def test_save_without_overlay_is_noop(self, tmp_path: Path):
        """Test that saving a missing overlay succeeds without I/O."""
        path = write_pe(tmp_path / "plain.exe", minimal_pe())
        saved = tmp_path / "overlay.bin"
        with Image() as image:
            assert image.load_from_file(path)
            assert image.save_overlay_to_file(saved)
        assert not saved.exists()

    def test_remove_without_overlay_is_noop(self, tmp_path: Path):
        """Test that removing a missing overlay succeeds and keeps the file."""
        data = minimal_pe()
        path = write_pe(tmp_path / "plain.exe", data)
        with Image() as image:
            assert image.load_from_file(path)
            assert image.remove_overlay()
        assert path.read_bytes() == data

    def test_load_replaces_overlay(self, overlay_pe_file: Path, tmp_path: Path):
        """Test that loading an overlay replaces the existing one."""
        replacement = tmp_path / "new.bin"
        replacement.write_bytes(b"0123456789")

        with Image() as image:
            assert image.load_from_file(overlay_pe_file)
            assert image.load_overlay_from_file(replacement, 2, 5)
            assert image.get_overlay() == Overlay(0x600, 5)

        assert overlay_pe_file.read_bytes()[0x600:] == b"23456"

    def test_load_whole_file(self, tmp_path: Path):
        """Test that offset=size=0 appends the whole source file."""
        path = write_pe(tmp_path / "plain.exe", minimal_pe())
        source = tmp_path / "new.bin"
        source.write_bytes(b"payload")

        with Image() as image:
            assert image.load_from_file(path)
            assert image.load_overlay_from_file(source)
            assert image.get_overlay() == Overlay(0x600, 7)
        assert path.read_bytes()[0x600:] == b"payload"

    def test_load_into_short_file(self, tmp_path: Path):
        """Test that a file ending inside its last section is padded first."""
        path = write_pe(tmp_path / "short.exe", minimal_pe(truncate_at=0x500))
        source = tmp_path / "new.bin"
        source.write_bytes(b"\x5a" * 0x40)

        with Image() as image:
            assert image.load_from_file(path)
            assert image.get_overlay() is None
            assert image.load_overlay_from_file(source)
            assert image.get_overlay() == Overlay(0x600, 0x40)
            assert image.file_size == 0x640

        data = path.read_bytes()
        assert data[0x500:0x600] == bytes(0x100)
        assert data[0x600:] == b"\x5a" * 0x40

    def test_load_without_raw_sections(self, tmp_path: Path):
        """Test that an image with no file-backed section is only appended to."""
        data = build_pe([SectionSpec(".bss", 0x1000, 0x100, 0, 0)])
        path = write_pe(tmp_path / "bss.exe", data)
        source = tmp_path / "new.bin"
        source.write_bytes(b"payload")

        with Image() as image:
            assert image.load_from_file(path)
            assert image.load_overlay_from_file(source)
        assert path.read_bytes() == data + b"payload"

    def test_load_range_past_source_end(self, overlay_pe_file: Path, tmp_path: Path):
        """Test that an out-of-range request fails before touching the file."""
        source = tmp_path / "new.bin"
        source.write_bytes(b"short")
        before = overlay_pe_file.read_bytes()

        with Image() as image:
            assert image.load_from_file(overlay_pe_file)
            assert not image.load_overlay_from_file(source, 2, 10)
            assert "exceeds source size" in image.msg.messages[-1]

        assert overlay_pe_file.read_bytes() == before

    def test_load_missing_source(self, overlay_pe_file: Path, tmp_path: Path):
        """Test that a missing source file is reported as failure."""
        with Image() as image:
            assert image.load_from_file(overlay_pe_file)
            assert not image.load_overlay_from_file(tmp_path / "missing.bin")
            assert "Failed to load overlay" in image.msg.messages[-1]


class TestMappedRejection:
    """Overlay edits on mapped images are refused."""

    def _mapped_image(self) -> Image:
        image = Image()
        assert image.load_from_mapped_image(map_image(minimal_pe(), minimal_sections()))
        return image

    def test_remove_rejected(self):
        """Test that remove_overlay fails on a mapped image."""
        image = self._mapped_image()
        assert not image.remove_overlay()
        assert image.msg.messages[-1] == "Can't remove overlay from mapped image."

    def test_load_rejected(self, tmp_path: Path):
        """Test that load_overlay_from_file fails on a mapped image."""
        source = tmp_path / "new.bin"
        source.write_bytes(b"payload")
        image = self._mapped_image()
        assert not image.load_overlay_from_file(source)
        assert image.msg.messages[-1] == "Can't append overlay to mapped image."

    def test_stream_loaded_disk_image(self):
        """Test that an image loaded from a bare stream can't edit its file."""
        image = Image()
        assert image.load_from_stream(io.BytesIO(minimal_pe(overlay=b"x" * 4)))
        assert image.get_overlay() == Overlay(0x600, 4)
        assert not image.remove_overlay()
