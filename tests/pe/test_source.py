"""Tests for disk and mapped image sources."""

import io
from pathlib import Path

import pytest

from pe_image.source import DiskSource, ImageKind, MappedSource, stream_size


class TestDiskSource:
    """Tests for per-operation file handles."""

    def test_fresh_handle_per_open(self, tmp_path: Path):
        """Test that each open() yields a new handle closed on exit."""
        path = tmp_path / "image.bin"
        path.write_bytes(b"0123456789")
        source = DiskSource(path)
        assert source.kind is ImageKind.DISK

        with source.open() as first:
            assert first.read(4) == b"0123"
        assert first.closed

        with source.open() as second:
            assert second is not first
            assert second.read(2) == b"01"

    def test_closed_on_error(self, tmp_path: Path):
        """Test that the handle is released when the block raises."""
        path = tmp_path / "image.bin"
        path.write_bytes(b"data")
        source = DiskSource(path)
        with pytest.raises(RuntimeError):
            with source.open() as f:
                raise RuntimeError("boom")
        assert f.closed

    def test_write_mode(self, tmp_path: Path):
        """Test opening for in-place modification."""
        path = tmp_path / "image.bin"
        path.write_bytes(b"data")
        with DiskSource(path).open("r+b") as f:
            f.truncate(2)
        assert path.read_bytes() == b"da"


class TestMappedSource:
    """Tests for the persistent mapped stream."""

    def test_same_stream_every_time(self):
        """Test that open() reuses and never closes the stream."""
        source = MappedSource.from_buffer(b"MZ" + bytes(62))
        assert source.kind is ImageKind.MAPPED_MEMORY

        with source.open() as first:
            first.read(2)
        assert not source.closed
        with source.open() as second:
            assert second is first

        source.close()
        assert source.closed

    def test_rejects_write_modes(self):
        """Test that mapped sources are read-only."""
        source = MappedSource(io.BytesIO(b"abc"))
        with pytest.raises(ValueError, match="read-only"):
            with source.open("r+b"):
                pass

    def test_open_after_close(self):
        """Test that a closed source can't be opened."""
        source = MappedSource(io.BytesIO(b"abc"))
        source.close()
        with pytest.raises(ValueError, match="closed"):
            with source.open():
                pass

    def test_from_file(self, tmp_path: Path):
        """Test memory-mapping a dump file."""
        path = tmp_path / "dump.bin"
        path.write_bytes(b"mapped contents")
        source = MappedSource.from_file(path)
        try:
            with source.open() as f:
                f.seek(7)
                assert f.read(8) == b"contents"
                assert stream_size(f) == 15
        finally:
            source.close()
        assert source.closed


def test_stream_size_restores_position():
    """Test that measuring the size leaves the position alone."""
    stream = io.BytesIO(b"0123456789")
    stream.seek(3)
    assert stream_size(stream) == 10
    assert stream.tell() == 3
