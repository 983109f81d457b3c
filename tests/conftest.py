import io
import pathlib

import pytest

from pe_image import Image
from pe_test_utils import minimal_pe, write_pe


@pytest.fixture
def minimal_pe32() -> bytes:
    """Minimal PE32 image bytes (see pe_test_utils.minimal_pe)."""
    return minimal_pe(bits=32)


@pytest.fixture
def minimal_pe64() -> bytes:
    """Minimal PE32+ image bytes."""
    return minimal_pe(bits=64)


@pytest.fixture
def loaded_pe32(minimal_pe32: bytes) -> Image:
    """Image loaded from the minimal PE32 bytes."""
    image = Image()
    assert image.load_from_stream(io.BytesIO(minimal_pe32))
    return image


@pytest.fixture
def loaded_pe64(minimal_pe64: bytes) -> Image:
    """Image loaded from the minimal PE32+ bytes."""
    image = Image()
    assert image.load_from_stream(io.BytesIO(minimal_pe64))
    return image


@pytest.fixture
def overlay_pe_file(tmp_path: pathlib.Path) -> pathlib.Path:
    """Minimal PE32 file on disk with 0x40 bytes of overlay."""
    return write_pe(tmp_path / "overlay.exe", minimal_pe(overlay=b"\xab" * 0x40))
