# Test fixtures and configuration
import base64
import io
import sys
from pathlib import Path
from unittest.mock import AsyncMock

import numpy as np
import pytest
from PIL import Image

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from wardrobe_studio.config import PollingConfig, StudioConfig  # noqa: E402
from wardrobe_studio.services import InMemoryJobStore, LocalObjectStorage  # noqa: E402


def make_image(width, height, color=(128, 128, 128), mode="RGB"):
    """Solid-colour image."""
    if mode == "RGBA" and len(color) == 3:
        color = (*color, 255)
    return Image.new(mode, (width, height), color)


def make_noise_image(width, height, seed=0):
    """Random RGB noise: sharp and busy."""
    rng = np.random.default_rng(seed)
    pixels = rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)
    return Image.fromarray(pixels, "RGB")


def to_png(image):
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def to_data_url(data, mime="image/png"):
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


class ScriptedProvider:
    """Provider whose answers are set up per test."""

    name = "scripted"

    def __init__(self, submit_result=None, statuses=()):
        self.submit_tryon = AsyncMock(return_value=submit_result)
        self.get_tryon_status = AsyncMock(side_effect=list(statuses))
        self.cancel_tryon = AsyncMock(return_value=False)


@pytest.fixture
def minimal_png_bytes():
    """Minimal valid PNG image bytes."""
    return bytes([
        0x89, 0x50, 0x4E, 0x47, 0x0D, 0x0A, 0x1A, 0x0A,  # PNG signature
        0x00, 0x00, 0x00, 0x0D, 0x49, 0x48, 0x44, 0x52,  # IHDR chunk
        0x00, 0x00, 0x00, 0x01, 0x00, 0x00, 0x00, 0x01,  # 1x1 dimensions
        0x08, 0x02, 0x00, 0x00, 0x00, 0x90, 0x77, 0x53,
        0xDE, 0x00, 0x00, 0x00, 0x0C, 0x49, 0x44, 0x41,  # IDAT chunk
        0x54, 0x08, 0xD7, 0x63, 0xF8, 0xCF, 0xC0, 0x00,
        0x00, 0x00, 0x03, 0x00, 0x01, 0x00, 0x05, 0xFE,
        0xD4, 0xAA, 0x00, 0x00, 0x00, 0x00, 0x49, 0x45,  # IEND chunk
        0x4E, 0x44, 0xAE, 0x42, 0x60, 0x82
    ])


@pytest.fixture
def small_png():
    """64x48 noise PNG, cheap to fetch and store."""
    return to_png(make_noise_image(64, 48))


@pytest.fixture
def small_png_data_url(small_png):
    return to_data_url(small_png)


@pytest.fixture
def recorded_sleeps():
    return []


@pytest.fixture
def fake_sleep(recorded_sleeps):
    """Stand-in for asyncio.sleep that records delays and returns at once."""
    async def sleep(delay):
        recorded_sleeps.append(delay)
    return sleep


@pytest.fixture
def studio_config(tmp_path):
    return StudioConfig(
        storage_dir=tmp_path / "storage",
        public_base_url="http://testserver",
        storage_signing_secret="test-secret",
        polling=PollingConfig(interval_s=2.0, timeout_s=6.0),
        fashn_api_key=None,
        openai_api_key=None,
    )


@pytest.fixture
def job_store():
    return InMemoryJobStore()


@pytest.fixture
def object_storage(studio_config):
    return LocalObjectStorage(
        studio_config.storage_dir,
        studio_config.public_base_url,
        studio_config.storage_signing_secret,
    )
