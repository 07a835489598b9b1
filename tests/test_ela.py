"""Tests for error-level analysis."""
import base64
import io

import numpy as np
import pytest
from PIL import Image

from forensics_api.detectors import analyze_media
from forensics_api.detectors.ela import collect_ela, generate_ela


def _decode(b64):
    with Image.open(io.BytesIO(base64.b64decode(b64))) as img:
        assert img.format == "PNG"
        return np.asarray(img.convert("RGB"), dtype=np.int32)


def test_ela_keeps_image_dimensions(camera_jpeg, noise_png):
    assert _decode(generate_ela(camera_jpeg)).shape == (48, 64, 3)
    assert _decode(generate_ela(noise_png)).shape == (64, 64, 3)


def test_ela_difference_is_amplified_and_clipped(noise_png):
    plain = _decode(generate_ela(noise_png, scale=1))
    amplified = _decode(generate_ela(noise_png, scale=8))
    assert plain.max() > 0
    assert np.array_equal(amplified, np.minimum(255, plain * 8))


def test_ela_rejects_garbage():
    with pytest.raises(Exception):
        generate_ela(b"not an image")


@pytest.mark.parametrize("data", [b"", b"not an image"])
def test_collect_ela_fails_soft(data):
    signal = collect_ela(data)
    assert signal.image is None
    assert signal.error


@pytest.mark.asyncio
async def test_report_carries_ela(camera_jpeg):
    report = await analyze_media(camera_jpeg)
    assert _decode(report["details"]["ela"]).shape == (48, 64, 3)


@pytest.mark.asyncio
async def test_report_ela_is_null_for_undecodable_bytes():
    report = await analyze_media(b"\x00\x01\x02 raw bytes")
    assert report["details"]["ela"] is None
    assert any(e.startswith("ELA generation failed") for e in report["errors"])
