"""Shared fixtures: in-memory test images and stub classifiers."""
import asyncio
import io

import numpy as np
import pytest
from PIL import Image

from forensics_api.classifier_client import Classifier, result_from_payload
from forensics_api.evidence import ExternalModelResult

MAKE_TAG = 0x010F
MODEL_TAG = 0x0110


def _encode_jpeg(img, exif_fields=None, quality=90) -> bytes:
    buf = io.BytesIO()
    kwargs = {}
    if exif_fields:
        exif = Image.Exif()
        for tag, value in exif_fields.items():
            exif[tag] = value
        kwargs["exif"] = exif
    img.save(buf, format="JPEG", quality=quality, **kwargs)
    return buf.getvalue()


def make_jpeg(exif_fields=None, size=(64, 48), color=(120, 90, 60)) -> bytes:
    return _encode_jpeg(Image.new("RGB", size, color=color), exif_fields)


def make_photo_jpeg(seed=0, exif_fields=None, size=(800, 600), quality=90) -> bytes:
    """Camera-like JPEG: smooth sin/cos shading plus Gaussian sensor noise."""
    rng = np.random.default_rng(seed)
    width, height = size
    y, x = np.mgrid[0:height, 0:width].astype(np.float64)
    phase = rng.uniform(0, 2 * np.pi, 3)
    channels = [
        128 + 70 * np.sin(x / (40 + 10 * i) + phase[i]) * np.cos(y / (55 + 7 * i))
        for i in range(3)
    ]
    pixels = np.stack(channels, axis=-1) + rng.normal(0, 12, (height, width, 3))
    img = Image.fromarray(np.clip(pixels, 0, 255).astype(np.uint8))
    return _encode_jpeg(img, exif_fields, quality)


def make_noise_png(size=(64, 64), seed=7) -> bytes:
    rng = np.random.default_rng(seed)
    arr = rng.integers(0, 256, (size[1], size[0], 3), dtype=np.uint8)
    buf = io.BytesIO()
    Image.fromarray(arr).save(buf, format="PNG")
    return buf.getvalue()


class StubClassifier(Classifier):
    """Answers with a canned payload (run through the real normalizer) or a canned result."""

    def __init__(self, source_id, payload=None, result=None, exc=None, delay=0.0):
        self.source_id = source_id
        self.payload = payload
        self.result = result
        self.exc = exc
        self.delay = delay
        self.calls = 0

    async def classify(self, data, client, timeout):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.exc is not None:
            raise self.exc
        if self.result is not None:
            return self.result
        return result_from_payload(self.source_id, self.payload)


@pytest.fixture()
def camera_jpeg():
    """JPEG carrying Make/Model EXIF fields."""
    return make_jpeg({MAKE_TAG: "Canon", MODEL_TAG: "Canon EOS 5D Mark IV"})


@pytest.fixture()
def bare_jpeg():
    return make_jpeg()


@pytest.fixture()
def noise_png():
    return make_noise_png()


@pytest.fixture()
def artificial_classifier():
    return StubClassifier("GENERAL", payload=[{"label": "artificial", "score": 0.92}, {"label": "human", "score": 0.08}])


@pytest.fixture()
def silent_classifier():
    return StubClassifier("SDXL", result=ExternalModelResult.unavailable("SDXL", "No API key configured"))
