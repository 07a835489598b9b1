"""
Error-level analysis: recompress the image as JPEG and amplify the per-pixel
difference. Regions edited after the last save recompress differently and stand out.
Reported as an image for the reader; not scored.
"""
import base64
import io
import logging
from dataclasses import dataclass
from typing import Optional

from PIL import Image, ImageChops

logger = logging.getLogger(__name__)

ELA_QUALITY = 90
ELA_SCALE = 8


@dataclass(frozen=True)
class ElaSignal:
    image: Optional[str] = None     # base64 PNG
    error: Optional[str] = None


def generate_ela(data: bytes, quality: int = ELA_QUALITY, scale: int = ELA_SCALE) -> str:
    """Base64 PNG of min(255, |original - JPEG(original, quality)| * scale). Raises on undecodable input."""
    with Image.open(io.BytesIO(data)) as img:
        original = img.convert("RGB")

    recompressed_buf = io.BytesIO()
    original.save(recompressed_buf, format="JPEG", quality=quality)
    recompressed_buf.seek(0)
    with Image.open(recompressed_buf) as img:
        recompressed = img.convert("RGB")

    diff = ImageChops.difference(original, recompressed)
    amplified = diff.point(lambda v: min(255, v * scale))

    out = io.BytesIO()
    amplified.save(out, format="PNG")
    return base64.b64encode(out.getvalue()).decode("ascii")


def collect_ela(data: bytes) -> ElaSignal:
    if not data:
        return ElaSignal(error="ELA skipped: empty buffer")
    try:
        return ElaSignal(image=generate_ela(data))
    except Exception as e:
        logger.info(f"[ELA] Generation failed: {e}")
        return ElaSignal(error=f"ELA generation failed: {e}")
