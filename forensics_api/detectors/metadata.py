import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from forensics_api.detectors.utils import get_exif_data, to_jsonable

logger = logging.getLogger(__name__)

# Any one of these, present and non-empty, counts as camera provenance
CAMERA_FIELDS = ("Make", "Model", "ExposureTime", "ISO", "ISOSpeedRatings", "PhotographicSensitivity")

TRUSTED_MAKERS = ["apple", "google", "samsung", "sony", "canon", "nikon", "fujifilm", "panasonic", "olympus", "leica"]
HARD_AI_MARKERS = [
    "stable diffusion", "midjourney", "dall-e", "flux.1", "sora", "firefly", "comfyui",
    "automatic1111", "invokeai", "trainedalgorithmicmedia",
]


@dataclass(frozen=True)
class MetadataSignal:
    has_camera_metadata: bool
    dump: Dict[str, object] = field(default_factory=dict)
    signals: List[str] = field(default_factory=list)
    error: Optional[str] = None


def _present(value) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip("\x00 "))
    if isinstance(value, (bytes, bytearray)):
        return bool(bytes(value).strip(b"\x00 "))
    if isinstance(value, (list, tuple, dict)):
        return len(value) > 0
    return True


def has_camera_fields(exif: dict) -> bool:
    return any(_present(exif.get(name)) for name in CAMERA_FIELDS)


def _to_float(val) -> Optional[float]:
    try:
        if isinstance(val, (tuple, list)):
            val = val[0]
        return float(val)
    except (TypeError, ValueError, IndexError, ZeroDivisionError):
        return None


def provenance_signals(exif: dict) -> List[str]:
    """Human-readable notes about capture provenance. Reported for auditing; not scored."""
    signals = []
    make = str(exif.get("Make", "")).lower()
    software = str(exif.get("Software", "")).lower()

    if any(m in make for m in TRUSTED_MAKERS):
        signals.append(f"Trusted device manufacturer: {str(exif.get('Make')).strip()}")
    elif _present(exif.get("Make")) or _present(exif.get("Model")):
        signals.append("Camera hardware fields present")
    else:
        signals.append("Missing camera hardware provenance")

    exp = _to_float(exif.get("ExposureTime"))
    if exp is not None and 0 < exp < 30:
        signals.append("Physically valid exposure duration")

    iso = _to_float(exif.get("ISOSpeedRatings", exif.get("PhotographicSensitivity")))
    if iso is not None and 50 <= iso <= 102400:
        signals.append("Realistic sensor sensitivity (ISO)")

    if "DateTimeOriginal" not in exif:
        signals.append("Missing capture timestamp")

    if "GPSLatitude" in exif or "GPSLongitude" in exif:
        signals.append("GPS coordinates present")

    haystack = " ".join([software, str(exif.get("XMP", "")).lower(), str(exif.get("EmbeddedText", "")).lower()])
    hits = [m for m in HARD_AI_MARKERS if m in haystack]
    if hits:
        signals.append(f"AI generator signature in metadata: {', '.join(hits)}")
    return signals


def collect_metadata(data: bytes, extractor: Callable[[bytes], dict] = get_exif_data) -> MetadataSignal:
    """
    Run the metadata extractor and reduce it to the camera-presence signal.
    Extractor failures degrade to "no camera metadata"; missing metadata is evidence, not a fault.
    """
    try:
        exif = extractor(data) or {}
    except Exception as e:
        logger.info(f"[METADATA] Extraction failed: {e}")
        return MetadataSignal(has_camera_metadata=False, dump={}, error=f"Metadata extraction failed: {e}")

    has_camera = has_camera_fields(exif)
    dump = to_jsonable({str(k): v for k, v in exif.items()})
    logger.debug(f"[METADATA] {len(dump)} fields, camera={has_camera}")
    return MetadataSignal(has_camera_metadata=has_camera, dump=dump, signals=provenance_signals(exif))
