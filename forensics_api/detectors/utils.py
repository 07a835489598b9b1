import io
import logging
import math
from fractions import Fraction
from numbers import Rational

from PIL import Image
from PIL.ExifTags import GPSTAGS, TAGS

from forensics_api.security import security_manager

logger = logging.getLogger(__name__)

EXIF_IFD = 0x8769
GPS_IFD = 0x8825

# Embedded text chunks worth keeping (PNG tEXt/iTXt, JPEG comments, generator dumps)
_EMBEDDED_TEXT_KEYS = {
    "parameters", "prompt", "workflow", "comment", "description", "software",
    "generator", "model", "negative_prompt", "negative prompt", "usercomment",
}
_MAX_EMBEDDED_TEXT = 50000

PNG_SIGNATURE = b"\x89PNG"


def is_png(data: bytes) -> bool:
    return data[:4] == PNG_SIGNATURE


def sniff_format(data: bytes) -> str:
    """Container format from the leading bytes. Total: anything unrecognized is 'unknown'."""
    head = data[:16]
    if is_png(head):
        return "png"
    if head[:3] == b"\xff\xd8\xff":
        return "jpeg"
    if head[:6] in (b"GIF87a", b"GIF89a"):
        return "gif"
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "webp"
    if head[:4] in (b"II*\x00", b"MM\x00*"):
        return "tiff"
    if head[4:8] == b"ftyp" and head[8:12] in (b"heic", b"heix", b"heif", b"mif1", b"avif"):
        return "avif" if head[8:12] == b"avif" else "heic"
    if head[:2] == b"BM":
        return "bmp"
    return "unknown"


def fingerprint(data: bytes) -> str:
    """SHA-256 of the full buffer."""
    return security_manager.get_safe_hash(data)


def to_jsonable(value, depth: int = 0):
    """Convert EXIF values (rationals, bytes, tuples) into JSON-safe types. Non-finite floats become None."""
    if depth > 6:
        return str(value)
    if value is None or isinstance(value, (bool, int, str)):
        if isinstance(value, str):
            return value.replace("\x00", "").strip()
        return value
    if isinstance(value, (Rational, Fraction)):
        try:
            value = float(value)
        except ZeroDivisionError:
            return None
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, (bytes, bytearray)):
        return f"<{len(value)} bytes>"
    if isinstance(value, dict):
        return {str(k): to_jsonable(v, depth + 1) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v, depth + 1) for v in value]
    try:
        number = float(value)
    except (TypeError, ValueError):
        return str(value)
    return number if math.isfinite(number) else None


def get_exif_data(data: bytes) -> dict:
    """
    Extract EXIF metadata (IFD0, Exif and GPS sub-IFDs) from raw image bytes.
    Raises when the bytes are not a decodable image; callers decide how to degrade.
    """
    with Image.open(io.BytesIO(data)) as img:
        exif = img.getexif()
        exif_data = {}
        for tag, value in exif.items():
            exif_data[TAGS.get(tag, tag)] = value

        for ifd_id, names in ((EXIF_IFD, TAGS), (GPS_IFD, GPSTAGS)):
            try:
                sub_ifd = exif.get_ifd(ifd_id)
            except KeyError:
                continue
            for tag, value in sub_ifd.items():
                exif_data[names.get(tag, tag)] = value

        # ICC profile presence
        if img.info.get("icc_profile"):
            exif_data["HasICCProfile"] = True

        # XMP/IPTC packet
        xmp = img.info.get("xmp") or img.info.get("XML:com.adobe.xmp")
        if xmp:
            exif_data["XMP"] = xmp.decode("utf-8", errors="ignore") if isinstance(xmp, bytes) else str(xmp)

        embedded = []
        sources = dict(img.info or {})
        text_dict = getattr(img, "text", None)
        if isinstance(text_dict, dict):
            sources.update(text_dict)
        for key, value in sources.items():
            if str(key).lower() not in _EMBEDDED_TEXT_KEYS and key not in (text_dict or {}):
                continue
            text = value.decode("utf-8", errors="ignore") if isinstance(value, bytes) else str(value)
            text = text.strip()
            if text:
                embedded.append(text[:_MAX_EMBEDDED_TEXT])
        if embedded:
            exif_data["EmbeddedText"] = "\n".join(embedded)

        exif_data["ImageFormat"] = img.format
        exif_data["ImageWidth"], exif_data["ImageHeight"] = img.size
        return exif_data
