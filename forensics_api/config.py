"""
Environment-driven settings for the forensic service.
Every knob the deployment can turn lives here; modules read `get_settings()`.
"""
import os
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

logger = logging.getLogger(__name__)

HF_INFERENCE_BASE = "https://api-inference.huggingface.co/models/"

# Council of models queried when HF_MODELS is not set
DEFAULT_HF_MODELS = {
    "GENERAL": HF_INFERENCE_BASE + "umm-maybe/AI-image-detector",
    "SDXL": HF_INFERENCE_BASE + "Organika/sdxl-detector",
    "DEEPFAKE": HF_INFERENCE_BASE + "prithivMLmods/Deep-Fake-Detector-v2-Model",
}

DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"[CONFIG] Invalid {name}={raw!r}, using {default}")
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"[CONFIG] Invalid {name}={raw!r}, using {default}")
        return default


def parse_model_list(raw: str) -> Dict[str, str]:
    """
    Parse HF_MODELS: comma-separated `NAME=url` pairs.
    A bare model id (no scheme) is resolved against the HuggingFace inference base.
    """
    models = {}
    for index, chunk in enumerate(raw.split(",")):
        chunk = chunk.strip()
        if not chunk:
            continue
        if "=" in chunk:
            name, target = chunk.split("=", 1)
            name, target = name.strip(), target.strip()
        else:
            name, target = f"MODEL{index + 1}", chunk
        if not target.startswith(("http://", "https://")):
            target = HF_INFERENCE_BASE + target
        models[name.upper() or f"MODEL{index + 1}"] = target
    return models


@dataclass(frozen=True)
class Settings:
    hf_api_key: str = ""
    hf_models: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_HF_MODELS))
    runpod_api_key: str = ""
    runpod_endpoint_id: str = ""
    classifier_timeout_s: float = 20.0
    fetch_timeout_s: float = 15.0
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    entropy_sample_target: int = 5000
    shared_secret: str = ""
    webhook_url: Optional[str] = None
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000


def get_settings() -> Settings:
    """Read the current environment into a Settings object."""
    raw_models = os.getenv("HF_MODELS", "")
    return Settings(
        hf_api_key=os.getenv("HF_API_KEY", ""),
        hf_models=parse_model_list(raw_models) if raw_models.strip() else dict(DEFAULT_HF_MODELS),
        runpod_api_key=os.getenv("RUNPOD_API_KEY", ""),
        runpod_endpoint_id=os.getenv("RUNPOD_ENDPOINT_ID", ""),
        classifier_timeout_s=_env_float("CLASSIFIER_TIMEOUT_S", 20.0),
        fetch_timeout_s=_env_float("FETCH_TIMEOUT_S", 15.0),
        max_upload_bytes=_env_int("MAX_UPLOAD_BYTES", DEFAULT_MAX_UPLOAD_BYTES),
        entropy_sample_target=max(1, _env_int("ENTROPY_SAMPLE_TARGET", 5000)),
        shared_secret=os.getenv("ANALYZE_SHARED_SECRET", ""),
        webhook_url=os.getenv("RESULT_WEBHOOK_URL") or None,
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        host=os.getenv("HOST", "0.0.0.0"),
        port=_env_int("PORT", 8000),
    )
