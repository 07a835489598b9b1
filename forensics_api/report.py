"""
Report assembly: evidence + verdict -> public response shape.

Every number is checked before emission; a NaN or infinity anywhere in the report
is a bug upstream and is rejected instead of leaking into the JSON.
"""
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Iterable, List, Optional

from forensics_api.errors import ReportSerializationError
from forensics_api.evidence import EvidenceBundle, ExternalModelResult, Verdict

if TYPE_CHECKING:
    from forensics_api.detectors.metadata import MetadataSignal
    from forensics_api.detectors.physics import ByteStatistics

SERVICE_NAME = "forensics-api"

# aiArtifacts.generator label for very confident neural detections
HIGH_FIDELITY_MIN = 0.8


def ensure_finite(value, path: str = "$"):
    """Walk the report and raise on the first non-finite float."""
    if isinstance(value, float) and not math.isfinite(value):
        raise ReportSerializationError(detail=f"Non-finite number at {path}")
    if isinstance(value, dict):
        for key, item in value.items():
            ensure_finite(item, f"{path}.{key}")
    elif isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            ensure_finite(item, f"{path}[{index}]")
    return value


def build_report(
    evidence: EvidenceBundle,
    verdict: Verdict,
    *,
    model_results: Iterable[ExternalModelResult] = (),
    metadata: Optional[MetadataSignal] = None,
    stats: Optional[ByteStatistics] = None,
    ela: Optional[str] = None,
    file_type: Optional[str] = None,
    fingerprint: Optional[str] = None,
    errors: Optional[List[str]] = None,
) -> dict:
    model_score = verdict.component_scores.get("model", 0.0)
    flagged = verdict.detection_source if model_score > 0 and verdict.detection_source else "none"

    report = {
        "service": SERVICE_NAME,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "fingerprint": fingerprint,
        "fileType": file_type,
        "verdict": {
            "aiProbability": round(verdict.risk, 4),
            "classification": verdict.classification.value,
            "detection_method": verdict.method,
            "policy_version": verdict.policy_version,
        },
        "details": {
            "aiArtifacts": {
                "confidence": round(model_score, 4),
                "detected": model_score > 0.5,
                "model_flagged": flagged,
                "generator": "High-Fidelity Model" if model_score > HIGH_FIDELITY_MIN else "Unknown",
            },
            "noiseAnalysis": {
                "entropy": round(evidence.entropy_bits, 4),
                "variance": round(evidence.variance, 4),
                "inconsistent": verdict.component_scores.get("physics", 0.0) > 0,
                "sample_count": stats.sample_count if stats else (evidence.sample_count or 0),
            },
            "metadataDump": dict(metadata.dump) if metadata else {},
            "hasCameraMetadata": evidence.has_camera_metadata,
            "metadataSignals": list(metadata.signals) if metadata else [],
            "ela": ela,
            "models": [r.to_dict() for r in model_results],
            "componentScores": {k: round(v, 4) for k, v in verdict.component_scores.items()},
        },
        "errors": list(errors or []),
    }
    return ensure_finite(report)
