"""Records exchanged between the collectors, the fusion engine and the report."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple


class EntropyUnit(str, Enum):
    BITS = "bits"              # 0..8 bits per sampled byte
    NORMALIZED = "normalized"  # 0..1


class Classification(str, Enum):
    ORGANIC = "ORGANIC"
    SYNTHETIC = "SYNTHETIC"


class ResultStatus(str, Enum):
    SUCCESS = "success"
    UNAVAILABLE = "unavailable"
    ERROR = "error"


@dataclass(frozen=True)
class ExternalModelResult:
    """
    Outcome of one classifier call.

    The distinction between a score, an unavailable classifier and a failed call is kept
    for logging and the report; `evidence_score` folds it for the fusion engine.
    """
    source_id: str
    status: ResultStatus
    score: float = 0.0
    label: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def success(cls, source_id: str, score: float, label: Optional[str] = None) -> "ExternalModelResult":
        return cls(source_id, ResultStatus.SUCCESS, score=min(1.0, max(0.0, float(score))), label=label)

    @classmethod
    def unavailable(cls, source_id: str, reason: str) -> "ExternalModelResult":
        return cls(source_id, ResultStatus.UNAVAILABLE, reason=reason)

    @classmethod
    def error(cls, source_id: str, reason: str) -> "ExternalModelResult":
        return cls(source_id, ResultStatus.ERROR, reason=reason)

    @property
    def evidence_score(self) -> float:
        if self.status is ResultStatus.SUCCESS:
            return self.score
        return 0.0

    def to_dict(self) -> dict:
        return {
            "source": self.source_id,
            "status": self.status.value,
            "score": self.score,
            "label": self.label,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class EvidenceBundle:
    """
    Everything the fusion engine looks at for one request. Built once, never mutated.

    sample_count is the number of bytes the physics statistics were computed over;
    0 means there were no bytes and the physics signal is absent. None means the
    caller did not record it and entropy/variance are taken as given.
    """
    entropy: float
    variance: float
    has_camera_metadata: bool
    format_is_png: bool
    model_scores: Tuple[Tuple[str, float], ...] = ()
    entropy_unit: EntropyUnit = EntropyUnit.BITS
    sample_count: Optional[int] = None

    def __post_init__(self):
        # Accept lists from callers; keep the record hashable and immutable
        object.__setattr__(self, "model_scores", tuple((str(s), float(v)) for s, v in self.model_scores))
        for name in ("entropy", "variance"):
            if not math.isfinite(getattr(self, name)):
                raise ValueError(f"{name} must be finite")
        if any(not math.isfinite(v) or not 0.0 <= v <= 1.0 for _, v in self.model_scores):
            raise ValueError("model scores must lie in [0, 1]")

    @property
    def entropy_bits(self) -> float:
        if self.entropy_unit is EntropyUnit.NORMALIZED:
            return self.entropy * 8.0
        return self.entropy


@dataclass(frozen=True)
class Verdict:
    risk: float
    classification: Classification
    method: str
    component_scores: Dict[str, float] = field(default_factory=dict)
    detection_source: Optional[str] = None
    policy_version: str = ""
