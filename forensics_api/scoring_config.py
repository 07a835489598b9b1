"""
Risk fusion policy: every threshold and contributed risk used by the fusion engine.
Centralizes the "magic numbers" so the engine stays a pure function of (evidence, policy).

Entropy constants are expressed in bits per sampled byte (0..8).
"""
from dataclasses import dataclass, fields, asdict
from typing import Dict, List

POLICY_VERSION = "2024.2"

# constant -> meaning, rendered by /policy
_MEANINGS = {
    "version": "Policy identifier reported with every verdict",
    # --- Physics (byte statistics) ---
    "smooth_entropy_max": "Entropy (bits) below this is 'too smooth'",
    "smooth_entropy_penalty": "Risk added for too-smooth entropy",
    "noise_entropy_min": "Entropy (bits, sample-size corrected) above this is 'hyper-noise'",
    "noise_entropy_bias_correction": "Add the Miller-Madow term (K-1)/(2N ln 2) to the entropy before the hyper-noise check",
    "noise_entropy_penalty": "Risk added for hyper-noise entropy",
    "flat_variance_max": "Byte variance below this is a 'flat texture'",
    "flat_variance_penalty": "Risk added for flat texture",
    "physics_cap": "Upper bound of the summed physics penalties",
    # --- Container / provenance ---
    "format_risk": "Risk of a PNG container without camera metadata",
    "missing_origin_model_min": "Model score above this escalates when provenance is missing",
    "missing_origin_floor": "Risk floor applied by missing-origin escalation",
    "uncertainty_ceiling": "Risk below this without provenance is replaced by the uncertainty risk",
    "uncertainty_risk": "Risk reported for content with no signal and no provenance",
    # --- Verdict ---
    "synthetic_threshold": "Risk strictly above this is classified SYNTHETIC",
    "neural_attribution_min": "Model score above this is attributed to the neural net",
}


@dataclass(frozen=True)
class RiskPolicy:
    version: str = POLICY_VERSION

    # Physics Engine
    smooth_entropy_max: float = 4.0
    smooth_entropy_penalty: float = 0.5
    # Compressed photos measure ~7.94 bits after correction; uniform random bytes measure 8.0
    noise_entropy_min: float = 7.98
    noise_entropy_bias_correction: bool = True
    noise_entropy_penalty: float = 0.5
    flat_variance_max: float = 500.0
    flat_variance_penalty: float = 0.3
    physics_cap: float = 0.95

    # Format trap: PNG is the usual generator export and camera files keep EXIF
    format_risk: float = 0.95

    # Missing-origin escalation
    missing_origin_model_min: float = 0.15
    missing_origin_floor: float = 0.90

    # Uncertainty floor (never report near-zero risk without provenance)
    uncertainty_ceiling: float = 0.10
    uncertainty_risk: float = 0.45

    # Final classification
    synthetic_threshold: float = 0.5
    neural_attribution_min: float = 0.5

    def as_table(self) -> List[Dict[str, object]]:
        return [
            {"constant": f.name, "value": getattr(self, f.name), "meaning": _MEANINGS.get(f.name, "")}
            for f in fields(self)
        ]

    def as_dict(self) -> Dict[str, object]:
        return asdict(self)


DEFAULT_POLICY = RiskPolicy()
