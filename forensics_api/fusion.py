"""
Risk fusion: maps an EvidenceBundle to a bounded risk and a verdict.

Policy (see scoring_config.RiskPolicy for the constants):
    1. model    = max of the classifier scores (0 when none)
    2. physics  = additive byte-statistics penalties, capped
    3. format   = fixed risk for PNG without camera metadata
    4. risk     = max(model, physics, format)
    5. missing-origin escalation: weak model signal + no provenance -> floor
    6. uncertainty floor: near-zero risk + no provenance -> fixed mid risk
    7. clamp, classify, attribute

Pure: no I/O, no state. The same bundle and policy always give the same verdict.
"""
import math
from typing import Optional, Tuple

from forensics_api.evidence import Classification, EvidenceBundle, Verdict
from forensics_api.scoring_config import DEFAULT_POLICY, RiskPolicy

BYTE_ALPHABET = 256
MAX_BYTE_ENTROPY = 8.0

METHOD_FORMAT = "FORMAT_ANOMALY"
METHOD_PHYSICS = "PHYSICS_ENGINE"
METHOD_NEURAL = "NEURAL_NET"
METHOD_UNCERTAIN = "UNCERTAIN"
METHOD_HEURISTIC_UNCERTAINTY = "HEURISTIC_UNCERTAINTY"
MISSING_ORIGIN_SUFFIX = "+MISSING_ORIGIN"


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def strongest_model(evidence: EvidenceBundle) -> Tuple[float, Optional[str]]:
    """Highest classifier score and its source; ties go to the earlier source."""
    best_score, best_source = 0.0, None
    for source_id, score in evidence.model_scores:
        if best_source is None or score > best_score:
            best_score, best_source = score, source_id
    return best_score, best_source


def corrected_entropy(evidence: EvidenceBundle, policy: RiskPolicy = DEFAULT_POLICY) -> float:
    """
    Entropy in bits with the Miller-Madow sample-size correction, (K - 1) / (2N ln 2).

    The plug-in estimate over N sampled bytes reads low by roughly that amount, so
    without it the hyper-noise check would move with the sampling target. K is the
    byte alphabet bounded by N; near the top of the range every value is observed.
    """
    entropy = evidence.entropy_bits
    n = evidence.sample_count
    if not policy.noise_entropy_bias_correction or not n:
        return entropy
    k = min(BYTE_ALPHABET, n)
    return min(MAX_BYTE_ENTROPY, entropy + (k - 1) / (2.0 * n * math.log(2)))


def physics_score(evidence: EvidenceBundle, policy: RiskPolicy = DEFAULT_POLICY) -> float:
    if evidence.sample_count == 0:
        return 0.0

    entropy = evidence.entropy_bits
    score = 0.0
    if entropy < policy.smooth_entropy_max:
        score += policy.smooth_entropy_penalty
    if corrected_entropy(evidence, policy) > policy.noise_entropy_min:
        score += policy.noise_entropy_penalty
    if evidence.variance < policy.flat_variance_max:
        score += policy.flat_variance_penalty
    return min(score, policy.physics_cap)


def format_risk(evidence: EvidenceBundle, policy: RiskPolicy = DEFAULT_POLICY) -> float:
    if evidence.format_is_png and not evidence.has_camera_metadata:
        return policy.format_risk
    return 0.0


def fuse(evidence: EvidenceBundle, policy: RiskPolicy = DEFAULT_POLICY) -> Verdict:
    model, source = strongest_model(evidence)
    physics = physics_score(evidence, policy)
    container = format_risk(evidence, policy)

    risk = max(model, physics, container)

    missing_origin = 0.0
    escalated = model > policy.missing_origin_model_min and not evidence.has_camera_metadata
    if escalated:
        missing_origin = policy.missing_origin_floor
        risk = max(risk, missing_origin)

    # Attribution follows the pre-override components: format > physics > model
    if container > 0 and container >= physics and container >= model:
        method = METHOD_FORMAT
    elif physics > 0 and physics >= model:
        method = METHOD_PHYSICS
    elif model > policy.neural_attribution_min:
        method = f"{METHOD_NEURAL}:{source}"
    else:
        method = METHOD_UNCERTAIN
    if escalated:
        method += MISSING_ORIGIN_SUFFIX

    uncertainty = 0.0
    if risk < policy.uncertainty_ceiling and not evidence.has_camera_metadata:
        uncertainty = policy.uncertainty_risk
        risk = uncertainty
        method = METHOD_HEURISTIC_UNCERTAINTY

    risk = _clamp(risk)
    classification = Classification.SYNTHETIC if risk > policy.synthetic_threshold else Classification.ORGANIC

    components = {
        "model": model,
        "physics": physics,
        "format": container,
        "missing_origin": missing_origin,
        "uncertainty_floor": uncertainty,
    }
    for source_id, score in evidence.model_scores:
        components[f"model:{source_id}"] = score

    return Verdict(
        risk=risk,
        classification=classification,
        method=method,
        component_scores=components,
        detection_source=source,
        policy_version=policy.version,
    )
