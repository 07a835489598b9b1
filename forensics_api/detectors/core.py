import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

import httpx

from forensics_api.classifier_client import Classifier, collect_model_scores
from forensics_api.detectors.ela import ElaSignal, collect_ela
from forensics_api.detectors.metadata import MetadataSignal, collect_metadata
from forensics_api.detectors.physics import TARGET_SAMPLE_COUNT, ByteStatistics, compute_byte_statistics
from forensics_api.detectors.utils import fingerprint, get_exif_data, is_png, sniff_format
from forensics_api.evidence import EvidenceBundle, ExternalModelResult, ResultStatus
from forensics_api.fusion import fuse
from forensics_api.report import build_report
from forensics_api.scoring_config import DEFAULT_POLICY, RiskPolicy

logger = logging.getLogger(__name__)


@dataclass
class CollectedSignals:
    evidence: EvidenceBundle
    stats: ByteStatistics
    metadata: MetadataSignal
    model_results: List[ExternalModelResult]
    ela: ElaSignal
    file_type: str
    errors: List[str] = field(default_factory=list)


def _log_decision(report: dict, elapsed_ms: float) -> dict:
    """Log the final decision before returning."""
    verdict = report["verdict"]
    noise = report["details"]["noiseAnalysis"]
    logger.info(
        f"[DECISION] Verdict: {verdict['classification']} ({verdict['aiProbability']:.2f}) "
        f"| Method: {verdict['detection_method']} | Model: {report['details']['aiArtifacts']['confidence']:.2f} "
        f"| Entropy: {noise['entropy']:.2f} | Camera: {report['details']['hasCameraMetadata']} "
        f"| {elapsed_ms:.0f}ms"
    )
    return report


async def gather_evidence(
    data: bytes,
    *,
    classifiers: Sequence[Classifier] = (),
    extractor: Callable[[bytes], dict] = get_exif_data,
    timeout: float = 20.0,
    target_samples: int = TARGET_SAMPLE_COUNT,
    client: Optional[httpx.AsyncClient] = None,
) -> CollectedSignals:
    """
    Run every collector for one buffer. Local statistics are synchronous; metadata
    extraction and ELA run in worker threads alongside the classifier fan-out.
    """
    t_local = time.perf_counter()
    stats = compute_byte_statistics(data, target_samples)
    file_type = sniff_format(data)
    logger.info(f"[TIMING] Byte statistics: {(time.perf_counter() - t_local) * 1000:.2f}ms")

    metadata, ela, model_results = await asyncio.gather(
        asyncio.to_thread(collect_metadata, data, extractor),
        asyncio.to_thread(collect_ela, data),
        collect_model_scores(data, classifiers, timeout=timeout, client=client),
    )

    errors = [e for e in (metadata.error, ela.error) if e]
    for result in model_results:
        if result.status is ResultStatus.ERROR:
            errors.append(f"Classifier {result.source_id} failed: {result.reason}")

    evidence = EvidenceBundle(
        entropy=stats.entropy,
        variance=stats.variance,
        has_camera_metadata=metadata.has_camera_metadata,
        format_is_png=is_png(data),
        model_scores=tuple((r.source_id, r.evidence_score) for r in model_results),
        sample_count=stats.sample_count,
    )
    return CollectedSignals(
        evidence=evidence,
        stats=stats,
        metadata=metadata,
        model_results=list(model_results),
        ela=ela,
        file_type=file_type,
        errors=errors,
    )


async def analyze_media(
    data: bytes,
    *,
    classifiers: Sequence[Classifier] = (),
    extractor: Callable[[bytes], dict] = get_exif_data,
    timeout: float = 20.0,
    policy: RiskPolicy = DEFAULT_POLICY,
    target_samples: int = TARGET_SAMPLE_COUNT,
    client: Optional[httpx.AsyncClient] = None,
) -> dict:
    """
    bytes -> collectors (parallel) -> fusion (pure) -> report.
    """
    total_start = time.perf_counter()
    signals = await gather_evidence(
        data,
        classifiers=classifiers,
        extractor=extractor,
        timeout=timeout,
        target_samples=target_samples,
        client=client,
    )
    verdict = fuse(signals.evidence, policy)
    report = build_report(
        signals.evidence,
        verdict,
        model_results=signals.model_results,
        metadata=signals.metadata,
        stats=signals.stats,
        ela=signals.ela.image,
        file_type=signals.file_type,
        fingerprint=fingerprint(data),
        errors=signals.errors,
    )
    return _log_decision(report, (time.perf_counter() - total_start) * 1000)
