"""End-to-end analysis: bytes in, report out."""
from unittest.mock import AsyncMock, patch

import pytest

from conftest import MAKE_TAG, MODEL_TAG, StubClassifier, make_photo_jpeg
from forensics_api.detectors import analyze_media, gather_evidence
from forensics_api.evidence import ExternalModelResult


@pytest.mark.asyncio
async def test_empty_buffer_reports_uncertainty():
    report = await analyze_media(b"")

    verdict = report["verdict"]
    assert verdict["aiProbability"] == 0.45
    assert verdict["classification"] == "ORGANIC"
    assert verdict["detection_method"] == "HEURISTIC_UNCERTAINTY"
    assert report["details"]["noiseAnalysis"]["sample_count"] == 0
    assert report["fileType"] == "unknown"
    assert any("Metadata extraction failed" in e for e in report["errors"])


@pytest.mark.asyncio
async def test_camera_photo_flagged_by_classifier(camera_jpeg, artificial_classifier, silent_classifier):
    report = await analyze_media(camera_jpeg, classifiers=[artificial_classifier, silent_classifier])

    verdict = report["verdict"]
    assert verdict["aiProbability"] == pytest.approx(0.92)
    assert verdict["classification"] == "SYNTHETIC"
    assert verdict["detection_method"] == "NEURAL_NET:GENERAL"
    assert report["details"]["hasCameraMetadata"] is True
    assert report["details"]["aiArtifacts"]["model_flagged"] == "GENERAL"
    assert report["details"]["metadataDump"]["Make"] == "Canon"
    assert report["errors"] == []


@pytest.mark.asyncio
async def test_png_without_provenance_is_a_format_anomaly(noise_png):
    report = await analyze_media(noise_png)

    verdict = report["verdict"]
    assert verdict["aiProbability"] >= 0.95
    assert verdict["classification"] == "SYNTHETIC"
    assert verdict["detection_method"] == "FORMAT_ANOMALY"
    assert report["fileType"] == "png"


@pytest.mark.asyncio
async def test_weak_model_signal_without_provenance_escalates(bare_jpeg):
    weak = StubClassifier("GENERAL", result=ExternalModelResult.success("GENERAL", 0.2))
    report = await analyze_media(bare_jpeg, classifiers=[weak])

    assert report["details"]["hasCameraMetadata"] is False
    assert report["verdict"]["aiProbability"] >= 0.90
    assert report["verdict"]["detection_method"].endswith("+MISSING_ORIGIN")


@pytest.mark.asyncio
async def test_failing_classifier_does_not_affect_the_others(camera_jpeg, artificial_classifier):
    crashing = StubClassifier("DEEPFAKE", exc=ConnectionError("socket closed"))
    report = await analyze_media(camera_jpeg, classifiers=[crashing, artificial_classifier])

    assert report["verdict"]["aiProbability"] == pytest.approx(0.92)
    models = {m["source"]: m for m in report["details"]["models"]}
    assert models["DEEPFAKE"]["status"] == "error"
    assert models["DEEPFAKE"]["score"] == 0.0
    assert models["GENERAL"]["status"] == "success"
    assert report["errors"] == ["Classifier DEEPFAKE failed: Unexpected failure: ConnectionError"]


@pytest.mark.asyncio
async def test_injected_extractor_supplies_camera_metadata(noise_png):
    report = await analyze_media(noise_png, extractor=lambda data: {"Make": "Nikon"})

    # Camera metadata disarms the PNG trap; only the byte statistics remain
    assert report["details"]["componentScores"]["format"] == 0.0
    assert report["verdict"]["detection_method"] == "PHYSICS_ENGINE"
    assert report["verdict"]["aiProbability"] == pytest.approx(0.5)
    assert report["verdict"]["classification"] == "ORGANIC"


@pytest.mark.asyncio
async def test_every_classifier_sees_the_same_bytes(camera_jpeg):
    stubs = [StubClassifier(name, result=ExternalModelResult.success(name, 0.0)) for name in ("A", "B", "C")]
    signals = await gather_evidence(camera_jpeg, classifiers=stubs, timeout=1.0)

    assert [s.calls for s in stubs] == [1, 1, 1]
    assert signals.evidence.model_scores == (("A", 0.0), ("B", 0.0), ("C", 0.0))
    assert signals.evidence.has_camera_metadata is True


@pytest.mark.asyncio
async def test_classifier_settings_are_forwarded(bare_jpeg):
    fake_scores = AsyncMock(return_value=[ExternalModelResult.unavailable("GENERAL", "No API key configured")])
    with patch("forensics_api.detectors.core.collect_model_scores", fake_scores):
        report = await analyze_media(bare_jpeg, classifiers=["sentinel"], timeout=3.5)

    fake_scores.assert_awaited_once()
    args, kwargs = fake_scores.call_args
    assert args == (bare_jpeg, ["sentinel"])
    assert kwargs["timeout"] == 3.5
    assert report["details"]["models"][0]["status"] == "unavailable"


@pytest.mark.asyncio
@pytest.mark.parametrize("target_samples", [5000, 50000])
@pytest.mark.parametrize("seed", range(4))
async def test_ordinary_photo_without_exif_gets_uncertainty_floor(seed, target_samples):
    report = await analyze_media(make_photo_jpeg(seed), target_samples=target_samples)

    noise = report["details"]["noiseAnalysis"]
    assert 7.5 < noise["entropy"] < 7.98
    assert noise["inconsistent"] is False
    assert report["details"]["componentScores"]["physics"] == 0.0
    assert report["verdict"]["aiProbability"] == 0.45
    assert report["verdict"]["detection_method"] == "HEURISTIC_UNCERTAINTY"


@pytest.mark.asyncio
@pytest.mark.parametrize("seed", range(3))
async def test_camera_photo_judged_real_stays_at_zero(seed):
    photo = make_photo_jpeg(seed, {MAKE_TAG: "Canon", MODEL_TAG: "Canon EOS R5"})
    human = StubClassifier("GENERAL", payload=[{"label": "human", "score": 1.0}])

    report = await analyze_media(photo, classifiers=[human])

    assert report["details"]["hasCameraMetadata"] is True
    assert report["verdict"]["aiProbability"] == 0.0
    assert report["verdict"]["classification"] == "ORGANIC"
    assert report["verdict"]["detection_method"] == "UNCERTAIN"
