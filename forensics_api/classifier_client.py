import asyncio
import base64
import logging
import math
import time
from typing import Any, Iterator, List, Optional, Sequence, Tuple

import httpx
import runpod

from forensics_api.config import Settings
from forensics_api.evidence import ExternalModelResult

logger = logging.getLogger(__name__)

# Case-insensitive substrings. Fake labels win over real labels.
FAKE_LABEL_MARKERS = ("artificial", "fake", "cg", "synth", "ai")
REAL_LABEL_MARKERS = ("real", "human")

# Slack on top of the per-call timeout before the fan-out gives up on a classifier
TIMEOUT_GRACE_S = 2.0


def _iter_predictions(payload: Any) -> Iterator[dict]:
    """Yield {label, score} items from the shapes inference services return."""
    if isinstance(payload, dict):
        if "label" in payload:
            yield payload
            return
        for key in ("predictions", "results", "output"):
            if isinstance(payload.get(key), (list, dict)):
                yield from _iter_predictions(payload[key])
                return
        return
    if isinstance(payload, list):
        for item in payload:
            if isinstance(item, list):
                yield from _iter_predictions(item)
            elif isinstance(item, dict) and "label" in item:
                yield item


def _confidence(item: dict) -> Optional[float]:
    raw = item.get("score", item.get("confidence"))
    if isinstance(raw, bool):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value):
        return None
    return min(1.0, max(0.0, value))


def normalize_classifier_output(payload: Any) -> Optional[Tuple[float, str]]:
    """
    Reduce a classifier response to (probability of synthetic, matched label).
    Fake-like label -> its confidence; real-like label -> 1 - confidence; otherwise None.
    """
    predictions = []
    for item in _iter_predictions(payload):
        confidence = _confidence(item)
        if confidence is not None:
            predictions.append((str(item["label"]), confidence))

    for label, confidence in predictions:
        if any(marker in label.lower() for marker in FAKE_LABEL_MARKERS):
            return confidence, label
    for label, confidence in predictions:
        if any(marker in label.lower() for marker in REAL_LABEL_MARKERS):
            return 1.0 - confidence, label
    return None


def result_from_payload(source_id: str, payload: Any) -> ExternalModelResult:
    normalized = normalize_classifier_output(payload)
    if normalized is None:
        reason = "Unrecognized response shape"
        if isinstance(payload, dict) and payload.get("error"):
            reason = f"Classifier error: {str(payload['error'])[:200]}"
        logger.warning(f"[CLASSIFIER] {source_id}: {reason}")
        return ExternalModelResult.error(source_id, reason)
    score, label = normalized
    return ExternalModelResult.success(source_id, score, label=label)


class Classifier:
    source_id: str = "UNKNOWN"

    async def classify(self, data: bytes, client: httpx.AsyncClient, timeout: float) -> ExternalModelResult:
        raise NotImplementedError


class HuggingFaceClassifier(Classifier):
    """Image-classification model behind the HuggingFace Inference API."""

    def __init__(self, source_id: str, url: str, api_key: str = ""):
        self.source_id = source_id
        self.url = url
        self.api_key = api_key

    async def classify(self, data: bytes, client: httpx.AsyncClient, timeout: float) -> ExternalModelResult:
        if not self.api_key:
            return ExternalModelResult.unavailable(self.source_id, "No API key configured")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/octet-stream",
        }
        try:
            response = await client.post(self.url, headers=headers, content=data, timeout=timeout)
        except httpx.TimeoutException:
            return ExternalModelResult.error(self.source_id, f"Timed out after {timeout}s")
        except httpx.HTTPError as e:
            return ExternalModelResult.error(self.source_id, f"Request failed: {e.__class__.__name__}")

        if response.status_code == 503:
            # Model is loading on the inference side
            return ExternalModelResult.unavailable(self.source_id, "Model loading (HTTP 503)")
        if not response.is_success:
            return ExternalModelResult.error(self.source_id, f"HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError:
            return ExternalModelResult.error(self.source_id, "Invalid JSON response")
        return result_from_payload(self.source_id, payload)


async def poll_job(job, timeout: float = 30, interval: float = 0.2):
    """Tight async polling loop over a RunPod job (200ms sweet spot)."""
    start = time.monotonic()
    # First poll very quickly
    await asyncio.sleep(0.1)

    while True:
        status_raw = await asyncio.to_thread(job.status)

        # Handles both string and dict responses
        if isinstance(status_raw, dict):
            status = status_raw.get("status")
        else:
            status = status_raw

        if status == "COMPLETED":
            if isinstance(status_raw, dict) and "output" in status_raw:
                return status_raw["output"]
            return await asyncio.to_thread(job.output)

        if status in ("FAILED", "CANCELLED", "TIMED_OUT"):
            raise RuntimeError(f"RunPod job {status}")

        if time.monotonic() - start > timeout:
            raise TimeoutError(f"Inference timed out after {timeout}s")

        await asyncio.sleep(interval)


def _adapt_worker_output(output: Any) -> Any:
    """Forensic workers answer {"ai_score": x}; present that as a labelled prediction."""
    if isinstance(output, dict) and "label" not in output and "ai_score" in output:
        return [{"label": "artificial", "score": output.get("ai_score")}]
    return output


class RunPodClassifier(Classifier):
    """Classifier hosted on a RunPod serverless endpoint."""

    def __init__(self, source_id: str, endpoint_id: str, api_key: str = "", poll_interval: float = 0.2):
        self.source_id = source_id
        self.endpoint_id = endpoint_id
        self.api_key = api_key
        self.poll_interval = poll_interval
        self._endpoint = None

    def get_endpoint(self):
        """Retrieve or initialize the RunPod endpoint (cached)."""
        if self._endpoint is None:
            runpod.api_key = self.api_key
            self._endpoint = runpod.Endpoint(self.endpoint_id)
        return self._endpoint

    async def _cancel(self, job) -> None:
        try:
            await asyncio.to_thread(job.cancel)
        except Exception as e:
            logger.warning(f"[RUNPOD] Could not cancel job: {e}")

    async def classify(self, data: bytes, client: httpx.AsyncClient, timeout: float) -> ExternalModelResult:
        if not self.endpoint_id or not self.api_key:
            return ExternalModelResult.unavailable(self.source_id, "No endpoint configured")

        payload = {"image": base64.b64encode(data).decode("utf-8"), "task": "classify"}
        job = None
        try:
            job = await asyncio.to_thread(self.get_endpoint().run, payload)
            output = await poll_job(job, timeout=timeout, interval=self.poll_interval)
        except asyncio.CancelledError:
            if job is not None:
                await asyncio.shield(self._cancel(job))
            raise
        except TimeoutError as e:
            if job is not None:
                await self._cancel(job)
            return ExternalModelResult.error(self.source_id, str(e))
        except Exception as e:
            logger.error(f"[RUNPOD] Polling failed: {e}")
            return ExternalModelResult.error(self.source_id, str(e)[:200])

        return result_from_payload(self.source_id, _adapt_worker_output(output))


def build_classifiers(settings: Settings) -> List[Classifier]:
    classifiers: List[Classifier] = [
        HuggingFaceClassifier(name, url, settings.hf_api_key)
        for name, url in settings.hf_models.items()
    ]
    if settings.runpod_endpoint_id:
        classifiers.append(RunPodClassifier("RUNPOD", settings.runpod_endpoint_id, settings.runpod_api_key))
    return classifiers


async def _guarded(classifier: Classifier, data: bytes, client: httpx.AsyncClient, timeout: float) -> ExternalModelResult:
    try:
        return await asyncio.wait_for(classifier.classify(data, client, timeout), timeout + TIMEOUT_GRACE_S)
    except asyncio.TimeoutError:
        return ExternalModelResult.error(classifier.source_id, f"Timed out after {timeout}s")


async def collect_model_scores(
    data: bytes,
    classifiers: Sequence[Classifier],
    timeout: float = 20.0,
    client: Optional[httpx.AsyncClient] = None,
) -> List[ExternalModelResult]:
    """
    Query every classifier concurrently, one shot each, and wait for all of them.
    A failing classifier yields an error result for itself only. Results keep the
    order of `classifiers`.
    """
    if not classifiers:
        return []

    own_client = client is None
    if own_client:
        client = httpx.AsyncClient(timeout=timeout)
    try:
        outcomes = await asyncio.gather(
            *(_guarded(c, data, client, timeout) for c in classifiers),
            return_exceptions=True,
        )
    finally:
        if own_client:
            await client.aclose()

    results = []
    for classifier, outcome in zip(classifiers, outcomes):
        if isinstance(outcome, BaseException):
            logger.error(f"[CLASSIFIER] {classifier.source_id} crashed: {outcome!r}")
            outcome = ExternalModelResult.error(classifier.source_id, f"Unexpected failure: {outcome.__class__.__name__}")
        logger.info(
            f"[CLASSIFIER] {outcome.source_id}: {outcome.status.value} "
            f"score={outcome.score:.3f} label={outcome.label} reason={outcome.reason}"
        )
        results.append(outcome)
    return results
