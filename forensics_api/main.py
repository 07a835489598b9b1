import asyncio
import base64
import binascii
import json
import logging
from contextlib import asynccontextmanager
from typing import List, Optional, Tuple
from urllib.parse import urlparse

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

# Load environment variables at the very beginning
load_dotenv()

from forensics_api.config import Settings, get_settings
from forensics_api.classifier_client import Classifier, build_classifiers
from forensics_api.detectors import analyze_media
from forensics_api.errors import FetchError, ForensicsError, InputError, InternalError, LengthRequired
from forensics_api.schemas import AnalysisResponse, ErrorResponse
from forensics_api.scoring_config import DEFAULT_POLICY
from forensics_api.security import security_manager

# Set up logging
logging.basicConfig(level=getattr(logging, get_settings().log_level, logging.INFO))
logger = logging.getLogger(__name__)

# How often a running analysis checks whether the client went away
DISCONNECT_POLL_S = 0.5
WEBHOOK_TIMEOUT_S = 10.0
# Room for base64 inflation and JSON framing around the decoded limit
JSON_OVERHEAD_BYTES = 4096

# Fire-and-forget webhook deliveries still in flight
webhook_tasks = set()

_classifier_key = None
_classifier_cache: List[Classifier] = []


def get_classifiers(settings: Settings) -> List[Classifier]:
    """Build the classifier council once per configuration (keeps the RunPod endpoint cached)."""
    global _classifier_key, _classifier_cache
    key = (
        settings.hf_api_key,
        tuple(sorted(settings.hf_models.items())),
        settings.runpod_api_key,
        settings.runpod_endpoint_id,
    )
    if key != _classifier_key:
        _classifier_cache = build_classifiers(settings)
        _classifier_key = key
        logger.info(f"[STARTUP] Classifiers: {[c.source_id for c in _classifier_cache]}")
    return _classifier_cache


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    get_classifiers(get_settings())
    yield
    # Shutdown: drop webhook deliveries that have not finished
    for task in list(webhook_tasks):
        task.cancel()
    if webhook_tasks:
        await asyncio.gather(*webhook_tasks, return_exceptions=True)
    logger.info("[SHUTDOWN] Pending webhook deliveries cancelled")


app = FastAPI(title="Image Forensics API", lifespan=lifespan)

# ---- CORS ----
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---- Error rendering ----
ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Missing or invalid payload, or the source URL could not be fetched"},
    401: {"model": ErrorResponse, "description": "Shared secret missing or wrong"},
    411: {"model": ErrorResponse, "description": "Multipart upload without Content-Length"},
    413: {"model": ErrorResponse, "description": "Payload above MAX_UPLOAD_BYTES"},
    500: {"model": ErrorResponse, "description": "Analysis failed"},
}


@app.exception_handler(ForensicsError)
async def forensics_error_handler(request: Request, exc: ForensicsError):
    if exc.status_code >= 500:
        logger.error(f"[ERROR] {exc.message}: {exc.detail}")
    body = ErrorResponse(error=exc.message, detail=exc.detail)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(exclude_none=True))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"[ERROR] Unhandled: {exc!r}", exc_info=exc)
    body = ErrorResponse(error=InternalError.public_message)
    return JSONResponse(status_code=500, content=body.model_dump(exclude_none=True))


# ---- Payload helpers ----
async def read_body(request: Request, limit: int) -> bytes:
    """Read the request body, aborting as soon as it exceeds `limit`."""
    chunks = []
    total = 0
    async for chunk in request.stream():
        total += len(chunk)
        security_manager.check_size(total, limit)
        chunks.append(chunk)
    return b"".join(chunks)


def decode_base64(raw: str) -> bytes:
    text = str(raw)
    # Accept data URLs: data:image/png;base64,....
    if text.startswith("data:") and "," in text:
        text = text.split(",", 1)[1]
    text = "".join(text.split())
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError):
        raise InputError("Invalid base64 in 'data'")


async def fetch_image(url: str, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> bytes:
    """Download the source image with a timeout and the upload size cap."""
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InputError("Only http(s) URLs are supported")

    safe_url = security_manager.sanitize_log_message(url)
    logger.info(f"[FETCH] Fetching: {safe_url}")
    limit = settings.max_upload_bytes
    try:
        async with httpx.AsyncClient(timeout=settings.fetch_timeout_s, follow_redirects=True, transport=transport) as client:
            async with client.stream("GET", url) as response:
                if not response.is_success:
                    raise FetchError(f"Download failed: HTTP {response.status_code}")
                declared = response.headers.get("content-length")
                if declared and declared.isdigit():
                    security_manager.check_size(int(declared), limit)
                chunks = []
                total = 0
                async for chunk in response.aiter_bytes():
                    total += len(chunk)
                    security_manager.check_size(total, limit)
                    chunks.append(chunk)
    except httpx.TimeoutException:
        raise FetchError(f"Download timed out after {settings.fetch_timeout_s}s")
    except httpx.HTTPError as e:
        raise FetchError(f"Download failed: {e.__class__.__name__}")
    return b"".join(chunks)


async def read_payload(request: Request, settings: Settings) -> Tuple[bytes, str]:
    """
    Resolve the image bytes from one of:
      JSON {"data": base64} | JSON {"url": ...} | multipart "file" | raw binary body.
    Returns (bytes, description for logging).
    """
    limit = settings.max_upload_bytes
    content_type = request.headers.get("content-type", "").lower()
    declared = request.headers.get("content-length", "")

    if content_type.startswith("application/json"):
        json_limit = limit * 4 // 3 + JSON_OVERHEAD_BYTES
        if declared.isdigit():
            security_manager.check_size(int(declared), json_limit)
        body = await read_body(request, json_limit)
        try:
            payload = json.loads(body or b"null")
        except ValueError:
            raise InputError("Invalid JSON body")
        if not isinstance(payload, dict):
            raise InputError("JSON body must be an object")

        if payload.get("data"):
            data = decode_base64(payload["data"])
            security_manager.check_size(len(data), limit)
            name = security_manager.sanitize_log_message(payload.get("filename") or "inline")
            mimetype = security_manager.sanitize_log_message(payload.get("mimetype") or "unknown type")
            return data, f"base64:{name} ({mimetype})"

        url = payload.get("url") or payload.get("mediaUrl")
        if url:
            try:
                data = await fetch_image(str(url), settings)
            except FetchError as e:
                raise InputError("Could not fetch source image", detail=e.message)
            return data, f"url:{security_manager.sanitize_log_message(url)}"

        raise InputError("Missing 'data' or 'url'")

    if declared.isdigit():
        security_manager.check_size(int(declared), limit + JSON_OVERHEAD_BYTES)

    if content_type.startswith("multipart/form-data"):
        # The form parser spools the whole body, so the cap has to come from the declared length
        if not declared.isdigit():
            raise LengthRequired(detail="multipart uploads must declare Content-Length")
        form = await request.form()
        upload = form.get("file")
        if upload is None or isinstance(upload, str):
            raise InputError("Missing 'file' field")
        data = await upload.read()
        security_manager.check_size(len(data), limit)
        return data, f"upload:{security_manager.sanitize_log_message(upload.filename)}"

    data = await read_body(request, limit)
    if not data:
        raise InputError("Empty request body")
    return data, f"raw:{content_type or 'unknown type'}"


async def await_unless_disconnected(request: Request, task: asyncio.Task):
    """Wait for `task`; cancel it (and its in-flight classifier calls) if the client disconnects."""
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_S)
            if task in done:
                return task.result()
            if await request.is_disconnected():
                logger.warning("[REQUEST] Client disconnected, cancelling analysis")
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                return None
    except asyncio.CancelledError:
        task.cancel()
        raise


async def deliver_webhook(url: str, report: dict) -> None:
    try:
        async with httpx.AsyncClient(timeout=WEBHOOK_TIMEOUT_S) as client:
            response = await client.post(url, json=report)
        if not response.is_success:
            logger.warning(f"[WEBHOOK] Sink answered HTTP {response.status_code}")
    except httpx.HTTPError as e:
        logger.warning(f"[WEBHOOK] Delivery failed: {e.__class__.__name__}")


def schedule_webhook(url: str, report: dict) -> None:
    task = asyncio.create_task(deliver_webhook(url, report))
    webhook_tasks.add(task)
    task.add_done_callback(webhook_tasks.discard)


# ---- Healthcheck ----
@app.get("/health")
async def health():
    return {"status": "healthy"}


# ---- Active policy ----
@app.get("/policy")
async def policy():
    return {"version": DEFAULT_POLICY.version, "policy": DEFAULT_POLICY.as_table()}


# ---- Analyze endpoint ----
@app.post("/analyze", response_model=AnalysisResponse, responses=ERROR_RESPONSES)
@app.post("/api/analyze", response_model=AnalysisResponse, responses=ERROR_RESPONSES)
async def analyze(request: Request):
    """
    Forgery-likelihood report for one image.
    """
    settings = get_settings()
    security_manager.verify_shared_secret(request.headers, settings.shared_secret)

    data, source = await read_payload(request, settings)
    logger.info(f"[REQUEST] Processing: {source} | Size: {len(data)} bytes")

    task = asyncio.create_task(analyze_media(
        data,
        classifiers=get_classifiers(settings),
        timeout=settings.classifier_timeout_s,
        target_samples=settings.entropy_sample_target,
    ))
    try:
        report = await await_unless_disconnected(request, task)
    except ForensicsError:
        raise
    except Exception as e:
        logger.error(f"[ERROR] Analysis crashed: {e!r}", exc_info=True)
        raise InternalError()

    if report is None:
        # Client closed request; nobody is listening for the body
        return Response(status_code=499)

    if settings.webhook_url:
        schedule_webhook(settings.webhook_url, report)
    return report


def run() -> None:
    """Console entry point (`forensics-api`): serve the app with uvicorn on HOST:PORT."""
    import uvicorn

    settings = get_settings()
    logger.info(f"[STARTUP] Serving on {settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
