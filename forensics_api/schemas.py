from pydantic import BaseModel, ConfigDict
from typing import Optional, List, Dict, Any


class VerdictSection(BaseModel):
    aiProbability: float
    classification: str  # "SYNTHETIC", "ORGANIC"
    detection_method: str
    policy_version: Optional[str] = None


class AIArtifacts(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    confidence: float
    detected: bool
    model_flagged: str
    generator: Optional[str] = None


class NoiseAnalysis(BaseModel):
    entropy: float
    variance: float
    inconsistent: bool = False
    sample_count: int = 0


class ModelResult(BaseModel):
    source: str
    status: str  # "success", "unavailable", "error"
    score: float = 0.0
    label: Optional[str] = None
    reason: Optional[str] = None


class ReportDetails(BaseModel):
    aiArtifacts: AIArtifacts
    noiseAnalysis: NoiseAnalysis
    metadataDump: Dict[str, Any]
    hasCameraMetadata: bool = False
    metadataSignals: List[str] = []
    models: List[ModelResult] = []
    componentScores: Dict[str, float] = {}
    ela: Optional[str] = None  # base64 PNG error-level map


class AnalysisResponse(BaseModel):
    service: str
    timestamp: str
    fingerprint: Optional[str] = None
    fileType: Optional[str] = None
    verdict: VerdictSection
    details: ReportDetails
    errors: List[str] = []


class ErrorResponse(BaseModel):
    error: str
    detail: Optional[str] = None
