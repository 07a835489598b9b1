from forensics_api.detectors.core import analyze_media, gather_evidence

__all__ = ["analyze_media", "gather_evidence"]
