import hashlib
import hmac
import logging
import re
from typing import Optional

from forensics_api.errors import AuthError, PayloadTooLarge

logger = logging.getLogger(__name__)

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_QUERY_SECRETS = re.compile(r"(?i)([?&](?:key|token|sig|signature|secret|api_key)=)[^&\s]+")


class SecurityManager:
    """Request guards shared by the HTTP layer and the collectors."""

    def __init__(self, max_log_length: int = 200):
        self.max_log_length = max_log_length

    def get_safe_hash(self, data: bytes) -> str:
        return hashlib.sha256(data).hexdigest()

    def sanitize_log_message(self, message: Optional[str]) -> str:
        """Strip control characters and credentials in query strings; truncate."""
        text = _CONTROL_CHARS.sub("", str(message or ""))
        text = _QUERY_SECRETS.sub(r"\1***", text)
        if len(text) > self.max_log_length:
            text = text[: self.max_log_length] + "..."
        return text

    def check_size(self, size: Optional[int], limit: int) -> None:
        if size is not None and size > limit:
            raise PayloadTooLarge(detail=f"{size} bytes exceeds the {limit} byte limit")

    def verify_shared_secret(self, headers, expected: str) -> None:
        """
        When a shared secret is configured, require it in X-Api-Secret or as a Bearer token.
        No secret configured means the endpoint is open.
        """
        if not expected:
            return
        provided = (
            headers.get("X-Api-Secret", "")
            or headers.get("Authorization", "").replace("Bearer ", "", 1)
        )
        if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
            logger.warning("[AUTH] Shared secret mismatch")
            raise AuthError(detail="Missing or invalid shared secret")


security_manager = SecurityManager()
