"""API key authentication for the search service.

Every ``/api/v1`` request must present the configured key in the
``X-Api-Key`` header. Operational endpoints (health, metrics, docs) are
mounted outside the protected router and stay open.

Design
- ``ApiKeyAuthenticator`` owns the comparison (constant-time)
- ``create_api_key_dependency`` offers a drop-in FastAPI integration path
- An unset key disables the check; the service logs a warning at startup
"""

import secrets
from typing import Callable, Optional

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader
import structlog

logger = structlog.get_logger("auth")

API_KEY_HEADER = "X-Api-Key"

api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


class ApiKeyAuthenticator:
    """Validates request API keys against a single configured secret."""

    def __init__(self, api_key: Optional[str]):
        self.api_key = api_key or None

    @property
    def enabled(self) -> bool:
        """Whether requests are checked at all."""
        return self.api_key is not None

    def is_valid(self, provided_key: Optional[str]) -> bool:
        """Check a provided key; always ``True`` when authentication is off."""
        if not self.enabled:
            return True
        if not provided_key:
            return False
        return secrets.compare_digest(provided_key.encode("utf-8"), self.api_key.encode("utf-8"))


def create_api_key_dependency(config) -> Callable:
    """Create the API key dependency from config.

    Raises ``HTTPException`` with 401 when the key is missing or wrong.
    """
    authenticator = ApiKeyAuthenticator(config.ml_api_key)
    if not authenticator.enabled:
        logger.warning("API key authentication disabled; set ML_API_KEY to enable it")

    def require_api_key(provided_key: Optional[str] = Security(api_key_header)) -> None:
        """FastAPI dependency rejecting requests without a valid key."""
        if not authenticator.is_valid(provided_key):
            logger.warning("Rejected request with missing or invalid API key")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Missing or invalid API key",
            )

    return require_api_key
