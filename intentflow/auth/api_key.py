"""API key authentication."""
from fastapi import HTTPException, Request, Security
from fastapi.security import APIKeyHeader
from typing import Optional
import structlog

log = structlog.get_logger()

API_KEY_HEADER = "X-Intentflow-Key"

# API key header scheme
api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


class APIKeyRegistry:
    """
    In-memory API key registry.

    Keys come from the API_KEYS setting (comma-separated) at startup.
    """

    def __init__(self, keys: str | list[str] | None = None):
        self._keys: set[str] = set()
        if isinstance(keys, str):
            keys = keys.split(",")
        for key in keys or []:
            key = key.strip()
            if key:
                self._keys.add(key)
        log.info("api_keys.loaded", count=len(self._keys))

    def validate(self, key: str) -> bool:
        return key in self._keys

    def add_key(self, key: str):
        self._keys.add(key)
        log.info("api_key.added")

    def remove_key(self, key: str) -> bool:
        """
        Remove an API key from the registry.

        Returns:
            True if key was removed
        """
        if key in self._keys:
            self._keys.discard(key)
            log.info("api_key.removed")
            return True
        return False

    def count(self) -> int:
        return len(self._keys)


async def verify_api_key(request: Request, api_key: Optional[str] = Security(api_key_header)) -> str:
    """
    Dependency to verify the API key when REQUIRE_AUTH is on.

    Args:
        request: Current request; the registry lives on ``app.state.api_keys``
        api_key: API key from X-Intentflow-Key header

    Returns:
        Validated API key, or "anonymous" when authentication is off

    Raises:
        HTTPException: If API key is missing or invalid
    """
    settings = request.app.state.pipeline.settings
    registry: APIKeyRegistry = request.app.state.api_keys

    if not settings.REQUIRE_AUTH or registry.count() == 0:
        log.debug("auth.skipped", reason="auth_disabled" if not settings.REQUIRE_AUTH else "no_keys_configured")
        return "anonymous"

    if not api_key:
        log.warning("auth.failed", reason="missing_key")
        raise HTTPException(
            status_code=401,
            detail=f"Missing API key. Provide {API_KEY_HEADER} header.",
            headers={"WWW-Authenticate": "ApiKey"}
        )

    if not registry.validate(api_key):
        log.warning("auth.failed", reason="invalid_key")
        raise HTTPException(
            status_code=403,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"}
        )

    log.debug("auth.success")
    return api_key
