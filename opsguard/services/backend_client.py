"""
Console Backend Client

HTTP implementation of the three external collaborators the authorization
core consumes: the user identity source, the step-up challenge service and
the audit sink.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from opsguard.access.audit import AuditLogEntry
from opsguard.config import settings
from opsguard.exceptions import IdentityServiceError, NotAuthenticatedError
from opsguard.services.schemas import ReauthRequest, ReauthResult


logger = logging.getLogger(__name__)


CURRENT_USER_PATH = "/users/me"
REAUTH_PATH = "/functions/reauthStart"
AUDIT_LOG_PATH = "/entities/AuditLog"


class ConsoleBackendClient:
    """
    Async client for the console backend.

    Usage:
        async with ConsoleBackendClient() as backend:
            context = AuthorizationContext(identity_source=backend)
            await context.load()
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers: Dict[str, str] = {"Accept": "application/json"}
        key = api_key if api_key is not None else settings.BACKEND_API_KEY
        if key:
            headers["Authorization"] = f"Bearer {key}"

        self._client = httpx.AsyncClient(
            base_url=base_url or settings.BACKEND_URL,
            timeout=timeout or settings.BACKEND_TIMEOUT_SECONDS,
            headers=headers,
            transport=transport,
        )

    async def __aenter__(self) -> "ConsoleBackendClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            logger.warning(
                "Console backend unreachable",
                extra={"path": path, "error": str(e)},
            )
            raise IdentityServiceError(f"Console backend unreachable: {e}") from e

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None

    # ==================== Identity ====================

    async def fetch_current_user(self) -> Dict[str, Any]:
        """
        Fetch the signed-in user's record.

        Raises:
            NotAuthenticatedError: The backend has no session for us
            IdentityServiceError: Any other failure
        """
        response = await self._request("GET", CURRENT_USER_PATH)
        if response.status_code in (401, 403):
            raise NotAuthenticatedError()
        if response.is_error:
            raise IdentityServiceError(
                f"Failed to fetch current user (HTTP {response.status_code})",
                status_code=response.status_code,
            )

        payload = self._json(response)
        if not isinstance(payload, dict):
            raise IdentityServiceError("Malformed user record")
        return payload

    # ==================== Step-up ====================

    async def begin_reauth(self, password: str) -> ReauthResult:
        """
        Submit a re-entered password for step-up.

        Rejections come back as ``success=False``; only transport and server
        errors raise.
        """
        request = ReauthRequest(password=password)
        response = await self._request("POST", REAUTH_PATH, json=request.model_dump())

        payload = self._json(response)
        if response.status_code in (400, 401, 403):
            result = ReauthResult.from_response(payload or {})
            return ReauthResult(success=False, error=result.error or "Authentication failed")
        if response.is_error:
            raise IdentityServiceError(
                f"Step-up service failed (HTTP {response.status_code})",
                status_code=response.status_code,
            )
        return ReauthResult.from_response(payload)

    # ==================== Audit ====================

    async def append_audit_entry(self, entry: AuditLogEntry) -> None:
        """Append an entry to the backend's audit log."""
        response = await self._request(
            "POST",
            AUDIT_LOG_PATH,
            content=entry.to_json(),
            headers={"Content-Type": "application/json"},
        )
        if response.is_error:
            raise IdentityServiceError(
                f"Audit write rejected (HTTP {response.status_code})",
                status_code=response.status_code,
            )
