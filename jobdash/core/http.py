"""
Async HTTP client for the scheduler backend.

Wraps httpx.AsyncClient, unwraps the ``{status, data, message}`` envelope and
turns failures into AppException subclasses. The session cookie lives in the
client's cookie jar.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import httpx
from pydantic import ValidationError

from jobdash.core.config import get_settings
from jobdash.core.exceptions import (
    AppException,
    NotFoundException,
    UnauthorizedException,
)
from jobdash.core.schemas import ApiEnvelope

logger = logging.getLogger(__name__)

UnauthorizedHook = Callable[[], Union[Awaitable[None], None]]


class ApiClient:
    """Thin envelope-aware wrapper around httpx.AsyncClient."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
    ):
        settings = get_settings()
        self.api_prefix = settings.API_PREFIX
        self.auth_prefix = settings.AUTH_PREFIX
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.API_BASE_URL,
            timeout=timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )
        self._unauthorized_hooks: list[UnauthorizedHook] = []

    @property
    def base_url(self) -> str:
        return str(self._client.base_url)

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    def on_unauthorized(self, hook: UnauthorizedHook) -> None:
        """Register a callback fired whenever any call returns 401."""
        self._unauthorized_hooks.append(hook)

    async def aclose(self) -> None:
        await self._client.aclose()

    # ==================== Requests ====================

    async def get(self, path: str, *, params: Optional[Dict[str, Any]] = None, auth: bool = False) -> Any:
        return await self.request("GET", path, params=params, auth=auth)

    async def post(self, path: str, *, json: Any = None, auth: bool = False) -> Any:
        return await self.request("POST", path, json=json, auth=auth)

    async def patch(self, path: str, *, json: Any = None) -> Any:
        return await self.request("PATCH", path, json=json)

    async def delete(self, path: str) -> Any:
        return await self.request("DELETE", path)

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
        auth: bool = False,
    ) -> Any:
        """Send a request and return the envelope's ``data``.

        ``auth`` selects the unversioned auth prefix instead of the entity
        API prefix. ``None`` query parameters are dropped.
        """
        url = f"{self.auth_prefix if auth else self.api_prefix}{path}"
        query = {k: v for k, v in (params or {}).items() if v is not None}

        try:
            response = await self._client.request(method, url, json=json, params=query or None)
        except httpx.HTTPError as e:
            logger.warning(f"{method} {url} failed: {type(e).__name__}: {e}")
            raise AppException(
                f"Network error: {type(e).__name__}", status_code=httpx.codes.SERVICE_UNAVAILABLE
            ) from e

        if response.status_code == httpx.codes.UNAUTHORIZED:
            await self._fire_unauthorized()
            raise UnauthorizedException(self._error_message(response) or "unauthenticated")

        envelope = self._parse_envelope(response)

        if response.status_code == httpx.codes.NOT_FOUND:
            raise NotFoundException(self._error_message(response, envelope) or "Resource not found")

        if envelope is not None and envelope.status == "error":
            raise AppException(
                envelope.message or envelope.error or "Request failed",
                status_code=response.status_code if response.is_error else httpx.codes.BAD_REQUEST,
            )

        if response.is_error:
            raise AppException(
                self._error_message(response, envelope) or f"Request failed ({response.status_code})",
                status_code=response.status_code,
            )

        return envelope.data if envelope is not None else None

    # ==================== Helpers ====================

    async def _fire_unauthorized(self) -> None:
        for hook in list(self._unauthorized_hooks):
            result = hook()
            if inspect.isawaitable(result):
                await result

    @staticmethod
    def _parse_envelope(response: httpx.Response) -> Optional[ApiEnvelope]:
        if not response.content:
            return None
        try:
            payload = response.json()
        except ValueError:
            return None
        if not isinstance(payload, dict):
            return None
        try:
            return ApiEnvelope.model_validate(payload)
        except ValidationError:
            return None

    @classmethod
    def _error_message(
        cls, response: httpx.Response, envelope: Optional[ApiEnvelope] = None
    ) -> str:
        envelope = envelope or cls._parse_envelope(response)
        if envelope is not None and (envelope.message or envelope.error):
            return envelope.message or envelope.error or ""
        return (response.text or "").strip()
