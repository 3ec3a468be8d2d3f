"""
HTTP transport for the push endpoint.

Wraps a synchronous :class:`httpx.Client` and turns every way a request can
go wrong into a typed :mod:`usage_spine.core.errors` exception, so the
controller never has to look at status codes or exception text.

Classification:
    ============================  =======================================
    Condition                     Raised
    ============================  =======================================
    connect / DNS / read failure  NetworkError      (NETWORK_UNREACHABLE)
    request timeout               TimeoutError      (NETWORK_TIMEOUT)
    401 / 403                     AuthenticationError (AUTH_EXPIRED)
    429                           RateLimitError    (honours Retry-After)
    5xx                           ServerError       (server code if given)
    other non-2xx                 ProtocolError     (server code if given)
    2xx, unparseable / legacy     ProtocolError
    ============================  =======================================

    The health check reports timeouts as ``NetworkError`` and every other
    non-2xx except 401/403 as ``ServerError``.

Response envelope:
    Bodies may arrive as ``{"success": true, "data": {...}}``; the
    envelope is unwrapped.  Error bodies are ``{"code", "message"}`` or
    ``{"success": false, "error": {"code", "message"}}``.

Tags:
    usage-spine, push, http, httpx, transport

Doc-Types:
    - API Reference
    - Wire Protocol
"""

from __future__ import annotations

from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from usage_spine import __version__
from usage_spine.auth.credentials import CredentialProvider
from usage_spine.core.errors import (
    AuthenticationError,
    CredentialMissingError,
    NetworkError,
    ProtocolError,
    RateLimitError,
    ServerError,
    TimeoutError,
    UsageSpineError,
)
from usage_spine.core.logging import get_logger
from usage_spine.push.models import ErrorBody, HealthResponse, PushRequest, PushResponse

logger = get_logger(__name__)


def unwrap_envelope(payload: Any) -> Any:
    """Strip a ``{success, data}`` envelope if present."""
    if isinstance(payload, dict) and "success" in payload and "data" in payload:
        return payload["data"]
    return payload


def parse_error_body(payload: Any) -> ErrorBody | None:
    """Extract ``{code, message}`` from either error-body shape."""
    if not isinstance(payload, dict):
        return None
    candidate = payload.get("error") if isinstance(payload.get("error"), dict) else payload
    try:
        return ErrorBody.model_validate(candidate)
    except PydanticValidationError:
        return None


def _retry_after(response: httpx.Response) -> int | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


class PushTransport:
    """Authenticated client for the health and push endpoints.

    The bearer token is read from *credentials* on every request, so a
    credential refreshed mid-session is picked up without rebuilding the
    client.

    Args:
        base_url: Service root, e.g. ``https://api.roiai.fyi``.
        credentials: Source of the bearer token.
        push_path: Path of the batch upload endpoint.
        health_path: Path of the authenticated health endpoint.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (``httpx.MockTransport`` in tests).
    """

    def __init__(
        self,
        base_url: str,
        credentials: CredentialProvider,
        *,
        push_path: str = "/api/v1/cli/upsync",
        health_path: str = "/api/v1/cli/health",
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.credentials = credentials
        self.push_path = push_path
        self.health_path = health_path
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"User-Agent": f"usage-spine/{__version__}", "Accept": "application/json"},
        )

    # -- lifecycle -------------------------------------------------------------

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> PushTransport:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    # -- requests --------------------------------------------------------------

    def _auth_headers(self) -> dict[str, str]:
        token = self.credentials.get_token()
        if not token:
            raise CredentialMissingError("No API token available; log in first")
        return {"Authorization": f"Bearer {token}"}

    def _send(self, method: str, path: str, *, operation: str, **kwargs: Any) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            return self._client.request(method, path, headers=self._auth_headers(), **kwargs)
        except httpx.TimeoutException as exc:
            raise TimeoutError(f"Request to {url} timed out", cause=exc).with_context(
                operation=operation, url=url
            ) from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"Cannot reach {url}: {exc}", cause=exc).with_context(
                operation=operation, url=url
            ) from exc

    def _raise_for_status(self, response: httpx.Response, *, operation: str) -> None:
        status = response.status_code
        if 200 <= status < 300:
            return
        try:
            body = parse_error_body(response.json())
        except ValueError:
            body = None
        server_code = body.code if body else None
        detail = body.message if body and body.message else response.reason_phrase
        context = {"operation": operation, "url": str(response.request.url), "http_status": status}
        if server_code:
            context["server_code"] = server_code

        error: UsageSpineError
        if status in (401, 403):
            error = AuthenticationError(f"Authentication failed ({status}): {detail}")
        elif status == 429:
            error = RateLimitError(
                f"Rate limited: {detail}", code=server_code, retry_after=_retry_after(response) or 60
            )
        elif status >= 500:
            error = ServerError(f"Server error ({status}): {detail}", code=server_code)
        elif body is None:
            error = ProtocolError(f"HTTP {status} without a structured error body", code=f"HTTP_{status}")
        else:
            error = ProtocolError(f"Request rejected ({status}): {detail}", code=server_code)
        raise error.with_context(**context)

    @staticmethod
    def _json(response: httpx.Response, *, operation: str) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise ProtocolError("Response body is not valid JSON", cause=exc).with_context(
                operation=operation, http_status=response.status_code
            ) from exc

    def health_check(self) -> HealthResponse:
        """``GET`` the authenticated health endpoint.

        Raises:
            AuthenticationError: Credential rejected.
            NetworkError: Endpoint unreachable or timed out.
            ServerError: Any other non-2xx or unreadable answer.
        """
        operation = "health_check"
        try:
            response = self._send("GET", self.health_path, operation=operation)
            self._raise_for_status(response, operation=operation)
            payload = unwrap_envelope(self._json(response, operation=operation))
            return HealthResponse.model_validate(payload if isinstance(payload, dict) else {})
        except TimeoutError as exc:
            raise NetworkError(exc.message, cause=exc.cause, context=exc.context) from exc
        except (ProtocolError, RateLimitError) as exc:
            raise ServerError(exc.message, code=exc.code, cause=exc, context=exc.context) from exc
        except PydanticValidationError as exc:
            raise ServerError("Health response has an unexpected shape", cause=exc).with_context(
                operation=operation
            ) from exc

    def push(self, request: PushRequest, *, batch_number: int | None = None) -> PushResponse:
        """``POST`` one batch and return the per-record verdict."""
        operation = "push_batch"
        response = self._send(
            "POST", self.push_path, operation=operation, json=request.to_wire()
        )
        self._raise_for_status(response, operation=operation)
        raw = self._json(response, operation=operation)

        if isinstance(raw, dict) and raw.get("success") is False:
            body = parse_error_body(raw)
            raise ProtocolError(
                f"Push rejected: {body.message if body else 'no detail'}",
                code=body.code if body else None,
            ).with_context(operation=operation, batch_number=batch_number)

        payload = unwrap_envelope(raw)
        if isinstance(payload, dict) and "results" not in payload and "processed" in payload:
            raise ProtocolError(
                "Server answered with the legacy count-only response shape",
                code="LEGACY_RESPONSE",
            ).with_context(operation=operation, batch_number=batch_number)

        try:
            parsed = PushResponse.model_validate(payload)
        except PydanticValidationError as exc:
            raise ProtocolError("Push response has an unexpected shape", cause=exc).with_context(
                operation=operation, batch_number=batch_number
            ) from exc

        logger.debug(
            "push_response_received",
            batch_number=batch_number,
            sync_id=parsed.sync_id,
            persisted=len(parsed.results.persisted.message_ids),
            deduplicated=len(parsed.results.deduplicated.message_ids),
            failed=len(parsed.results.failed.details),
        )
        return parsed


__all__ = ["PushTransport", "unwrap_envelope", "parse_error_body"]
