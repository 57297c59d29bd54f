"""Authenticated JSON calls to the provider gateway, with errors mapped onto the taxonomy."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from mediagen.errors import (
    CredentialError,
    ProtocolError,
    ProviderReportedFailure,
    TransientNetworkError,
)

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = {408, 425, 429}


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict):
        for key in ("message", "fail_reason", "detail"):
            if isinstance(body.get(key), str) and body[key].strip():
                return body[key].strip()
        error = body.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        if isinstance(error, str) and error.strip():
            return error.strip()
    return response.reason_phrase or f"HTTP {response.status_code}"


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    credential: str,
    payload: dict[str, Any] | None = None,
    timeout: float | None = None,
) -> Any:
    """Send one request with ``Authorization: Bearer <credential>`` and return the decoded JSON.

    Raises CredentialError (401/403), TransientNetworkError (timeouts, transport
    errors, 408/429/5xx), ProviderReportedFailure (other 4xx) or ProtocolError
    (body is not JSON).
    """
    headers = {"Authorization": f"Bearer {credential}"}
    kwargs: dict[str, Any] = {"headers": headers}
    if payload is not None:
        kwargs["json"] = payload
    if timeout is not None:
        kwargs["timeout"] = timeout
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.TimeoutException as e:
        raise TransientNetworkError(f"{method} {url} timed out") from e
    except httpx.TransportError as e:
        raise TransientNetworkError(f"{method} {url} failed: {e}") from e

    status = response.status_code
    if status in (401, 403):
        raise CredentialError(f"Provider rejected the credential (HTTP {status}): {_error_detail(response)}")
    if status in _RETRYABLE_STATUS or status >= 500:
        raise TransientNetworkError(
            f"Provider unavailable (HTTP {status}): {_error_detail(response)}", status_code=status
        )
    if status >= 400:
        raise ProviderReportedFailure(_error_detail(response), status_code=status)

    try:
        return response.json()
    except ValueError as e:
        logger.debug("Non-JSON provider response from %s: %.200s", url, response.text)
        raise ProtocolError(f"Provider response from {url} is not JSON") from e
