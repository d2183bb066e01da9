"""Shared HTTP plumbing for the Jina embeddings and rerank endpoints.

Both adapters POST JSON with a bearer token to ``https://api.jina.ai/v1``
and classify failures the same way: rate limits and 5xx responses are
retryable, other 4xx responses are not.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from course_rag.utils.errors import ExternalServiceError

logger = structlog.get_logger(logger_name=__name__)

_RETRYABLE_STATUS = frozenset({408, 409, 425, 429})


async def post_json(
    client: httpx.AsyncClient,
    url: str,
    api_key: str,
    payload: dict[str, Any],
    *,
    provider_name: str,
    error_cls: type[ExternalServiceError],
) -> dict[str, Any]:
    """POST *payload* and return the decoded JSON body.

    Raises *error_cls* with ``retryable`` set according to the failure.
    """
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
        "Accept": "application/json",
    }
    try:
        response = await client.post(url, json=payload, headers=headers)
    except httpx.TimeoutException as exc:
        raise error_cls(
            message=f"Request to {url} timed out: {exc}",
            provider_name=provider_name,
            retryable=True,
        ) from exc
    except httpx.HTTPError as exc:
        raise error_cls(
            message=f"Request to {url} failed: {exc}",
            provider_name=provider_name,
            retryable=True,
        ) from exc

    if response.status_code != 200:
        retryable = response.status_code >= 500 or response.status_code in _RETRYABLE_STATUS
        logger.warning(
            "jina_http_error",
            provider=provider_name,
            status=response.status_code,
            retryable=retryable,
            body=response.text[:200],
        )
        raise error_cls(
            message=f"HTTP {response.status_code}: {response.text[:200]}",
            provider_name=provider_name,
            retryable=retryable,
        )

    try:
        body = response.json()
    except ValueError as exc:
        raise error_cls(
            message="Response body is not valid JSON",
            provider_name=provider_name,
            retryable=False,
        ) from exc
    if not isinstance(body, dict):
        raise error_cls(
            message="Response body is not a JSON object",
            provider_name=provider_name,
            retryable=False,
        )
    return body
