from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from common.errors import ProviderRejectedError, ProviderTransientError


DEFAULT_TIMEOUT_SECONDS = 10.0


def make_client(
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Shared AsyncClient factory; `transport` lets tests plug in httpx.MockTransport."""
    return httpx.AsyncClient(timeout=timeout, transport=transport)


def _error_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {"raw": response.text[:500]}
    return body if isinstance(body, dict) else {"raw": body}


async def post_json(
    client: httpx.AsyncClient,
    url: str,
    payload: Any,
    headers: Dict[str, str],
    label: str,
) -> httpx.Response:
    """
    POST a JSON body and translate transport failures into the push error taxonomy.

    Timeouts, connection errors, 429 and 5xx raise ProviderTransientError.
    Any other non-2xx raises ProviderRejectedError carrying the parsed body.
    """
    try:
        response = await client.post(url, json=payload, headers=headers)
    except httpx.TimeoutException as e:
        raise ProviderTransientError(f"{label} timed out: {e}") from e
    except httpx.TransportError as e:
        raise ProviderTransientError(f"{label} transport error: {e}") from e

    if response.status_code == 429 or response.status_code >= 500:
        raise ProviderTransientError(
            f"{label} returned {response.status_code}",
            status_code=response.status_code,
        )
    if response.status_code >= 400:
        raise ProviderRejectedError(
            f"{label} rejected request with {response.status_code}",
            status_code=response.status_code,
            body=_error_body(response),
        )
    return response
