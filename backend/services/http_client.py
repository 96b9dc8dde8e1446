"""
Shared httpx client factory for outbound provider calls.

HTTP_TRANSPORT stays None in production; tests set an httpx.MockTransport.
"""

import httpx

DEFAULT_TIMEOUT = 30.0

HTTP_TRANSPORT = None


def async_client(timeout: float = DEFAULT_TIMEOUT) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout, transport=HTTP_TRANSPORT)


def safe_json(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except Exception:
        return {"raw": response.text[:500]}
    return data if isinstance(data, dict) else {"data": data}
