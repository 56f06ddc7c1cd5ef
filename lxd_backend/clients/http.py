import logging
from typing import Any

import httpx

from lxd_backend.errors import (
    LXDNotFound,
    MalformedReply,
    RequestFailure,
    TransportUnavailable,
)


logger = logging.getLogger(__name__)


def lxd_request(
    client: httpx.Client,
    method: str,
    url: str,
    payload: dict | None = None,
    *,
    timeout: float | None = None,
    project: str | None = None,
) -> dict[str, Any]:
    kwargs: dict[str, Any] = {}
    if payload is not None:
        kwargs["json"] = payload
    if timeout is not None:
        kwargs["timeout"] = timeout
    if project:
        kwargs["params"] = {"project": project}

    logger.debug("lxd request method=%s url=%s", method, url)
    try:
        response = client.request(method, url, **kwargs)
    except httpx.TransportError as exc:
        raise TransportUnavailable(
            method=method,
            url=url,
            error_type=exc.__class__.__name__,
            detail=str(exc) or "cannot reach the LXD socket",
        ) from exc

    try:
        body = response.json()
    except ValueError as exc:
        text = (response.text or "").strip()
        raise MalformedReply(
            method=method,
            url=url,
            error_type=exc.__class__.__name__,
            detail=f"HTTP {response.status_code}: {text[:240]}" if text else str(exc),
            status_code=response.status_code,
        ) from exc
    if not isinstance(body, dict):
        raise MalformedReply(
            method=method,
            url=url,
            error_type="TypeError",
            detail=f"expected a JSON object, got {type(body).__name__}",
            status_code=response.status_code,
        )

    error_code = body.get("error_code")
    if response.status_code == 404 or error_code == 404:
        raise LXDNotFound(
            method=method,
            url=url,
            error_type="NotFound",
            detail=str(body.get("error") or "not found"),
            status_code=404,
        )
    if body.get("type") == "error" or response.status_code >= 400:
        status_code = error_code if isinstance(error_code, int) else response.status_code
        raise RequestFailure(
            method=method,
            url=url,
            error_type="DaemonError",
            detail=str(body.get("error") or f"HTTP {response.status_code}"),
            status_code=status_code,
        )

    logger.debug(
        "lxd reply method=%s url=%s status=%s", method, url, body.get("status")
    )
    return body
