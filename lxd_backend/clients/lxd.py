import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from lxd_backend.clients.http import lxd_request
from lxd_backend.errors import LXDNotFound, OperationFailed, OperationTimeout


logger = logging.getLogger(__name__)

# LXD operation status codes
OPERATION_CREATED = 100
OPERATION_SUCCESS = 200
OPERATION_FAILURE = 400
OPERATION_CANCELLED = 401


class LookupStatus(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"


@dataclass
class Lookup:
    status: LookupStatus
    document: dict[str, Any] = field(default_factory=dict)

    @property
    def found(self) -> bool:
        return self.status is LookupStatus.FOUND

    @property
    def metadata(self) -> dict[str, Any]:
        metadata = self.document.get("metadata")
        return metadata if isinstance(metadata, dict) else {}


class OperationOutcome(str, Enum):
    SYNCHRONOUS = "synchronous"
    COMPLETED = "completed"
    VANISHED = "vanished"


def background_operation_id(reply: dict[str, Any]) -> str | None:
    metadata = reply.get("metadata")
    if not isinstance(metadata, dict):
        return None
    if reply.get("status_code") != OPERATION_CREATED or metadata.get("class") != "task":
        return None
    operation_id = metadata.get("id")
    return operation_id if isinstance(operation_id, str) and operation_id else None


class LXDClient:
    """Blocking client for the LXD REST API, usually over its unix socket."""

    def __init__(
        self,
        base_url: str,
        *,
        socket_path: str | None = None,
        project: str | None = None,
        timeout: float = 30.0,
        poll_interval_sec: float = 0.5,
        http_client: httpx.Client | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.project = project
        self.poll_interval_sec = poll_interval_sec
        if http_client is None:
            transport = httpx.HTTPTransport(uds=socket_path) if socket_path else None
            http_client = httpx.Client(transport=transport, timeout=timeout)
        self.client = http_client

    def url_for(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def request(
        self,
        method: str,
        url: str,
        payload: dict | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        return lxd_request(
            self.client, method, url, payload, timeout=timeout, project=self.project
        )

    def lookup(self, url: str, timeout: float | None = None) -> Lookup:
        try:
            document = self.request("GET", url, timeout=timeout)
        except LXDNotFound:
            return Lookup(LookupStatus.NOT_FOUND)
        return Lookup(LookupStatus.FOUND, document)

    def wait(self, reply: dict[str, Any], timeout_sec: float) -> OperationOutcome:
        """Block until the background operation behind ``reply`` settles.

        Replies that are not background operations return immediately. An
        operation the daemon no longer knows about counts as settled, since
        LXD forgets finished operations after a while.
        """
        operation_id = background_operation_id(reply)
        if operation_id is None:
            return OperationOutcome.SYNCHRONOUS

        status_url = self.url_for(f"operations/{operation_id}")
        deadline = time.monotonic() + timeout_sec
        while True:
            lookup = self.lookup(status_url)
            if not lookup.found:
                logger.debug("lxd operation vanished operation_id=%s", operation_id)
                return OperationOutcome.VANISHED

            metadata = lookup.metadata
            status_code = metadata.get("status_code")
            if status_code == OPERATION_SUCCESS:
                return OperationOutcome.COMPLETED
            if status_code in (OPERATION_FAILURE, OPERATION_CANCELLED):
                detail = metadata.get("err") or metadata.get("status") or "unknown error"
                logger.error(
                    "lxd operation failed operation_id=%s detail=%s",
                    operation_id,
                    detail,
                )
                raise OperationFailed(operation_id, str(detail))

            if time.monotonic() >= deadline:
                raise OperationTimeout(operation_id, timeout_sec)
            time.sleep(self.poll_interval_sec)

    def close(self) -> None:
        self.client.close()
