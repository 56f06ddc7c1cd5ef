import httpx
import pytest

from lxd_backend.clients.http import lxd_request
from lxd_backend.clients.lxd import LXDClient, LookupStatus, OperationOutcome
from lxd_backend.errors import (
    LXDNotFound,
    MalformedReply,
    OperationFailed,
    OperationTimeout,
    RequestFailure,
    TransportUnavailable,
)


def _client(handler) -> LXDClient:
    return LXDClient(
        "http://lxd/1.0",
        project="multipass",
        poll_interval_sec=0,
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


def _operation_reply(operation_id: str = "op-1") -> dict:
    return {
        "type": "async",
        "status": "Operation created",
        "status_code": 100,
        "operation": f"/1.0/operations/{operation_id}",
        "metadata": {"id": operation_id, "class": "task", "status_code": 103},
    }


def test_lxd_request_returns_json_envelope():
    transport = httpx.MockTransport(
        lambda request: httpx.Response(
            200, json={"type": "sync", "metadata": {"auth": "trusted"}}, request=request
        )
    )
    body = lxd_request(httpx.Client(transport=transport), "GET", "http://lxd/1.0")
    assert body["metadata"]["auth"] == "trusted"


def test_lxd_request_maps_404_to_not_found():
    transport = httpx.MockTransport(
        lambda request: httpx.Response(
            404,
            json={"type": "error", "error": "Instance not found", "error_code": 404},
            request=request,
        )
    )
    with pytest.raises(LXDNotFound) as excinfo:
        lxd_request(httpx.Client(transport=transport), "GET", "http://lxd/1.0/x")
    assert excinfo.value.status_code == 404
    assert "Instance not found" in excinfo.value.detail


def test_lxd_request_maps_error_envelope_to_request_failure():
    transport = httpx.MockTransport(
        lambda request: httpx.Response(
            500,
            json={"type": "error", "error": "boom", "error_code": 500},
            request=request,
        )
    )
    with pytest.raises(RequestFailure) as excinfo:
        lxd_request(httpx.Client(transport=transport), "PUT", "http://lxd/1.0/x", {})
    assert not isinstance(excinfo.value, LXDNotFound)
    assert excinfo.value.status_code == 500
    assert excinfo.value.detail == "boom"


def test_lxd_request_maps_connection_errors_to_transport_unavailable():
    def handler(request):
        raise httpx.ConnectError("No such file or directory", request=request)

    with pytest.raises(TransportUnavailable) as excinfo:
        lxd_request(httpx.Client(transport=httpx.MockTransport(handler)), "GET", "http://lxd/1.0")
    assert excinfo.value.error_type == "ConnectError"


def test_lxd_request_rejects_non_json_reply():
    transport = httpx.MockTransport(
        lambda request: httpx.Response(502, text="bad gateway", request=request)
    )
    with pytest.raises(MalformedReply) as excinfo:
        lxd_request(httpx.Client(transport=transport), "GET", "http://lxd/1.0")
    assert "bad gateway" in excinfo.value.detail


def test_request_carries_project_and_timeout():
    seen: list[httpx.Request] = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"type": "sync", "metadata": {}}, request=request)

    _client(handler).request("PUT", "http://lxd/1.0/virtual-machines/a/state", {"action": "start"}, timeout=5)
    assert seen[0].url.params["project"] == "multipass"
    assert seen[0].extensions["timeout"]["read"] == 5


def test_lookup_reports_not_found_without_raising():
    client = _client(
        lambda request: httpx.Response(
            404, json={"type": "error", "error_code": 404}, request=request
        )
    )
    lookup = client.lookup("http://lxd/1.0/virtual-machines/missing")
    assert lookup.status is LookupStatus.NOT_FOUND
    assert not lookup.found
    assert lookup.metadata == {}


def test_wait_ignores_synchronous_replies():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={}, request=request)

    outcome = _client(handler).wait({"type": "sync", "status_code": 200, "metadata": {}}, 1)
    assert outcome is OperationOutcome.SYNCHRONOUS
    assert calls == []


def test_wait_polls_until_success():
    codes = iter([103, 103, 200])
    paths = []

    def handler(request):
        paths.append(request.url.path)
        return httpx.Response(
            200,
            json={"type": "sync", "metadata": {"id": "op-1", "status_code": next(codes)}},
            request=request,
        )

    outcome = _client(handler).wait(_operation_reply(), 10)
    assert outcome is OperationOutcome.COMPLETED
    assert paths == ["/1.0/operations/op-1"] * 3


def test_wait_raises_operation_failed_with_daemon_message():
    def handler(request):
        return httpx.Response(
            200,
            json={
                "type": "sync",
                "metadata": {"id": "op-1", "status_code": 400, "err": "Failed to start"},
            },
            request=request,
        )

    with pytest.raises(OperationFailed) as excinfo:
        _client(handler).wait(_operation_reply(), 10)
    assert excinfo.value.detail == "Failed to start"
    assert excinfo.value.operation_id == "op-1"


def test_wait_raises_timeout_when_operation_never_settles():
    def handler(request):
        return httpx.Response(
            200,
            json={"type": "sync", "metadata": {"id": "op-1", "status_code": 103}},
            request=request,
        )

    with pytest.raises(OperationTimeout) as excinfo:
        _client(handler).wait(_operation_reply(), 0)
    assert not isinstance(excinfo.value, OperationFailed)


def test_wait_treats_vanished_operation_as_done():
    def handler(request):
        return httpx.Response(
            404, json={"type": "error", "error": "not found", "error_code": 404}, request=request
        )

    assert _client(handler).wait(_operation_reply(), 10) is OperationOutcome.VANISHED
