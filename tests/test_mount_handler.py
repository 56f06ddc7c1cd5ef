import json
import threading

import httpx
import pytest

from lxd_backend.clients.lxd import LXDClient
from lxd_backend.config import BackendSettings
from lxd_backend.errors import InvalidMountState, OperationFailed
from lxd_backend.models import VMStatus
from lxd_backend.mount_handler import LXDMountHandler, device_name_for
from lxd_backend.schemas import VMMount


INSTANCE_PATH = "/1.0/virtual-machines/primary"


class DeviceDaemon:
    def __init__(self):
        self.devices: dict[str, dict] = {
            "root": {"path": "/", "pool": "default", "type": "disk"},
        }
        self.failing_puts = 0
        self.calls: list[tuple[str, str, dict | None]] = []
        self._lock = threading.Lock()
        self._operation_results: dict[str, int] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content) if request.content else None
        path = request.url.path
        with self._lock:
            self.calls.append((request.method, path, payload))
            if path.startswith("/1.0/operations/"):
                operation_id = path.rsplit("/", 1)[-1]
                code = self._operation_results[operation_id]
                err = "device rejected" if code == 400 else ""
                return httpx.Response(
                    200, json={"metadata": {"id": operation_id, "status_code": code, "err": err}}
                )
            if path == INSTANCE_PATH and request.method == "GET":
                return httpx.Response(
                    200,
                    json={
                        "type": "sync",
                        "metadata": {
                            "name": "primary",
                            "config": {"limits.cpu": "2"},
                            "devices": {k: dict(v) for k, v in self.devices.items()},
                        },
                    },
                )
            if path == INSTANCE_PATH and request.method == "PUT":
                self.devices = payload["devices"]
                operation_id = f"op-{len(self._operation_results)}"
                if self.failing_puts:
                    self.failing_puts -= 1
                    self._operation_results[operation_id] = 400
                else:
                    self._operation_results[operation_id] = 200
                return httpx.Response(
                    202,
                    json={
                        "type": "async",
                        "status_code": 100,
                        "metadata": {"id": operation_id, "class": "task"},
                    },
                )
        return httpx.Response(400, json={"type": "error", "error": "unexpected", "error_code": 400})

    def puts(self) -> list[dict]:
        return [call[2] for call in self.calls if call[0] == "PUT"]


class StubVM:
    def __init__(self, state: VMStatus = VMStatus.STOPPED, live_state: VMStatus | None = None):
        self.vm_name = "primary"
        self.state = state
        self.live_state = live_state or state
        self.state_queries = 0
        self.url = f"http://lxd/1.0/virtual-machines/{self.vm_name}"
        self.devices_lock = threading.Lock()

    def current_state(self) -> VMStatus:
        self.state_queries += 1
        self.state = self.live_state
        return self.state


def _client(daemon) -> LXDClient:
    return LXDClient(
        "http://lxd/1.0",
        poll_interval_sec=0,
        http_client=httpx.Client(transport=httpx.MockTransport(daemon)),
    )


def _settings() -> BackendSettings:
    return BackendSettings(poll_interval_sec=0)


def test_device_name_is_deterministic_and_fits_daemon_limit():
    name = device_name_for("/home/ubuntu/src")
    assert name == device_name_for("/home/ubuntu/src")
    assert name != device_name_for("/home/ubuntu/other")
    assert name.startswith("d_")
    assert len(name) == 27


def test_mount_adds_and_close_removes_device():
    daemon = DeviceDaemon()
    mount = VMMount(source_path="/srv/data")
    handler = LXDMountHandler(_client(daemon), StubVM(), "/mnt/data", mount, _settings())

    device = daemon.devices[handler.device_name]
    assert device == {"path": "/mnt/data", "source": "/srv/data", "type": "disk"}
    assert "root" in daemon.devices
    put_body = daemon.puts()[0]
    assert put_body["config"] == {"limits.cpu": "2"}
    assert ("GET", "/1.0/operations/op-0", None) in daemon.calls

    handler.close()
    assert handler.device_name not in daemon.devices
    assert "root" in daemon.devices
    assert ("GET", "/1.0/operations/op-1", None) in daemon.calls

    handler.close()
    assert len(daemon.puts()) == 2


def test_remount_reuses_device_name():
    daemon = DeviceDaemon()
    mount = VMMount(source_path="/srv/data")
    client = _client(daemon)
    vm = StubVM()

    with LXDMountHandler(client, vm, "/mnt/data", mount, _settings()) as first:
        first_name = first.device_name
    with LXDMountHandler(client, vm, "/mnt/data", mount, _settings()) as second:
        assert second.device_name == first_name
        mounted = [name for name in daemon.devices if name.startswith("d_")]
        assert mounted == [first_name]
    assert first_name not in daemon.devices


@pytest.mark.parametrize("state", [VMStatus.RUNNING, VMStatus.STARTING, VMStatus.SUSPENDED])
def test_mount_requires_powered_off_instance(state):
    daemon = DeviceDaemon()
    with pytest.raises(InvalidMountState):
        LXDMountHandler(
            _client(daemon), StubVM(state), "/mnt/data", VMMount(source_path="/srv"), _settings()
        )
    assert daemon.calls == []


def test_mount_checks_live_state_of_instance_started_elsewhere():
    daemon = DeviceDaemon()
    vm = StubVM(VMStatus.STOPPED, live_state=VMStatus.RUNNING)
    with pytest.raises(InvalidMountState, match="Please stop the instance primary"):
        LXDMountHandler(_client(daemon), vm, "/mnt/data", VMMount(source_path="/srv"), _settings())
    assert vm.state_queries == 1
    assert daemon.calls == []


def test_mount_allowed_when_off():
    daemon = DeviceDaemon()
    handler = LXDMountHandler(
        _client(daemon), StubVM(VMStatus.OFF), "/mnt/data", VMMount(source_path="/srv"), _settings()
    )
    assert handler.active


def test_mount_rejects_id_mappings_before_any_call():
    daemon = DeviceDaemon()
    mount = VMMount(source_path="/srv", gid_mappings=[(1000, 1000)])
    vm = StubVM()
    with pytest.raises(InvalidMountState):
        LXDMountHandler(_client(daemon), vm, "/mnt/data", mount, _settings())
    assert daemon.calls == []
    assert vm.state_queries == 0


def test_failed_add_rolls_back_device():
    daemon = DeviceDaemon()
    daemon.failing_puts = 1
    with pytest.raises(OperationFailed, match="device rejected"):
        LXDMountHandler(
            _client(daemon), StubVM(), "/mnt/data", VMMount(source_path="/srv"), _settings()
        )
    assert device_name_for("/mnt/data") not in daemon.devices
    assert len(daemon.puts()) == 2
