import logging
import uuid
from collections.abc import Callable
from threading import Lock

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from fake_lxd.config import get_settings
from lxd_backend.logging_config import configure_logging


logger = logging.getLogger(__name__)

app = FastAPI(title="Fake LXD Daemon")

STATUS_CODES = {
    "Running": 103,
    "Stopped": 102,
    "Frozen": 110,
}
ACTION_RESULTS = {
    "start": "Running",
    "restart": "Running",
    "unfreeze": "Running",
    "stop": "Stopped",
    "freeze": "Frozen",
}

_lock = Lock()
_instances: dict[str, dict] = {}
_operations: dict[str, dict] = {}
_networks: dict[str, dict] = {}
_failing_actions: dict[str, str] = {}


class OperationError(Exception):
    pass


def reset_state() -> None:
    settings = get_settings()
    with _lock:
        _instances.clear()
        _operations.clear()
        _failing_actions.clear()
        _networks.clear()
        _networks[settings.default_network] = {
            "name": settings.default_network,
            "type": "bridge",
            "managed": True,
        }


def fail_next_action(action: str, message: str) -> None:
    with _lock:
        _failing_actions[action] = message


def instance_names() -> list[str]:
    with _lock:
        return list(_instances)


def _sync(metadata: object) -> dict:
    return {
        "type": "sync",
        "status": "Success",
        "status_code": 200,
        "operation": "",
        "error_code": 0,
        "error": "",
        "metadata": metadata,
    }


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "type": "error",
            "error": message,
            "error_code": status_code,
            "metadata": None,
        },
    )


def _operation_metadata(operation: dict) -> dict:
    return {
        "id": operation["id"],
        "class": "task",
        "description": operation["description"],
        "status": operation["status"],
        "status_code": operation["status_code"],
        "err": operation["err"],
        "may_cancel": False,
    }


def _start_operation(description: str, effect: Callable[[], None]) -> dict:
    # caller holds _lock
    operation = {
        "id": str(uuid.uuid4()),
        "description": description,
        "status": "Running",
        "status_code": 103,
        "err": "",
        "remaining": get_settings().operation_polls,
        "effect": effect,
    }
    _operations[operation["id"]] = operation
    return {
        "type": "async",
        "status": "Operation created",
        "status_code": 100,
        "operation": f"/1.0/operations/{operation['id']}",
        "error_code": 0,
        "error": "",
        "metadata": _operation_metadata(operation),
    }


def _advance(operation: dict) -> None:
    # caller holds _lock
    if operation["status_code"] != 103:
        return
    if operation["remaining"] > 0:
        operation["remaining"] -= 1
        return
    try:
        operation["effect"]()
    except OperationError as exc:
        operation.update(status="Failure", status_code=400, err=str(exc))
        return
    operation.update(status="Success", status_code=200)


def _instance_view(instance: dict) -> dict:
    return {
        "name": instance["name"],
        "type": "virtual-machine",
        "status": instance["status"],
        "status_code": STATUS_CODES[instance["status"]],
        "config": dict(instance["config"]),
        "devices": {k: dict(v) for k, v in instance["devices"].items()},
        "source": instance.get("source", {}),
    }


@app.on_event("startup")
def startup() -> None:
    configure_logging(get_settings().log_level)
    reset_state()


@app.get("/1.0")
def server_info() -> dict:
    return _sync({"api_version": "1.0", "auth": get_settings().auth})


@app.get("/1.0/operations/{operation_id}")
def operation_status(operation_id: str):
    with _lock:
        operation = _operations.get(operation_id)
        if operation is None:
            return _error(404, "Operation not found")
        _advance(operation)
        return _sync(_operation_metadata(operation))


@app.get("/1.0/networks/{name}")
def get_network(name: str):
    with _lock:
        network = _networks.get(name)
    if network is None:
        return _error(404, "Network not found")
    return _sync(network)


@app.post("/1.0/networks")
def create_network(payload: dict):
    name = payload.get("name")
    if not name:
        return _error(400, "No name provided")
    with _lock:
        if name in _networks:
            return _error(409, f"The network already exists: {name}")
        _networks[name] = {
            "name": name,
            "type": payload.get("type", "bridge"),
            "managed": True,
        }
    return _sync({})


@app.get("/1.0/networks/{name}/leases")
def network_leases(name: str):
    prefix = get_settings().lease_prefix
    with _lock:
        if name not in _networks:
            return _error(404, "Network not found")
        leases = []
        for index, instance in enumerate(_instances.values(), start=2):
            if instance["status"] != "Running":
                continue
            for device in instance["devices"].values():
                if device.get("type") != "nic" or device.get("parent") != name:
                    continue
                leases.append(
                    {
                        "hostname": instance["name"],
                        "hwaddr": device.get("hwaddr", ""),
                        "address": f"{prefix}{index}",
                        "type": "dynamic",
                    }
                )
    return _sync(leases)


@app.post("/1.0/virtual-machines")
def create_instance(payload: dict):
    name = payload.get("name")
    if not name:
        return _error(400, "Instance name is mandatory")
    with _lock:
        if name in _instances:
            return _error(409, f"Instance {name} already exists")

        def effect() -> None:
            _instances[name] = {
                "name": name,
                "status": get_settings().created_status,
                "config": dict(payload.get("config") or {}),
                "devices": dict(payload.get("devices") or {}),
                "source": payload.get("source") or {},
            }

        logger.info("creating fake instance name=%s", name)
        return _start_operation(f"Creating instance {name}", effect)


@app.get("/1.0/virtual-machines/{name}")
def get_instance(name: str):
    with _lock:
        instance = _instances.get(name)
        if instance is None:
            return _error(404, "Instance not found")
        return _sync(_instance_view(instance))


@app.put("/1.0/virtual-machines/{name}")
def replace_instance(name: str, payload: dict):
    with _lock:
        if name not in _instances:
            return _error(404, "Instance not found")

        def effect() -> None:
            instance = _instances.get(name)
            if instance is None:
                raise OperationError("Instance not found")
            instance["config"] = dict(payload.get("config") or {})
            instance["devices"] = dict(payload.get("devices") or {})

        return _start_operation(f"Updating instance {name}", effect)


@app.patch("/1.0/virtual-machines/{name}")
def patch_instance(name: str, payload: dict):
    with _lock:
        instance = _instances.get(name)
        if instance is None:
            return _error(404, "Instance not found")
        instance["config"].update(payload.get("config") or {})
        for device_name, device in (payload.get("devices") or {}).items():
            instance["devices"][device_name] = dict(device)
    return _sync({})


@app.delete("/1.0/virtual-machines/{name}")
def delete_instance(name: str):
    with _lock:
        instance = _instances.get(name)
        if instance is None:
            return _error(404, "Instance not found")
        if instance["status"] != "Stopped":
            return _error(400, "Instance is running")

        def effect() -> None:
            _instances.pop(name, None)

        return _start_operation(f"Deleting instance {name}", effect)


@app.get("/1.0/virtual-machines/{name}/state")
def get_instance_state(name: str):
    with _lock:
        instance = _instances.get(name)
        if instance is None:
            return _error(404, "Instance not found")
        return _sync(
            {
                "status": instance["status"],
                "status_code": STATUS_CODES[instance["status"]],
            }
        )


@app.put("/1.0/virtual-machines/{name}/state")
def change_instance_state(name: str, payload: dict):
    action = payload.get("action")
    if action not in ACTION_RESULTS:
        return _error(400, f"Unknown action {action}")
    with _lock:
        if name not in _instances:
            return _error(404, "Instance not found")
        failure = _failing_actions.pop(action, None)

        def effect() -> None:
            if failure:
                raise OperationError(failure)
            instance = _instances.get(name)
            if instance is None:
                raise OperationError("Instance not found")
            instance["status"] = ACTION_RESULTS[action]

        return _start_operation(f"Instance {name} {action}", effect)


reset_state()
