import os
import socket
import uuid
from pathlib import Path

import yaml

from lxd_backend.errors import SnapEnvironmentError


def make_uuid(seed: str | None = None) -> str:
    if seed is None:
        return str(uuid.uuid4())
    return str(uuid.uuid3(uuid.UUID(int=0), seed))


def snap_common_dir(configured: str | None = None) -> Path:
    value = configured or os.environ.get("SNAP_COMMON")
    if not value:
        raise SnapEnvironmentError("SNAP_COMMON is not set; not running from a snap")
    return Path(value)


def emit_cloud_config(document: dict) -> str:
    body = yaml.safe_dump(document, default_flow_style=False, sort_keys=False)
    return f"#cloud-config\n{body}"


def port_is_open(host: str, port: int, timeout_sec: float) -> bool:
    try:
        with socket.create_connection((host, port), timeout=timeout_sec):
            return True
    except OSError:
        return False
