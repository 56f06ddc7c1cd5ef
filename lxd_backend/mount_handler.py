import logging
import threading

from lxd_backend.clients.lxd import LXDClient
from lxd_backend.config import BackendSettings, get_settings
from lxd_backend.errors import InvalidMountState, LXDNotFound
from lxd_backend.models import VMStatus
from lxd_backend.schemas import VMMount
from lxd_backend.utils import make_uuid


logger = logging.getLogger(__name__)

# LXD accepts device names of at most 27 characters, "d_" included.
DEVICE_ID_LENGTH = 25
DEVICE_PREFIX = "d_"


def device_name_for(target_path: str) -> str:
    return DEVICE_PREFIX + make_uuid(target_path)[:DEVICE_ID_LENGTH]


class LXDMountHandler:
    """Passes a host directory through to a stopped instance as a disk device.

    The device is added on construction and removed by ``close()``. Use it as
    a context manager to guarantee removal.
    """

    def __init__(
        self,
        client: LXDClient,
        vm,
        target_path: str,
        mount: VMMount,
        settings: BackendSettings | None = None,
    ):
        if mount.uid_mappings or mount.gid_mappings:
            raise InvalidMountState("lxd native mount does not accept gid or uid")

        self.client = client
        self.vm = vm
        self.target = target_path
        self.source = mount.source_path
        self.settings = settings or get_settings()
        self.device_name = device_name_for(target_path)
        self.active = False
        self._active_lock = threading.Lock()

        if vm.current_state() not in (VMStatus.OFF, VMStatus.STOPPED):
            raise InvalidMountState(
                f"Please stop the instance {vm.vm_name} before mount it natively."
            )

        with self._active_lock:
            logger.info(
                "initializing native mount %s => %s in '%s'",
                self.source,
                self.target,
                vm.vm_name,
            )
            try:
                self._device_add()
            except Exception:
                self._rollback_add()
                raise
            self.active = True

    def _instance_document(self) -> dict:
        reply = self.client.request("GET", self.vm.url)
        metadata = reply.get("metadata")
        return dict(metadata) if isinstance(metadata, dict) else {}

    def _put_devices(self, instance: dict, devices: dict) -> None:
        instance["devices"] = devices
        reply = self.client.request("PUT", self.vm.url, instance)
        self.client.wait(reply, self.settings.mount_timeout_sec)

    def _device_add(self) -> None:
        with self.vm.devices_lock:
            instance = self._instance_document()
            devices = dict(instance.get("devices") or {})
            devices[self.device_name] = {
                "path": self.target,
                "source": self.source,
                "type": "disk",
            }
            self._put_devices(instance, devices)

    def _device_remove(self) -> None:
        with self.vm.devices_lock:
            instance = self._instance_document()
            devices = dict(instance.get("devices") or {})
            if devices.pop(self.device_name, None) is None:
                logger.debug(
                    "device already absent device=%s instance=%s",
                    self.device_name,
                    self.vm.vm_name,
                )
                return
            self._put_devices(instance, devices)

    def _rollback_add(self) -> None:
        try:
            self._device_remove()
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "could not roll back device=%s instance=%s: %s",
                self.device_name,
                self.vm.vm_name,
                exc,
            )

    def close(self) -> None:
        with self._active_lock:
            if not self.active:
                return
            logger.info(
                'stopping native mount "%s" in instance \'%s\'',
                self.target,
                self.vm.vm_name,
            )
            try:
                self._device_remove()
            except LXDNotFound:
                logger.debug("instance gone, nothing to unmount name=%s", self.vm.vm_name)
            self.active = False

    def __enter__(self) -> "LXDMountHandler":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
