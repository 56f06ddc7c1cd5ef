import logging
import threading
import time

from lxd_backend.backend import VirtualMachine, ip_address_for, wait_for_ssh
from lxd_backend.clients.lxd import LXDClient
from lxd_backend.config import BackendSettings, get_settings
from lxd_backend.errors import (
    InvalidMountState,
    InvariantViolation,
    IPAddressTimeout,
    LXDNotFound,
    MalformedReply,
    SnapEnvironmentError,
    TransportUnavailable,
    UnsupportedOperation,
)
from lxd_backend.models import VMStatus
from lxd_backend.monitor import VMStatusMonitor
from lxd_backend.mount_handler import LXDMountHandler
from lxd_backend.schemas import VirtualMachineDescription, VMMount
from lxd_backend.services.instance_config import build_create_payload, root_disk_device
from lxd_backend.services.leases import get_ip_for
from lxd_backend.state_machine import instance_state_for, reconcile_with_local
from lxd_backend.utils import snap_common_dir


logger = logging.getLogger(__name__)


class LXDVirtualMachine(VirtualMachine):
    def __init__(
        self,
        desc: VirtualMachineDescription,
        monitor: VMStatusMonitor,
        client: LXDClient,
        bridge_name: str,
        storage_pool: str,
        settings: BackendSettings | None = None,
    ):
        super().__init__(desc.vm_name)
        self.name = desc.vm_name
        self.username = desc.ssh_username
        self.monitor = monitor
        self.client = client
        self.bridge_name = bridge_name
        self.storage_pool = storage_pool
        self.mac_addr = desc.default_mac_address
        self.settings = settings or get_settings()
        self.update_shutdown_status = True
        # Serializes read-modify-write of this instance's device list.
        self.devices_lock = threading.Lock()

        with self.state_lock:
            try:
                present_state = self._query_state()
            except (TransportUnavailable, MalformedReply) as exc:
                logger.warning("state query failed name=%s: %s", self.name, exc)
                self.state = VMStatus.UNKNOWN
                return
            if present_state is None:
                self._create(desc)
                present_state = self._query_state()
                if present_state is None:
                    raise LXDNotFound(
                        method="GET",
                        url=self.state_url,
                        error_type="NotFound",
                        detail=f"instance {self.name} missing after creation",
                        status_code=404,
                    )
            self.state = reconcile_with_local(self.state, present_state)

    def _create(self, desc: VirtualMachineDescription) -> None:
        logger.debug(
            "creating instance name=%s image_id=%s", self.name, desc.image_id
        )
        payload = build_create_payload(desc, self.bridge_name, self.storage_pool)
        reply = self.client.request(
            "POST", self.client.url_for("virtual-machines"), payload
        )
        self.client.wait(reply, self.settings.create_timeout_sec)

    @property
    def url(self) -> str:
        return self.client.url_for(f"virtual-machines/{self.name}")

    @property
    def state_url(self) -> str:
        return f"{self.url}/state"

    @property
    def network_leases_url(self) -> str:
        return self.client.url_for(f"networks/{self.bridge_name}/leases")

    def _query_state(self) -> VMStatus | None:
        lookup = self.client.lookup(self.state_url)
        if not lookup.found:
            return None
        return instance_state_for(self.name, lookup.metadata)

    def current_state(self) -> VMStatus:
        with self.state_lock:
            try:
                present_state = self._query_state()
            except (TransportUnavailable, MalformedReply) as exc:
                logger.warning("state query failed name=%s: %s", self.name, exc)
                self.state = VMStatus.UNKNOWN
                return self.state

            if present_state is None:
                raise LXDNotFound(
                    method="GET",
                    url=self.state_url,
                    error_type="NotFound",
                    detail=f"instance {self.name} not found",
                    status_code=404,
                )
            self.state = reconcile_with_local(self.state, present_state)
            return self.state

    def _request_state(self, action: str) -> None:
        reply = self.client.request(
            "PUT",
            self.state_url,
            {"action": action},
            timeout=self.settings.state_request_timeout_sec,
        )
        # An operation that already disappeared has finished.
        self.client.wait(reply, self.settings.state_change_timeout_sec)

    def start(self) -> None:
        with self.state_lock:
            self.shutdown_while_starting = threading.Event()
            if self.state == VMStatus.SUSPENDED:
                logger.info("resuming from a suspended state name=%s", self.name)
                self._request_state("unfreeze")
            else:
                self._request_state("start")

            self.state = VMStatus.STARTING
            self.update_state()

    def stop(self) -> None:
        with self.state_lock:
            present_state = self.current_state()

            if present_state == VMStatus.STOPPED:
                logger.debug(
                    "ignoring stop request since instance is already stopped name=%s",
                    self.name,
                )
                return

            if present_state == VMStatus.SUSPENDED:
                logger.info("ignoring shutdown issued while suspended name=%s", self.name)
                return

            self._request_state("stop")
            self.state = VMStatus.STOPPED
            start_acknowledged = self.shutdown_while_starting

        if present_state == VMStatus.STARTING:
            # the start sequence needs the lock to notice the shutdown
            start_acknowledged.wait()

        with self.state_lock:
            self.management_ip = None

            if self.update_shutdown_status:
                self.update_state()

    def shutdown(self) -> None:
        self.stop()

    def suspend(self) -> None:
        raise UnsupportedOperation("suspend is currently not supported")

    def ensure_vm_is_running(self, timeout_sec: float | None = None) -> None:
        grace_sec = self.settings.start_grace_sec if timeout_sec is None else timeout_sec

        def is_vm_running() -> bool:
            if self.current_state() != VMStatus.STOPPED:
                return True

            # LXD may just be rebooting the instance
            time.sleep(grace_sec)

            if self.current_state() != VMStatus.STOPPED:
                self.state = VMStatus.STARTING
                return True
            return False

        self.ensure_vm_is_running_for(is_vm_running, "Instance shutdown during start")

    def update_state(self) -> None:
        self.monitor.persist_state_for(self.vm_name, self.state)

    def ssh_port(self) -> int:
        return 22

    def ssh_username(self) -> str:
        return self.username

    def ssh_hostname(self, timeout_sec: float) -> str:
        try:
            ip = ip_address_for(
                self,
                lambda: get_ip_for(self.client, self.mac_addr, self.network_leases_url),
                timeout_sec,
                self.settings.lease_poll_interval_sec,
            )
        except IPAddressTimeout:
            with self.state_lock:
                self.state = VMStatus.UNKNOWN
            raise
        with self.state_lock:
            self.management_ip = ip
        return str(ip)

    def wait_until_ssh_up(self, timeout_sec: float) -> None:
        wait_for_ssh(
            self,
            timeout_sec,
            self.settings.lease_poll_interval_sec,
            self.settings.ssh_connect_timeout_sec,
        )

    def management_ipv4(self) -> str:
        with self.state_lock:
            if self.management_ip is None:
                self.management_ip = get_ip_for(
                    self.client, self.mac_addr, self.network_leases_url
                )
                if self.management_ip is None:
                    logger.debug("ip address not found name=%s", self.name)
                    return "UNKNOWN"
            return str(self.management_ip)

    def ipv6(self) -> str:
        return ""

    def update_cpus(self, num_cores: int) -> None:
        if num_cores <= 0:
            raise InvariantViolation(f"core count must be positive, got {num_cores}")
        patch = {"config": {"limits.cpu": str(num_cores)}}
        self.client.request("PATCH", self.url, patch)

    def resize_memory(self, new_size: int) -> None:
        if new_size <= 0:
            raise InvariantViolation(f"memory size must be positive, got {new_size}")
        patch = {"config": {"limits.memory": str(new_size)}}
        self.client.request("PATCH", self.url, patch)

    def resize_disk(self, new_size: int) -> None:
        if new_size <= 0:
            raise InvariantViolation(f"disk size must be positive, got {new_size}")
        patch = {"devices": {"root": root_disk_device(self.storage_pool, new_size)}}
        self.client.request("PATCH", self.url, patch)

    def make_native_mount_handler(self, target: str, mount: VMMount) -> LXDMountHandler:
        if mount.uid_mappings or mount.gid_mappings:
            raise InvalidMountState("lxd native mount does not accept gid or uid")
        return LXDMountHandler(self.client, self, target, mount, self.settings)

    def teardown(self) -> None:
        """Stop a running instance and record the final state; never raises."""
        self.update_shutdown_status = False
        try:
            if self.current_state() == VMStatus.RUNNING:
                if not self._snap_refresh_in_progress():
                    self.stop()
            else:
                self.update_state()
        except LXDNotFound:
            logger.debug("LXD object not found name=%s", self.name)
        except Exception as exc:  # noqa: BLE001
            logger.warning("teardown failed name=%s: %s", self.name, exc)

    def _snap_refresh_in_progress(self) -> bool:
        try:
            return (snap_common_dir(self.settings.snap_common_dir) / "snap_refresh").exists()
        except SnapEnvironmentError:
            return False

    def __enter__(self) -> "LXDVirtualMachine":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.teardown()
