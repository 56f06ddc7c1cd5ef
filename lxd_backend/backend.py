"""Contract shared by every hypervisor backend, plus helpers they reuse."""

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from ipaddress import IPv4Address

from lxd_backend.errors import IPAddressTimeout, SSHTimeout, StartError
from lxd_backend.models import VMStatus
from lxd_backend.schemas import VMMount
from lxd_backend.utils import port_is_open


logger = logging.getLogger(__name__)


class VirtualMachine(ABC):
    def __init__(self, vm_name: str):
        self.vm_name = vm_name
        self.state = VMStatus.OFF
        self.management_ip: IPv4Address | None = None
        # Guards ``state`` and ``management_ip``.
        self.state_lock = threading.RLock()
        # Set once the start sequence has seen a shutdown; replaced on every start.
        self.shutdown_while_starting = threading.Event()

    @abstractmethod
    def start(self) -> None: ...

    @abstractmethod
    def stop(self) -> None: ...

    @abstractmethod
    def shutdown(self) -> None: ...

    @abstractmethod
    def suspend(self) -> None: ...

    @abstractmethod
    def current_state(self) -> VMStatus: ...

    @abstractmethod
    def ssh_port(self) -> int: ...

    @abstractmethod
    def ssh_hostname(self, timeout_sec: float) -> str: ...

    @abstractmethod
    def ssh_username(self) -> str: ...

    @abstractmethod
    def management_ipv4(self) -> str: ...

    @abstractmethod
    def ipv6(self) -> str: ...

    @abstractmethod
    def ensure_vm_is_running(self, timeout_sec: float | None = None) -> None: ...

    @abstractmethod
    def wait_until_ssh_up(self, timeout_sec: float) -> None: ...

    @abstractmethod
    def update_state(self) -> None: ...

    @abstractmethod
    def update_cpus(self, num_cores: int) -> None: ...

    @abstractmethod
    def resize_memory(self, new_size: int) -> None: ...

    @abstractmethod
    def resize_disk(self, new_size: int) -> None: ...

    @abstractmethod
    def make_native_mount_handler(self, target: str, mount: VMMount): ...

    def ensure_vm_is_running_for(
        self, is_vm_running: Callable[[], bool], message: str
    ) -> None:
        with self.state_lock:
            if not is_vm_running():
                self.shutdown_while_starting.set()
                raise StartError(self.vm_name, message)


def ip_address_for(
    vm: VirtualMachine,
    get_ip: Callable[[], IPv4Address | None],
    timeout_sec: float,
    interval_sec: float = 1.0,
) -> IPv4Address:
    deadline = time.monotonic() + timeout_sec
    while True:
        vm.ensure_vm_is_running()
        ip = get_ip()
        if ip is not None:
            return ip
        if time.monotonic() >= deadline:
            raise IPAddressTimeout(vm.vm_name, timeout_sec)
        logger.debug("waiting for ip lease name=%s", vm.vm_name)
        time.sleep(interval_sec)


def wait_for_ssh(
    vm: VirtualMachine,
    timeout_sec: float,
    interval_sec: float = 1.0,
    connect_timeout_sec: float = 1.0,
) -> None:
    """Drive a booting VM until its SSH port answers, then mark it running.

    Each round re-checks that the instance is still up, so a stop issued
    mid-boot ends the wait with ``StartError`` and releases the stopper. On
    timeout the VM becomes ``unknown`` and ``SSHTimeout`` is raised.
    """
    deadline = time.monotonic() + timeout_sec
    while True:
        vm.ensure_vm_is_running()
        remaining = max(deadline - time.monotonic(), 0.0)
        hostname = vm.ssh_hostname(remaining)
        if port_is_open(hostname, vm.ssh_port(), connect_timeout_sec):
            with vm.state_lock:
                if vm.state != VMStatus.STOPPED:
                    vm.state = VMStatus.RUNNING
                    vm.update_state()
                    return
            # stopped mid-check; the next round acknowledges it
            continue
        if time.monotonic() >= deadline:
            with vm.state_lock:
                vm.state = VMStatus.UNKNOWN
            raise SSHTimeout(vm.vm_name, timeout_sec)
        logger.debug("waiting for ssh name=%s host=%s", vm.vm_name, hostname)
        time.sleep(interval_sec)
