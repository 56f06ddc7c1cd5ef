import logging

from lxd_backend.clients.lxd import LXDClient
from lxd_backend.config import BackendSettings, get_settings
from lxd_backend.errors import LXDBackendError, LXDNotFound
from lxd_backend.monitor import VMStatusMonitor
from lxd_backend.schemas import VirtualMachineDescription
from lxd_backend.virtual_machine import LXDVirtualMachine


logger = logging.getLogger(__name__)


def build_client(settings: BackendSettings) -> LXDClient:
    return LXDClient(
        settings.base_url,
        socket_path=settings.socket_path,
        project=settings.project,
        timeout=settings.request_timeout_sec,
        poll_interval_sec=settings.poll_interval_sec,
    )


class LXDVirtualMachineFactory:
    def __init__(
        self, settings: BackendSettings | None = None, client: LXDClient | None = None
    ):
        self.settings = settings or get_settings()
        self.client = client or build_client(self.settings)

    def create_virtual_machine(
        self, desc: VirtualMachineDescription, monitor: VMStatusMonitor
    ) -> LXDVirtualMachine:
        return LXDVirtualMachine(
            desc,
            monitor,
            self.client,
            self.settings.bridge_name,
            self.settings.storage_pool,
            self.settings,
        )

    def hypervisor_health_check(self) -> None:
        reply = self.client.request("GET", self.client.base_url)
        metadata = reply.get("metadata") or {}
        auth = metadata.get("auth")
        if auth != "trusted":
            raise LXDBackendError(
                f"Failed to authenticate to LXD (auth={auth}); "
                "check that the socket is accessible"
            )

        bridge = self.settings.bridge_name
        network = self.client.lookup(self.client.url_for(f"networks/{bridge}"))
        if network.found:
            return
        logger.info("creating missing LXD network bridge=%s", bridge)
        self.client.request(
            "POST",
            self.client.url_for("networks"),
            {
                "name": bridge,
                "description": "Network bridge for LXD-backed instances",
                "type": "bridge",
            },
        )

    def remove_resources_for(self, name: str) -> None:
        url = self.client.url_for(f"virtual-machines/{name}")
        try:
            reply = self.client.request("DELETE", url)
        except LXDNotFound:
            logger.debug("instance already removed name=%s", name)
            return
        self.client.wait(reply, self.settings.delete_timeout_sec)
        logger.info("removed LXD instance name=%s", name)

    def close(self) -> None:
        self.client.close()
