import ipaddress
import logging
from ipaddress import IPv4Address

from lxd_backend.clients.lxd import LXDClient


logger = logging.getLogger(__name__)


def get_ip_for(client: LXDClient, mac_addr: str, leases_url: str) -> IPv4Address | None:
    reply = client.request("GET", leases_url)
    leases = reply.get("metadata")
    if not isinstance(leases, list):
        return None

    for lease in leases:
        if not isinstance(lease, dict) or lease.get("hwaddr") != mac_addr:
            continue
        try:
            return ipaddress.IPv4Address(str(lease.get("address", "")))
        except ValueError:
            logger.debug(
                "skipping unparsable lease hwaddr=%s address=%s",
                mac_addr,
                lease.get("address"),
            )
            continue
    return None
