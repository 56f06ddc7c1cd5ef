from lxd_backend.schemas import VirtualMachineDescription
from lxd_backend.utils import emit_cloud_config


CLOUD_INIT_KEYS = (
    ("user.meta-data", "meta_data_config"),
    ("user.vendor-data", "vendor_data_config"),
    ("user.user-data", "user_data_config"),
    ("user.network-config", "network_data_config"),
)


def root_disk_device(storage_pool: str, size_bytes: int) -> dict:
    return {
        "path": "/",
        "pool": storage_pool,
        "size": str(size_bytes),
        "type": "disk",
    }


def bridged_nic(name: str, parent: str, mac_address: str) -> dict:
    return {
        "name": name,
        "nictype": "bridged",
        "parent": parent,
        "type": "nic",
        "hwaddr": mac_address,
    }


def build_base_vm_config(desc: VirtualMachineDescription) -> dict[str, str]:
    config = {
        "limits.cpu": str(desc.num_cores),
        "limits.memory": str(desc.mem_size),
        "security.secureboot": "false",
    }
    for key, field_name in CLOUD_INIT_KEYS:
        document = getattr(desc, field_name)
        if document:
            config[key] = emit_cloud_config(document)
    return config


def build_devices_config(
    desc: VirtualMachineDescription, bridge_name: str, storage_pool: str
) -> dict[str, dict]:
    devices = {
        "config": {"source": "cloud-init:config", "type": "disk"},
        "root": root_disk_device(storage_pool, desc.disk_space),
        "eth0": bridged_nic("eth0", bridge_name, desc.default_mac_address),
    }
    for index, net in enumerate(desc.extra_interfaces, start=1):
        net_name = f"eth{index}"
        devices[net_name] = bridged_nic(net_name, net.id, net.mac_address)
    return devices


def build_create_payload(
    desc: VirtualMachineDescription, bridge_name: str, storage_pool: str
) -> dict:
    return {
        "name": desc.vm_name,
        "config": build_base_vm_config(desc),
        "devices": build_devices_config(desc, bridge_name, storage_pool),
        "source": {"type": "image", "fingerprint": desc.image_id},
    }
