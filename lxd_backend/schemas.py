from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class NetworkInterface(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    mac_address: str
    auto_mode: bool = False


class VirtualMachineDescription(BaseModel):
    model_config = ConfigDict(frozen=True)

    vm_name: str = Field(min_length=1)
    num_cores: int = Field(ge=1)
    mem_size: int = Field(ge=1, description="bytes")
    disk_space: int = Field(ge=1, description="bytes")
    default_mac_address: str
    extra_interfaces: list[NetworkInterface] = Field(default_factory=list)
    ssh_username: str = "ubuntu"
    image_id: str = ""
    meta_data_config: dict[str, Any] = Field(default_factory=dict)
    vendor_data_config: dict[str, Any] = Field(default_factory=dict)
    user_data_config: dict[str, Any] = Field(default_factory=dict)
    network_data_config: dict[str, Any] = Field(default_factory=dict)


class VMMount(BaseModel):
    model_config = ConfigDict(frozen=True)

    source_path: str
    uid_mappings: list[tuple[int, int]] = Field(default_factory=list)
    gid_mappings: list[tuple[int, int]] = Field(default_factory=list)
