from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BackendSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="LXD_BACKEND_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    socket_path: str = Field(default="/var/snap/lxd/common/lxd/unix.socket")
    base_url: str = Field(default="http://lxd/1.0")
    project: str | None = Field(default="multipass")
    bridge_name: str = Field(default="mpbr0")
    storage_pool: str = Field(default="default")

    database_url: str = Field(default="sqlite:///./lxd_backend.db")
    log_level: str = Field(default="INFO")

    request_timeout_sec: float = Field(default=30.0, gt=0)
    state_request_timeout_sec: float = Field(default=5.0, gt=0)
    state_change_timeout_sec: float = Field(default=60.0, gt=0)
    create_timeout_sec: float = Field(default=600.0, gt=0)
    delete_timeout_sec: float = Field(default=60.0, gt=0)
    mount_timeout_sec: float = Field(default=300.0, gt=0)
    poll_interval_sec: float = Field(default=0.5, ge=0)

    start_grace_sec: float = Field(default=20.0, ge=0)
    lease_poll_interval_sec: float = Field(default=1.0, ge=0)
    ssh_connect_timeout_sec: float = Field(default=1.0, gt=0)

    snap_common_dir: str | None = Field(
        default=None,
        validation_alias=AliasChoices("LXD_BACKEND_SNAP_COMMON_DIR", "SNAP_COMMON"),
    )


@lru_cache(maxsize=1)
def get_settings() -> BackendSettings:
    return BackendSettings()
