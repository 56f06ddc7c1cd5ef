from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FakeLXDSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="FAKE_LXD_", extra="ignore")

    bind_host: str = Field(default="127.0.0.1")
    bind_port: int = Field(default=8443, ge=1)
    log_level: str = Field(default="INFO")

    auth: str = Field(default="trusted")
    default_network: str = Field(default="mpbr0")
    lease_prefix: str = Field(default="10.125.0.")
    created_status: str = Field(default="Stopped")
    operation_polls: int = Field(default=1, ge=0)


@lru_cache(maxsize=1)
def get_settings() -> FakeLXDSettings:
    return FakeLXDSettings()
