from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from lxd_backend.db import Base, now_utc


class VMStatus(str, Enum):
    OFF = "off"
    STARTING = "starting"
    RUNNING = "running"
    DELAYED_SHUTDOWN = "delayed_shutdown"
    SUSPENDING = "suspending"
    SUSPENDED = "suspended"
    STOPPING = "stopping"
    STOPPED = "stopped"
    UNKNOWN = "unknown"
    DELETED = "deleted"


class InstanceState(Base):
    __tablename__ = "instance_states"

    name: Mapped[str] = mapped_column(String(128), primary_key=True)
    status: Mapped[str] = mapped_column(
        String(32), default=VMStatus.OFF.value, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=now_utc, nullable=False
    )


class StateEvent(Base):
    __tablename__ = "state_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime, default=now_utc, nullable=False
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
