from typing import Protocol

from lxd_backend.config import get_settings
from lxd_backend.db import Base, build_engine, build_session_factory, session_scope
from lxd_backend.models import VMStatus
from lxd_backend.repositories import (
    get_instance_state,
    list_events,
    upsert_instance_state,
    write_event,
)


class VMStatusMonitor(Protocol):
    def persist_state_for(self, name: str, state: VMStatus) -> None: ...


class DatabaseStatusMonitor:
    def __init__(self, database_url: str | None = None):
        self.engine = build_engine(database_url or get_settings().database_url)
        self.session_factory = build_session_factory(self.engine)
        Base.metadata.create_all(bind=self.engine)

    def persist_state_for(self, name: str, state: VMStatus) -> None:
        with session_scope(self.session_factory) as session:
            upsert_instance_state(session, name, state.value)
            write_event(session, name, state.value)

    def state_for(self, name: str) -> VMStatus | None:
        with session_scope(self.session_factory) as session:
            record = get_instance_state(session, name)
            return VMStatus(record.status) if record else None

    def history_for(self, name: str) -> list[VMStatus]:
        with session_scope(self.session_factory) as session:
            return [VMStatus(event.status) for event in list_events(session, name)]

    def close(self) -> None:
        self.engine.dispose()
