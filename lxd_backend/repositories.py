from sqlalchemy import select
from sqlalchemy.orm import Session

from lxd_backend.db import now_utc
from lxd_backend.models import InstanceState, StateEvent


def write_event(session: Session, name: str, status: str) -> None:
    session.add(StateEvent(name=name, status=status, timestamp=now_utc()))


def get_instance_state(session: Session, name: str) -> InstanceState | None:
    return session.get(InstanceState, name)


def upsert_instance_state(session: Session, name: str, status: str) -> InstanceState:
    record = get_instance_state(session, name)
    if record is None:
        record = InstanceState(name=name, status=status)
        session.add(record)
    else:
        record.status = status
    record.updated_at = now_utc()
    return record


def list_events(session: Session, name: str) -> list[StateEvent]:
    query = select(StateEvent).where(StateEvent.name == name)
    return list(session.scalars(query.order_by(StateEvent.id)))
