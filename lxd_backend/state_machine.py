import logging

from lxd_backend.models import VMStatus


logger = logging.getLogger(__name__)


# LXD instance status codes
STATUS_CODE_TABLE: dict[int, VMStatus] = {
    101: VMStatus.RUNNING,  # Started
    103: VMStatus.RUNNING,  # Running
    107: VMStatus.RUNNING,  # Stopping
    111: VMStatus.RUNNING,  # Thawed
    102: VMStatus.STOPPED,
    106: VMStatus.STARTING,
    109: VMStatus.SUSPENDING,  # Freezing
    110: VMStatus.SUSPENDED,  # Frozen
    104: VMStatus.UNKNOWN,  # Cancelling
    108: VMStatus.UNKNOWN,  # Aborting
    112: VMStatus.UNKNOWN,  # Error
}

# Local states that survive a "running" report until the caller moves them on.
STICKY_WHILE_RUNNING: frozenset[VMStatus] = frozenset(
    {VMStatus.DELAYED_SHUTDOWN, VMStatus.STARTING}
)


def status_for_code(code: object) -> VMStatus | None:
    if isinstance(code, bool) or not isinstance(code, int):
        return None
    return STATUS_CODE_TABLE.get(code)


def instance_state_for(name: str, metadata: dict) -> VMStatus:
    code = metadata.get("status_code", -1)
    logger.debug(
        "got LXD instance state name=%s status=%s", name, metadata.get("status")
    )
    status = status_for_code(code)
    if status is None:
        logger.error(
            "got unexpected LXD state name=%s status=%s code=%s",
            name,
            metadata.get("status"),
            code,
        )
        return VMStatus.UNKNOWN
    return status


def reconcile_with_local(local: VMStatus, present: VMStatus) -> VMStatus:
    if local in STICKY_WHILE_RUNNING and present is VMStatus.RUNNING:
        return local
    return present
