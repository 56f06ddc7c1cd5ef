"""Exception types raised by the LXD backend."""


class LXDBackendError(RuntimeError):
    """Base error for backend failures."""


class RequestFailure(LXDBackendError):
    def __init__(
        self,
        *,
        method: str,
        url: str,
        error_type: str,
        detail: str,
        status_code: int | None = None,
    ):
        self.method = method
        self.url = url
        self.error_type = error_type
        self.detail = detail
        self.status_code = status_code
        super().__init__(f"LXD request failed: {method} {url} ({error_type}: {detail})")


class LXDNotFound(RequestFailure):
    """The daemon has no record of the instance, operation or device."""


class TransportUnavailable(RequestFailure):
    """The daemon socket could not be reached."""


class MalformedReply(RequestFailure):
    """The daemon answered with something that is not a JSON object."""


class OperationFailed(LXDBackendError):
    def __init__(self, operation_id: str, detail: str):
        self.operation_id = operation_id
        self.detail = detail
        super().__init__(f"LXD operation {operation_id} failed: {detail}")


class OperationTimeout(LXDBackendError):
    def __init__(
        self, operation_id: str, timeout_sec: float, message: str | None = None
    ):
        self.operation_id = operation_id
        self.timeout_sec = timeout_sec
        super().__init__(
            message
            or f"LXD operation {operation_id} did not finish within {timeout_sec:g}s"
        )


class IPAddressTimeout(OperationTimeout):
    def __init__(self, vm_name: str, timeout_sec: float):
        self.vm_name = vm_name
        super().__init__(
            f"ip-lease:{vm_name}",
            timeout_sec,
            f"failed to determine IP address for {vm_name}",
        )


class SSHTimeout(OperationTimeout):
    def __init__(self, vm_name: str, timeout_sec: float):
        self.vm_name = vm_name
        super().__init__(
            f"ssh:{vm_name}", timeout_sec, f"{vm_name}: timed out waiting for response"
        )


class UnsupportedOperation(LXDBackendError):
    pass


class InvalidMountState(LXDBackendError):
    pass


class StartError(LXDBackendError):
    def __init__(self, vm_name: str, detail: str):
        self.vm_name = vm_name
        self.detail = detail
        super().__init__(f"{vm_name}: {detail}")


class SnapEnvironmentError(LXDBackendError):
    """Raised when the snap data directory cannot be determined."""


class InvariantViolation(AssertionError):
    """A caller broke a precondition that upstream validation should enforce."""
