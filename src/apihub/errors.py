"""Shared error types for sandbox provisioning."""


class HubError(Exception):
    """Base error for all provisioning failures."""

    retryable: bool = False


class ConfigError(HubError):
    """Raised when a hub config file fails parsing or validation."""


class StoreError(HubError):
    """The instance record store could not be read or written."""


class NoCapacityError(HubError):
    """Every host port in the configured range is taken."""

    retryable = True

    def __init__(self, min_port: int, max_port: int) -> None:
        self.min_port = min_port
        self.max_port = max_port
        super().__init__(f"No available ports in range {min_port}-{max_port}")


class ConflictError(HubError):
    """A uniqueness rule was violated (port bind, container name or ref)."""

    retryable = True

    def __init__(self, kind: str, value: object) -> None:
        self.kind = kind
        self.value = value
        super().__init__(f"{kind} already in use: {value}")


class NotFoundError(HubError):
    """No instance with this id is visible to the requesting owner.

    Raised alike for missing and foreign instances so callers cannot
    tell whether another owner's sandbox exists.
    """

    def __init__(self, instance_id: str) -> None:
        self.instance_id = instance_id
        super().__init__(f"Instance not found: {instance_id}")


class InvalidStatusTransition(HubError, ValueError):
    """Raised for status changes the instance lifecycle does not allow."""

    def __init__(self, from_status: str, to_status: str) -> None:
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"invalid status transition: {from_status!r} -> {to_status!r}")


# ---------------------------------------------------------------------------
# Lifecycle manager errors (one per runtime-boundary operation)
# ---------------------------------------------------------------------------


class ContainerOperationError(HubError):
    """A container runtime call failed."""

    operation = "operate"

    def __init__(self, container_ref: str = "", detail: str = "") -> None:
        self.container_ref = container_ref
        self.detail = detail
        msg = f"Container {self.operation} failed"
        if container_ref:
            msg += f" ({container_ref})"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class CreationError(ContainerOperationError):
    operation = "creation"


class StartError(ContainerOperationError):
    operation = "start"


class StopError(ContainerOperationError):
    operation = "stop"


class RemovalError(ContainerOperationError):
    operation = "removal"


class InspectionError(ContainerOperationError):
    operation = "inspection"


# ---------------------------------------------------------------------------
# Runtime-layer errors (raised by ContainerRuntime implementations)
# ---------------------------------------------------------------------------


class ContainerRuntimeError(HubError):
    """The container runtime rejected or failed a command."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__("Container runtime error" + (f": {detail}" if detail else ""))


class ContainerMissingError(ContainerRuntimeError):
    """The referenced container does not exist."""

    def __init__(self, container_ref: str) -> None:
        self.container_ref = container_ref
        super().__init__(f"No such container: {container_ref}")


class RuntimeUnavailableError(ContainerRuntimeError):
    """The container runtime daemon cannot be reached."""
