"""Custom exceptions for avorch."""


class AVOrchError(Exception):
    """Base exception for avorch.

    Carries the identifiers of the operation (and segment, for composite
    operations) the failure belongs to, so callers can report it.
    """

    def __init__(
        self,
        message: str,
        *,
        operation_id: str | None = None,
        segment_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.operation_id = operation_id
        self.segment_id = segment_id

    @property
    def kind(self) -> str:
        """Error category name (e.g. 'EngineRuntimeError')."""
        return type(self).__name__

    def describe(self) -> str:
        """Return a one-line message identifying operation, segment and kind."""
        where = []
        if self.operation_id:
            where.append(f"operation={self.operation_id}")
        if self.segment_id:
            where.append(f"segment={self.segment_id}")
        prefix = f"{self.kind}({', '.join(where)})" if where else self.kind
        return f"{prefix}: {self.message}"


class ValidationError(AVOrchError):
    """Request parameters are malformed."""

    pass


class CompositionError(AVOrchError):
    """Segments, transitions or effects are inconsistent."""

    pass


class ProbeError(AVOrchError):
    """Media metadata query failed."""

    pass


class EngineError(AVOrchError):
    """Codec engine failure."""

    pass


class EngineInvocationError(EngineError):
    """The codec engine could not be started."""

    pass


class EngineRuntimeError(EngineError):
    """The codec engine exited with an error."""

    def __init__(
        self,
        message: str,
        *,
        operation_id: str | None = None,
        segment_id: str | None = None,
        returncode: int | None = None,
        stderr_tail: str = "",
    ) -> None:
        super().__init__(message, operation_id=operation_id, segment_id=segment_id)
        self.returncode = returncode
        self.stderr_tail = stderr_tail


class ResourceError(AVOrchError):
    """Temporary file reservation or release failed."""

    pass


class OperationCancelledError(AVOrchError):
    """The operation was cancelled before it finished."""

    pass


class OperationStateError(AVOrchError):
    """An illegal lifecycle transition was requested."""

    pass
