"""Exception types for the routines engine."""


class RoutinesError(Exception):
    """Base class for routines errors."""


class ConfigError(RoutinesError):
    """Configuration error."""


class ConnectivityError(RoutinesError):
    """The remote server is unreachable or reports itself unhealthy."""


class RecurrenceParseError(RoutinesError):
    """A schedule expression could not be turned into a recurrence."""

    def __init__(self, expression: str, reason: str):
        self.expression = expression
        self.reason = reason
        super().__init__(f"Invalid schedule '{expression}': {reason}")


class RemoteAPIError(RoutinesError):
    """A remote session API call failed."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)
