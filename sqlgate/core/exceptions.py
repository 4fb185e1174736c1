"""Exception hierarchy for the query gateway."""


class GatewayError(Exception):
    """Base exception for all gateway errors."""


class StartupError(GatewayError):
    """Raised when the database cannot be opened or prepared for serving."""


class ShapeMismatchError(GatewayError):
    """Raised when the statement list and argument list of a request do not line up."""


class ParameterTypeError(GatewayError):
    """Raised when a JSON value cannot be bound as a statement parameter."""


class ValueConversionError(GatewayError):
    """Raised when a column value has no JSON representation."""


class ExecutionError(GatewayError):
    """Raised when SQLite fails to compile or run a statement."""


class GateError(GatewayError):
    """Raised when the connection gate cannot run a job."""


class GateTimeoutError(GateError):
    """Raised when a job does not finish within the request deadline."""
