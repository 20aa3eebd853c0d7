"""Custom exceptions for ride management."""


class RideError(Exception):
    """Base class for ride lifecycle failures."""
    code = "ride_error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ValidationError(RideError):
    """Raised when input to create_ride is malformed or missing."""
    code = "validation_error"


class PreconditionFailed(RideError):
    """
    Raised when a conditional update matched zero rows.

    Means a lost race or a stale view, never a transport problem.
    """
    code = "precondition_failed"


class TransportError(RideError):
    """Raised when the database/backend could not be reached."""
    code = "transport_error"


class SettlementError(RideError):
    """Raised when the wallet decrement for a completed ride fails."""
    code = "settlement_error"
