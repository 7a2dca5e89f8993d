"""Error taxonomy shared by the store, the services and the chat coordinator.

Routers translate these into HTTP status codes with ``status_code``;
the coordinator lets them propagate to the initiating action after
reverting any optimistic state.
"""


class CampusError(Exception):
    """Base class for every CampusConnect failure."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InputValidationError(CampusError):
    """Empty or malformed input, reported before any store call."""

    status_code = 400


class NotFoundError(CampusError):
    status_code = 404


class ConflictError(CampusError):
    """A uniqueness violation, typically from two sessions racing an insert."""

    status_code = 409


class StoreUnavailableError(CampusError):
    """Transient failure talking to the backing store."""

    status_code = 503


class OperationTimeoutError(StoreUnavailableError):
    status_code = 504


class FeedDisconnectedError(StoreUnavailableError):
    """The change feed dropped a subscription; the consumer must resubscribe."""


def error_body(exc: CampusError) -> dict:
    return {"error": exc.message, "kind": type(exc).__name__}
