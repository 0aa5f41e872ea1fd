"""Errors raised by the time-entry engine.

Every error carries the HTTP status the router reports it with, so the
service layer never imports FastAPI.
"""


class TimeTrackingError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(TimeTrackingError):
    status_code = 404


class InvalidTransition(TimeTrackingError):
    """Operation attempted on a stopped entry."""

    status_code = 400


class AlreadyStopped(InvalidTransition):
    status_code = 404


class InvalidState(TimeTrackingError):
    """Stored row breaks an invariant the transition relies on."""

    status_code = 409


class Busy(TimeTrackingError):
    """Entry lock could not be acquired within the configured wait."""

    status_code = 409


class StorageFailure(TimeTrackingError):
    status_code = 503


class TaskNotFound(NotFound):
    """Start referenced a task that does not exist; reported as a bad request."""

    status_code = 400
