# src/fluxrest/core/errors.py
"""Error taxonomy shared by the query engine and the HTTP layer."""


class RestError(Exception):
    """Base class. `status_code` is the HTTP status the error maps to."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(RestError):
    """Client-caused error, raised before any SQL is sent."""

    status_code = 400


class NotFoundError(RestError):
    status_code = 404


class ExecutionError(RestError):
    """The database rejected or failed a statement."""

    status_code = 500
