"""Exceptions raised by the service layer.

Route handlers never build error responses for these by hand: the API
blueprint maps every ``ServiceError`` to ``{"error": message}`` with the
class status code.
"""


class ServiceError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(ServiceError):
    status_code = 400


class SnapshotFormatError(ValidationError):
    pass


class ForbiddenError(ServiceError):
    status_code = 403


class NotFoundError(ServiceError):
    status_code = 404


class ConflictError(ServiceError):
    status_code = 409


class UpstreamError(ServiceError):
    status_code = 502


class BlobNotFoundError(UpstreamError):
    status_code = 404
