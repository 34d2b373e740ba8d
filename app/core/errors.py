"""
Error taxonomy for the enrollment reconciliation core.

Every error carries the HTTP status the API layer answers with. Batch
operations (sweep, duplicate merge) catch these per item and report the
message instead of aborting the batch.
"""
from fastapi import status


class EnrollmentError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthenticationError(EnrollmentError):
    """Missing or invalid caller credential or webhook signature."""
    status_code = status.HTTP_401_UNAUTHORIZED


class AuthorizationError(EnrollmentError):
    status_code = status.HTTP_403_FORBIDDEN


class ValidationError(EnrollmentError):
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(EnrollmentError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(EnrollmentError):
    """Illegal state transition or a lost conditional write."""
    status_code = status.HTTP_409_CONFLICT


class ExternalServiceError(EnrollmentError):
    status_code = status.HTTP_502_BAD_GATEWAY


class PersistenceError(EnrollmentError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
