"""
Error taxonomy of the trip core.

Every error carries a stable machine-readable ``code`` which the API layer
returns next to the human message, so clients can branch on it (e.g. prompt
for OTP re-entry on ``otp_mismatch``) without parsing text.
"""


class TripCoreError(Exception):
    code = "trip_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(TripCoreError):
    """Malformed or missing input; the caller has to correct it."""

    code = "validation_error"


class NotFoundError(TripCoreError):
    code = "not_found"


class InvalidStateError(TripCoreError):
    """Operation not permitted from the entity's current state."""

    code = "invalid_state"


class OtpMismatchError(TripCoreError):
    code = "otp_mismatch"


class CapacityExceededError(TripCoreError):
    """The last seat was taken by a concurrent request."""

    code = "capacity_exceeded"


class PermissionDeniedError(TripCoreError):
    code = "permission_denied"
