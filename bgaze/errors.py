"""
Error taxonomy shared by the adapters and the HTTP layer.

Each error carries the HTTP status it maps to and a message that is safe
to return to clients. Adapters translate library exceptions into these so
that routes never see driver-specific errors.
"""

from __future__ import annotations


class BgazeError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(BgazeError):
    status_code = 400
    default_message = "Invalid request"


class NoChange(ValidationError):
    default_message = "No update data provided"


class MissingToken(BgazeError):
    status_code = 401
    default_message = "Token missing"


class InvalidToken(BgazeError):
    status_code = 403
    default_message = "Token invalid or expired"


class NotFound(BgazeError):
    status_code = 404
    default_message = "Not found"


class DuplicateKey(BgazeError):
    status_code = 409
    default_message = "Duplicate key: idName already exists"


class PayloadTooLarge(BgazeError):
    status_code = 413
    default_message = "Payload too large"


class UpstreamFailure(BgazeError):
    status_code = 500


class DeliveryFailed(UpstreamFailure):
    default_message = "Failed to send OTP"
