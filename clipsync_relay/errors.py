"""
Error taxonomy for ClipSync Relay.

Every error carries a short machine readable ``code`` that the API layer
returns to clients alongside the message.
"""


class ClipSyncError(Exception):
    code = "OperationFailed"
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class NotFound(ClipSyncError):
    """Identifier is well formed but nothing is stored under it."""
    code = "NotFound"
    status_code = 404


class InvalidReference(ClipSyncError):
    """Identifier is malformed or belongs to another table."""
    code = "InvalidReference"
    status_code = 400


class PreconditionFailed(ClipSyncError):
    """Operation attempted against a pairing that is not active."""
    code = "PreconditionFailed"
    status_code = 409


class StorageUnavailable(ClipSyncError):
    code = "StorageUnavailable"
    status_code = 503


class InvalidArguments(ClipSyncError):
    code = "InvalidArguments"
    status_code = 400


class PayloadTooLarge(ClipSyncError):
    code = "PayloadTooLarge"
    status_code = 413
