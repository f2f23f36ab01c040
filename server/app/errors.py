# server/app/errors.py


class PairingError(Exception):
    """Base for errors returned synchronously to pairing/sharing callers."""

    code = "pairing_error"
    retryable = False

    def __init__(self, message: str = None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


class InvalidCode(PairingError):
    """Confirmation code is missing or does not match the device"""
    code = "invalid_code"


class AlreadyLinked(PairingError):
    """User is already linked to this device"""
    code = "already_linked"


class DeviceExists(AlreadyLinked):
    """Device was claimed concurrently by another request"""
    code = "device_exists"


class Forbidden(PairingError):
    """Only the device owner may perform this action"""
    code = "forbidden"


class NotFound(PairingError):
    """User or device not found"""
    code = "not_found"


class StorageUnavailable(PairingError):
    """Storage is temporarily unavailable, retry later"""
    code = "storage_unavailable"
    retryable = True


class DecodeFailure(ValueError):
    """Raised by the codec for malformed bus messages; never surfaced to API callers."""
