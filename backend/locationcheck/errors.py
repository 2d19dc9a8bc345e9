"""Service error hierarchy shared by the HTTP routes and the realtime channel."""
from typing import Any, Dict, List, Optional


class ServiceError(Exception):
    """Base class for errors that map onto a client-facing response."""

    status_code = 500
    code = "internal"
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "error": self.code, "message": self.message}


class ValidationError(ServiceError):
    """Missing or malformed input. Raised before any storage call."""

    status_code = 400
    code = "validation_error"
    default_message = "Missing required fields"

    def __init__(self, message: Optional[str] = None, missing: Optional[List[str]] = None):
        self.missing = list(missing or [])
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        if self.missing:
            body["required"] = self.missing
        return body


class Unauthenticated(ServiceError):
    """No credential was presented."""

    status_code = 403
    code = "unauthenticated"
    default_message = "No token provided"


class Unauthorized(ServiceError):
    """A credential was presented but rejected."""

    status_code = 401
    code = "unauthorized"
    default_message = "Invalid token"


class CredentialInvalid(Unauthorized):
    default_message = "Invalid token"


class CredentialExpired(Unauthorized):
    code = "token_expired"
    default_message = "Token expired"


class RateLimited(ServiceError):
    status_code = 429
    code = "rate_limited"
    default_message = "Too many requests, please try again later"


class NotFound(ServiceError):
    status_code = 404
    code = "not_found"
    default_message = "Not found"


class DeviceNotFound(NotFound):
    code = "device_not_found"
    default_message = "Device is not registered"


class SettingsNotFound(NotFound):
    code = "settings_not_found"
    default_message = "Device settings not found"


class IntegrityFailure(ServiceError):
    """An envelope failed authentication or could not be parsed."""

    code = "integrity_failure"
    default_message = "Stored data failed integrity check"


class StorageFailure(ServiceError):
    """A transaction could not commit. The root cause is chained."""

    code = "storage_failure"
    default_message = "Internal server error"


class WorkerPoolTimeout(StorageFailure):
    status_code = 503
    code = "timeout"
    default_message = "Timed out waiting for worker capacity"


class Internal(ServiceError):
    pass
