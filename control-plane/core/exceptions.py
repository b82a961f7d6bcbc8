# control-plane/core/exceptions.py
"""
Domain errors raised by the gateway provisioning core
Each error carries the error_code and HTTP status used in API responses
"""


class ControlPlaneError(Exception):
    """Base class for all control plane errors"""
    error_code = "CONTROL_PLANE_ERROR"
    status_code = 500

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundError(ControlPlaneError, LookupError):
    """Node, network or client does not exist"""
    error_code = "NOT_FOUND"
    status_code = 404


class ValidationError(ControlPlaneError, ValueError):
    """Request rejected before any state was changed"""
    error_code = "VALIDATION_ERROR"
    status_code = 400


class UnsupportedOSError(ValidationError):
    """Node operating system cannot hold the requested gateway role"""
    error_code = "UNSUPPORTED_OS"


class PersistenceError(ControlPlaneError, RuntimeError):
    """Writing to the record store failed; nothing was persisted"""
    error_code = "PERSISTENCE_ERROR"
    status_code = 500


class CascadeError(ControlPlaneError):
    """External clients of a gateway could not be enumerated"""
    error_code = "CASCADE_ERROR"
    status_code = 500
