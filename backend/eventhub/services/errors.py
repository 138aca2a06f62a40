"""Service-layer exceptions for the synchronous request paths

Routes translate these into HTTP responses; webhook handlers never raise them.
"""


class ServiceError(Exception):
    """Base class for errors a request path reports back to the caller"""
    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(ServiceError):
    status_code = 400


class PermissionDeniedError(ServiceError):
    status_code = 403


class NotFoundError(ServiceError):
    status_code = 404


class ConflictError(ServiceError):
    status_code = 409


class GatewayError(ServiceError):
    """A Stripe call failed on a path where the failure cannot be tolerated"""
    status_code = 502
