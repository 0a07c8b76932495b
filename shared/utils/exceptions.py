"""Errores de dominio compartidos por los servicios"""


class AppError(Exception):
    status_code = 400
    code = "bad_request"

    def __init__(self, message: str, status_code: int = None, code: str = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        super().__init__(message)


class Unauthenticated(AppError):
    status_code = 401
    code = "unauthenticated"


class Forbidden(AppError):
    status_code = 403
    code = "forbidden"


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"


class ValidationError(AppError):
    status_code = 400
    code = "validation_error"


class InvalidCredential(ValidationError):
    code = "invalid_credential"


class InsufficientInventory(AppError):
    status_code = 400
    code = "insufficient_inventory"

    def __init__(self, message: str, available: int = None, requested: int = None):
        self.available = available
        self.requested = requested
        super().__init__(message)


class CredentialEncodingError(AppError):
    status_code = 500
    code = "credential_encoding_failed"
