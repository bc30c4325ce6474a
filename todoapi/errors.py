"""
Error taxonomy shared by the stores, the auth gates and the HTTP layer.

Every error carries a stable ``error_code`` string and the HTTP status the
route layer should answer with.
"""

from __future__ import annotations


class TodoApiError(Exception):
    status_code: int = 500
    error_code: str = "SERVER_ERROR"

    def __init__(self, message: str = "", *, error_code: str | None = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        if error_code:
            self.error_code = error_code

    def as_dict(self) -> dict:
        return {
            "success": False,
            "message": self.message,
            "errorCode": self.error_code,
        }


class ConfigurationError(RuntimeError):
    """Raised at startup when the configuration cannot be used."""


class ValidationError(TodoApiError):
    status_code = 400
    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message)
        self.field = field


class UniquenessError(TodoApiError):
    status_code = 400

    def __init__(self, field: str, value: str | None = None):
        error_code = "USERNAME_EXISTS" if field == "username" else "EMAIL_EXISTS"
        super().__init__(f"{field} already in use", error_code=error_code)
        self.field = field
        self.value = value


class ReferentialError(TodoApiError):
    status_code = 404
    error_code = "OWNER_NOT_FOUND"


class NotFoundError(TodoApiError):
    status_code = 404
    error_code = "NOT_FOUND"

    def __init__(self, entity: str, id: str | None = None):
        super().__init__(
            f"{entity} {id} not found" if id else f"{entity} not found",
            error_code=f"{entity.upper()}_NOT_FOUND",
        )
        self.entity = entity
        self.id = id


class AuthError(TodoApiError):
    status_code = 401
    error_code = "INVALID_TOKEN"


class AuthorizationError(TodoApiError):
    status_code = 403
    error_code = "ACCESS_DENIED"


class StorageFault(TodoApiError):
    status_code = 500
    error_code = "SERVER_ERROR"
