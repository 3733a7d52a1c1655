# backend/app/domain/errors.py
from __future__ import annotations


class DomainError(Exception):
    """
    Base for every error the tenancy core raises on purpose.

    Routers never catch these; main.py maps them to a JSON envelope using
    status_code + code.
    """

    status_code: int = 400
    code: str = "domain_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(DomainError):
    status_code = 400
    code = "validation_error"


class AuthorizationError(DomainError):
    status_code = 403
    code = "forbidden"


class NotFoundError(DomainError):
    status_code = 404
    code = "not_found"


class ConflictError(DomainError):
    status_code = 409
    code = "conflict"
