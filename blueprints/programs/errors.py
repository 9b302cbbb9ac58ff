# blueprints/programs/errors.py
from __future__ import annotations
from typing import Any, Optional


class ProgramError(Exception):
    code = "server_error"
    status = 500

    def __init__(self, code: Optional[str] = None, details: Any = None):
        self.code = code or self.code
        self.details = details
        super().__init__(self.code)

    def to_dict(self) -> dict:
        body = {"error": self.code}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(ProgramError):
    code = "validation_error"
    status = 400


class AuthenticationError(ProgramError):
    code = "invalid_token"
    status = 401


class AuthorizationError(ProgramError):
    code = "unauthorized"
    status = 403


class NotFoundError(ProgramError):
    code = "program_not_found"
    status = 404


class StorageError(ProgramError):
    code = "server_error"
    status = 500


class MissingOptionalColumn(StorageError):
    """Хранилище не знает опциональную колонку (ещё не выкачена миграция)."""

    def __init__(self, table: str, column: str, details: Any = None):
        self.table = table
        self.column = column
        super().__init__(details=details)
