"""
Erros da aplicacao.

Cada erro carrega o status HTTP usado pela API; o dispatcher de lembretes
trata TransportError como falha temporaria (nova tentativa no proximo ciclo).
"""
from typing import Optional


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AppError, ValueError):
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class ProtectedProjectError(ValidationError):
    status_code = 403


class NotFoundError(AppError, LookupError):
    status_code = 404


class TransportError(AppError):
    status_code = 502


class InternalError(AppError):
    status_code = 500
