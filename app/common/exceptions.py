"""
Errores de dominio del núcleo de Compras / CxP / Stock.

Todos heredan de HTTPException para que FastAPI los renderice sin handlers
adicionales. El `detail` siempre lleva un código legible por máquina y un
mensaje para el usuario; los guardrails de CxP y stock agregan una sugerencia
con la acción correctiva.
"""

from typing import Optional

from fastapi import HTTPException, status


class ComprasError(HTTPException):
    """Error base con código de motivo"""

    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        sugerencia: Optional[str] = None,
    ):
        self.code = code or self.default_code
        self.message = message
        self.sugerencia = sugerencia
        detail = {"code": self.code, "message": message}
        if sugerencia:
            detail["sugerencia"] = sugerencia
        super().__init__(status_code=self.status_code, detail=detail)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class NotFoundError(ComprasError):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "NO_ENCONTRADO"


class InvalidStateError(ComprasError):
    """Operación fuera del estado permitido (ej. editar una compra confirmada)"""

    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "ESTADO_INVALIDO"


class InvalidAmountError(ComprasError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "MONTO_INVALIDO"


class DomainValidationError(ComprasError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "VALIDACION"


class ConflictError(ComprasError):
    """Clave duplicada, saldo insuficiente, stock negativo o lock ocupado.

    `retryable` indica que el cliente puede reenviar la operación tal cual
    (timeouts de lock y deadlocks).
    """

    status_code = status.HTTP_409_CONFLICT
    default_code = "CONFLICTO"

    def __init__(self, message: str, code: Optional[str] = None,
                 sugerencia: Optional[str] = None, retryable: bool = False):
        super().__init__(message, code=code, sugerencia=sugerencia)
        self.retryable = retryable
        if retryable:
            self.detail["retryable"] = True


class InternalError(ComprasError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code = "ERROR_INTERNO"
