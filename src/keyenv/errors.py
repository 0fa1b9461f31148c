"""Hierarquia de exceções do cliente KeyEnv."""

from typing import Any, Dict, Optional, Type

import httpx


class KeyEnvError(Exception):
    """Erro base do cliente KeyEnv.

    Attributes:
        message: Mensagem legível do erro
        status_code: Status HTTP da resposta (0 para erros fora do HTTP)
        code: Código opcional para tratamento programático
    """

    def __init__(self, message: str, status_code: int = 0, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404

    @property
    def is_unauthorized(self) -> bool:
        return self.status_code == 401

    @property
    def is_forbidden(self) -> bool:
        return self.status_code == 403

    @property
    def is_conflict(self) -> bool:
        return self.status_code == 409

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429

    @property
    def is_server_error(self) -> bool:
        return 500 <= self.status_code < 600

    def __str__(self) -> str:
        if self.status_code <= 0:
            return self.message
        details = f"status={self.status_code}"
        if self.code:
            details += f", code={self.code}"
        return f"{self.message} ({details})"


class APIError(KeyEnvError):
    """Resposta não-2xx da API."""


class NotFoundError(APIError):
    """Recurso inexistente (404)."""


class UnauthorizedError(APIError):
    """Token ausente ou inválido (401)."""


class ForbiddenError(APIError):
    """Token sem permissão para o recurso (403)."""


class ConflictError(APIError):
    """Conflito de estado no servidor (409)."""


class RateLimitedError(APIError):
    """Limite de requisições excedido (429)."""


class ServerError(APIError):
    """Falha interna do servidor (5xx)."""


class RequestTimeoutError(KeyEnvError):
    """Prazo do transporte excedido, sem status HTTP."""

    def __init__(self, message: str = "Tempo limite da requisição excedido"):
        super().__init__(message, status_code=0, code="timeout")


class TransportError(KeyEnvError):
    """Falha de conexão; a causa original fica em ``__cause__``."""


class DeserializationError(KeyEnvError):
    """Corpo da resposta não corresponde ao formato esperado."""


class ConfigurationError(KeyEnvError, ValueError):
    """Configuração inválida do cliente."""

    def __init__(self, message: str):
        super().__init__(f"Erro de configuração: {message}")


class ClientClosedError(KeyEnvError):
    """Requisição feita após o fechamento do cliente."""


_STATUS_ERRORS: Dict[int, Type[APIError]] = {
    401: UnauthorizedError,
    403: ForbiddenError,
    404: NotFoundError,
    409: ConflictError,
    429: RateLimitedError,
}


def error_class_for_status(status_code: int) -> Type[APIError]:
    """Retorna a classe de erro correspondente a um status HTTP."""
    if 500 <= status_code < 600:
        return ServerError
    return _STATUS_ERRORS.get(status_code, APIError)


def _parse_error_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def raise_for_response(response: httpx.Response) -> None:
    """Converte uma resposta não-2xx na exceção apropriada.

    A mensagem vem de ``error`` ou ``message`` no corpo JSON; sem corpo
    legível, usa a reason phrase do status HTTP.

    Raises:
        APIError: Ou a subclasse correspondente ao status
    """
    if response.is_success:
        return

    body = _parse_error_body(response)
    fallback = response.reason_phrase or "Unknown error"

    message = body.get("error")
    if not isinstance(message, str) or not message:
        message = body.get("message")
    if not isinstance(message, str) or not message:
        message = fallback

    code = body.get("code")
    if not isinstance(code, str):
        code = None

    raise error_class_for_status(response.status_code)(message, response.status_code, code)
