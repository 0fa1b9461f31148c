"""KeyEnv - Cliente Python da API de gerenciamento de segredos KeyEnv.

Este pacote fornece:
- Cliente assíncrono (httpx) autenticado por service token
- Cache thread-safe de segredos com TTL e invalidação por escopo
- Upsert de segredos (update com fallback para create)
- Exportação para dicionário, arquivo .env e variáveis de ambiente
- Hierarquia de erros com status HTTP e código da API
"""

from .cache import ResponseCache
from .client import SDK_VERSION, KeyEnvClient
from .config import KeyEnvConfig
from .errors import (
    APIError,
    ClientClosedError,
    ConfigurationError,
    ConflictError,
    DeserializationError,
    ForbiddenError,
    KeyEnvError,
    NotFoundError,
    RateLimitedError,
    RequestTimeoutError,
    ServerError,
    TransportError,
    UnauthorizedError,
)
from .types import (
    BulkImportResult,
    CurrentUserResponse,
    DefaultPermission,
    Environment,
    MyPermissionsResponse,
    Permission,
    Project,
    Secret,
    SecretHistory,
    SecretInput,
    SecretWithValue,
    ServiceTokenInfo,
    Team,
)
from .utils import format_env_file, parse_env_text

__version__ = SDK_VERSION

__all__ = [
    # Classes principais
    "KeyEnvClient",
    "KeyEnvConfig",
    "ResponseCache",
    # Erros
    "KeyEnvError",
    "APIError",
    "NotFoundError",
    "UnauthorizedError",
    "ForbiddenError",
    "ConflictError",
    "RateLimitedError",
    "ServerError",
    "RequestTimeoutError",
    "TransportError",
    "DeserializationError",
    "ConfigurationError",
    "ClientClosedError",
    # Tipos
    "Secret",
    "SecretWithValue",
    "SecretInput",
    "SecretHistory",
    "BulkImportResult",
    "Environment",
    "Project",
    "Team",
    "CurrentUserResponse",
    "ServiceTokenInfo",
    "Permission",
    "MyPermissionsResponse",
    "DefaultPermission",
    # Utilidades
    "format_env_file",
    "parse_env_text",
]
