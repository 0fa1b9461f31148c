"""Configuração do cliente KeyEnv."""

import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Self

from .errors import ConfigurationError
from .utils import format_env_file, locked_file, parse_env_file, parse_env_stream

DEFAULT_BASE_URL = "https://api.keyenv.dev"
DEFAULT_TIMEOUT = 30.0


@dataclass
class KeyEnvConfig:
    """Configuração do KeyEnvClient.

    Attributes:
        token: Service token usado como bearer token (obrigatório)
        base_url: URL base da API (padrão: https://api.keyenv.dev)
        timeout: Tempo limite de cada requisição em segundos (padrão: 30)
        cache_ttl: TTL do cache de segredos em segundos (0 desabilita)
        audit_callback: Callback opcional para auditoria de eventos
        logger: Logger opcional para mensagens (usa logging padrão se None)
    """

    token: str
    base_url: str = DEFAULT_BASE_URL
    timeout: float = DEFAULT_TIMEOUT
    cache_ttl: float = 0.0
    audit_callback: Optional[Callable[[str, Dict[str, Any]], None]] = None
    logger: Optional[Any] = None  # logging.Logger

    def __post_init__(self) -> None:
        """Valida configuração após inicialização."""
        if not isinstance(self.token, str) or not self.token.strip():
            raise ConfigurationError("Token é obrigatório")

        if not self.base_url:
            raise ConfigurationError("URL base da API não pode ser vazia")
        self.base_url = self.base_url.rstrip("/")

        self.timeout = self._coerce_seconds("timeout", self.timeout)
        if self.timeout <= 0:
            raise ConfigurationError(f"timeout deve ser positivo, recebido: {self.timeout}")

        self.cache_ttl = self._coerce_seconds("cache_ttl", self.cache_ttl)
        if self.cache_ttl < 0:
            raise ConfigurationError(f"cache_ttl não pode ser negativo, recebido: {self.cache_ttl}")

    @staticmethod
    def _coerce_seconds(name: str, value: Any) -> float:
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"{name} deve ser um número de segundos: {value!r}") from exc

    @classmethod
    def from_environment(cls, prefix: str = "KEYENV", **kwargs: Any) -> Self:
        """Cria configuração a partir de variáveis de ambiente.

        Formato esperado:
            KEYENV_TOKEN=env_xxx
            KEYENV_API_URL=https://api.keyenv.dev (opcional)
            KEYENV_TIMEOUT=30 (opcional)
            KEYENV_CACHE_TTL=300 (opcional)

        Args:
            prefix: Prefixo das variáveis (padrão: KEYENV)
            **kwargs: Argumentos adicionais para KeyEnvConfig

        Raises:
            ConfigurationError: Se o token estiver ausente ou valores forem inválidos
        """
        return cls._from_mapping(os.environ, prefix=prefix, **kwargs)

    @classmethod
    def from_file(cls, filename: str, prefix: str = "KEYENV", **kwargs: Any) -> Self:
        """Cria configuração a partir de um arquivo .env.

        Args:
            filename: Caminho do arquivo .env
            prefix: Prefixo das variáveis (padrão: KEYENV)
            **kwargs: Argumentos adicionais para KeyEnvConfig

        Raises:
            FileNotFoundError: Se o arquivo não existir
            ConfigurationError: Se a configuração for inválida ou incompleta
        """
        env_path = Path(filename)
        if not env_path.exists():
            raise FileNotFoundError(f"Arquivo .env não encontrado: {filename}")

        return cls._from_mapping(parse_env_file(env_path), prefix=prefix, **kwargs)

    @classmethod
    def _from_mapping(cls, mapping: Mapping[str, str], prefix: str = "KEYENV", **kwargs: Any) -> Self:
        """Cria configuração a partir de um mapeamento de variáveis."""
        token = kwargs.pop("token", None) or mapping.get(f"{prefix}_TOKEN")
        if not token:
            raise ConfigurationError(f"Token não encontrado. Esperado: {prefix}_TOKEN")

        # Valores explícitos em kwargs têm precedência sobre o mapeamento
        optional = {
            "base_url": mapping.get(f"{prefix}_API_URL"),
            "timeout": mapping.get(f"{prefix}_TIMEOUT"),
            "cache_ttl": mapping.get(f"{prefix}_CACHE_TTL"),
        }
        for name, value in optional.items():
            if value and name not in kwargs:
                kwargs[name] = value.strip("\"'")

        return cls(token=token.strip("\"'"), **kwargs)

    def to_file(
        self,
        filename: str,
        prefix: str = "KEYENV",
        append: bool = False,
        include_token: bool = False,
    ) -> None:
        """Persiste a configuração atual em um arquivo .env.

        O token só é gravado com ``include_token=True``.

        Args:
            filename: Caminho do arquivo .env
            prefix: Prefixo das variáveis (padrão: KEYENV)
            append: Se True, preserva variáveis existentes no arquivo
            include_token: Se True, grava também o token

        Usa lock de arquivo de melhor esforço; não é garantido em todos os sistemas.
        """
        data: Dict[str, str] = {}
        env_path = Path(filename)

        with locked_file(env_path) as f:
            if append:
                f.seek(0)
                data.update(parse_env_stream(f))

            data[f"{prefix}_API_URL"] = self.base_url
            data[f"{prefix}_TIMEOUT"] = f"{self.timeout:g}"
            data[f"{prefix}_CACHE_TTL"] = f"{self.cache_ttl:g}"
            if include_token:
                data[f"{prefix}_TOKEN"] = self.token

            f.seek(0)
            f.truncate()
            timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
            f.write(f"# Atualizado em {timestamp}\n")
            f.write(format_env_file(sorted(data.items())))
