"""KeyEnvClient - Cliente assíncrono da API de segredos KeyEnv."""

import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Self
from urllib.parse import quote

import httpx

from .cache import AtomicCounter, ResponseCache, cache_key, scope_key
from .config import KeyEnvConfig
from .errors import (
    ClientClosedError,
    DeserializationError,
    NotFoundError,
    RequestTimeoutError,
    TransportError,
    raise_for_response,
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
)
from .utils import format_env_file, locked_file

SDK_VERSION = "1.0.0"
API_PREFIX = "/api/v1"

# Operação de cache da listagem com valores
EXPORT_OPERATION = "export"


def _segment(value: str) -> str:
    return quote(str(value), safe="")


class KeyEnvClient:
    """Cliente da API KeyEnv com cache de segredos e upsert.

    Esta classe fornece:
    - Leitura de segredos com cache por TTL (por projeto e ambiente)
    - Escrita com upsert (update; se 404, create) e invalidação do cache
    - Exportação para dicionário, arquivo .env e variáveis de ambiente
    - Gerenciamento de projetos, ambientes e permissões
    - Auditoria configurável via callbacks
    - Estatísticas de uso

    O cliente é dono de um único ``httpx.AsyncClient``. Fechar o cliente
    libera o transporte, mas não limpa o cache.

    Attributes:
        config: Configuração do cliente

    Examples:
        >>> async with KeyEnvClient.create("env_token", cache_ttl=300) as client:
        ...     secrets = await client.get_secrets_as_dict("proj", "production")
    """

    def __init__(
        self,
        config: KeyEnvConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """Inicializa o KeyEnvClient.

        Args:
            config: Configuração do cliente
            transport: Transporte httpx alternativo (e.g., ``httpx.MockTransport``)
            clock: Relógio monotônico do cache, em segundos
        """
        self.config = config
        self._logger = config.logger or logging.getLogger(__name__)

        self._cache = ResponseCache(config.cache_ttl, clock=clock)
        self._http = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {config.token}",
                "Accept": "application/json",
                "User-Agent": f"keyenv-python/{SDK_VERSION}",
            },
        )
        self._closed = False

        self._stats = {
            "requests": AtomicCounter(),
            "errors": AtomicCounter(),
        }

    @classmethod
    def create(cls, token: str, **kwargs: Any) -> Self:
        """Cria um cliente a partir do token e opções de KeyEnvConfig.

        ``transport`` e ``clock`` são repassados ao construtor.
        """
        transport = kwargs.pop("transport", None)
        clock = kwargs.pop("clock", None)
        return cls(KeyEnvConfig(token=token, **kwargs), transport=transport, clock=clock)

    @classmethod
    def from_environment(cls, **kwargs: Any) -> Self:
        """Cria um cliente a partir das variáveis KEYENV_*."""
        transport = kwargs.pop("transport", None)
        return cls(KeyEnvConfig.from_environment(**kwargs), transport=transport)

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Libera o transporte HTTP. O cache em memória é mantido."""
        if self._closed:
            return
        self._closed = True
        await self._http.aclose()
        self._logger.debug("Cliente KeyEnv fechado")

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    async def _request(
        self, method: str, path: str, body: Optional[Dict[str, Any]] = None
    ) -> httpx.Response:
        """Executa uma requisição e converte falhas na hierarquia KeyEnvError.

        Raises:
            ClientClosedError: Se o cliente já foi fechado
            RequestTimeoutError: Se o prazo do transporte expirar
            TransportError: Em falhas de conexão
            APIError: Ou subclasse, para respostas não-2xx
        """
        if self._closed:
            raise ClientClosedError("Cliente KeyEnv já foi fechado")

        url = f"{API_PREFIX}{path}"
        self._stats["requests"].increment()
        self._logger.debug(f"{method} {url}")

        try:
            response = await self._http.request(method, url, json=body)
        except httpx.TimeoutException as exc:
            self._stats["errors"].increment()
            raise RequestTimeoutError() from exc
        except httpx.RequestError as exc:
            self._stats["errors"].increment()
            raise TransportError(f"Falha na requisição: {exc}") from exc

        if not response.is_success:
            self._stats["errors"].increment()
            raise_for_response(response)

        return response

    @staticmethod
    def _decode(response: httpx.Response, field: Optional[str] = None) -> Any:
        """Decodifica o corpo JSON, opcionalmente extraindo um campo."""
        try:
            data = response.json()
        except ValueError as exc:
            raise DeserializationError(f"Resposta não é JSON válido: {exc}") from exc

        if field is None:
            return data
        if not isinstance(data, dict) or field not in data:
            raise DeserializationError(f"Campo '{field}' ausente na resposta")
        return data[field]

    @classmethod
    def _decode_list(cls, response: httpx.Response, field: str) -> List[Any]:
        items = cls._decode(response, field)
        if not isinstance(items, list):
            raise DeserializationError(f"Campo '{field}' deveria ser uma lista")
        return items

    @staticmethod
    def _environment_path(project_id: str, environment: str, *rest: str) -> str:
        segments = ["projects", project_id, "environments", environment, *rest]
        return "/" + "/".join(_segment(s) for s in segments)

    def _secrets_path(self, project_id: str, environment: str, *rest: str) -> str:
        return self._environment_path(project_id, environment, "secrets", *rest)

    def _audit(self, event: str, metadata: dict) -> None:
        """Registra evento de auditoria se callback configurado.

        Args:
            event: Nome do evento (e.g., "secret_set", "secret_deleted")
            metadata: Metadados do evento (nunca contém valores de segredos)
        """
        if self.config.audit_callback:
            try:
                self.config.audit_callback(event, metadata)
            except Exception as e:
                self._logger.warning(f"Erro no callback de auditoria: {e}")

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def clear_cache(self, project_id: str, environment: str) -> None:
        """Remove do cache todas as operações do escopo (projeto, ambiente)."""
        self._cache.invalidate(scope_key(project_id, environment))

    def clear_all_cache(self) -> None:
        """Remove todas as entradas do cache."""
        self._cache.invalidate_all()
        self._logger.debug("Cache limpo")

    def get_statistics(self) -> dict:
        """Retorna estatísticas de uso.

        Returns:
            dict: Contadores de requisições, erros e uso do cache
        """
        stats = {
            "requests": self._stats["requests"].value(),
            "errors": self._stats["errors"].value(),
        }
        stats.update(self._cache.statistics())
        return stats

    # ------------------------------------------------------------------
    # Usuário e token
    # ------------------------------------------------------------------

    async def get_current_user(self) -> CurrentUserResponse:
        """Retorna o usuário ou service token autenticado."""
        response = await self._request("GET", "/users/me")
        return CurrentUserResponse.from_dict(self._decode(response))

    async def validate_token(self) -> CurrentUserResponse:
        """Valida o token; falha com UnauthorizedError se inválido."""
        return await self.get_current_user()

    # ------------------------------------------------------------------
    # Projetos
    # ------------------------------------------------------------------

    async def list_projects(self) -> List[Project]:
        response = await self._request("GET", "/projects")
        return [Project.from_dict(item) for item in self._decode_list(response, "projects")]

    async def get_project(self, project_id: str) -> Project:
        """Retorna um projeto com seus ambientes."""
        response = await self._request("GET", f"/projects/{_segment(project_id)}")
        return Project.from_dict(self._decode(response))

    async def create_project(self, team_id: str, name: str) -> Project:
        response = await self._request("POST", "/projects", {"team_id": team_id, "name": name})
        return Project.from_dict(self._decode(response))

    async def delete_project(self, project_id: str) -> None:
        await self._request("DELETE", f"/projects/{_segment(project_id)}")

    # ------------------------------------------------------------------
    # Ambientes
    # ------------------------------------------------------------------

    async def list_environments(self, project_id: str) -> List[Environment]:
        response = await self._request("GET", f"/projects/{_segment(project_id)}/environments")
        return [
            Environment.from_dict(item) for item in self._decode_list(response, "environments")
        ]

    async def create_environment(
        self, project_id: str, name: str, inherits_from: Optional[str] = None
    ) -> Environment:
        """Cria um ambiente, opcionalmente herdando segredos de outro."""
        body: Dict[str, Any] = {"name": name}
        if inherits_from is not None:
            body["inherits_from"] = inherits_from
        response = await self._request(
            "POST", f"/projects/{_segment(project_id)}/environments", body
        )
        return Environment.from_dict(self._decode(response))

    async def delete_environment(self, project_id: str, environment: str) -> None:
        await self._request("DELETE", self._environment_path(project_id, environment))
        self.clear_cache(project_id, environment)

    # ------------------------------------------------------------------
    # Segredos
    # ------------------------------------------------------------------

    async def list_secrets(self, project_id: str, environment: str) -> List[Secret]:
        """Lista metadados dos segredos (sem valores). Não usa cache."""
        response = await self._request("GET", self._secrets_path(project_id, environment))
        return [Secret.from_dict(item) for item in self._decode_list(response, "secrets")]

    async def get_secrets(self, project_id: str, environment: str) -> List[SecretWithValue]:
        """Retorna todos os segredos do ambiente com valores descriptografados.

        Usa o cache quando ``cache_ttl`` > 0. Em caso de falha (inclusive
        cancelamento ou timeout) o cache não é alterado. Se o escopo for
        invalidado enquanto a requisição está em andamento, o resultado é
        retornado mas não é gravado no cache.

        Args:
            project_id: ID ou slug do projeto
            environment: Nome do ambiente

        Returns:
            List[SecretWithValue]: Segredos na ordem retornada pela API
        """
        key = cache_key(project_id, environment, EXPORT_OPERATION)

        cached = self._cache.get(key)
        if cached is not None:
            self._logger.debug(f"Cache hit para {project_id}/{environment}")
            return [SecretWithValue.from_dict(item) for item in cached]

        # Escritas concluídas durante a requisição invalidam este snapshot
        generation = self._cache.generation(key)
        response = await self._request(
            "GET", self._secrets_path(project_id, environment, EXPORT_OPERATION)
        )
        items = self._decode_list(response, "secrets")
        secrets = [SecretWithValue.from_dict(item) for item in items]

        self._cache.set(key, items, generation=generation)
        return secrets

    async def get_secrets_as_dict(self, project_id: str, environment: str) -> Dict[str, str]:
        """Retorna os segredos como dicionário chave -> valor.

        Chaves duplicadas não causam erro; a última ocorrência prevalece.
        """
        secrets = await self.get_secrets(project_id, environment)
        return {secret.key: secret.value for secret in secrets}

    async def get_secret(self, project_id: str, environment: str, key: str) -> SecretWithValue:
        """Retorna um segredo pelo nome.

        Raises:
            NotFoundError: Se o segredo não existir
        """
        response = await self._request("GET", self._secrets_path(project_id, environment, key))
        return SecretWithValue.from_dict(self._decode(response, "secret"))

    async def set_secret(
        self,
        project_id: str,
        environment: str,
        key: str,
        value: str,
        description: Optional[str] = None,
    ) -> bool:
        """Cria ou atualiza um segredo (upsert).

        Tenta primeiro o update. Somente um 404 no update leva ao create com
        a mesma chave, valor e descrição; qualquer outro erro é propagado sem
        tentar o create. Em caso de sucesso o escopo (projeto, ambiente) é
        invalidado no cache antes do retorno. Em caso de falha o cache não é
        tocado.

        Returns:
            bool: True se o segredo foi criado, False se foi atualizado

        Raises:
            KeyEnvError: Erros do update (exceto 404) ou do create
        """
        body: Dict[str, Any] = {"value": value}
        if description is not None:
            body["description"] = description

        created = False
        try:
            await self._request("PUT", self._secrets_path(project_id, environment, key), body)
        except NotFoundError:
            self._logger.info(
                f"Segredo '{key}' não existe em {project_id}/{environment}; criando"
            )
            await self._request(
                "POST",
                self._secrets_path(project_id, environment),
                SecretInput(key, value, description).to_dict(),
            )
            created = True

        self.clear_cache(project_id, environment)
        self._audit(
            "secret_set",
            {
                "project_id": project_id,
                "environment": environment,
                "key": key,
                "created": created,
            },
        )
        return created

    async def delete_secret(self, project_id: str, environment: str, key: str) -> None:
        """Remove um segredo e invalida o escopo no cache.

        Raises:
            NotFoundError: Se o segredo não existir (não é suprimido)
        """
        await self._request("DELETE", self._secrets_path(project_id, environment, key))
        self.clear_cache(project_id, environment)
        self._audit(
            "secret_deleted",
            {"project_id": project_id, "environment": environment, "key": key},
        )

    async def bulk_import(
        self,
        project_id: str,
        environment: str,
        secrets: Iterable[SecretInput],
        overwrite: bool = False,
    ) -> BulkImportResult:
        """Importa vários segredos em uma única requisição.

        Com ``overwrite=False`` o servidor mantém as chaves existentes e as
        conta como ignoradas. O escopo é invalidado após qualquer sucesso,
        independente das contagens retornadas.
        """
        body = {
            "secrets": [secret.to_dict() for secret in secrets],
            "overwrite": overwrite,
        }
        response = await self._request(
            "POST", self._secrets_path(project_id, environment, "bulk"), body
        )
        self.clear_cache(project_id, environment)

        result = BulkImportResult.from_dict(self._decode(response))
        self._audit(
            "bulk_import",
            {
                "project_id": project_id,
                "environment": environment,
                "created": result.created,
                "updated": result.updated,
                "skipped": result.skipped,
            },
        )
        return result

    async def get_secret_history(
        self, project_id: str, environment: str, key: str
    ) -> List[SecretHistory]:
        response = await self._request(
            "GET", self._secrets_path(project_id, environment, key, "history")
        )
        return [SecretHistory.from_dict(item) for item in self._decode_list(response, "history")]

    # ------------------------------------------------------------------
    # Exportação
    # ------------------------------------------------------------------

    async def load_env(self, project_id: str, environment: str) -> int:
        """Carrega os segredos em ``os.environ``.

        ATENÇÃO: altera o estado global do processo. Em chaves duplicadas a
        última ocorrência prevalece. Todas as chaves são validadas antes da
        primeira alteração: ou todos os segredos são carregados ou nenhum.

        Returns:
            int: Número de segredos carregados

        Raises:
            DeserializationError: Se alguma chave ou valor não puder ser
                usado como variável de ambiente
        """
        secrets = await self.get_secrets(project_id, environment)
        for secret in secrets:
            if not secret.key or "=" in secret.key or "\x00" in secret.key:
                raise DeserializationError(
                    f"Nome de variável de ambiente inválido: {secret.key!r}"
                )
            if "\x00" in secret.value:
                raise DeserializationError(
                    f"Valor do segredo '{secret.key}' contém caractere nulo"
                )

        for secret in secrets:
            os.environ[secret.key] = secret.value

        self._logger.info(
            f"{len(secrets)} segredo(s) carregado(s) de {project_id}/{environment}"
        )
        self._audit(
            "env_loaded",
            {"project_id": project_id, "environment": environment, "count": len(secrets)},
        )
        return len(secrets)

    async def generate_env_file(self, project_id: str, environment: str) -> str:
        """Gera o conteúdo de um arquivo .env com os segredos do ambiente."""
        secrets = await self.get_secrets(project_id, environment)
        return format_env_file((secret.key, secret.value) for secret in secrets)

    async def write_env_file(self, project_id: str, environment: str, filename: str) -> int:
        """Escreve os segredos em um arquivo .env, substituindo o conteúdo.

        Usa lock de arquivo de melhor esforço; não é garantido em todos os sistemas.

        Returns:
            int: Número de segredos escritos
        """
        secrets = await self.get_secrets(project_id, environment)
        content = format_env_file((secret.key, secret.value) for secret in secrets)

        with locked_file(Path(filename)) as f:
            f.seek(0)
            f.truncate()
            f.write(content)

        self._logger.info(f"{len(secrets)} segredo(s) escrito(s) em: {filename}")
        return len(secrets)

    # ------------------------------------------------------------------
    # Permissões
    # ------------------------------------------------------------------

    async def list_permissions(self, project_id: str, environment: str) -> List[Permission]:
        response = await self._request(
            "GET", self._environment_path(project_id, environment, "permissions")
        )
        return [
            Permission.from_dict(item) for item in self._decode_list(response, "permissions")
        ]

    async def set_permission(
        self, project_id: str, environment: str, user_id: str, role: str
    ) -> None:
        """Define o papel de um usuário ("none", "read", "write" ou "admin")."""
        await self._request(
            "PUT",
            self._environment_path(project_id, environment, "permissions", user_id),
            {"role": role},
        )

    async def delete_permission(self, project_id: str, environment: str, user_id: str) -> None:
        await self._request(
            "DELETE", self._environment_path(project_id, environment, "permissions", user_id)
        )

    async def get_my_permissions(self, project_id: str) -> MyPermissionsResponse:
        response = await self._request("GET", f"/projects/{_segment(project_id)}/my-permissions")
        return MyPermissionsResponse.from_dict(self._decode(response))

    async def get_project_defaults(self, project_id: str) -> List[DefaultPermission]:
        response = await self._request(
            "GET", f"/projects/{_segment(project_id)}/permissions/defaults"
        )
        return [
            DefaultPermission.from_dict(item) for item in self._decode_list(response, "defaults")
        ]

    async def set_project_defaults(
        self, project_id: str, defaults: Iterable[DefaultPermission]
    ) -> None:
        await self._request(
            "PUT",
            f"/projects/{_segment(project_id)}/permissions/defaults",
            {"defaults": [item.to_dict() for item in defaults]},
        )
