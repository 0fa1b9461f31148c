"""Dataclasses dos recursos retornados pela API KeyEnv."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Self

from .errors import DeserializationError


def _require(data: Mapping[str, Any], name: str, kind: str) -> Any:
    if not isinstance(data, Mapping):
        raise DeserializationError(f"{kind}: esperado objeto JSON, recebido {type(data).__name__}")
    value = data.get(name)
    if value is None:
        raise DeserializationError(f"{kind}: campo obrigatório '{name}' ausente")
    return value


def _parse_datetime(value: Any) -> Optional[datetime]:
    """Converte timestamps ISO 8601 (inclusive com sufixo ``Z``)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as exc:
        raise DeserializationError(f"Timestamp inválido: {value!r}") from exc


def _parse_int(value: Any, name: str, kind: str) -> int:
    if value is None or value == "":
        return 0
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise DeserializationError(f"{kind}: campo '{name}' inválido: {value!r}") from exc


def _parse_list(items: Any, kind: str) -> List[Any]:
    if items is None:
        return []
    if not isinstance(items, list):
        raise DeserializationError(f"{kind}: esperado lista, recebido {type(items).__name__}")
    return items


@dataclass(frozen=True, kw_only=True)
class Secret:
    """Metadados de um segredo, sem o valor.

    Attributes:
        id: ID do segredo
        key: Nome da variável, único dentro do ambiente
        environment_id: Ambiente dono do segredo
        description: Descrição opcional
        secret_type: Tipo detectado pelo servidor
        version: Versão, incrementada pelo servidor a cada escrita
        inherited_from: Ambiente ancestral de onde o valor foi herdado
    """

    id: str
    key: str
    environment_id: str = ""
    description: Optional[str] = None
    secret_type: Optional[str] = None
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    inherited_from: Optional[str] = None

    @classmethod
    def _fields_from_dict(cls, data: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            "id": str(_require(data, "id", cls.__name__)),
            "key": _require(data, "key", cls.__name__),
            "environment_id": data.get("environment_id") or "",
            "description": data.get("description"),
            "secret_type": data.get("secret_type"),
            "version": _parse_int(data.get("version"), "version", cls.__name__),
            "created_at": _parse_datetime(data.get("created_at")),
            "updated_at": _parse_datetime(data.get("updated_at")),
            "inherited_from": data.get("inherited_from"),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(**cls._fields_from_dict(data))


@dataclass(frozen=True, kw_only=True)
class SecretWithValue(Secret):
    """Segredo com o valor descriptografado."""

    value: str

    @classmethod
    def _fields_from_dict(cls, data: Mapping[str, Any]) -> Dict[str, Any]:
        fields = super()._fields_from_dict(data)
        value = data.get("value")
        if not isinstance(value, str):
            raise DeserializationError(f"{cls.__name__}: campo obrigatório 'value' ausente")
        fields["value"] = value
        return fields


@dataclass(frozen=True)
class SecretInput:
    """Entrada para criação ou importação de um segredo."""

    key: str
    value: str
    description: Optional[str] = None

    @classmethod
    def create(cls, key: str, value: str, description: Optional[str] = None) -> Self:
        return cls(key=key, value=value, description=description)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"key": self.key, "value": self.value}
        if self.description is not None:
            body["description"] = self.description
        return body


@dataclass(frozen=True)
class BulkImportResult:
    """Resultado informativo de uma importação em lote."""

    created: int = 0
    updated: int = 0
    skipped: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        if not isinstance(data, Mapping):
            raise DeserializationError("BulkImportResult: esperado objeto JSON")
        try:
            return cls(
                created=int(data.get("created") or 0),
                updated=int(data.get("updated") or 0),
                skipped=int(data.get("skipped") or 0),
            )
        except (TypeError, ValueError) as exc:
            raise DeserializationError(f"BulkImportResult inválido: {exc}") from exc


@dataclass(frozen=True)
class SecretHistory:
    """Versão histórica de um segredo."""

    id: str
    secret_id: str
    key: str
    change_type: str
    version: int = 0
    changed_by: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        kind = cls.__name__
        return cls(
            id=str(_require(data, "id", kind)),
            secret_id=str(_require(data, "secret_id", kind)),
            key=_require(data, "key", kind),
            change_type=_require(data, "change_type", kind),
            version=_parse_int(data.get("version"), "version", kind),
            changed_by=data.get("changed_by"),
            created_at=_parse_datetime(data.get("created_at")),
        )


@dataclass(frozen=True)
class Environment:
    """Ambiente de um projeto (e.g., "development", "production")."""

    id: str
    name: str
    project_id: str
    description: Optional[str] = None
    inherits_from_id: Optional[str] = None
    order: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        kind = cls.__name__
        return cls(
            id=str(_require(data, "id", kind)),
            name=_require(data, "name", kind),
            project_id=str(_require(data, "project_id", kind)),
            description=data.get("description"),
            inherits_from_id=data.get("inherits_from_id"),
            order=_parse_int(data.get("order"), "order", kind),
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
        )


@dataclass(frozen=True)
class Project:
    """Projeto KeyEnv, opcionalmente com seus ambientes."""

    id: str
    name: str
    team_id: str
    slug: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    environments: List[Environment] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        kind = cls.__name__
        return cls(
            id=str(_require(data, "id", kind)),
            name=_require(data, "name", kind),
            team_id=str(_require(data, "team_id", kind)),
            slug=data.get("slug"),
            description=data.get("description"),
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
            environments=[
                Environment.from_dict(item)
                for item in _parse_list(data.get("environments"), kind)
            ],
        )


@dataclass(frozen=True)
class Team:
    id: str
    name: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(
            id=str(_require(data, "id", cls.__name__)),
            name=_require(data, "name", cls.__name__),
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
        )


@dataclass(frozen=True)
class ServiceTokenInfo:
    """Dados de um service token extraídos de ``CurrentUserResponse``."""

    id: str
    team_id: str
    project_ids: List[str]
    scopes: List[str]


@dataclass(frozen=True)
class CurrentUserResponse:
    """Resposta de ``GET /users/me``.

    Para service tokens traz id, team_id, project_ids, scopes e
    ``auth_type == "service_token"``. Para usuários traz o perfil e times.
    """

    id: Optional[str] = None
    auth_type: Optional[str] = None
    team_id: Optional[str] = None
    project_ids: List[str] = field(default_factory=list)
    scopes: List[str] = field(default_factory=list)
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    clerk_id: Optional[str] = None
    teams: List[Team] = field(default_factory=list)
    created_at: Optional[datetime] = None

    @property
    def is_service_token(self) -> bool:
        return self.auth_type == "service_token"

    @property
    def service_token(self) -> Optional[ServiceTokenInfo]:
        if not self.is_service_token:
            return None
        return ServiceTokenInfo(
            id=self.id or "",
            team_id=self.team_id or "",
            project_ids=list(self.project_ids),
            scopes=list(self.scopes),
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        kind = cls.__name__
        if not isinstance(data, Mapping):
            raise DeserializationError(f"{kind}: esperado objeto JSON")
        return cls(
            id=data.get("id"),
            auth_type=data.get("auth_type"),
            team_id=data.get("team_id"),
            project_ids=list(_parse_list(data.get("project_ids"), kind)),
            scopes=list(_parse_list(data.get("scopes"), kind)),
            email=data.get("email"),
            first_name=data.get("first_name"),
            last_name=data.get("last_name"),
            clerk_id=data.get("clerk_id"),
            teams=[Team.from_dict(item) for item in _parse_list(data.get("teams"), kind)],
            created_at=_parse_datetime(data.get("created_at")),
        )


@dataclass(frozen=True)
class Permission:
    """Permissão de um usuário em um ambiente."""

    id: str
    user_id: str
    user_email: str
    environment_id: str
    role: str
    environment_name: Optional[str] = None
    can_write: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        kind = cls.__name__
        return cls(
            id=str(_require(data, "id", kind)),
            user_id=str(_require(data, "user_id", kind)),
            user_email=_require(data, "user_email", kind),
            environment_id=str(_require(data, "environment_id", kind)),
            role=_require(data, "role", kind),
            environment_name=data.get("environment_name"),
            can_write=bool(data.get("can_write", False)),
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
        )


@dataclass(frozen=True)
class MyPermissionsResponse:
    permissions: List[Permission]
    is_team_admin: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        kind = cls.__name__
        return cls(
            permissions=[
                Permission.from_dict(item)
                for item in _parse_list(_require(data, "permissions", kind), kind)
            ],
            is_team_admin=bool(data.get("is_team_admin", False)),
        )


@dataclass(frozen=True)
class DefaultPermission:
    """Papel padrão atribuído a novos membros em um ambiente."""

    environment_name: str
    default_role: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        kind = cls.__name__
        return cls(
            environment_name=_require(data, "environment_name", kind),
            default_role=_require(data, "default_role", kind),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"environment_name": self.environment_name, "default_role": self.default_role}
