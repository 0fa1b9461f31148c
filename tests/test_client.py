"""Testes para KeyEnvClient: transporte, erros e endpoints auxiliares."""

import asyncio
import json
import logging

import httpx
import pytest

from keyenv import (
    ClientClosedError,
    ConfigurationError,
    DefaultPermission,
    DeserializationError,
    KeyEnvClient,
    NotFoundError,
    RequestTimeoutError,
    ServerError,
    TransportError,
    UnauthorizedError,
)
from keyenv.client import SDK_VERSION


def _json_handler(routes, seen=None):
    """Handler que responde JSON fixo por (método, caminho)."""

    def handler(request):
        if seen is not None:
            seen.append(request)
        route = (request.method, request.url.path)
        if route not in routes:
            return httpx.Response(404, json={"error": "Route not found"})
        status, body = routes[route]
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, json=body)

    return handler


def test_client_sends_auth_headers(make_client):
    """Testa token bearer, Accept e User-Agent em cada requisição."""
    seen = []
    handler = _json_handler(
        {("GET", "/api/v1/users/me"): (200, {"id": "tok_1", "auth_type": "service_token"})},
        seen,
    )

    async def scenario():
        async with make_client(handler) as client:
            user = await client.validate_token()
        return user

    user = asyncio.run(scenario())

    assert user.is_service_token
    request = seen[0]
    assert request.headers["Authorization"] == "Bearer test-token"
    assert request.headers["Accept"] == "application/json"
    assert request.headers["User-Agent"] == f"keyenv-python/{SDK_VERSION}"
    assert str(request.url) == "https://api.keyenv.dev/api/v1/users/me"


def test_client_custom_base_url(make_client):
    """Testa URL base customizada."""
    seen = []
    handler = _json_handler({("GET", "/api/v1/users/me"): (200, {"id": "usr_1"})}, seen)

    async def scenario():
        async with make_client(handler, base_url="http://localhost:8080/") as client:
            await client.get_current_user()

    asyncio.run(scenario())

    assert seen[0].url.host == "localhost"
    assert seen[0].url.port == 8080


def test_client_create_validates_config():
    """Testa que a fábrica valida a configuração."""
    with pytest.raises(ConfigurationError):
        KeyEnvClient.create("")

    with pytest.raises(ConfigurationError):
        KeyEnvClient.create("t", cache_ttl=-1)


def test_client_from_environment(monkeypatch):
    """Testa criação do cliente a partir de KEYENV_*."""
    monkeypatch.setenv("KEYENV_TOKEN", "env_from_env")
    monkeypatch.setenv("KEYENV_CACHE_TTL", "300")

    client = KeyEnvClient.from_environment()

    assert client.config.token == "env_from_env"
    assert client.cache.enabled
    asyncio.run(client.aclose())


def test_unauthorized_response(make_client):
    """Testa mapeamento de 401 com mensagem e código do corpo."""
    handler = _json_handler(
        {("GET", "/api/v1/users/me"): (401, {"error": "Invalid token", "code": "unauthorized"})}
    )

    async def scenario():
        async with make_client(handler) as client:
            await client.get_current_user()

    with pytest.raises(UnauthorizedError) as exc_info:
        asyncio.run(scenario())

    assert exc_info.value.message == "Invalid token"
    assert exc_info.value.code == "unauthorized"
    assert exc_info.value.is_unauthorized


def test_timeout_is_mapped(make_client):
    """Testa que timeout do transporte vira RequestTimeoutError."""

    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    async def scenario():
        async with make_client(handler) as client:
            await client.get_secrets("proj", "dev")

    with pytest.raises(RequestTimeoutError) as exc_info:
        asyncio.run(scenario())

    assert exc_info.value.status_code == 0
    assert exc_info.value.code == "timeout"
    assert isinstance(exc_info.value.__cause__, httpx.ReadTimeout)


def test_connection_error_is_mapped(make_client):
    """Testa que falhas de conexão viram TransportError."""

    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async def scenario():
        async with make_client(handler) as client:
            await client.get_secrets("proj", "dev")

    with pytest.raises(TransportError, match="connection refused"):
        asyncio.run(scenario())


def test_invalid_json_raises_deserialization_error(make_client):
    """Testa corpo 2xx que não é JSON."""

    def handler(request):
        return httpx.Response(200, text="<html>ok</html>")

    async def scenario():
        async with make_client(handler) as client:
            await client.get_secrets("proj", "dev")

    with pytest.raises(DeserializationError):
        asyncio.run(scenario())


def test_missing_field_raises_deserialization_error(make_client):
    """Testa corpo JSON sem o campo esperado."""
    handler = _json_handler(
        {("GET", "/api/v1/projects/proj/environments/dev/secrets/export"): (200, {"items": []})}
    )

    async def scenario():
        async with make_client(handler) as client:
            await client.get_secrets("proj", "dev")

    with pytest.raises(DeserializationError, match="secrets"):
        asyncio.run(scenario())


def test_closed_client_rejects_requests(make_client, server):
    """Testa que o cliente fechado não faz novas requisições."""

    async def scenario():
        client = make_client()
        await client.aclose()
        await client.aclose()
        assert client.closed
        await client.get_secrets("proj", "dev")

    with pytest.raises(ClientClosedError):
        asyncio.run(scenario())

    assert server.requests == []


def test_close_keeps_cache(make_client, server):
    """Testa que fechar o cliente não limpa o cache."""
    server.seed("proj", "dev", "A", "1")

    async def scenario():
        client = make_client(cache_ttl=60)
        await client.get_secrets("proj", "dev")
        await client.aclose()
        return client

    client = asyncio.run(scenario())

    assert len(client.cache) == 1


def test_path_segments_are_encoded(make_client):
    """Testa que segmentos com caracteres especiais são codificados."""
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={})

    async def scenario():
        async with make_client(handler) as client:
            await client.set_secret("my proj", "dev/eu", "A", "1")

    asyncio.run(scenario())

    assert len(seen) == 1
    raw_path = seen[0].url.raw_path.decode()
    assert raw_path == "/api/v1/projects/my%20proj/environments/dev%2Feu/secrets/A"


def test_statistics(make_client, server):
    """Testa contadores de requisições, erros e cache."""
    server.seed("proj", "dev", "A", "1")

    async def scenario():
        async with make_client(cache_ttl=60) as client:
            await client.get_secrets("proj", "dev")
            await client.get_secrets("proj", "dev")
            with pytest.raises(NotFoundError):
                await client.get_secret("proj", "dev", "MISSING")
            return client.get_statistics()

    stats = asyncio.run(scenario())

    assert stats["requests"] == 2
    assert stats["errors"] == 1
    assert stats["cache_hits"] == 1
    assert stats["cache_misses"] == 1
    assert stats["cache_sets"] == 1


def test_audit_callback(make_client, server):
    """Testa eventos de auditoria sem valores de segredos."""
    events = []

    async def scenario():
        async with make_client(audit_callback=lambda e, m: events.append((e, m))) as client:
            await client.set_secret("proj", "dev", "API_KEY", "super-secret")
            await client.delete_secret("proj", "dev", "API_KEY")

    asyncio.run(scenario())

    assert [event for event, _ in events] == ["secret_set", "secret_deleted"]
    assert events[0][1] == {
        "project_id": "proj",
        "environment": "dev",
        "key": "API_KEY",
        "created": True,
    }
    assert "super-secret" not in json.dumps(events)


def test_audit_callback_error_is_logged(make_client, server, caplog):
    """Testa que falha no callback de auditoria não interrompe a operação."""

    def broken_callback(event, metadata):
        raise RuntimeError("audit down")

    async def scenario():
        async with make_client(audit_callback=broken_callback) as client:
            return await client.set_secret("proj", "dev", "A", "1")

    with caplog.at_level(logging.WARNING, logger="keyenv.client"):
        created = asyncio.run(scenario())

    assert created is True
    assert "Erro no callback de auditoria: audit down" in caplog.text


def test_custom_logger(make_client, server, caplog):
    """Testa que o logger da configuração é usado."""
    custom = logging.getLogger("myapp.secrets")

    async def scenario():
        async with make_client(logger=custom) as client:
            await client.set_secret("proj", "dev", "A", "1")

    with caplog.at_level(logging.INFO, logger="myapp.secrets"):
        asyncio.run(scenario())

    records = [r for r in caplog.records if r.name == "myapp.secrets"]
    assert any("criando" in r.getMessage() for r in records)


def test_projects_and_environments(make_client):
    """Testa endpoints de projetos e ambientes."""
    seen = []
    env = {"id": "env_1", "name": "staging", "project_id": "proj_1"}
    project = {"id": "proj_1", "name": "API", "team_id": "team_1", "environments": [env]}
    handler = _json_handler(
        {
            ("GET", "/api/v1/projects"): (200, {"projects": [project]}),
            ("GET", "/api/v1/projects/proj_1"): (200, project),
            ("POST", "/api/v1/projects"): (201, project),
            ("DELETE", "/api/v1/projects/proj_1"): (204, None),
            ("GET", "/api/v1/projects/proj_1/environments"): (200, {"environments": [env]}),
            ("POST", "/api/v1/projects/proj_1/environments"): (201, env),
            ("DELETE", "/api/v1/projects/proj_1/environments/staging"): (204, None),
        },
        seen,
    )

    async def scenario():
        async with make_client(handler) as client:
            projects = await client.list_projects()
            fetched = await client.get_project("proj_1")
            created = await client.create_project("team_1", "API")
            environments = await client.list_environments("proj_1")
            new_env = await client.create_environment("proj_1", "staging", inherits_from="dev")
            await client.delete_environment("proj_1", "staging")
            await client.delete_project("proj_1")
        return projects, fetched, created, environments, new_env

    projects, fetched, created, environments, new_env = asyncio.run(scenario())

    assert projects[0].name == "API"
    assert fetched.environments[0].name == "staging"
    assert created.team_id == "team_1"
    assert environments[0].id == "env_1"
    assert new_env.name == "staging"

    bodies = {
        (r.method, r.url.path): json.loads(r.content) for r in seen if r.content
    }
    assert bodies[("POST", "/api/v1/projects")] == {"team_id": "team_1", "name": "API"}
    assert bodies[("POST", "/api/v1/projects/proj_1/environments")] == {
        "name": "staging",
        "inherits_from": "dev",
    }


def test_delete_environment_invalidates_cache(make_client, server):
    """Testa que remover o ambiente invalida seu escopo no cache."""
    server.seed("proj", "dev", "A", "1")

    def handler(request):
        if request.method == "DELETE" and request.url.path == "/api/v1/projects/proj/environments/dev":
            return httpx.Response(204)
        return server(request)

    async def scenario():
        async with make_client(handler, cache_ttl=60) as client:
            await client.get_secrets("proj", "dev")
            assert len(client.cache) == 1
            await client.delete_environment("proj", "dev")
            return len(client.cache)

    assert asyncio.run(scenario()) == 0


def test_permissions(make_client):
    """Testa endpoints de permissões."""
    seen = []
    permission = {
        "id": "perm_1",
        "user_id": "usr_2",
        "user_email": "ana@example.com",
        "environment_id": "env_1",
        "role": "read",
    }
    handler = _json_handler(
        {
            ("GET", "/api/v1/projects/proj/environments/prod/permissions"): (
                200,
                {"permissions": [permission]},
            ),
            ("PUT", "/api/v1/projects/proj/environments/prod/permissions/usr_2"): (200, {}),
            ("DELETE", "/api/v1/projects/proj/environments/prod/permissions/usr_2"): (204, None),
            ("GET", "/api/v1/projects/proj/my-permissions"): (
                200,
                {"permissions": [permission], "is_team_admin": False},
            ),
            ("GET", "/api/v1/projects/proj/permissions/defaults"): (
                200,
                {"defaults": [{"environment_name": "prod", "default_role": "none"}]},
            ),
            ("PUT", "/api/v1/projects/proj/permissions/defaults"): (200, {}),
        },
        seen,
    )

    async def scenario():
        async with make_client(handler) as client:
            permissions = await client.list_permissions("proj", "prod")
            await client.set_permission("proj", "prod", "usr_2", "write")
            await client.delete_permission("proj", "prod", "usr_2")
            mine = await client.get_my_permissions("proj")
            defaults = await client.get_project_defaults("proj")
            await client.set_project_defaults("proj", [DefaultPermission("prod", "read")])
        return permissions, mine, defaults

    permissions, mine, defaults = asyncio.run(scenario())

    assert permissions[0].user_email == "ana@example.com"
    assert not mine.is_team_admin
    assert defaults[0].default_role == "none"

    puts = [json.loads(r.content) for r in seen if r.method == "PUT"]
    assert puts == [
        {"role": "write"},
        {"defaults": [{"environment_name": "prod", "default_role": "read"}]},
    ]


def test_server_error_on_metadata_listing(make_client, server):
    """Testa propagação de 5xx na listagem de metadados."""
    server.fail("GET", "/api/v1/projects/proj/environments/dev/secrets", 503)

    async def scenario():
        async with make_client() as client:
            await client.list_secrets("proj", "dev")

    with pytest.raises(ServerError) as exc_info:
        asyncio.run(scenario())

    assert exc_info.value.status_code == 503
    assert exc_info.value.message == "Service Unavailable"
