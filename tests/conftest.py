"""Fixtures compartilhadas: servidor KeyEnv falso em memória."""

import json
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest

from keyenv import KeyEnvClient

TIMESTAMP = "2026-01-15T10:30:00Z"


class FakeClock:
    """Relógio controlado manualmente para testes de TTL."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeKeyEnvServer:
    """Implementação mínima dos endpoints de segredos da API KeyEnv.

    Usado como handler de ``httpx.MockTransport``. Registra cada requisição
    em ``requests`` e permite forçar respostas de erro com ``fail``.
    """

    def __init__(self) -> None:
        self.secrets: Dict[Tuple[str, str], Dict[str, Dict[str, Any]]] = {}
        self.history: Dict[Tuple[str, str, str], List[Dict[str, Any]]] = {}
        self.requests: List[Tuple[str, str]] = []
        self.bodies: List[Optional[Dict[str, Any]]] = []
        self.failures: Dict[Tuple[str, str], Tuple[int, Any]] = {}
        self._next_id = 1

    def seed(self, project: str, env: str, key: str, value: str, **extra: Any) -> None:
        self._store(project, env, key, value, extra.get("description"))
        self.secrets[(project, env)][key].update(extra)

    def fail(self, method: str, path: str, status: int, body: Any = None) -> None:
        self.failures[(method, path)] = (status, body)

    def count(self, method: str, path: str) -> int:
        return self.requests.count((method, path))

    def _store(self, project: str, env: str, key: str, value: str, description: Optional[str]):
        scope = self.secrets.setdefault((project, env), {})
        existing = scope.get(key)
        if existing is None:
            secret = {
                "id": f"sec_{self._next_id}",
                "key": key,
                "value": value,
                "description": description,
                "environment_id": f"env_{env}",
                "version": 1,
                "created_at": TIMESTAMP,
                "updated_at": TIMESTAMP,
            }
            self._next_id += 1
            scope[key] = secret
            change = "created"
        else:
            existing["value"] = value
            if description is not None:
                existing["description"] = description
            existing["version"] += 1
            secret = existing
            change = "updated"

        self.history.setdefault((project, env, key), []).append(
            {
                "id": f"hist_{len(self.history) + self._next_id}",
                "secret_id": secret["id"],
                "key": key,
                "version": secret["version"],
                "change_type": change,
                "changed_by": "usr_1",
                "created_at": TIMESTAMP,
            }
        )
        return secret

    def __call__(self, request: httpx.Request) -> httpx.Response:
        method = request.method
        path = request.url.path
        body = json.loads(request.content) if request.content else None
        self.requests.append((method, path))
        self.bodies.append(body)

        if (method, path) in self.failures:
            status, error_body = self.failures[(method, path)]
            if error_body is None:
                return httpx.Response(status)
            return httpx.Response(status, json=error_body)

        parts = path.removeprefix("/api/v1/").split("/")
        if (
            len(parts) >= 5
            and parts[0] == "projects"
            and parts[2] == "environments"
            and parts[4] == "secrets"
        ):
            return self._handle_secrets(method, parts[1], parts[3], parts[5:], body)

        return httpx.Response(404, json={"error": "Route not found", "code": "not_found"})

    def _handle_secrets(
        self, method: str, project: str, env: str, rest: List[str], body: Any
    ) -> httpx.Response:
        scope = self.secrets.setdefault((project, env), {})

        if rest == ["export"] and method == "GET":
            return httpx.Response(200, json={"secrets": [dict(s) for s in scope.values()]})

        if rest == ["bulk"] and method == "POST":
            result = {"created": 0, "updated": 0, "skipped": 0}
            for item in body["secrets"]:
                if item["key"] in scope:
                    if not body["overwrite"]:
                        result["skipped"] += 1
                        continue
                    result["updated"] += 1
                else:
                    result["created"] += 1
                self._store(project, env, item["key"], item["value"], item.get("description"))
            return httpx.Response(200, json=result)

        if not rest:
            if method == "GET":
                metadata = [
                    {k: v for k, v in s.items() if k != "value"} for s in scope.values()
                ]
                return httpx.Response(200, json={"secrets": metadata})
            if method == "POST":
                if body["key"] in scope:
                    return httpx.Response(409, json={"error": "Secret already exists"})
                secret = self._store(project, env, body["key"], body["value"], body.get("description"))
                return httpx.Response(201, json={"secret": dict(secret)})
            return httpx.Response(405, json={"error": "Method not allowed"})

        key = rest[0]
        if len(rest) == 2 and rest[1] == "history" and method == "GET":
            return httpx.Response(200, json={"history": self.history.get((project, env, key), [])})

        if len(rest) == 1:
            if key not in scope:
                return httpx.Response(404, json={"error": "Secret not found", "code": "not_found"})
            if method == "GET":
                return httpx.Response(200, json={"secret": dict(scope[key])})
            if method == "PUT":
                secret = self._store(project, env, key, body["value"], body.get("description"))
                return httpx.Response(200, json={"secret": dict(secret)})
            if method == "DELETE":
                del scope[key]
                return httpx.Response(204)

        return httpx.Response(405, json={"error": "Method not allowed"})


@pytest.fixture
def server():
    return FakeKeyEnvServer()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_client(server, clock):
    """Fábrica de clientes ligados ao servidor falso."""

    def factory(handler=None, **kwargs):
        transport = httpx.MockTransport(handler or server)
        kwargs.setdefault("clock", clock)
        return KeyEnvClient.create("test-token", transport=transport, **kwargs)

    return factory
