"""Cache de respostas com expiração por TTL e invalidação por escopo."""

import json
import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Dict, Optional, Tuple

from cryptography.fernet import Fernet

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, ...]


class AtomicCounter:
    """Thread-safe counter for statistics tracking.

    Uses a lock to ensure atomic increment and read operations,
    preventing race conditions under concurrent access.
    """

    def __init__(self) -> None:
        """Initialize counter with zero value."""
        self._value = 0
        self._lock = Lock()

    def increment(self, amount: int = 1) -> None:
        """Atomically increment the counter."""
        with self._lock:
            self._value += amount

    def value(self) -> int:
        """Atomically read the current counter value.

        Returns:
            int: Current counter value
        """
        with self._lock:
            return self._value


@dataclass(frozen=True)
class CacheEntry:
    """Snapshot serializado e criptografado de um payload.

    Attributes:
        payload: JSON do payload criptografado com Fernet
        expires_at: Instante absoluto de expiração (relógio do cache)
    """

    payload: bytes
    expires_at: float


def scope_key(project_id: str, environment: str) -> CacheKey:
    """Escopo de invalidação de um par (projeto, ambiente)."""
    return (project_id, environment)


def cache_key(project_id: str, environment: str, operation: str) -> CacheKey:
    """Chave de cache de uma operação dentro de um escopo."""
    return (project_id, environment, operation)


class ResponseCache:
    """Cache thread-safe de respostas da API.

    As chaves são tuplas ``(projeto, ambiente, operação)``. A invalidação
    compara prefixos de tupla elemento a elemento, então o escopo
    ``("p", "dev")`` nunca alcança ``("p", "dev2", ...)``.

    Os payloads são guardados como JSON criptografado com uma chave Fernet
    efêmera, gerada por instância. Serialização e criptografia acontecem
    fora do lock; a seção crítica contém apenas operações no dicionário.

    Cada invalidação incrementa a geração do escopo. Uma leitura que
    captura ``generation(key)`` antes da requisição e a repassa para
    ``set`` não grava um snapshot anterior a uma invalidação concorrente.

    Attributes:
        ttl: Tempo de vida das entradas em segundos (0 desabilita o cache)
    """

    def __init__(self, ttl: float = 0.0, clock: Optional[Callable[[], float]] = None):
        if ttl < 0:
            raise ValueError(f"TTL do cache não pode ser negativo: {ttl}")
        self.ttl = float(ttl)
        self._clock = clock or time.monotonic
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._lock = Lock()
        self._fernet = Fernet(Fernet.generate_key())
        self._generations: Dict[CacheKey, int] = {}
        self._epoch = 0

        self._stats = {
            "hits": AtomicCounter(),
            "misses": AtomicCounter(),
            "sets": AtomicCounter(),
            "invalidations": AtomicCounter(),
        }

    @property
    def enabled(self) -> bool:
        return self.ttl > 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: CacheKey) -> Optional[Any]:
        """Retorna o payload em cache, ou None se ausente ou expirado.

        Cada chamada devolve uma cópia recém-decodificada; alterar o
        resultado não afeta o cache.
        """
        if not self.enabled:
            return None

        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)

        if entry is None or now >= entry.expires_at:
            self._stats["misses"].increment()
            return None

        self._stats["hits"].increment()
        return json.loads(self._fernet.decrypt(entry.payload))

    def _generation_locked(self, key: CacheKey) -> int:
        # Soma dos contadores de todos os prefixos da chave; só cresce
        return self._epoch + sum(
            self._generations.get(key[:size], 0) for size in range(len(key) + 1)
        )

    def generation(self, key: CacheKey) -> int:
        """Retorna a geração atual dos escopos que contêm a chave.

        O valor muda sempre que algum escopo que alcança ``key`` é
        invalidado, inclusive por ``invalidate_all``.
        """
        with self._lock:
            return self._generation_locked(key)

    def set(self, key: CacheKey, value: Any, generation: Optional[int] = None) -> bool:
        """Armazena o payload com expiração ``agora + ttl``.

        Args:
            key: Chave da entrada
            value: Payload serializável em JSON
            generation: Geração capturada antes de obter ``value``. Se algum
                escopo da chave foi invalidado desde então, nada é gravado.

        Returns:
            bool: True se a entrada foi gravada
        """
        if not self.enabled:
            return False

        payload = self._fernet.encrypt(json.dumps(value).encode("utf-8"))
        entry = CacheEntry(payload=payload, expires_at=self._clock() + self.ttl)
        with self._lock:
            if generation is not None and generation != self._generation_locked(key):
                stored = False
            else:
                self._entries[key] = entry
                stored = True

        if not stored:
            logger.debug(f"Snapshot descartado para {key}: escopo invalidado durante a leitura")
            return False

        self._stats["sets"].increment()
        return True

    def invalidate(self, scope: CacheKey) -> int:
        """Remove todas as entradas cujas chaves começam pelo escopo.

        Returns:
            int: Número de entradas removidas
        """
        size = len(scope)
        with self._lock:
            self._generations[scope] = self._generations.get(scope, 0) + 1
            stale = [key for key in self._entries if key[:size] == scope]
            for key in stale:
                del self._entries[key]

        self._stats["invalidations"].increment()
        if stale:
            logger.debug(f"Cache invalidado para {scope}: {len(stale)} entrada(s)")
        return len(stale)

    def invalidate_all(self) -> None:
        """Remove todas as entradas, independente do escopo."""
        with self._lock:
            self._epoch += 1
            self._entries.clear()
        self._stats["invalidations"].increment()

    def statistics(self) -> Dict[str, int]:
        """Retorna contadores de uso do cache."""
        return {
            "cache_hits": self._stats["hits"].value(),
            "cache_misses": self._stats["misses"].value(),
            "cache_sets": self._stats["sets"].value(),
            "cache_invalidations": self._stats["invalidations"].value(),
        }
