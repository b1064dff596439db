"""
Rate limiting por ventana de tiempo.

Dos backends intercambiables detrás de la misma interfaz:
- RedisRateLimiter: ventana fija con INCR/EXPIRE, compartida entre procesos.
- MemoryRateLimiter: ventana deslizante en memoria, mono-proceso (desarrollo y tests).

El backend se elige con RATE_LIMIT_BACKEND y se inyecta con get_rate_limiter(),
así los tests pueden reemplazarlo con dependency_overrides.
"""
import logging
import threading
import time
from collections import deque
from typing import Deque, Dict, Optional, Tuple

import redis

from mostrador.core.config import settings
from mostrador.core.exceptions import RateLimitError

logger = logging.getLogger(__name__)


class RateLimiter:
    """Interfaz: hit() registra un intento y dice si está permitido."""

    def hit(self, key: str, limit: int, window: int) -> Tuple[bool, int]:
        """Retorna (permitido, segundos hasta poder reintentar)."""
        raise NotImplementedError

    def check(self, key: str, limit: Optional[int] = None, window: Optional[int] = None) -> None:
        limit = limit or settings.RATE_LIMIT_REQUESTS
        window = window or settings.RATE_LIMIT_WINDOW
        allowed, retry_after = self.hit(key, limit, window)
        if not allowed:
            logger.warning(f"Rate limit exceeded for {key} ({limit}/{window}s)")
            raise RateLimitError(retry_after=retry_after)


class MemoryRateLimiter(RateLimiter):
    def __init__(self):
        self._buckets: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()
        self._last_sweep = 0.0

    def _sweep(self, now: float, window: int) -> None:
        """Descarta las claves cuya última solicitud ya salió de la ventana."""
        cutoff = now - window
        stale = [key for key, bucket in self._buckets.items() if not bucket or bucket[-1] <= cutoff]
        for key in stale:
            del self._buckets[key]
        self._last_sweep = now

    def hit(self, key: str, limit: int, window: int) -> Tuple[bool, int]:
        now = time.time()
        cutoff = now - window
        with self._lock:
            if now - self._last_sweep >= window:
                self._sweep(now, window)
            bucket = self._buckets.setdefault(key, deque())
            while bucket and bucket[0] <= cutoff:
                bucket.popleft()
            # Si ya alcanzó el máximo, bloquear antes de agregar
            if len(bucket) >= limit:
                return False, max(1, int(bucket[0] + window - now))
            bucket.append(now)
            return True, 0

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()


class RedisRateLimiter(RateLimiter):
    def __init__(self, client: Optional[redis.Redis] = None, prefix: str = "ratelimit"):
        self.client = client or redis.Redis.from_url(settings.redis_url)
        self.prefix = prefix

    def hit(self, key: str, limit: int, window: int) -> Tuple[bool, int]:
        redis_key = f"{self.prefix}:{key}"
        pipe = self.client.pipeline()
        pipe.incr(redis_key)
        pipe.ttl(redis_key)
        count, ttl = pipe.execute()
        if ttl is None or ttl < 0:
            self.client.expire(redis_key, window)
            ttl = window
        if count > limit:
            return False, max(1, int(ttl))
        return True, 0


_limiter: Optional[RateLimiter] = None


def build_rate_limiter(backend: Optional[str] = None) -> RateLimiter:
    backend = (backend or settings.RATE_LIMIT_BACKEND).lower()
    if backend == "redis":
        return RedisRateLimiter()
    if backend == "memory":
        return MemoryRateLimiter()
    raise ValueError(f"RATE_LIMIT_BACKEND desconocido: {backend}")


def get_rate_limiter() -> RateLimiter:
    """Dependencia FastAPI: limiter único por proceso."""
    global _limiter
    if _limiter is None:
        _limiter = build_rate_limiter()
    return _limiter
