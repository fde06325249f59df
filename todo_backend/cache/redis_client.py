"""Cliente Redis opcional (REDIS_URL): cache de tarefas e trava da varredura."""
import logging
import uuid
from typing import Optional

import redis

from todo_backend.config import REDIS_SOCKET_TIMEOUT_SECONDS, REDIS_URL

logger = logging.getLogger(__name__)


def create_redis_client(url: Optional[str], timeout: float = REDIS_SOCKET_TIMEOUT_SECONDS) -> Optional[redis.Redis]:
    """
    Cria o cliente a partir da URL (None sem URL ou com URL invalida).
    Com timeout de socket, um Redis travado vira RedisError em vez de
    prender a thread para sempre.
    """
    if not url:
        return None
    try:
        # rediss:// liga TLS; decode_responses evita decodificar bytes nas leituras.
        return redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
    except (redis.RedisError, ValueError):
        logger.warning("REDIS_URL invalida; seguindo sem cache", exc_info=True)
        return None


redis_client: Optional[redis.Redis] = create_redis_client(REDIS_URL)


def is_cache_available() -> bool:
    """Tenta dar ping no Redis; retorna False se não houver URL ou conexão falhar."""
    if not redis_client:
        return False
    try:
        return bool(redis_client.ping())
    except redis.RedisError:
        return False


class RedisSweepLock:
    """
    Trava entre processos para a varredura de lembretes (SET NX EX).

    O TTL garante que um processo que morreu no meio da varredura nao
    bloqueie os demais para sempre.
    """

    def __init__(self, client: redis.Redis, key: str = "reminders:sweep:lock", ttl_seconds: int = 120):
        self.client = client
        self.key = key
        self.ttl_seconds = max(1, int(ttl_seconds))
        self._token: Optional[str] = None

    def acquire(self) -> bool:
        token = uuid.uuid4().hex
        try:
            acquired = bool(self.client.set(self.key, token, nx=True, ex=self.ttl_seconds))
        except redis.RedisError:
            # Sem Redis, vale so a trava local do processo.
            logger.warning("Redis indisponivel; varredura segue sem trava distribuida", exc_info=True)
            self._token = None
            return True

        self._token = token if acquired else None
        return acquired

    def release(self) -> None:
        token, self._token = self._token, None
        if token is None:
            return
        try:
            # So apaga se a trava ainda for nossa (o TTL pode ter expirado).
            if self.client.get(self.key) == token:
                self.client.delete(self.key)
        except redis.RedisError:
            logger.warning("Falha ao liberar trava da varredura no Redis", exc_info=True)
