import logging
from typing import Dict, Optional

from slowapi import Limiter
from slowapi.util import get_remote_address


logger = logging.getLogger(__name__)

RATE_LIMIT_MESSAGE = "Muitas requisicoes deste IP, tente novamente mais tarde."
BODY_TOO_LARGE_MESSAGE = "Corpo da requisicao muito grande."

# Mesmos cabecalhos padrao do helmet.
SECURITY_HEADERS: Dict[str, str] = {
    "Content-Security-Policy": (
        "default-src 'self';base-uri 'self';font-src 'self' https: data:;"
        "form-action 'self';frame-ancestors 'self';img-src 'self' data:;"
        "object-src 'none';script-src 'self';script-src-attr 'none';"
        "style-src 'self' https: 'unsafe-inline';upgrade-insecure-requests"
    ),
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Origin-Agent-Cluster": "?1",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "X-Content-Type-Options": "nosniff",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Frame-Options": "SAMEORIGIN",
    "X-Permitted-Cross-Domain-Policies": "none",
    "X-XSS-Protection": "0",
}


def rate_limit_string(max_requests: int, window_ms: int) -> str:
    """Converte (maximo, janela em ms) para a notacao do limits: '100/900 seconds'."""
    window_seconds = max(1, window_ms // 1000)
    return f"{max_requests}/{window_seconds} seconds"


def create_limiter(
    max_requests: int,
    window_ms: int,
    storage_uri: Optional[str] = None,
    enabled: bool = True,
) -> Limiter:
    """
    Limite unico por IP somado entre todas as rotas da API. Com REDIS_URL os
    contadores ficam no Redis (compartilhados entre processos); se o Redis cair
    o limiter usa memoria local em vez de derrubar a requisicao.
    """
    limit = rate_limit_string(max_requests, window_ms)
    logger.debug("Limite de requisicoes: %s (ativo: %s)", limit, enabled)
    return Limiter(
        key_func=get_remote_address,
        application_limits=[limit],
        storage_uri=storage_uri or "memory://",
        in_memory_fallback_enabled=bool(storage_uri),
        swallow_errors=True,
        enabled=enabled,
    )


def content_length_exceeds(raw_length: Optional[str], max_bytes: int) -> bool:
    if not raw_length:
        return False
    try:
        return int(raw_length) > max_bytes
    except ValueError:
        return False
