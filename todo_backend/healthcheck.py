"""
Health check do backend para Docker/CI.

Sai com 0 se GET /api/health responder 200, e com 1 em qualquer outro caso
(status diferente, erro de conexao ou tempo esgotado).
"""
import argparse
import sys
from typing import List, Optional

import httpx

from todo_backend.config import PORT

DEFAULT_URL = f"http://localhost:{PORT}/api/health"


def check_health(url: str = DEFAULT_URL, timeout: float = 5.0, client: Optional[httpx.Client] = None) -> int:
    owns_client = client is None
    client = client or httpx.Client(timeout=timeout)
    try:
        response = client.get(url, timeout=timeout)
    except httpx.TimeoutException:
        print("Backend health check timed out")
        return 1
    except httpx.HTTPError as e:
        print(f"Backend health check failed: {e}")
        return 1
    finally:
        if owns_client:
            client.close()

    if response.status_code == 200:
        print("Backend is healthy")
        return 0

    print(f"Backend returned status {response.status_code}")
    return 1


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Verifica se o backend esta respondendo.")
    parser.add_argument("--url", default=DEFAULT_URL, help="URL do endpoint de health")
    parser.add_argument("--timeout", type=float, default=5.0, help="tempo maximo em segundos")
    args = parser.parse_args(argv)
    return check_health(args.url, args.timeout)


if __name__ == "__main__":
    sys.exit(main())
