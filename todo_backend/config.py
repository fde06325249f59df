"""Configuracao lida de variaveis de ambiente (e de um .env local, se existir)."""
import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv

# Carrega .env em ambiente local; variaveis ja definidas tem prioridade.
load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on", "sim"}


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return list(default)
    return [part.strip() for part in raw.split(",") if part.strip()]


BASE_DIR = Path(__file__).resolve().parent.parent

# ---- Banco / cache ----
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./todo.db")
REDIS_URL = os.getenv("REDIS_URL")
CACHE_TTL_SECONDS = _env_int("CACHE_TTL_SECONDS", 60)
REDIS_SOCKET_TIMEOUT_SECONDS = _env_float("REDIS_SOCKET_TIMEOUT_SECONDS", 2.0)

# ---- Lembretes ----
REMINDERS_ENABLED = _env_bool("REMINDERS_ENABLED", True)
REMINDER_INTERVAL_SECONDS = _env_float("REMINDER_INTERVAL_SECONDS", 60.0)
REMINDER_TIMEZONE = os.getenv("REMINDER_TIMEZONE", "UTC")

# ---- SMTP (valores padrao quando nada foi salvo pela API) ----
SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = _env_int("SMTP_PORT", 587)
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASS = os.getenv("SMTP_PASS", "")
SMTP_FROM_EMAIL = os.getenv("SMTP_FROM_EMAIL", "")
SMTP_TO_EMAIL = os.getenv("SMTP_TO_EMAIL", "")
SMTP_TIMEOUT_SECONDS = _env_float("SMTP_TIMEOUT_SECONDS", 10.0)
FROM_NAME = os.getenv("FROM_NAME", "Todo Reminder")

# ---- Servidor HTTP ----
HOST = os.getenv("HOST", "0.0.0.0")
PORT = _env_int("PORT", 3001)
CORS_ORIGINS = _env_list("CORS_ORIGINS", ["*"])
MAX_BODY_BYTES = _env_int("MAX_BODY_BYTES", 10 * 1024 * 1024)
FRONTEND_DIR = Path(os.getenv("FRONTEND_DIR", str(BASE_DIR / "frontend")))

# ---- Limite de requisicoes em /api/ (por IP) ----
RATE_LIMIT_ENABLED = _env_bool("RATE_LIMIT_ENABLED", True)
RATE_LIMIT_WINDOW_MS = _env_int("RATE_LIMIT_WINDOW_MS", 15 * 60 * 1000)
RATE_LIMIT_MAX_REQUESTS = _env_int("RATE_LIMIT_MAX_REQUESTS", 100)

# ---- Logs ----
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE") or None
