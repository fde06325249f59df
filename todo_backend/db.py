# db.py
from typing import Any, Dict

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

from todo_backend.config import DATABASE_URL


class Base(DeclarativeBase):
    pass


def engine_options(url: str) -> Dict[str, Any]:
    """
    Argumentos do create_engine conforme o banco:

    * SQLite em memoria: uma conexao unica (StaticPool), senao cada sessao
      veria um banco vazio.
    * SQLite em arquivo: pool padrao, liberado para as threads do FastAPI
      e da varredura de lembretes.
    * Outros bancos: NullPool, sem reter conexoes entre requisicoes, e
      pool_pre_ping para descartar conexoes quebradas.
    """
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return {"poolclass": NullPool, "pool_pre_ping": True}

    options: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if parsed.database in (None, "", ":memory:"):
        options["poolclass"] = StaticPool
    return options


def create_db_engine(url: str) -> Engine:
    return create_engine(url, **engine_options(url))


def make_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=bind)


engine = create_db_engine(DATABASE_URL)
SessionLocal = make_session_factory(engine)


def get_db():
    """Dependencia para pegar sessao (FastAPI)."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
