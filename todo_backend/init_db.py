# init_db.py
import logging

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from todo_backend.db import Base, engine
import todo_backend.crud as crud
import todo_backend.models  # importa para registrar as classes no Base

logger = logging.getLogger(__name__)


def init_db(bind: Engine = engine) -> int:
    """Cria as tabelas e os projetos padrao. Retorna quantos projetos criou."""
    Base.metadata.create_all(bind=bind)
    with Session(bind=bind) as db:
        created = crud.seed_default_projects(db)
    logger.info("Banco inicializado (%d projeto(s) padrao criado(s))", created)
    return created


if __name__ == "__main__":
    print("Criando tabelas...")
    init_db()
    print("Pronto.")
