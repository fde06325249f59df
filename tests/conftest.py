# tests/conftest.py

import os

# Antes de qualquer import do app: sem Redis, sem varredura em background.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = ""
os.environ["REMINDERS_ENABLED"] = "false"
os.environ["REMINDER_TIMEZONE"] = "UTC"
os.environ["RATE_LIMIT_ENABLED"] = "false"

import pytest
from fastapi.testclient import TestClient

from todo_backend import config
import todo_backend.crud as crud
from todo_backend.db import Base, create_db_engine, get_db, make_session_factory
import todo_backend.models  # registra as tabelas no Base

from .fakes import FakeMailer


@pytest.fixture(autouse=True)
def blank_smtp_defaults(monkeypatch):
    """Valores padrao de SMTP vazios, independente do ambiente da maquina."""
    monkeypatch.setattr(config, "SMTP_HOST", "")
    monkeypatch.setattr(config, "SMTP_PORT", 587)
    monkeypatch.setattr(config, "SMTP_USER", "")
    monkeypatch.setattr(config, "SMTP_PASS", "")
    monkeypatch.setattr(config, "SMTP_FROM_EMAIL", "")
    monkeypatch.setattr(config, "SMTP_TO_EMAIL", "")


@pytest.fixture()
def engine():
    """SQLite em memoria compartilhado entre sessoes e threads."""
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    factory = make_session_factory(engine)
    with factory() as db:
        crud.seed_default_projects(db)
    return factory


@pytest.fixture()
def db(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture()
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture()
def client(session_factory, mailer):
    """TestClient com banco de teste e mailer falso (sem lifespan)."""
    from main import app, get_mailer

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_mailer] = lambda: mailer
    yield TestClient(app)
    app.dependency_overrides.clear()
