import asyncio
import contextlib
import json
import logging
import time
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional

import redis
import uvicorn
from fastapi import Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, BeforeValidator, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from todo_backend import config
from todo_backend.cache.redis_client import RedisSweepLock, is_cache_available, redis_client
import todo_backend.crud as crud
from todo_backend.db import SessionLocal, get_db
from todo_backend.dispatcher import ReminderDispatcher, resolve_recipient
from todo_backend.email_template import render_reminder_email, render_task_reminder
from todo_backend.errors import AppError, InternalError, NotFoundError, ValidationError
from todo_backend.init_db import init_db
from todo_backend.logging_setup import setup_logging
from todo_backend.mailer import SmtpMailer
from todo_backend.ports import Mailer, SmtpConfig
from todo_backend.repository import SqlReminderRepo
from todo_backend.security import (
    BODY_TOO_LARGE_MESSAGE,
    RATE_LIMIT_MESSAGE,
    SECURITY_HEADERS,
    content_length_exceeds,
    create_limiter,
)


logger = logging.getLogger(__name__)

FRONTEND_DIR = config.FRONTEND_DIR
CACHE_TTL_SECONDS = config.CACHE_TTL_SECONDS
START_TIME = time.monotonic()

mailer = SmtpMailer()


def get_mailer() -> Mailer:
    """Dependencia para o transporte de e-mail (substituida nos testes)."""
    return mailer


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(config.LOG_LEVEL, config.LOG_FILE)
    init_db()

    dispatcher = None
    runner = None
    if config.REMINDERS_ENABLED:
        lock = None
        if redis_client:
            lock = RedisSweepLock(redis_client, ttl_seconds=int(config.REMINDER_INTERVAL_SECONDS * 2))
        dispatcher = ReminderDispatcher(SqlReminderRepo(SessionLocal), mailer, lock=lock)
        runner = asyncio.create_task(dispatcher.run_forever(config.REMINDER_INTERVAL_SECONDS))
    app.state.dispatcher = dispatcher

    logger.info(
        "API pronta (SMTP configurado: %s, lembretes: %s)",
        _smtp_configured(),
        "ativos" if dispatcher else "desativados",
    )
    try:
        yield
    finally:
        if dispatcher is not None and runner is not None:
            await dispatcher.stop(runner)


def _smtp_configured() -> bool:
    with SessionLocal() as db:
        return crud.get_smtp_settings(db).configured


app = FastAPI(title="Todo Reminder API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---- Respostas e erros ----

def ok(data: Any = None) -> Dict[str, Any]:
    return {"success": True, "data": data}


def fail(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def describe_validation_error(exc: RequestValidationError) -> str:
    """Primeiro erro do pydantic no formato 'campo: mensagem'."""
    errors = exc.errors()
    if not errors:
        return "Requisicao invalida."

    first = errors[0]
    location = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
    field = ".".join(location)
    message = first.get("msg", "valor invalido")
    return f"{field}: {message}" if field else message


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s em %s %s: %s", exc.__class__.__name__, request.method, request.url.path, exc.message)
    return fail(exc.status_code, exc.message)


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("Erro de banco em %s %s", request.method, request.url.path)
    error = InternalError("Erro ao acessar o banco de dados.")
    return fail(error.status_code, error.message)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return fail(400, describe_validation_error(exc))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404 and exc.detail == "Not Found":
        return fail(404, "Rota nao encontrada.")
    return fail(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Erro nao tratado em %s %s", request.method, request.url.path)
    return fail(500, "Erro interno do servidor.")


# ---- Seguranca: limite por IP, tamanho do corpo, cabecalhos ----

limiter = create_limiter(
    config.RATE_LIMIT_MAX_REQUESTS,
    config.RATE_LIMIT_WINDOW_MS,
    storage_uri=config.REDIS_URL,
    enabled=config.RATE_LIMIT_ENABLED,
)
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)


# O SlowAPIMiddleware chama este handler direto, sem await.
@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    client_host = request.client.host if request.client else "?"
    logger.warning("Limite de requisicoes excedido por %s em %s", client_host, request.url.path)
    return fail(429, RATE_LIMIT_MESSAGE)


@app.middleware("http")
async def limit_body_size(request: Request, call_next):
    if content_length_exceeds(request.headers.get("content-length"), config.MAX_BODY_BYTES):
        return fail(413, BODY_TOO_LARGE_MESSAGE)
    return await call_next(request)


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


# ---- Cache de tarefas ----

def tasks_cache_key(project_id: Optional[str]) -> str:
    return f"tasks:project:{project_id}" if project_id else "tasks:all"


def invalidate_task_cache() -> None:
    """
    Remove todas as listas de tarefas em cache. Qualquer escrita em tarefas
    ou projetos chama esta funcao.
    """
    if not redis_client:
        return

    try:
        keys = list(redis_client.scan_iter(match="tasks:*"))
        if keys:
            redis_client.delete(*keys)
    except redis.RedisError:
        # Cache e opcional; evitar que erros de cache prejudiquem a API.
        logger.warning("Falha ao invalidar cache de tarefas", exc_info=True)


# ---- Schemas ----

class ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class RequestModel(ApiModel):
    # strict: "true" ou 1 nao viram bool, "5" nao vira int.
    model_config = ConfigDict(strict=True, extra="ignore")


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


# O cliente manda "" quando o campo de e-mail fica vazio.
OptionalEmail = Annotated[Optional[EmailStr], BeforeValidator(_blank_to_none)]


class ProjectOut(ApiModel):
    id: str
    name: str
    created_at: int
    icon: Optional[str] = None
    is_protected: bool = False


class TaskOut(ApiModel):
    id: str
    title: str
    completed: bool
    project_id: str
    created_at: int
    due_date: Optional[int] = None
    priority: Optional[str] = None
    order: int
    reminder_enabled: bool = False
    reminder_time: Optional[int] = None
    user_email: Optional[str] = None


class ReminderOut(ApiModel):
    id: int
    task_id: str
    user_email: Optional[str] = None
    reminder_time: int
    sent: bool
    sent_at: Optional[int] = None


class ProjectCreate(RequestModel):
    name: str
    icon: Optional[str] = None


class ProjectUpdate(RequestModel):
    name: Optional[str] = None
    icon: Optional[str] = None


class TaskCreate(RequestModel):
    title: str
    project_id: str
    order: Optional[int] = None


class TaskUpdate(RequestModel):
    title: Optional[str] = None
    completed: Optional[bool] = None
    project_id: Optional[str] = None
    due_date: Optional[int] = None
    priority: Optional[Literal["low", "medium", "high"]] = None
    order: Optional[int] = None
    reminder_enabled: Optional[bool] = None
    reminder_time: Optional[int] = None
    user_email: OptionalEmail = None


class TaskReorder(RequestModel):
    project_id: str
    old_index: int
    new_index: int


class SyncTask(RequestModel):
    id: str = Field(min_length=1)
    title: str
    completed: bool
    project_id: str
    created_at: int
    due_date: Optional[int] = None
    priority: Optional[Literal["low", "medium", "high"]] = None
    order: int
    reminder_enabled: bool = False
    reminder_time: Optional[int] = None
    user_email: OptionalEmail = None


class TaskSyncRequest(RequestModel):
    tasks: List[SyncTask]


class SmtpSettingsIn(RequestModel):
    host: str = Field(min_length=1)
    port: int = Field(ge=1, le=65535)
    user: EmailStr
    password: str = Field(alias="pass", min_length=1)
    from_email: OptionalEmail = None
    to_email: OptionalEmail = None

    @field_validator("host")
    @classmethod
    def host_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("host nao pode ser vazio")
        return value.strip()


class EmailTestIn(RequestModel):
    email: OptionalEmail = None


def dump(schema: type, obj: Any) -> Dict[str, Any]:
    return schema.model_validate(obj).model_dump(by_alias=True)


# ---- Frontend ----

if (FRONTEND_DIR / "index.html").is_file():
    for asset_dir in ("assets", "css", "js"):
        if (FRONTEND_DIR / asset_dir).is_dir():
            app.mount(
                f"/{asset_dir}",
                StaticFiles(directory=str(FRONTEND_DIR / asset_dir)),
                name=asset_dir,
            )

    @app.get("/", response_class=FileResponse, include_in_schema=False)
    @limiter.exempt
    def serve_frontend() -> FileResponse:
        """Serve o arquivo index.html do frontend."""
        return FileResponse(FRONTEND_DIR / "index.html")


# ---- Health ----

@app.get("/api/health")
def health():
    return ok(
        {
            "status": "OK",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.monotonic() - START_TIME, 3),
            "cache": is_cache_available(),
        }
    )


# ---- Projetos ----

@app.get("/api/projects")
def list_projects(db: Session = Depends(get_db)):
    return ok([dump(ProjectOut, project) for project in crud.list_projects(db)])


@app.post("/api/projects")
def create_project(project_in: ProjectCreate, db: Session = Depends(get_db)):
    project = crud.create_project(db, project_in.name, icon=project_in.icon)
    return ok(dump(ProjectOut, project))


@app.patch("/api/projects/{project_id}")
def update_project(project_id: str, project_in: ProjectUpdate, db: Session = Depends(get_db)):
    project = crud.update_project(db, project_id, project_in.model_dump(exclude_unset=True))
    return ok(dump(ProjectOut, project))


@app.delete("/api/projects/{project_id}")
def delete_project(project_id: str, db: Session = Depends(get_db)):
    tasks_deleted = crud.delete_project(db, project_id)
    invalidate_task_cache()
    return ok({"id": project_id, "deleted": True, "tasksDeleted": tasks_deleted})


# ---- Tarefas ----

@app.get("/api/tasks")
def list_tasks(
    project_id: Optional[str] = Query(None, alias="projectId"),
    db: Session = Depends(get_db),
):
    cache_key = tasks_cache_key(project_id)

    if redis_client:
        try:
            cached_tasks = redis_client.get(cache_key)
            if cached_tasks:
                return ok(json.loads(cached_tasks))
        except redis.RedisError:
            logger.warning("Falha ao ler cache de tarefas", exc_info=True)

    tasks = [dump(TaskOut, task) for task in crud.list_tasks(db, project_id)]

    if redis_client:
        try:
            redis_client.setex(cache_key, CACHE_TTL_SECONDS, json.dumps(jsonable_encoder(tasks)))
        except redis.RedisError:
            logger.warning("Falha ao gravar cache de tarefas", exc_info=True)

    return ok(tasks)


@app.post("/api/tasks")
def create_task(task_in: TaskCreate, db: Session = Depends(get_db)):
    task = crud.create_task(db, task_in.title, task_in.project_id, order=task_in.order)
    invalidate_task_cache()
    return ok(dump(TaskOut, task))


@app.post("/api/tasks/reorder")
def reorder_tasks(reorder_in: TaskReorder, db: Session = Depends(get_db)):
    tasks = crud.reorder_tasks(db, reorder_in.project_id, reorder_in.old_index, reorder_in.new_index)
    invalidate_task_cache()
    return ok([dump(TaskOut, task) for task in tasks])


@app.post("/api/tasks/sync")
def sync_tasks(sync_in: TaskSyncRequest, db: Session = Depends(get_db)):
    tasks_count, reminders_count = crud.sync_tasks(db, [task.model_dump() for task in sync_in.tasks])
    invalidate_task_cache()
    logger.info("Sync: %d tarefa(s), %d lembrete(s) ativo(s)", tasks_count, reminders_count)
    return ok({"tasksCount": tasks_count, "remindersCount": reminders_count})


@app.patch("/api/tasks/{task_id}")
def update_task(task_id: str, task_in: TaskUpdate, db: Session = Depends(get_db)):
    task = crud.update_task(db, task_id, task_in.model_dump(exclude_unset=True))
    invalidate_task_cache()
    return ok(dump(TaskOut, task))


@app.delete("/api/tasks/{task_id}")
def delete_task(task_id: str, db: Session = Depends(get_db)):
    """
    Remove uma tarefa (e seus lembretes) pelo ID.
    """
    if not crud.delete_task(db, task_id):
        raise NotFoundError("Tarefa nao encontrada.")

    invalidate_task_cache()
    return ok({"id": task_id, "deleted": True})


# ---- Lembretes ----

@app.get("/api/reminders")
def list_reminders(db: Session = Depends(get_db)):
    return ok([dump(ReminderOut, reminder) for reminder in crud.list_unsent_reminders(db)])


@app.post("/api/reminders/send/{task_id}")
def send_reminder_now(
    task_id: str,
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    """Envia o lembrete na hora, sem olhar o horario agendado."""
    task = crud.get_task(db, task_id)
    if not task.reminder_enabled:
        raise ValidationError("A tarefa nao tem lembrete ativado.", "reminderEnabled")

    settings = crud.get_smtp_settings(db)
    recipient = resolve_recipient(task, settings)
    if not recipient:
        raise ValidationError("Nenhum e-mail de destino para este lembrete.", "userEmail")

    email = render_task_reminder(task)
    message_id = mailer.send(settings, to=recipient, subject=email.subject, html=email.html, text=email.text)
    logger.info("Lembrete manual da tarefa %s enviado para %s", task.id, recipient)
    return ok({"taskId": task.id, "recipient": recipient, "messageId": message_id})


# ---- Configuracoes SMTP ----

@app.get("/api/settings")
@app.get("/api/smtp/settings")
def get_smtp_settings(db: Session = Depends(get_db)):
    return ok(crud.get_smtp_settings(db).public_dict())


@app.post("/api/settings")
@app.post("/api/smtp/settings")
def update_smtp_settings(
    settings_in: SmtpSettingsIn,
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    """
    Salva as configuracoes e testa a conexao. O teste e so informativo:
    as configuracoes ficam salvas mesmo se ele falhar.
    """
    settings = crud.save_smtp_settings(
        db,
        SmtpConfig(
            host=settings_in.host,
            port=settings_in.port,
            user=settings_in.user,
            password=settings_in.password,
            from_email=settings_in.from_email,
            to_email=settings_in.to_email,
        ),
    )
    mailer.reset()

    test_result = mailer.verify(settings)
    return ok({"configured": bool(test_result.get("success")), "testResult": test_result})


@app.post("/api/smtp/test")
def test_smtp_connection(db: Session = Depends(get_db), mailer: Mailer = Depends(get_mailer)):
    return ok(mailer.verify(crud.get_smtp_settings(db)))


@app.post("/api/smtp/test-email")
def send_test_email(
    test_in: Optional[EmailTestIn] = None,
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    settings = crud.get_smtp_settings(db)
    recipient = (test_in.email if test_in else None) or settings.to_email
    if not recipient:
        raise ValidationError("E-mail de destino e obrigatorio.", "email")

    now = crud.now_ms()
    email = render_reminder_email(
        title="E-mail de teste",
        due_date=now + 24 * 60 * 60 * 1000,
        priority="medium",
        reminder_time=now,
    )
    message_id = mailer.send(
        settings,
        to=recipient,
        subject="E-mail de teste - Todo Reminder",
        html=email.html,
        text=email.text,
    )
    return ok({"recipient": recipient, "messageId": message_id})


def run() -> None:
    uvicorn.run("main:app", host=config.HOST, port=config.PORT, log_config=None, server_header=False)


if __name__ == "__main__":
    run()
