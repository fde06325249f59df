import time
import uuid
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from todo_backend import config
from todo_backend.errors import NotFoundError, ProtectedProjectError, ValidationError
from todo_backend.models import PRIORITIES, Project, Reminder, SmtpSettings, Task
from todo_backend.ports import SmtpConfig


INBOX_PROJECT_ID = "inbox-default-id"
WORK_PROJECT_ID = "work-default-id"

SETTINGS_ROW_ID = 1

TASK_FIELDS = {
    "title",
    "completed",
    "project_id",
    "due_date",
    "priority",
    "order",
    "reminder_enabled",
    "reminder_time",
    "user_email",
}
NON_NULLABLE_TASK_FIELDS = {"title", "completed", "project_id", "order", "reminder_enabled"}
REMINDER_FIELDS = {"completed", "reminder_enabled", "reminder_time", "user_email"}

# Nomes dos campos como o cliente os envia (JSON em camelCase).
API_FIELD_NAMES = {
    "project_id": "projectId",
    "due_date": "dueDate",
    "reminder_enabled": "reminderEnabled",
    "reminder_time": "reminderTime",
    "user_email": "userEmail",
    "created_at": "createdAt",
}


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id() -> str:
    return str(uuid.uuid4())


def _api_name(field: str) -> str:
    return API_FIELD_NAMES.get(field, field)


# ---- Projetos ----

def seed_default_projects(db: Session) -> int:
    """
    Garante que o Inbox exista. No primeiro boot (banco sem projetos) cria
    tambem o projeto "Work". Retorna quantos projetos foram criados.
    """
    now = now_ms()
    first_boot = db.query(Project).count() == 0
    created = 0

    if db.get(Project, INBOX_PROJECT_ID) is None:
        db.add(Project(id=INBOX_PROJECT_ID, name="Inbox", created_at=now, is_protected=True))
        created += 1

    if first_boot:
        db.add(Project(id=WORK_PROJECT_ID, name="Work", created_at=now + 1, is_protected=False))
        created += 1

    if created:
        db.commit()
    return created


def list_projects(db: Session) -> List[Project]:
    """Projetos protegidos (Inbox) primeiro, depois por data de criacao."""
    return (
        db.query(Project)
        .order_by(Project.is_protected.desc(), Project.created_at, Project.id)
        .all()
    )


def get_project(db: Session, project_id: str) -> Project:
    project = db.get(Project, project_id)
    if not project:
        raise NotFoundError("Projeto nao encontrado.")
    return project


def _clean_project_name(name: Optional[str]) -> str:
    if name is None or not name.strip():
        raise ValidationError("Nome do projeto e obrigatorio.", "name")
    return name.strip()


def create_project(db: Session, name: str, icon: Optional[str] = None) -> Project:
    project = Project(
        id=new_id(),
        name=_clean_project_name(name),
        icon=icon,
        created_at=now_ms(),
        is_protected=False,
    )
    db.add(project)
    db.commit()
    db.refresh(project)
    return project


def update_project(db: Session, project_id: str, updates: Dict[str, Any]) -> Project:
    project = get_project(db, project_id)

    if not updates:
        raise ValidationError("Nenhuma alteracao informada para atualizar.")

    new_name = None
    if "name" in updates:
        new_name = _clean_project_name(updates["name"])
        if project.is_protected and new_name != project.name:
            raise ProtectedProjectError(
                f"O projeto {project.name} nao pode ser renomeado.", "name"
            )

    if new_name is not None:
        project.name = new_name
    if "icon" in updates:
        project.icon = updates["icon"]

    db.commit()
    db.refresh(project)
    return project


def delete_project(db: Session, project_id: str) -> int:
    """
    Apaga o projeto e, em cascata, suas tarefas e lembretes (um unico commit).
    Retorna quantas tarefas foram removidas.
    """
    project = get_project(db, project_id)
    if project.is_protected:
        raise ProtectedProjectError(f"O projeto {project.name} nao pode ser apagado.")

    tasks_deleted = db.query(Task).filter(Task.project_id == project_id).count()
    db.delete(project)
    db.commit()
    return tasks_deleted


# ---- Tarefas ----

def list_tasks(db: Session, project_id: Optional[str] = None) -> List[Task]:
    query = db.query(Task)
    if project_id is not None:
        query = query.filter(Task.project_id == project_id)
    # Empates de "order" ficam na ordem de insercao.
    return query.order_by(Task.order, Task.created_at, Task.insert_seq, Task.id).all()


def get_task(db: Session, task_id: str) -> Task:
    task = db.get(Task, task_id)
    if not task:
        raise NotFoundError("Tarefa nao encontrada.")
    return task


def next_task_order(db: Session, project_id: str) -> int:
    current = (
        db.query(func.max(Task.order))
        .filter(Task.project_id == project_id)
        .scalar()
    )
    return 0 if current is None else current + 1


def next_insert_seq(db: Session) -> int:
    current = db.query(func.max(Task.insert_seq)).scalar()
    return 0 if current is None else current + 1


def create_task(
    db: Session,
    title: str,
    project_id: str,
    order: Optional[int] = None,
) -> Task:
    if title is None or not title.strip():
        raise ValidationError("Titulo e obrigatorio.", "title")

    get_project(db, project_id)
    if order is None:
        order = next_task_order(db, project_id)

    task = Task(
        id=new_id(),
        title=title.strip(),
        completed=False,
        project_id=project_id,
        created_at=now_ms(),
        due_date=None,
        priority=None,
        order=order,
        insert_seq=next_insert_seq(db),
        reminder_enabled=False,
        reminder_time=None,
        user_email=None,
    )
    db.add(task)
    db.commit()
    db.refresh(task)
    return task


def _validate_task_updates(db: Session, updates: Dict[str, Any]) -> Dict[str, Any]:
    """Valida todos os campos antes de aplicar qualquer um."""
    cleaned: Dict[str, Any] = {}

    for key, value in updates.items():
        name = _api_name(key)
        if key not in TASK_FIELDS:
            raise ValidationError(f"Campo nao pode ser alterado: {name}.", name)

        if value is None:
            if key in NON_NULLABLE_TASK_FIELDS:
                raise ValidationError(f"{name} nao pode ser nulo.", name)
            cleaned[key] = None
            continue

        if key == "title":
            value = value.strip()
            if not value:
                raise ValidationError("Titulo nao pode ser vazio.", name)
        elif key == "priority" and value not in PRIORITIES:
            valid_list = ", ".join(PRIORITIES)
            raise ValidationError(f"Prioridade invalida. Use: {valid_list}.", name)
        elif key == "project_id" and db.get(Project, value) is None:
            raise ValidationError("Projeto informado nao existe.", name)

        cleaned[key] = value

    return cleaned


def update_task(db: Session, task_id: str, updates: Dict[str, Any]) -> Task:
    task = get_task(db, task_id)

    cleaned = _validate_task_updates(db, updates)
    if not cleaned:
        raise ValidationError("Nenhuma alteracao informada para atualizar.")

    for key, value in cleaned.items():
        setattr(task, key, value)

    if REMINDER_FIELDS.intersection(cleaned):
        refresh_task_reminder(db, task)

    db.commit()
    db.refresh(task)
    return task


def delete_task(db: Session, task_id: str) -> bool:
    """
    Deleta uma tarefa (e seus lembretes) pelo ID.
    Retorna True se deletou, False se nao encontrou.
    """
    task = db.get(Task, task_id)
    if not task:
        return False

    db.delete(task)
    db.commit()
    return True


def move_item(items: Sequence[Any], old_index: int, new_index: int) -> List[Any]:
    """Move o item de old_index para new_index (mesma semantica do drag-and-drop)."""
    size = len(items)
    if not 0 <= old_index < size:
        raise ValidationError("oldIndex fora do intervalo.", "oldIndex")
    if not 0 <= new_index < size:
        raise ValidationError("newIndex fora do intervalo.", "newIndex")

    moved = list(items)
    item = moved.pop(old_index)
    moved.insert(new_index, item)
    return moved


def reorder_tasks(db: Session, project_id: str, old_index: int, new_index: int) -> List[Task]:
    get_project(db, project_id)
    reordered = move_item(list_tasks(db, project_id), old_index, new_index)

    for index, task in enumerate(reordered):
        task.order = index

    db.commit()
    return reordered


def sync_tasks(db: Session, tasks: Sequence[Dict[str, Any]]) -> Tuple[int, int]:
    """
    Substitui todo o conjunto de tarefas e recalcula os lembretes do zero.
    Lembretes ja enviados para o mesmo (tarefa, horario) continuam enviados.
    Retorna (tarefas gravadas, lembretes ativos).
    """
    known_projects = {row[0] for row in db.query(Project.id).all()}
    seen_ids = set()

    for index, data in enumerate(tasks):
        if data["id"] in seen_ids:
            raise ValidationError(f"tasks.{index}.id: id duplicado ({data['id']}).", "id")
        seen_ids.add(data["id"])

        if not (data.get("title") or "").strip():
            raise ValidationError(f"tasks.{index}.title: titulo e obrigatorio.", "title")
        if data["project_id"] not in known_projects:
            raise ValidationError(
                f"tasks.{index}.projectId: projeto desconhecido ({data['project_id']}).",
                "projectId",
            )

    already_sent = {
        (task_id, reminder_time)
        for task_id, reminder_time in db.query(Reminder.task_id, Reminder.reminder_time)
        .filter(Reminder.sent.is_(True))
        .all()
    }

    db.query(Reminder).delete()
    db.query(Task).delete()

    active_reminders = 0
    now = now_ms()
    for seq, data in enumerate(tasks):
        task = Task(
            id=data["id"],
            title=data["title"].strip(),
            completed=data["completed"],
            project_id=data["project_id"],
            created_at=data["created_at"],
            due_date=data.get("due_date"),
            priority=data.get("priority"),
            order=data["order"],
            insert_seq=seq,
            reminder_enabled=bool(data.get("reminder_enabled")),
            reminder_time=data.get("reminder_time"),
            user_email=data.get("user_email"),
        )
        if reminder_eligible(task):
            sent = (task.id, task.reminder_time) in already_sent
            task.reminders.append(
                Reminder(
                    user_email=task.user_email,
                    reminder_time=task.reminder_time,
                    sent=sent,
                    sent_at=now if sent else None,
                )
            )
            if not sent:
                active_reminders += 1
        db.add(task)

    db.commit()
    return len(tasks), active_reminders


# ---- Lembretes ----

def reminder_eligible(task: Task) -> bool:
    return bool(task.reminder_enabled) and task.reminder_time is not None and not task.completed


def refresh_task_reminder(db: Session, task: Task) -> None:
    """
    Recalcula o lembrete de uma tarefa: no maximo um lembrete pendente por
    tarefa, e um lembrete ja enviado para o mesmo horario nunca volta a pendente.
    """
    existing = db.query(Reminder).filter(Reminder.task_id == task.id).all()
    pending = [reminder for reminder in existing if not reminder.sent]

    if not reminder_eligible(task):
        for reminder in pending:
            db.delete(reminder)
        return

    same_time = [r for r in existing if r.reminder_time == task.reminder_time]
    for reminder in pending:
        if reminder not in same_time:
            db.delete(reminder)

    if same_time:
        for reminder in same_time:
            if not reminder.sent:
                reminder.user_email = task.user_email
        return

    db.add(
        Reminder(
            task_id=task.id,
            user_email=task.user_email,
            reminder_time=task.reminder_time,
            sent=False,
        )
    )


def list_unsent_reminders(db: Session) -> List[Reminder]:
    return (
        db.query(Reminder)
        .filter(Reminder.sent.is_(False))
        .order_by(Reminder.reminder_time, Reminder.id)
        .all()
    )


def mark_reminder_sent(db: Session, reminder_id: int, sent_at: Optional[int] = None) -> bool:
    """
    Marca o lembrete como enviado apenas se ainda estiver pendente.
    Retorna False se outro processo ja marcou (ou se o lembrete sumiu).
    """
    result = db.execute(
        update(Reminder)
        .where(Reminder.id == reminder_id, Reminder.sent.is_(False))
        .values(sent=True, sent_at=sent_at if sent_at is not None else now_ms())
    )
    db.commit()
    return result.rowcount == 1


def delete_reminder(db: Session, reminder_id: int) -> bool:
    reminder = db.get(Reminder, reminder_id)
    if not reminder:
        return False

    db.delete(reminder)
    db.commit()
    return True


# ---- Configuracoes SMTP ----

def get_smtp_settings(db: Session) -> SmtpConfig:
    """Retorna as configuracoes salvas ou os valores padrao do ambiente."""
    row = db.get(SmtpSettings, SETTINGS_ROW_ID)
    if row is None:
        return SmtpConfig(
            host=config.SMTP_HOST,
            port=config.SMTP_PORT,
            user=config.SMTP_USER,
            password=config.SMTP_PASS,
            from_email=config.SMTP_FROM_EMAIL or None,
            to_email=config.SMTP_TO_EMAIL or None,
        )

    return SmtpConfig(
        host=row.host or "",
        port=row.port or 587,
        user=row.user or "",
        password=row.password or "",
        from_email=row.from_email or None,
        to_email=row.to_email or None,
    )


def save_smtp_settings(db: Session, settings: SmtpConfig) -> SmtpConfig:
    """Sobrescreve o registro unico de configuracoes."""
    row = db.get(SmtpSettings, SETTINGS_ROW_ID)
    if row is None:
        row = SmtpSettings(id=SETTINGS_ROW_ID)
        db.add(row)

    row.host = settings.host
    row.port = settings.port
    row.user = settings.user
    row.password = settings.password
    row.from_email = settings.from_email
    row.to_email = settings.to_email
    row.updated_at = now_ms()

    db.commit()
    return get_smtp_settings(db)
