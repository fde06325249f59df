from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from todo_backend import config
from todo_backend.sanitize import escape_html, strip_dangerous_markup


PRIORITY_LABELS = {"low": "Baixa", "medium": "Media", "high": "Alta"}
NO_DUE_DATE = "Sem data limite"


@dataclass(frozen=True)
class ReminderEmail:
    subject: str
    html: str
    text: str


def _tz(name: Optional[str]):
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


def _from_ms(value: int, tz_name: Optional[str]) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).astimezone(_tz(tz_name))


def format_due_date(due_date: Optional[int], tz_name: Optional[str] = None) -> str:
    if due_date is None:
        return NO_DUE_DATE
    return _from_ms(due_date, tz_name).strftime("%d/%m/%Y")


def format_reminder_time(reminder_time: Optional[int], tz_name: Optional[str] = None) -> str:
    if reminder_time is None:
        return "-"
    return _from_ms(reminder_time, tz_name).strftime("%d/%m/%Y %H:%M")


def priority_label(priority: Optional[str]) -> str:
    if not priority:
        return "Normal"
    return PRIORITY_LABELS.get(priority, priority.capitalize())


def reminder_subject(title: str) -> str:
    # Quebras de linha no assunto quebrariam o cabecalho do e-mail.
    single_line = " ".join((title or "").split())
    return f"Lembrete: {single_line}"


_HTML_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
  <title>Lembrete de tarefa</title>
  <style>
    body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px; }}
    .header {{ background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); color: white; padding: 30px; text-align: center; border-radius: 10px 10px 0 0; }}
    .content {{ background: #f9f9f9; padding: 30px; border-radius: 0 0 10px 10px; }}
    .task-card {{ background: white; padding: 20px; border-radius: 8px; box-shadow: 0 2px 10px rgba(0,0,0,0.1); margin: 20px 0; }}
    .task-title {{ font-size: 24px; font-weight: bold; margin-bottom: 10px; color: #2c3e50; }}
    .detail-item {{ margin: 8px 0; }}
    .label {{ font-weight: bold; color: #7f8c8d; }}
    .priority-high {{ color: #e74c3c; }}
    .priority-medium {{ color: #f39c12; }}
    .priority-low {{ color: #3498db; }}
    .footer {{ text-align: center; margin-top: 30px; color: #7f8c8d; font-size: 14px; }}
  </style>
</head>
<body>
  <div class="header">
    <h1>Lembrete de tarefa</h1>
    <p>Nao esqueca da sua proxima tarefa!</p>
  </div>
  <div class="content">
    <div class="task-card">
      <div class="task-title">{title}</div>
      <div class="task-details">
        <div class="detail-item"><span class="label">Data limite:</span> {due_date}</div>
        <div class="detail-item"><span class="label">Prioridade:</span> <span class="priority-{priority_class}">{priority}</span></div>
        <div class="detail-item"><span class="label">Horario do lembrete:</span> {reminder_time}</div>
      </div>
    </div>
    <p>Este e um lembrete amigavel sobre a sua tarefa. Procure conclui-la no prazo!</p>
    <div class="footer">
      <p>E-mail enviado pelo Todo Reminder.</p>
      <p>Para nao receber mais lembretes, desative o lembrete nas configuracoes da tarefa.</p>
    </div>
  </div>
</body>
</html>
"""

_TEXT_TEMPLATE = """Lembrete de tarefa: {title}

Data limite: {due_date}
Prioridade: {priority}
Horario do lembrete: {reminder_time}

Este e um lembrete amigavel sobre a sua tarefa. Procure conclui-la no prazo!

E-mail enviado pelo Todo Reminder.
"""


def render_reminder_email(
    title: str,
    due_date: Optional[int] = None,
    priority: Optional[str] = None,
    reminder_time: Optional[int] = None,
    tz_name: Optional[str] = None,
) -> ReminderEmail:
    """
    Monta assunto, HTML e texto puro do lembrete.

    Todo valor vindo da tarefa passa por escape_html antes de entrar no HTML,
    e o documento final ainda passa por strip_dangerous_markup. O texto puro
    usa os valores originais.
    """
    tz_name = tz_name or config.REMINDER_TIMEZONE
    due_text = format_due_date(due_date, tz_name)
    priority_text = priority_label(priority)
    reminder_text = format_reminder_time(reminder_time, tz_name)

    html = _HTML_TEMPLATE.format(
        title=escape_html(title),
        due_date=escape_html(due_text),
        priority=escape_html(priority_text),
        priority_class=escape_html(priority or "normal"),
        reminder_time=escape_html(reminder_text),
    )
    text = _TEXT_TEMPLATE.format(
        title=title,
        due_date=due_text,
        priority=priority_text,
        reminder_time=reminder_text,
    )
    return ReminderEmail(
        subject=reminder_subject(title),
        html=strip_dangerous_markup(html),
        text=text,
    )


def render_task_reminder(task: Any, tz_name: Optional[str] = None) -> ReminderEmail:
    """Atalho para objetos com os atributos de Task (ORM ou equivalentes)."""
    return render_reminder_email(
        title=task.title,
        due_date=task.due_date,
        priority=task.priority,
        reminder_time=task.reminder_time,
        tz_name=tz_name,
    )
