from typing import List

from sqlalchemy.orm import sessionmaker

import todo_backend.crud as crud
from todo_backend.models import Reminder, Task
from todo_backend.ports import SmtpConfig


class SqlReminderRepo:
    """
    ReminderRepo sobre SQLAlchemy: uma sessao curta por chamada, para que o
    dispatcher nunca segure uma sessao aberta durante o envio de e-mail.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def list_unsent_reminders(self) -> List[Reminder]:
        with self._session_factory() as db:
            return crud.list_unsent_reminders(db)

    def list_tasks(self) -> List[Task]:
        with self._session_factory() as db:
            return crud.list_tasks(db)

    def get_smtp_settings(self) -> SmtpConfig:
        with self._session_factory() as db:
            return crud.get_smtp_settings(db)

    def mark_reminder_sent(self, reminder_id: int, sent_at: int) -> bool:
        with self._session_factory() as db:
            return crud.mark_reminder_sent(db, reminder_id, sent_at)

    def delete_reminder(self, reminder_id: int) -> bool:
        with self._session_factory() as db:
            return crud.delete_reminder(db, reminder_id)
