from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from todo_backend.db import Base


PRIORITIES = ("low", "medium", "high")


class Project(Base):
    __tablename__ = "projects"

    id = Column(String(64), primary_key=True)
    name = Column(Text, nullable=False)
    icon = Column(String(64), nullable=True)
    created_at = Column(BigInteger, nullable=False)
    # Projetos de sistema (Inbox) nao podem ser renomeados nem apagados.
    is_protected = Column(Boolean, default=False, nullable=False)

    tasks = relationship(
        "Task",
        back_populates="project",
        cascade="all, delete-orphan",
    )


class Task(Base):
    __tablename__ = "tasks"

    id = Column(String(64), primary_key=True)
    project_id = Column(String(64), ForeignKey("projects.id"), index=True, nullable=False)

    title = Column(Text, nullable=False)
    completed = Column(Boolean, default=False, nullable=False)
    created_at = Column(BigInteger, nullable=False)
    due_date = Column(BigInteger, nullable=True)
    priority = Column(String(10), nullable=True)
    order = Column("order_index", Integer, default=0, nullable=False)
    # Desempate estavel quando order e created_at coincidem.
    insert_seq = Column(Integer, default=0, nullable=False)

    reminder_enabled = Column(Boolean, default=False, nullable=False)
    reminder_time = Column(BigInteger, nullable=True)
    user_email = Column(String(255), nullable=True)

    project = relationship("Project", back_populates="tasks")
    reminders = relationship(
        "Reminder",
        back_populates="task",
        cascade="all, delete-orphan",
    )


class Reminder(Base):
    __tablename__ = "reminders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(String(64), ForeignKey("tasks.id"), index=True, nullable=False)
    user_email = Column(String(255), nullable=True)
    reminder_time = Column(BigInteger, nullable=False)
    sent = Column(Boolean, default=False, nullable=False)
    sent_at = Column(BigInteger, nullable=True)

    task = relationship("Task", back_populates="reminders")


class SmtpSettings(Base):
    __tablename__ = "smtp_settings"

    # Registro unico: sempre id = 1.
    id = Column(Integer, primary_key=True, default=1)
    host = Column(String(255), nullable=False, default="")
    port = Column(Integer, nullable=False, default=587)
    user = Column(String(255), nullable=False, default="")
    password = Column("pass", String(255), nullable=False, default="")
    from_email = Column(String(255), nullable=True)
    to_email = Column(String(255), nullable=True)
    updated_at = Column(BigInteger, nullable=True)
