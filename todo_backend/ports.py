"""
Portas (interfaces) usadas pelo dispatcher de lembretes.

O dispatcher depende destes Protocols e nao do SQLAlchemy nem do smtplib;
assim os testes trocam banco e SMTP por implementacoes em memoria.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol


@dataclass
class SmtpConfig:
    host: str = ""
    port: int = 587
    user: str = ""
    password: str = ""
    from_email: Optional[str] = None
    to_email: Optional[str] = None

    @property
    def configured(self) -> bool:
        return bool(self.host and self.user and self.password)

    def public_dict(self) -> Dict[str, Any]:
        """Versao para a API: nunca devolve a senha."""
        return {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "fromEmail": self.from_email,
            "toEmail": self.to_email,
            "configured": self.configured,
        }


class ReminderRepo(Protocol):
    def list_unsent_reminders(self) -> List[Any]: ...

    def list_tasks(self) -> List[Any]: ...

    def get_smtp_settings(self) -> SmtpConfig: ...

    def mark_reminder_sent(self, reminder_id: int, sent_at: int) -> bool: ...

    def delete_reminder(self, reminder_id: int) -> bool: ...


class Mailer(Protocol):
    """Transporte de e-mail. Falhas de conexao/envio levantam TransportError."""

    def reset(self) -> None: ...

    def verify(self, settings: SmtpConfig) -> Dict[str, Any]: ...

    def send(
        self,
        settings: SmtpConfig,
        *,
        to: str,
        subject: str,
        html: str,
        text: str,
    ) -> str: ...


class SweepLock(Protocol):
    """Trava entre processos para a varredura (ex.: Redis)."""

    def acquire(self) -> bool: ...

    def release(self) -> None: ...
