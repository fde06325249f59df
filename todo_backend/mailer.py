"""
Envio de e-mails por SMTP.

O SmtpMailer guarda um "transporte" (host, porta, credenciais, timeout)
montado na primeira utilizacao. Ao salvar novas configuracoes, a API chama
reset() para que o proximo envio use os dados novos.
"""
import logging
import smtplib
import socket
import ssl
import threading
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Any, Dict, Optional

from todo_backend import config
from todo_backend.errors import TransportError
from todo_backend.ports import SmtpConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SmtpTransport:
    host: str
    port: int
    user: str
    password: str
    sender: str
    timeout: float

    @property
    def implicit_tls(self) -> bool:
        return self.port == 465

    def connect(self) -> smtplib.SMTP:
        context = ssl.create_default_context()
        if self.implicit_tls:
            client = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout, context=context)
        else:
            client = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
            client.ehlo()
            if client.has_extn("starttls"):
                client.starttls(context=context)
                client.ehlo()
        try:
            client.login(self.user, self.password)
        except Exception:
            client.close()
            raise
        return client


class SmtpMailer:
    def __init__(
        self,
        timeout: float = config.SMTP_TIMEOUT_SECONDS,
        from_name: str = config.FROM_NAME,
    ):
        self.timeout = timeout
        self.from_name = from_name
        self._transport: Optional[SmtpTransport] = None
        self._lock = threading.Lock()

    def reset(self) -> None:
        with self._lock:
            self._transport = None
        logger.info("Transporte SMTP descartado; sera recriado no proximo uso")

    def _get_transport(self, settings: SmtpConfig) -> SmtpTransport:
        with self._lock:
            if self._transport is None:
                if not settings.configured:
                    raise TransportError("SMTP nao configurado.")
                self._transport = SmtpTransport(
                    host=settings.host,
                    port=int(settings.port),
                    user=settings.user,
                    password=settings.password,
                    sender=formataddr((self.from_name, settings.from_email or settings.user)),
                    timeout=self.timeout,
                )
            return self._transport

    def verify(self, settings: SmtpConfig) -> Dict[str, Any]:
        """Testa conexao + login. Nunca levanta: devolve {success, error?}."""
        try:
            transport = self._get_transport(settings)
        except TransportError as e:
            return {"success": False, "error": e.message}

        try:
            client = transport.connect()
            _close_quietly(client)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("Teste de conexao SMTP falhou: %s", e)
            return {"success": False, "error": str(e) or e.__class__.__name__}

        return {"success": True}

    def send(
        self,
        settings: SmtpConfig,
        *,
        to: str,
        subject: str,
        html: str,
        text: str,
    ) -> str:
        """Envia o e-mail e retorna o Message-ID. Falhas viram TransportError."""
        transport = self._get_transport(settings)

        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = transport.sender
        message["To"] = to
        message["Message-ID"] = make_msgid()
        message.set_content(text)
        message.add_alternative(html, subtype="html")

        try:
            client = transport.connect()
            try:
                client.send_message(message)
            finally:
                _close_quietly(client)
        except socket.timeout as e:
            raise TransportError(f"Tempo esgotado ao falar com {transport.host}.") from e
        except (smtplib.SMTPException, OSError) as e:
            raise TransportError(f"Falha ao enviar e-mail: {e}") from e

        logger.info("E-mail enviado para %s (%s)", to, message["Message-ID"])
        return message["Message-ID"]


def _close_quietly(client: smtplib.SMTP) -> None:
    # A mensagem ja foi aceita; erro no QUIT nao pode virar falha de envio.
    try:
        client.quit()
    except (smtplib.SMTPException, OSError):
        logger.debug("QUIT falhou; fechando o socket", exc_info=True)
        client.close()
