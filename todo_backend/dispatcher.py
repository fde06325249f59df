"""
Dispatcher de lembretes.

Uma varredura periodica que:
- le os lembretes pendentes e as tarefas,
- seleciona os lembretes vencidos (reminder_time <= agora),
- envia o e-mail pelo Mailer injetado,
- marca o lembrete como enviado (uma unica vez).

Estados de um lembrete: PENDENTE -> VENCIDO -> ENVIADO. Se o envio falha,
o lembrete continua VENCIDO e e tentado de novo no proximo ciclo, sem
backoff e sem limite de tentativas.

Lembretes cuja tarefa foi apagada sao removidos durante a varredura.

Chamadas bloqueantes (repositorio, trava Redis, SMTP) rodam em threads via
asyncio.to_thread; o event loop do servidor nunca espera por elas.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from todo_backend import config
from todo_backend.email_template import render_task_reminder
from todo_backend.errors import TransportError
from todo_backend.ports import Mailer, ReminderRepo, SmtpConfig, SweepLock

logger = logging.getLogger(__name__)


def current_time_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class SweepResult:
    due: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    orphaned: int = 0


def resolve_recipient(task: Any, settings: SmtpConfig) -> Optional[str]:
    """E-mail da tarefa tem prioridade; o toEmail das configuracoes e o fallback."""
    task_email = (getattr(task, "user_email", None) or "").strip()
    if task_email:
        return task_email
    fallback = (settings.to_email or "").strip()
    return fallback or None


class ReminderDispatcher:
    def __init__(
        self,
        repo: ReminderRepo,
        mailer: Mailer,
        *,
        clock: Callable[[], int] = current_time_ms,
        send_timeout_seconds: float = config.SMTP_TIMEOUT_SECONDS + 5,
        lock: Optional[SweepLock] = None,
        tz_name: Optional[str] = None,
    ):
        self.repo = repo
        self.mailer = mailer
        self.clock = clock
        self.send_timeout_seconds = send_timeout_seconds
        self.lock = lock
        self.tz_name = tz_name
        self._running = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._running.locked()

    async def sweep(self, now_ms: Optional[int] = None) -> Optional[SweepResult]:
        """
        Executa uma varredura. Retorna None quando outra varredura ainda esta
        em andamento (neste processo ou, com Redis, em outro processo).
        """
        if self._running.locked():
            logger.info("Varredura anterior ainda em andamento; ciclo pulado")
            return None

        async with self._running:
            if self.lock is not None and not await asyncio.to_thread(self.lock.acquire):
                logger.info("Outro processo esta varrendo os lembretes; ciclo pulado")
                return None
            try:
                return await self._sweep(self.clock() if now_ms is None else now_ms)
            finally:
                if self.lock is not None:
                    await asyncio.to_thread(self.lock.release)

    async def _sweep(self, now_ms: int) -> SweepResult:
        result = SweepResult()

        try:
            reminders = await asyncio.to_thread(self.repo.list_unsent_reminders)
            task_list = await asyncio.to_thread(self.repo.list_tasks)
            tasks = {task.id: task for task in task_list}
        except Exception:
            logger.exception("Falha ao ler lembretes/tarefas; varredura abortada")
            return result

        due = [r for r in reminders if not r.sent and r.reminder_time <= now_ms]
        if not due:
            logger.debug("Nenhum lembrete vencido")
            return result

        try:
            settings = await asyncio.to_thread(self.repo.get_smtp_settings)
        except Exception:
            logger.exception("Falha ao ler configuracoes SMTP; varredura abortada")
            return result

        for reminder in due:
            result.due += 1
            try:
                outcome = await self._process(reminder, tasks.get(reminder.task_id), settings)
            except Exception:
                # Um lembrete com problema nao pode travar os demais.
                logger.exception("Erro inesperado no lembrete id=%s", reminder.id)
                outcome = "failed"
            setattr(result, outcome, getattr(result, outcome) + 1)

        logger.info(
            "Varredura concluida: vencidos=%d enviados=%d falhas=%d ignorados=%d orfaos=%d",
            result.due,
            result.sent,
            result.failed,
            result.skipped,
            result.orphaned,
        )
        return result

    async def _process(self, reminder: Any, task: Any, settings: SmtpConfig) -> str:
        if task is None:
            await asyncio.to_thread(self.repo.delete_reminder, reminder.id)
            logger.info("Lembrete id=%s sem tarefa (task_id=%s); removido", reminder.id, reminder.task_id)
            return "orphaned"

        if task.completed or not task.reminder_enabled:
            logger.debug("Tarefa %s concluida ou sem lembrete; ignorando", task.id)
            return "skipped"

        recipient = resolve_recipient(task, settings)
        if not recipient:
            logger.warning("Tarefa %s sem e-mail de destino e sem toEmail configurado", task.id)
            return "skipped"

        email = render_task_reminder(task, tz_name=self.tz_name)
        try:
            await asyncio.wait_for(
                asyncio.to_thread(
                    self.mailer.send,
                    settings,
                    to=recipient,
                    subject=email.subject,
                    html=email.html,
                    text=email.text,
                ),
                timeout=self.send_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Envio do lembrete da tarefa %s excedeu %.1fs", task.id, self.send_timeout_seconds)
            return "failed"
        except TransportError as e:
            logger.warning("Falha ao enviar lembrete da tarefa %s: %s", task.id, e.message)
            return "failed"

        if not await asyncio.to_thread(self.repo.mark_reminder_sent, reminder.id, self.clock()):
            logger.warning("Lembrete id=%s ja estava marcado como enviado", reminder.id)
        logger.info("Lembrete da tarefa %s enviado para %s", task.id, recipient)
        return "sent"

    async def run_forever(self, interval_seconds: float = config.REMINDER_INTERVAL_SECONDS) -> None:
        """
        Roda uma varredura a cada interval_seconds (relogio fixo). Ciclos que
        caem durante uma varredura longa sao pulados. Para parar, cancele a task.
        """
        interval = max(0.01, float(interval_seconds))
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        logger.info("Varredura de lembretes iniciada (intervalo de %.0fs)", interval)

        while True:
            try:
                await self.sweep()
            except Exception:
                logger.exception("Varredura de lembretes falhou")

            next_tick += interval
            now = loop.time()
            if next_tick <= now:
                skipped = int((now - next_tick) // interval) + 1
                next_tick += skipped * interval
            await asyncio.sleep(next_tick - now)

    async def stop(self, runner: "asyncio.Task[None]") -> None:
        """Espera a varredura em andamento terminar e cancela o loop."""
        async with self._running:
            runner.cancel()
        try:
            await runner
        except asyncio.CancelledError:
            pass
        logger.info("Varredura de lembretes encerrada")
