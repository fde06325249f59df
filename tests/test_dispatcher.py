import asyncio
import threading
import time

import pytest

import todo_backend.crud as crud
from todo_backend.dispatcher import ReminderDispatcher, SweepResult, resolve_recipient
from todo_backend.errors import TransportError
from todo_backend.models import Reminder
from todo_backend.ports import SmtpConfig
from todo_backend.repository import SqlReminderRepo

from .fakes import FakeMailer, FakeReminder, FakeTask, InMemoryReminderRepo

NOW = 1_800_000_000_000
MINUTE = 60 * 1000


def _dispatcher(repo, mailer, **kwargs):
    kwargs.setdefault("clock", lambda: NOW)
    kwargs.setdefault("tz_name", "UTC")
    return ReminderDispatcher(repo, mailer, **kwargs)


def _single(task=None, reminder=None, **repo_kwargs):
    task = task or FakeTask(id="t1", title="Pay rent", reminder_time=NOW - MINUTE, user_email="ana@empresa.com.br")
    reminder = reminder or FakeReminder(id=1, task_id=task.id, reminder_time=task.reminder_time)
    return InMemoryReminderRepo.build([task], [reminder], **repo_kwargs)


class SlowMailer(FakeMailer):
    def __init__(self, delay: float):
        super().__init__()
        self.delay = delay

    def send(self, settings, **kwargs):
        time.sleep(self.delay)
        return super().send(settings, **kwargs)


class BlockingMailer(FakeMailer):
    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def send(self, settings, **kwargs):
        self.entered.set()
        self.release.wait(5)
        return super().send(settings, **kwargs)


class FakeLock:
    def __init__(self, available: bool = True):
        self.available = available
        self.acquired = 0
        self.released = 0

    def acquire(self) -> bool:
        self.acquired += 1
        return self.available

    def release(self) -> None:
        self.released += 1


def test_resolve_recipient_prefers_task_email():
    settings = SmtpConfig(to_email="fallback@empresa.com.br")
    assert resolve_recipient(FakeTask(id="t", title="x", user_email="ana@x.com"), settings) == "ana@x.com"
    assert resolve_recipient(FakeTask(id="t", title="x", user_email="  "), settings) == "fallback@empresa.com.br"
    assert resolve_recipient(FakeTask(id="t", title="x"), SmtpConfig()) is None


@pytest.mark.asyncio
async def test_sweep_sends_due_reminder_and_marks_it_sent():
    repo = _single()
    mailer = FakeMailer()

    result = await _dispatcher(repo, mailer).sweep()

    assert result == SweepResult(due=1, sent=1)
    assert len(mailer.sent) == 1
    email = mailer.sent[0]
    assert email.to == "ana@empresa.com.br"
    assert email.subject == "Lembrete: Pay rent"
    assert email.settings is repo.settings
    assert repo.reminders[1].sent is True
    assert repo.reminders[1].sent_at == NOW


@pytest.mark.asyncio
async def test_sweep_sends_each_reminder_once():
    repo = _single()
    mailer = FakeMailer()
    dispatcher = _dispatcher(repo, mailer)

    await dispatcher.sweep()
    second = await dispatcher.sweep()

    assert second == SweepResult()
    assert len(mailer.sent) == 1


@pytest.mark.asyncio
async def test_sweep_ignores_future_reminders():
    task = FakeTask(id="t1", title="Later", reminder_time=NOW + MINUTE, user_email="a@b.com")
    repo = _single(task=task)
    mailer = FakeMailer()

    assert await _dispatcher(repo, mailer).sweep() == SweepResult()
    assert mailer.sent == []

    # Exatamente no horario ja conta como vencido.
    assert (await _dispatcher(repo, mailer).sweep(now_ms=NOW + MINUTE)).sent == 1


@pytest.mark.parametrize(
    "task",
    [
        FakeTask(id="t1", title="Done", completed=True, reminder_time=NOW, user_email="a@b.com"),
        FakeTask(id="t1", title="Off", reminder_enabled=False, reminder_time=NOW, user_email="a@b.com"),
    ],
)
@pytest.mark.asyncio
async def test_sweep_skips_completed_or_disabled_tasks(task):
    repo = _single(task=task)
    mailer = FakeMailer()

    result = await _dispatcher(repo, mailer).sweep()

    assert result.skipped == 1
    assert mailer.sent == []
    assert repo.reminders[1].sent is False


@pytest.mark.asyncio
async def test_sweep_deletes_orphaned_reminders():
    repo = InMemoryReminderRepo.build([], [FakeReminder(id=7, task_id="gone", reminder_time=NOW - MINUTE)])
    mailer = FakeMailer()

    result = await _dispatcher(repo, mailer).sweep()

    assert result.orphaned == 1
    assert repo.reminders == {}
    assert mailer.sent == []


@pytest.mark.asyncio
async def test_sweep_falls_back_to_configured_recipient():
    task = FakeTask(id="t1", title="x", reminder_time=NOW)
    settings = SmtpConfig(host="smtp.test", user="u@test.com", password="p", to_email="inbox@empresa.com.br")
    repo = _single(task=task, settings=settings)
    mailer = FakeMailer()

    await _dispatcher(repo, mailer).sweep()

    assert [email.to for email in mailer.sent] == ["inbox@empresa.com.br"]


@pytest.mark.asyncio
async def test_sweep_without_any_recipient_keeps_reminder_pending():
    task = FakeTask(id="t1", title="x", reminder_time=NOW)
    repo = _single(task=task)
    mailer = FakeMailer()

    result = await _dispatcher(repo, mailer).sweep()

    assert result.skipped == 1
    assert repo.reminders[1].sent is False


@pytest.mark.asyncio
async def test_failed_send_does_not_block_others_and_is_retried():
    tasks = [
        FakeTask(id="a", title="A", reminder_time=NOW - 2 * MINUTE, user_email="broken@x.com"),
        FakeTask(id="b", title="B", reminder_time=NOW - MINUTE, user_email="ok@x.com"),
    ]
    reminders = [
        FakeReminder(id=1, task_id="a", reminder_time=NOW - 2 * MINUTE),
        FakeReminder(id=2, task_id="b", reminder_time=NOW - MINUTE),
    ]
    repo = InMemoryReminderRepo.build(tasks, reminders)
    mailer = FakeMailer(fail_for={"broken@x.com"})
    dispatcher = _dispatcher(repo, mailer)

    result = await dispatcher.sweep()

    assert result == SweepResult(due=2, sent=1, failed=1)
    assert [email.to for email in mailer.sent] == ["ok@x.com"]
    assert repo.reminders[1].sent is False

    # Proximo ciclo: transporte voltou.
    mailer.fail_for.clear()
    retry = await dispatcher.sweep()
    assert retry == SweepResult(due=1, sent=1)
    assert repo.reminders[1].sent is True


@pytest.mark.asyncio
async def test_unexpected_error_is_isolated_per_reminder():
    repo = _single()
    mailer = FakeMailer(fail_with=RuntimeError("boom"))

    result = await _dispatcher(repo, mailer).sweep()

    assert result.failed == 1
    assert repo.reminders[1].sent is False


@pytest.mark.asyncio
async def test_transport_error_counts_as_failure():
    repo = _single()
    mailer = FakeMailer(fail_with=TransportError("SMTP nao configurado."))

    result = await _dispatcher(repo, mailer).sweep()

    assert result == SweepResult(due=1, failed=1)


@pytest.mark.asyncio
async def test_send_timeout_counts_as_failure():
    repo = _single()
    mailer = SlowMailer(delay=0.3)

    result = await _dispatcher(repo, mailer, send_timeout_seconds=0.05).sweep()

    assert result.failed == 1
    assert repo.reminders[1].sent is False


@pytest.mark.asyncio
async def test_repository_failure_aborts_the_tick():
    class BrokenRepo(InMemoryReminderRepo):
        def list_unsent_reminders(self):
            raise RuntimeError("db down")

    mailer = FakeMailer()
    result = await _dispatcher(BrokenRepo(), mailer).sweep()

    assert result == SweepResult()
    assert mailer.sent == []


@pytest.mark.asyncio
async def test_slow_repository_does_not_block_event_loop():
    class SlowRepo(InMemoryReminderRepo):
        def list_unsent_reminders(self):
            time.sleep(0.3)
            return super().list_unsent_reminders()

    class SlowLock(FakeLock):
        def acquire(self) -> bool:
            time.sleep(0.1)
            return super().acquire()

    task = FakeTask(id="t1", title="Pay rent", reminder_time=NOW - MINUTE, user_email="ana@empresa.com.br")
    repo = SlowRepo.build([task], [FakeReminder(id=1, task_id="t1", reminder_time=task.reminder_time)])
    mailer = FakeMailer()
    dispatcher = _dispatcher(repo, mailer, lock=SlowLock())

    ticks = 0

    async def ticker():
        nonlocal ticks
        while True:
            await asyncio.sleep(0.02)
            ticks += 1

    ticking = asyncio.create_task(ticker())
    result = await dispatcher.sweep()
    ticking.cancel()

    assert result.sent == 1
    # ~0.4 s de chamadas bloqueantes: o loop continuou girando.
    assert ticks >= 5


@pytest.mark.asyncio
async def test_overlapping_sweep_is_skipped():
    repo = _single()
    mailer = BlockingMailer()
    dispatcher = _dispatcher(repo, mailer)

    first = asyncio.create_task(dispatcher.sweep())
    assert await asyncio.to_thread(mailer.entered.wait, 5)

    assert dispatcher.is_running
    assert await dispatcher.sweep() is None

    mailer.release.set()
    result = await first

    assert result.sent == 1
    assert len(mailer.sent) == 1
    assert not dispatcher.is_running


@pytest.mark.asyncio
async def test_sweep_respects_cross_process_lock():
    repo = _single()
    mailer = FakeMailer()

    busy = FakeLock(available=False)
    assert await _dispatcher(repo, mailer, lock=busy).sweep() is None
    assert mailer.sent == []
    assert busy.released == 0

    free = FakeLock(available=True)
    result = await _dispatcher(repo, mailer, lock=free).sweep()
    assert result.sent == 1
    assert (free.acquired, free.released) == (1, 1)


@pytest.mark.asyncio
async def test_run_forever_sends_once_and_stops_cleanly():
    repo = _single()
    mailer = FakeMailer()
    dispatcher = _dispatcher(repo, mailer)

    runner = asyncio.create_task(dispatcher.run_forever(0.01))
    for _ in range(200):
        if mailer.sent:
            break
        await asyncio.sleep(0.01)
    await asyncio.sleep(0.05)
    await dispatcher.stop(runner)

    assert runner.done()
    assert len(mailer.sent) == 1


@pytest.mark.asyncio
async def test_pay_rent_reminder_end_to_end(session_factory):
    due = NOW + 24 * 60 * MINUTE
    remind_at = due - 60 * MINUTE

    with session_factory() as db:
        task = crud.create_task(db, "Pay rent", crud.WORK_PROJECT_ID)
        crud.update_task(
            db,
            task.id,
            {
                "due_date": due,
                "priority": "high",
                "reminder_enabled": True,
                "reminder_time": remind_at,
                "user_email": "ana@empresa.com.br",
            },
        )
        task_id = task.id

    mailer = FakeMailer()
    clock_value = [remind_at - 1]
    dispatcher = ReminderDispatcher(
        SqlReminderRepo(session_factory),
        mailer,
        clock=lambda: clock_value[0],
        tz_name="UTC",
    )

    assert await dispatcher.sweep() == SweepResult()

    clock_value[0] = remind_at + 30 * 1000
    result = await dispatcher.sweep()
    assert result == SweepResult(due=1, sent=1)

    clock_value[0] += MINUTE
    assert await dispatcher.sweep() == SweepResult()

    assert len(mailer.sent) == 1
    email = mailer.sent[0]
    assert email.to == "ana@empresa.com.br"
    assert email.subject == "Lembrete: Pay rent"
    assert "Prioridade: Alta" in email.text

    with session_factory() as db:
        reminders = db.query(Reminder).filter(Reminder.task_id == task_id).all()
        assert [(r.sent, r.sent_at) for r in reminders] == [(True, remind_at + 30 * 1000)]
        assert crud.list_unsent_reminders(db) == []
