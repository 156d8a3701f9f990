import asyncio

from app.services.generation_orchestrator import (
    GenerationJob,
    GenerationOrchestrator,
    JobStatus,
    RunRegistry,
)
from app.services.image_generation import RATE_LIMIT_MESSAGE, GeneratedImage, GenerationError
from app.services.ledger import InsufficientFunds


class FakeGenerator:
    def __init__(self, sleeps, tokens_used=250, failures=None):
        self.sleeps = sleeps
        self.tokens_used = tokens_used
        self.failures = failures or {}
        self.started: list[tuple[str, int]] = []

    async def generate_image(self, prompt, settings):
        self.started.append((prompt, len(self.sleeps)))
        if prompt in self.failures:
            raise self.failures[prompt]
        return GeneratedImage(image_b64="iVBORw0KGgo=", tokens_used=self.tokens_used)


class RecordingSleep:
    def __init__(self, jobs=None, on_tick=None):
        self.calls: list[float] = []
        self.jobs = jobs or []
        self.snapshots: list[list[tuple[JobStatus, object]]] = []
        self.on_tick = on_tick

    def __len__(self):
        return len(self.calls)

    async def __call__(self, seconds):
        self.calls.append(seconds)
        self.snapshots.append([(job.status, job.countdown) for job in self.jobs])
        if self.on_tick:
            self.on_tick(len(self.calls))
        await asyncio.sleep(0)


def _jobs(n, email="a@x.com"):
    return [GenerationJob(prompt=f"page {i}", email=email) for i in range(n)]


def _orchestrator(generator, sleep, balance=10_000, charges=None):
    charges = charges if charges is not None else []

    def charge(email, tokens):
        charges.append((email, tokens))

    return GenerationOrchestrator(
        generator,
        balance_gate=lambda email: balance,
        charge=charge,
        sleep=sleep,
    )


async def test_twelve_jobs_run_in_three_batches_with_two_cooldowns():
    jobs = _jobs(12)
    sleep = RecordingSleep(jobs)
    generator = FakeGenerator(sleep)
    charges = []

    summary = await _orchestrator(generator, sleep, charges=charges).run(jobs)

    assert summary.batch_sizes == [5, 5, 2]
    assert summary.cooldowns == 2
    assert sleep.calls == [1] * 130
    assert sum(sleep.calls) == 2 * 65
    assert summary.statuses == [JobStatus.DONE] * 12
    assert charges == [("a@x.com", 250)] * 12
    assert summary.tokens_charged == 12 * 250


async def test_queued_jobs_show_a_live_countdown():
    jobs = _jobs(12)
    sleep = RecordingSleep(jobs)

    await _orchestrator(FakeGenerator(sleep), sleep).run(jobs)

    first_tick, last_tick_of_first_cooldown = sleep.snapshots[0], sleep.snapshots[64]
    assert first_tick[5:] == [(JobStatus.WAITING, 65)] * 7
    assert last_tick_of_first_cooldown[5:] == [(JobStatus.WAITING, 1)] * 7
    assert [countdown for _, countdown in first_tick[:5]] == [None] * 5

    second_cooldown = sleep.snapshots[65]
    assert second_cooldown[10:] == [(JobStatus.WAITING, 65)] * 2
    assert [countdown for _, countdown in second_cooldown[5:10]] == [None] * 5
    assert all(job.countdown is None for job in jobs)


async def test_batches_are_dispatched_only_after_the_cooldown():
    jobs = _jobs(12)
    sleep = RecordingSleep(jobs)
    generator = FakeGenerator(sleep)

    await _orchestrator(generator, sleep).run(jobs)

    ticks = dict(generator.started)
    first = [ticks[f"page {i}"] for i in range(5)]
    second = [ticks[f"page {i}"] for i in range(5, 10)]
    third = [ticks[f"page {i}"] for i in range(10, 12)]
    assert max(first) < 65 <= min(second)
    assert max(second) < 130 <= min(third)


async def test_small_runs_never_wait():
    sleep = RecordingSleep()

    summary = await _orchestrator(FakeGenerator(sleep), sleep).run(_jobs(5))

    assert summary.batch_sizes == [5]
    assert summary.cooldowns == 0
    assert sleep.calls == []


async def test_one_failure_does_not_stop_the_others():
    sleep = RecordingSleep()
    generator = FakeGenerator(sleep, failures={
        "page 1": GenerationError("Your prompt was rejected by the safety system.", 400),
        "page 2": GenerationError("rate limited", 429, retryable=True),
        "page 3": RuntimeError("socket closed"),
        "page 4": asyncio.TimeoutError(),
    })
    charges = []

    summary = await _orchestrator(generator, sleep, charges=charges).run(_jobs(6))
    jobs = summary.jobs

    assert [job.status for job in jobs] == [
        JobStatus.DONE, JobStatus.ERROR, JobStatus.ERROR, JobStatus.ERROR, JobStatus.ERROR, JobStatus.DONE,
    ]
    assert jobs[1].error == "Your prompt was rejected by the safety system."
    assert jobs[2].error == RATE_LIMIT_MESSAGE
    assert jobs[3].error and "socket" not in jobs[3].error
    assert jobs[4].error
    assert len(charges) == 2


async def test_empty_balance_redirects_to_top_up():
    sleep = RecordingSleep()
    generator = FakeGenerator(sleep)
    charges = []

    summary = await _orchestrator(generator, sleep, balance=0, charges=charges).run(_jobs(3))

    assert summary.statuses == [JobStatus.NEEDS_TOP_UP] * 3
    assert generator.started == []
    assert charges == []


async def test_missing_usage_falls_back_to_default_cost():
    sleep = RecordingSleep()
    charges = []

    await _orchestrator(FakeGenerator(sleep, tokens_used=None), sleep, charges=charges).run(_jobs(2))

    assert charges == [("a@x.com", 100), ("a@x.com", 100)]


async def test_failed_charge_keeps_the_image():
    sleep = RecordingSleep()

    def charge(email, tokens):
        raise InsufficientFunds(10, tokens)

    orchestrator = GenerationOrchestrator(
        FakeGenerator(sleep), balance_gate=lambda email: 10, charge=charge, sleep=sleep
    )
    job = (await orchestrator.run(_jobs(1))).jobs[0]

    assert job.status == JobStatus.DONE
    assert job.image is not None
    assert job.tokens_charged == 0
    assert "Insufficient" in job.charge_error


async def test_cancelled_job_stops_counting_down_and_is_never_sent():
    jobs = _jobs(7)

    def cancel_on_tick(tick):
        if tick == 10:
            jobs[6].cancel()

    sleep = RecordingSleep(jobs, on_tick=cancel_on_tick)
    generator = FakeGenerator(sleep)

    summary = await _orchestrator(generator, sleep).run(jobs)

    assert summary.statuses[:6] == [JobStatus.DONE] * 6
    assert jobs[6].status == JobStatus.CANCELLED
    assert "page 6" not in dict(generator.started)
    assert sleep.snapshots[10][6] == (JobStatus.CANCELLED, None)


async def test_async_balance_gate_and_ledger_charge(ledger, store):
    store.upsert("a@x.com", 1000, None)
    sleep = RecordingSleep()

    async def gate(email):
        return ledger.get_balance(email)

    orchestrator = GenerationOrchestrator(
        FakeGenerator(sleep, tokens_used=300), balance_gate=gate, charge=ledger.debit, sleep=sleep
    )
    summary = await orchestrator.run(_jobs(3))

    assert summary.statuses == [JobStatus.DONE] * 3
    assert ledger.get_balance("a@x.com") == 100


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


async def test_finished_runs_are_evicted_after_retention():
    clock = FakeClock()
    registry = RunRegistry(retention_seconds=600, max_runs=10, clock=clock)
    sleep = RecordingSleep()

    run = registry.start(_orchestrator(FakeGenerator(sleep), sleep), _jobs(1))
    await run.task
    clock.now = 599
    assert registry.get(run.run_id) is run

    clock.now = 600
    assert registry.get(run.run_id) is None
    assert len(registry) == 0


async def test_oldest_finished_runs_go_first_when_over_capacity():
    clock = FakeClock()
    registry = RunRegistry(retention_seconds=3600, max_runs=2, clock=clock)
    sleep = RecordingSleep()
    finished = []
    for minute in range(3):
        clock.now = minute * 60
        run = registry.start(_orchestrator(FakeGenerator(sleep), sleep), _jobs(1))
        await run.task
        finished.append(run)

    blocker = asyncio.Event()

    class StuckGenerator:
        async def generate_image(self, prompt, settings):
            await blocker.wait()
            return GeneratedImage(image_b64="iVBORw0KGgo=", tokens_used=1)

    in_progress = registry.start(_orchestrator(StuckGenerator(), sleep), _jobs(1))

    assert registry.get(finished[0].run_id) is None
    assert registry.get(finished[1].run_id) is None
    assert registry.get(finished[2].run_id) is finished[2]
    assert registry.get(in_progress.run_id) is in_progress

    clock.now = 10_000
    assert registry.prune() == 1
    assert registry.get(in_progress.run_id) is in_progress
    blocker.set()
    await in_progress.task
