"""
Batching policy for coloring page generation.

Jobs are dispatched in batches of BATCH_SIZE concurrent calls. Between batches the
orchestrator waits COOLDOWN_SECONDS, and every job still queued shows a per-second
countdown. Each job checks the balance before it is submitted and is charged only
after the image came back.
"""
import asyncio
import inspect
import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from app.core.plans import DEFAULT_GENERATION_COST
from app.services.image_generation import (
    RATE_LIMIT_MESSAGE,
    GeneratedImage,
    GenerationError,
    GenerationSettings,
)

logger = logging.getLogger(__name__)

BATCH_SIZE = 5
COOLDOWN_SECONDS = 65
RUN_RETENTION_SECONDS = int(os.getenv("RUN_RETENTION_SECONDS", "1800"))
MAX_RETAINED_RUNS = int(os.getenv("MAX_RETAINED_RUNS", "200"))

TOP_UP_MESSAGE = "You're out of tokens. Top up to keep drawing."
BALANCE_CHECK_MESSAGE = "Could not check your balance. Please try again."
TIMEOUT_MESSAGE = "The image service took too long to respond. Please try again."
GENERIC_ERROR_MESSAGE = "Something went wrong while drawing. Please try again."

BalanceGate = Callable[[Optional[str]], Union[int, Awaitable[int]]]
Charge = Callable[[str, int], Any]
Sleep = Callable[[float], Awaitable[Any]]


class JobStatus(str, Enum):
    PENDING = "pending"
    WAITING = "waiting"
    DRAWING = "drawing"
    DONE = "done"
    ERROR = "error"
    NEEDS_TOP_UP = "needs_top_up"
    CANCELLED = "cancelled"


@dataclass
class GenerationJob:
    prompt: str
    settings: GenerationSettings = field(default_factory=GenerationSettings)
    email: Optional[str] = None
    status: JobStatus = JobStatus.PENDING
    countdown: Optional[int] = None
    image: Optional[GeneratedImage] = None
    error: Optional[str] = None
    charge_error: Optional[str] = None
    tokens_charged: int = 0
    cancelled: bool = False

    def cancel(self) -> None:
        """Stop the countdown and keep the job from being dispatched. In-flight calls still finish."""
        self.cancelled = True
        self.countdown = None
        if self.status in (JobStatus.PENDING, JobStatus.WAITING):
            self.status = JobStatus.CANCELLED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prompt": self.prompt,
            "status": self.status.value,
            "countdown": self.countdown,
            "image": self.image.src if self.image else None,
            "error": self.error,
            "chargeError": self.charge_error,
            "tokensCharged": self.tokens_charged,
        }


@dataclass
class RunSummary:
    batch_sizes: List[int]
    cooldowns: int
    jobs: List[GenerationJob]

    @property
    def statuses(self) -> List[JobStatus]:
        return [job.status for job in self.jobs]

    @property
    def tokens_charged(self) -> int:
        return sum(job.tokens_charged for job in self.jobs)


async def _resolve(value):
    if inspect.isawaitable(value):
        return await value
    return value


class GenerationOrchestrator:
    def __init__(
        self,
        generator,
        balance_gate: BalanceGate,
        charge: Charge,
        sleep: Sleep = asyncio.sleep,
        batch_size: int = BATCH_SIZE,
        cooldown_seconds: int = COOLDOWN_SECONDS,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.generator = generator
        self.balance_gate = balance_gate
        self.charge = charge
        self.sleep = sleep
        self.batch_size = batch_size
        self.cooldown_seconds = cooldown_seconds

    async def run(self, jobs: List[GenerationJob]) -> RunSummary:
        jobs = list(jobs)
        batches = [jobs[i:i + self.batch_size] for i in range(0, len(jobs), self.batch_size)]
        tasks = []
        cooldowns = 0

        for index, batch in enumerate(batches):
            logger.info("[Orchestrator] Dispatching batch %s/%s (%s jobs)", index + 1, len(batches), len(batch))
            for job in batch:
                if job.cancelled:
                    job.status = JobStatus.CANCELLED
                    continue
                tasks.append(asyncio.create_task(self._run_job(job)))

            if index < len(batches) - 1:
                cooldowns += 1
                queued = [job for later in batches[index + 1:] for job in later]
                await self._cooldown(queued)

        if tasks:
            await asyncio.gather(*tasks)

        summary = RunSummary(
            batch_sizes=[len(batch) for batch in batches],
            cooldowns=cooldowns,
            jobs=jobs,
        )
        logger.info(
            "[Orchestrator] Run finished: %s jobs, %s cooldowns, %s tokens charged",
            len(jobs), cooldowns, summary.tokens_charged,
        )
        return summary

    async def _cooldown(self, queued: List[GenerationJob]) -> None:
        for job in queued:
            if not job.cancelled:
                job.status = JobStatus.WAITING
        for remaining in range(self.cooldown_seconds, 0, -1):
            for job in queued:
                if not job.cancelled:
                    job.countdown = remaining
            await self.sleep(1)
        for job in queued:
            job.countdown = None
            if not job.cancelled:
                job.status = JobStatus.PENDING

    async def _run_job(self, job: GenerationJob) -> None:
        if job.cancelled:
            job.status = JobStatus.CANCELLED
            return

        try:
            balance = await _resolve(self.balance_gate(job.email))
        except Exception as e:
            logger.error("[Orchestrator] Balance check failed for %s: %s", job.email, e)
            job.status = JobStatus.ERROR
            job.error = BALANCE_CHECK_MESSAGE
            return
        if balance is None or balance <= 0:
            logger.info("[Orchestrator] %s has no balance left; job not submitted", job.email)
            job.status = JobStatus.NEEDS_TOP_UP
            job.error = TOP_UP_MESSAGE
            return

        job.status = JobStatus.DRAWING
        try:
            image = await self.generator.generate_image(job.prompt, job.settings)
        except GenerationError as e:
            job.status = JobStatus.ERROR
            job.error = RATE_LIMIT_MESSAGE if e.rate_limited else e.message
            return
        except asyncio.TimeoutError:
            job.status = JobStatus.ERROR
            job.error = TIMEOUT_MESSAGE
            return
        except Exception as e:
            logger.exception("[Orchestrator] Unexpected generation failure: %s", e)
            job.status = JobStatus.ERROR
            job.error = GENERIC_ERROR_MESSAGE
            return

        job.image = image
        job.status = JobStatus.DONE
        if not job.email:
            return

        tokens = image.tokens_used if image.tokens_used is not None else DEFAULT_GENERATION_COST
        if tokens <= 0:
            return
        try:
            await _resolve(self.charge(job.email, tokens))
            job.tokens_charged = tokens
        except Exception as e:
            # The image is already paid for upstream; keep it and surface the billing problem
            logger.warning("[Orchestrator] Charge of %s failed for %s: %s", tokens, job.email, e)
            job.charge_error = str(e)


@dataclass
class GenerationRun:
    run_id: str
    jobs: List[GenerationJob]
    task: Optional["asyncio.Task"] = None
    summary: Optional[RunSummary] = None
    finished_at: Optional[float] = None

    @property
    def finished(self) -> bool:
        return self.summary is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "runId": self.run_id,
            "finished": self.finished,
            "jobs": [job.to_dict() for job in self.jobs],
        }


class RunRegistry:
    """
    In-process progress registry for background runs. Holds no balances.

    Finished runs carry their images, so they are dropped RUN_RETENTION_SECONDS after
    finishing, and the oldest finished runs go first once more than max_runs are held.
    Runs still in progress are never evicted.
    """

    def __init__(
        self,
        retention_seconds: float = RUN_RETENTION_SECONDS,
        max_runs: int = MAX_RETAINED_RUNS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.retention_seconds = retention_seconds
        self.max_runs = max_runs
        self.clock = clock
        self._runs: Dict[str, GenerationRun] = {}

    def __len__(self) -> int:
        return len(self._runs)

    def start(self, orchestrator: GenerationOrchestrator, jobs: List[GenerationJob]) -> GenerationRun:
        self.prune()
        run = GenerationRun(run_id=uuid.uuid4().hex, jobs=list(jobs))
        self._runs[run.run_id] = run

        async def _drive():
            try:
                run.summary = await orchestrator.run(run.jobs)
            finally:
                run.finished_at = self.clock()

        run.task = asyncio.create_task(_drive())
        return run

    def get(self, run_id: str) -> Optional[GenerationRun]:
        self.prune()
        return self._runs.get(run_id)

    def prune(self) -> int:
        """Drop expired finished runs, then the oldest finished ones beyond max_runs."""
        now = self.clock()
        done = sorted(
            (run for run in self._runs.values() if run.finished_at is not None),
            key=lambda run: run.finished_at,
        )
        expired = [run for run in done if now - run.finished_at >= self.retention_seconds]
        kept = [run for run in done if now - run.finished_at < self.retention_seconds]
        overflow = max(0, len(self._runs) - len(expired) - self.max_runs)
        evicted = expired + kept[:overflow]

        for run in evicted:
            del self._runs[run.run_id]
        if evicted:
            logger.info("[Orchestrator] Evicted %s finished runs, %s held", len(evicted), len(self._runs))
        return len(evicted)


run_registry = RunRegistry()
