"""
Coloring page generation runs.
A run is a batch of prompts processed in the background by the orchestrator; clients poll
for per-job progress (waiting countdowns, images, errors) and may cancel queued jobs.
"""
import logging
import threading
from contextlib import nullcontext

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.concurrency import run_in_threadpool

from app.db.session import SessionLocal, engine
from app.schemas.generation import (
    GenerationRunRequest,
    GenerationRunResponse,
    ImprovePromptRequest,
    ImprovePromptResponse,
)
from app.services.account_store import AccountStore
from app.services.generation_orchestrator import (
    GenerationJob,
    GenerationOrchestrator,
    run_registry,
)
from app.services.image_generation import (
    RATE_LIMIT_MESSAGE,
    GenerationError,
    GenerationSettings,
    ImageGenerationClient,
)
from app.services.ledger import LedgerService
from app.utils.disposable_email import normalize_email

logger = logging.getLogger(__name__)

router = APIRouter()


def get_generation_client() -> ImageGenerationClient:
    return ImageGenerationClient()


# SQLite shares one connection (StaticPool), so its transactions must not interleave across threads
_db_lock = threading.Lock() if engine.dialect.name == "sqlite" else nullcontext()


def _read_balance(email: str) -> int:
    with _db_lock:
        db = SessionLocal()
        try:
            balance = AccountStore(db).get_balance(email)
            return balance or 0
        finally:
            db.close()


def _debit(email: str, tokens: int) -> None:
    with _db_lock:
        db = SessionLocal()
        try:
            LedgerService(AccountStore(db)).debit(email, tokens)
        finally:
            db.close()


async def check_balance(email: str) -> int:
    """Fresh read per job; runs outlive the request that started them."""
    return await run_in_threadpool(_read_balance, email)


async def charge_tokens(email: str, tokens: int) -> None:
    await run_in_threadpool(_debit, email, tokens)


@router.post("/runs", response_model=GenerationRunResponse, status_code=status.HTTP_202_ACCEPTED)
async def start_run(
    body: GenerationRunRequest,
    client: ImageGenerationClient = Depends(get_generation_client),
):
    try:
        email = normalize_email(body.email)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    prompts = [p.strip() for p in body.prompts if p and p.strip()]
    if not prompts:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Add at least one prompt")

    settings = body.settings
    jobs = [
        GenerationJob(
            prompt=prompt,
            settings=GenerationSettings(
                ratio=settings.ratio,
                quality=settings.quality,
                preset=settings.preset,
                reference_images=list(settings.reference_images),
            ),
            email=email,
        )
        for prompt in prompts
    ]
    orchestrator = GenerationOrchestrator(client, balance_gate=check_balance, charge=charge_tokens)
    run = run_registry.start(orchestrator, jobs)
    logger.info("[Generate] Started run %s for %s with %s prompts", run.run_id, email, len(jobs))
    return run.to_dict()


@router.get("/runs/{run_id}", response_model=GenerationRunResponse)
async def get_run(run_id: str):
    run = run_registry.get(run_id)
    if run is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Run not found")
    return run.to_dict()


@router.post("/runs/{run_id}/jobs/{index}/cancel", response_model=GenerationRunResponse)
async def cancel_job(run_id: str, index: int):
    """Stops a queued job's countdown. A drawing already in flight still finishes."""
    run = run_registry.get(run_id)
    if run is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Run not found")
    if index < 0 or index >= len(run.jobs):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    run.jobs[index].cancel()
    return run.to_dict()


@router.post("/improve-prompt", response_model=ImprovePromptResponse)
async def improve_prompt(
    body: ImprovePromptRequest,
    client: ImageGenerationClient = Depends(get_generation_client),
):
    try:
        prompt = await client.improve_prompt(body.prompt)
    except GenerationError as e:
        raise HTTPException(
            status_code=e.status_code if e.status_code in (429, 503, 504) else status.HTTP_502_BAD_GATEWAY,
            detail=RATE_LIMIT_MESSAGE if e.rate_limited else e.message,
        )
    return ImprovePromptResponse(prompt=prompt)
