import asyncio
import logging
from contextlib import asynccontextmanager
from time import perf_counter

from fastapi import APIRouter, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from ledger_workload.circuit_breaker import CircuitBreaker
from ledger_workload.client import MidazClient
from ledger_workload.config import Settings, load_settings
from ledger_workload.models import GenerationRequest, LedgerClient
from ledger_workload.orchestrator import TransactionOrchestrator
from ledger_workload.progress import ProgressReporter
from ledger_workload.state import InMemoryGenerationState
from ledger_workload.summary import build_summary

log = logging.getLogger("ledger_workload.app")


class WorkloadStartReq(BaseModel):
    organization_id: str
    ledger_id: str
    account_ids: list[str]
    account_aliases: list[str] = Field(default_factory=list)
    transactions_per_account: int = Field(default=1, ge=1, le=1000)


def build_orchestrator(app: FastAPI, settings: Settings, client: LedgerClient) -> None:
    app.state.settings = settings
    app.state.client = client
    app.state.gen_state = InMemoryGenerationState()
    app.state.breaker = (
        CircuitBreaker(settings.circuit_breaker.to_options(), name="midaz")
        if settings.circuit_breaker.enabled
        else None
    )
    app.state.orchestrator = TransactionOrchestrator(
        client,
        app.state.gen_state,
        settings=settings.generation,
        breaker=app.state.breaker,
    )
    app.state.workload_task = None
    app.state.last_summary = None
    app.state.last_error = None


def create_app(settings: Settings | None = None, client: LedgerClient | None = None) -> FastAPI:
    """Build the control API; ``client`` replaces the Midaz HTTP client when given."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = settings or load_settings()
        owned = None
        if client is None:
            owned = MidazClient(
                cfg.api.onboarding_url,
                cfg.api.transaction_url,
                token=cfg.api.token,
                timeout=cfg.api.timeout,
            )
        build_orchestrator(app, cfg, client or owned)
        log.info("Ledger workload ready (onboarding=%s, transaction=%s)", cfg.api.onboarding_url, cfg.api.transaction_url)
        try:
            yield
        finally:
            log.info("Shutting down...")
            task = app.state.workload_task
            if task is not None and not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
            if owned is not None:
                await owned.aclose()
            log.info("Shutdown complete")

    app = FastAPI(
        title="Ledger Workload",
        lifespan=lifespan,
        openapi_tags=[
            {"name": "Workload", "description": "Start and track generation runs"},
            {"name": "State", "description": "Generation state, progress and circuit breaker"},
        ],
    )
    app.add_api_route("/health", health, methods=["GET"])
    app.include_router(r_workload)
    app.include_router(r_state)
    return app


r_state = APIRouter(prefix="/state", tags=["State"])
r_workload = APIRouter(prefix="/workload", tags=["Workload"])


def health():
    return {"status": "ok"}


async def run_workload(app: FastAPI, req: GenerationRequest) -> None:
    settings: Settings = app.state.settings
    orchestrator: TransactionOrchestrator = app.state.orchestrator

    def reporter_factory(label: str, total: int) -> ProgressReporter:
        options = settings.progress.to_options()
        if not settings.progress.enabled:
            options.update_interval = 0
        return ProgressReporter(label, total, options=options)

    started = perf_counter()
    try:
        await orchestrator.generate_transactions(req, reporter_factory=reporter_factory)
    except asyncio.CancelledError:
        log.info("Workload cancelled")
        raise
    except Exception as e:
        log.exception("Workload failed")
        app.state.last_error = f"{type(e).__name__}: {e}"
    summary = build_summary(
        app.state.gen_state,
        perf_counter() - started,
        accounts=len(req.account_ids),
        breaker=app.state.breaker,
    )
    summary.log(log)
    app.state.last_summary = summary


@r_workload.post("/start")
async def start_workload(body: WorkloadStartReq, request: Request):
    """Start a generation run in the background."""
    app = request.app
    task = app.state.workload_task
    if task is not None and not task.done():
        raise HTTPException(status_code=400, detail="Workload already running")

    req = GenerationRequest(
        organization_id=body.organization_id,
        ledger_id=body.ledger_id,
        account_ids=body.account_ids,
        account_aliases=body.account_aliases,
        transactions_per_account=body.transactions_per_account,
    )
    log.info("Starting workload for ledger %s with %s accounts", req.ledger_id, len(req.account_ids))
    app.state.last_error = None
    app.state.workload_task = asyncio.create_task(run_workload(app, req), name="workload")
    return {"status": "started", "ledger_id": req.ledger_id, "accounts": len(req.account_ids)}


@r_workload.get("/status")
async def workload_status(request: Request):
    app = request.app
    task = app.state.workload_task
    summary = app.state.last_summary
    return {
        "running": task is not None and not task.done(),
        "transactions": len(app.state.gen_state.transaction_ids()),
        "last_summary": summary.to_dict() if summary else None,
        "last_error": app.state.last_error,
    }


@r_state.get("/stats")
async def state_stats(request: Request):
    return request.app.state.gen_state.snapshot_stats()


@r_state.get("/progress")
async def state_progress(request: Request):
    orchestrator: TransactionOrchestrator = request.app.state.orchestrator
    reporter = orchestrator.reporter
    return {
        "phase": orchestrator.phase,
        "label": reporter.label if reporter else None,
        "metrics": reporter.get_metrics().to_dict() if reporter else None,
    }


@r_state.get("/circuit")
async def circuit_stats(request: Request):
    breaker: CircuitBreaker | None = request.app.state.breaker
    if breaker is None:
        return {"enabled": False}
    s = breaker.get_stats()
    return {
        "enabled": True,
        "state": s.state,
        "failures": s.failures,
        "successes": s.successes,
        "requests": s.requests,
        "trips": s.trips,
        "available": breaker.is_available(),
    }


@r_state.post("/circuit/reset")
async def circuit_reset(request: Request):
    breaker: CircuitBreaker | None = request.app.state.breaker
    if breaker is None:
        raise HTTPException(status_code=404, detail="Circuit breaker disabled")
    breaker.manual_reset()
    return {"status": "reset", "state": breaker.state}


app = create_app()
