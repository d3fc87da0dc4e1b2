"""
Mode Router - current mode, manual overrides, audit and scenarios.

Reads go straight to the scheduler's published state. Mutations (evaluate,
force, unpin, scenario load) require auth when MODEOS_API_TOKEN is set.

Usage in server.py:
    from api.mode_router import mode_router
    app.include_router(mode_router, prefix="/api")
"""

import asyncio
import json
import logging
from collections.abc import AsyncGenerator
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse, StreamingResponse

from api.auth import require_auth
from api.response_models import (
    AuditResponse,
    CapsuleModel,
    DetailResponse,
    EvaluateRequest,
    ForceRequest,
    ModeStateResponse,
    ScenarioListResponse,
    ScenarioLoadRequest,
)
from modeos.errors import UnknownTriggerError
from modeos.modes import EvaluationResult, EvaluationScheduler, Trigger, get_scenario, list_scenarios
from modeos.observability import REGISTRY

logger = logging.getLogger(__name__)

mode_router = APIRouter(prefix="/mode", tags=["Mode"])

# Set by server.create_app()
_scheduler: EvaluationScheduler | None = None


def set_scheduler(scheduler: EvaluationScheduler | None) -> None:
    global _scheduler
    _scheduler = scheduler


def get_scheduler() -> EvaluationScheduler:
    """Dependency returning the process scheduler."""
    if _scheduler is None:
        raise HTTPException(status_code=503, detail="Mode scheduler not initialized")
    return _scheduler


def _state(scheduler: EvaluationScheduler, result: EvaluationResult) -> ModeStateResponse:
    pin = scheduler.pin
    return ModeStateResponse(
        mode=result.mode.value,
        trigger=result.trigger.value,
        evaluated_at=result.evaluated_at.isoformat(),
        capsule=CapsuleModel.model_validate(result.capsule.to_dict()),
        signals=result.signals.to_dict(),
        pin=pin.to_dict() if pin else None,
    )


async def _current(scheduler: EvaluationScheduler) -> EvaluationResult:
    result = scheduler.current_result
    if result is None:
        result = await scheduler.evaluate(Trigger.APP_OPEN)
    return result


# ==== Reads ====


@mode_router.get("", response_model=ModeStateResponse)
async def get_mode(scheduler: EvaluationScheduler = Depends(get_scheduler)):
    """Current mode, its capsule and the pin."""
    return _state(scheduler, await _current(scheduler))


@mode_router.get("/capsule", response_model=CapsuleModel)
async def get_capsule(scheduler: EvaluationScheduler = Depends(get_scheduler)):
    """The "Why this view?" capsule for the current mode."""
    result = await _current(scheduler)
    return CapsuleModel.model_validate(result.capsule.to_dict())


@mode_router.get("/audit", response_model=AuditResponse)
async def get_audit(
    limit: int = Query(50, ge=1, le=1000),
    scheduler: EvaluationScheduler = Depends(get_scheduler),
):
    """Recent audit events, newest last."""
    audit_log = scheduler.audit_log
    events = audit_log.history(limit=limit)
    return AuditResponse(
        items=[e.to_dict() for e in events],
        total=len(audit_log),
        override_rate=round(audit_log.override_rate(), 4),
        mode_counts={mode.value: count for mode, count in audit_log.mode_counts().items()},
    )


@mode_router.get("/scenarios", response_model=ScenarioListResponse)
async def get_scenarios(tag: str | None = Query(None)):
    scenarios = list_scenarios(tag)
    return ScenarioListResponse(items=[s.to_dict() for s in scenarios], total=len(scenarios))


@mode_router.get("/metrics")
async def get_metrics(format: str = Query("json", pattern="^(json|prometheus)$")):
    """Metrics registry as JSON, or Prometheus text with ?format=prometheus."""
    if format == "prometheus":
        return PlainTextResponse(REGISTRY.to_prometheus())
    return REGISTRY.to_dict()


# ==== Mutations ====


@mode_router.post(
    "/evaluate",
    response_model=ModeStateResponse,
    responses={422: {"model": DetailResponse}},
    dependencies=[Depends(require_auth)],
)
async def post_evaluate(
    body: EvaluateRequest | None = None,
    scheduler: EvaluationScheduler = Depends(get_scheduler),
):
    body = body or EvaluateRequest()
    try:
        result = await scheduler.evaluate(body.trigger)
    except UnknownTriggerError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    return _state(scheduler, result)


@mode_router.post(
    "/force",
    response_model=ModeStateResponse,
    responses={422: {"model": DetailResponse}},
    dependencies=[Depends(require_auth)],
)
async def post_force(body: ForceRequest, scheduler: EvaluationScheduler = Depends(get_scheduler)):
    """Pin a mode until an explicit unpin."""
    try:
        result = scheduler.force_mode(body.mode)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    return _state(scheduler, result)


@mode_router.post(
    "/unpin", response_model=ModeStateResponse, dependencies=[Depends(require_auth)]
)
async def post_unpin(scheduler: EvaluationScheduler = Depends(get_scheduler)):
    result = await scheduler.unpin()
    return _state(scheduler, result)


@mode_router.post(
    "/scenarios/{scenario_id}",
    response_model=ModeStateResponse,
    responses={404: {"model": DetailResponse}},
    dependencies=[Depends(require_auth)],
)
async def post_scenario(
    scenario_id: str,
    body: ScenarioLoadRequest | None = None,
    scheduler: EvaluationScheduler = Depends(get_scheduler),
):
    """Replace the live calendar with a built-in scenario and evaluate."""
    try:
        scenario = get_scenario(scenario_id)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=e.args[0]) from e
    now = body.now if body else None
    result = await scheduler.load_scenario(scenario, now=now)
    return _state(scheduler, result)


# ==== Stream ====


def format_sse(result: EvaluationResult) -> str:
    """One published result as a Server-Sent Events message."""
    lines = [
        f"id: {uuid4()}",
        "event: mode_changed",
        f"data: {json.dumps(result.to_dict())}",
    ]
    return "\n".join(lines) + "\n\n"


async def _result_stream(
    scheduler: EvaluationScheduler, queue: asyncio.Queue, unsubscribe
) -> AsyncGenerator[str, None]:
    try:
        if scheduler.current_result is not None:
            yield format_sse(scheduler.current_result)
        while True:
            try:
                result = await asyncio.wait_for(queue.get(), timeout=60.0)
            except TimeoutError:
                # keep-alive comment
                yield ": heartbeat\n\n"
                continue
            yield format_sse(result)
    finally:
        unsubscribe()


@mode_router.get("/stream")
async def stream_mode(scheduler: EvaluationScheduler = Depends(get_scheduler)) -> StreamingResponse:
    """Server-Sent Events: one mode_changed event per published decision."""
    queue: asyncio.Queue = asyncio.Queue(maxsize=100)

    def on_result(result: EvaluationResult) -> None:
        try:
            queue.put_nowait(result)
        except asyncio.QueueFull:
            logger.warning("Mode stream queue full, dropping event")

    unsubscribe = scheduler.subscribe(on_result)
    return StreamingResponse(
        _result_stream(scheduler, queue, unsubscribe),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
