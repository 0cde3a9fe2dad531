"""
MRP (Material Requirements Planning) API Endpoints

Endpoints for:
- Submitting MRP runs (inline or in the background) and polling progress
- Cancelling runs
- Reviewing recommendations and moving them through approve / reject / action / expire
"""
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, status
from sqlalchemy.orm import Session

from mfgplan.core.limiter import limiter
from mfgplan.core.settings import settings
from mfgplan.db.session import get_db
from mfgplan.exceptions import MrpRunNotFoundError, NotFoundError
from mfgplan.logging_config import get_logger
from mfgplan.models.mrp import MRPRun
from mfgplan.schemas.mrp import (
    ActionRequest,
    BulkRecommendationRequest,
    BulkTransitionResponse,
    ExpireStaleRequest,
    MRPProgressResponse,
    MRPRunListResponse,
    MRPRunRequest,
    MRPRunResponse,
    MRPStatisticsResponse,
    RecommendationListResponse,
    RecommendationResponse,
    RejectRequest,
    TransitionResponse,
)
from mfgplan.services.mrp import MrpEngine, MrpRunConfig, execute_run_in_background
from mfgplan.services.recommendation_ledger import RecommendationLedger

router = APIRouter()
logger = get_logger(__name__)


# ============================================================================
# MRP Run Endpoints
# ============================================================================

@router.post("/runs", response_model=MRPRunResponse, status_code=status.HTTP_202_ACCEPTED)
@limiter.limit(settings.MRP_RUN_RATE_LIMIT)
async def submit_mrp_run(
    request: Request,
    payload: MRPRunRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    """
    Submit an MRP run.

    Async runs come back ``pending`` and are executed by a background task;
    poll ``/runs/{id}/progress``. Sync runs come back finished.
    """
    engine = MrpEngine(db)
    config = MrpRunConfig(**payload.model_dump(exclude={"run_async"}))
    run = engine.create_run(config)

    run_async = settings.MRP_ASYNC_BY_DEFAULT if payload.run_async is None else payload.run_async
    if run_async:
        background_tasks.add_task(execute_run_in_background, run.id)
        logger.info("MRP run queued", extra={"run_id": run.id})
        return run
    return engine.execute(run.id)


@router.get("/runs", response_model=MRPRunListResponse)
async def list_mrp_runs(
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    query = db.query(MRPRun)
    if status_filter:
        query = query.filter(MRPRun.status == status_filter)
    total = query.count()
    runs = MrpEngine(db).list_runs(status=status_filter, limit=limit, offset=offset)
    return {"items": runs, "total": total}


@router.get("/runs/{run_id}", response_model=MRPRunResponse)
async def get_mrp_run(run_id: int, db: Session = Depends(get_db)):
    return MrpEngine(db).get_run(run_id)


@router.get("/runs/{run_id}/progress", response_model=MRPProgressResponse)
async def get_mrp_progress(run_id: int, db: Session = Depends(get_db)):
    info = MrpEngine(db).progress(run_id)
    if info is None:
        raise MrpRunNotFoundError(run_id)
    return info.to_dict()


@router.post("/runs/{run_id}/cancel", response_model=MRPRunResponse)
async def cancel_mrp_run(run_id: int, db: Session = Depends(get_db)):
    """Cancel a pending or running run. Recommendations already emitted are kept."""
    return MrpEngine(db).cancel(run_id)


@router.get("/statistics", response_model=MRPStatisticsResponse)
async def mrp_statistics(db: Session = Depends(get_db)):
    return MrpEngine(db).statistics()


# ============================================================================
# Recommendation Endpoints
# ============================================================================

@router.get("/recommendations", response_model=RecommendationListResponse)
async def list_recommendations(
    run_id: Optional[int] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    recommendation_type: Optional[str] = Query(None, alias="type"),
    priority: Optional[str] = None,
    urgent_only: bool = False,
    product_id: Optional[int] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    """Recommendations ordered by priority (critical first), then required date."""
    items = RecommendationLedger(db).list(
        mrp_run_id=run_id,
        status=status_filter,
        recommendation_type=recommendation_type,
        priority=priority,
        urgent_only=urgent_only,
        product_id=product_id,
        limit=limit,
        offset=offset,
    )
    return {"items": items, "total": len(items)}


def _transition_response(ledger: RecommendationLedger, recommendation_id: int, ok: bool, action: str) -> dict:
    rec = ledger.get(recommendation_id)
    if rec is None:
        raise NotFoundError("Recommendation", recommendation_id)
    if ok:
        message = None
    elif ledger.last_refusal:
        message = f"Cannot {action} recommendation: {ledger.last_refusal}"
    else:
        message = f"Cannot {action} recommendation in status {rec.status}"
    return {"success": ok, "recommendation": rec, "message": message}


@router.post("/recommendations/{recommendation_id}/approve", response_model=TransitionResponse)
async def approve_recommendation(recommendation_id: int, db: Session = Depends(get_db)):
    ledger = RecommendationLedger(db)
    return _transition_response(ledger, recommendation_id, ledger.approve(recommendation_id), "approve")


@router.post("/recommendations/{recommendation_id}/reject", response_model=TransitionResponse)
async def reject_recommendation(recommendation_id: int, request: RejectRequest, db: Session = Depends(get_db)):
    ledger = RecommendationLedger(db)
    ok = ledger.reject(recommendation_id, notes=request.notes, user=request.user)
    return _transition_response(ledger, recommendation_id, ok, "reject")


@router.post("/recommendations/{recommendation_id}/action", response_model=TransitionResponse)
async def action_recommendation(recommendation_id: int, request: ActionRequest, db: Session = Depends(get_db)):
    ledger = RecommendationLedger(db)
    ok = ledger.mark_actioned(
        recommendation_id,
        reference_type=request.reference_type,
        reference_id=request.reference_id,
        notes=request.notes,
        user=request.user,
    )
    return _transition_response(ledger, recommendation_id, ok, "action")


@router.post("/recommendations/{recommendation_id}/expire", response_model=TransitionResponse)
async def expire_recommendation(recommendation_id: int, db: Session = Depends(get_db)):
    ledger = RecommendationLedger(db)
    return _transition_response(ledger, recommendation_id, ledger.expire(recommendation_id), "expire")


@router.post("/recommendations/bulk-approve", response_model=BulkTransitionResponse)
async def bulk_approve(request: BulkRecommendationRequest, db: Session = Depends(get_db)):
    requested = len(set(request.ids))
    updated = RecommendationLedger(db).bulk_approve(request.ids, user=request.user)
    return {"requested": requested, "updated": updated, "skipped": requested - updated}


@router.post("/recommendations/bulk-reject", response_model=BulkTransitionResponse)
async def bulk_reject(request: BulkRecommendationRequest, db: Session = Depends(get_db)):
    requested = len(set(request.ids))
    updated = RecommendationLedger(db).bulk_reject(request.ids, notes=request.notes, user=request.user)
    return {"requested": requested, "updated": updated, "skipped": requested - updated}


@router.post("/recommendations/bulk-expire", response_model=BulkTransitionResponse)
async def bulk_expire(request: BulkRecommendationRequest, db: Session = Depends(get_db)):
    requested = len(set(request.ids))
    updated = RecommendationLedger(db).bulk_expire(request.ids)
    return {"requested": requested, "updated": updated, "skipped": requested - updated}


@router.post("/recommendations/expire-stale", response_model=BulkTransitionResponse)
async def expire_stale(request: ExpireStaleRequest, db: Session = Depends(get_db)):
    """Expire open recommendations whose required date has passed."""
    updated = RecommendationLedger(db).expire_stale(request.before)
    return {"requested": updated, "updated": updated, "skipped": 0}


@router.get("/recommendations/{recommendation_id}", response_model=RecommendationResponse)
async def get_recommendation(recommendation_id: int, db: Session = Depends(get_db)):
    rec = RecommendationLedger(db).get(recommendation_id)
    if rec is None:
        raise NotFoundError("Recommendation", recommendation_id)
    return rec
