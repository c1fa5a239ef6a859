import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from supabase import Client

from lookout.dependencies import get_scheduler, get_summarizer, require_cron_secret
from lookout.schemas import NormalizationReport, RecheckReport, SyncReport
from lookout.services.checkpoints import CheckpointNormalizer, CheckpointStore
from lookout.services.scheduler import AtRiskScheduler, NEW_CANDIDATE_LIMIT, RECHECK_LIMIT
from lookout.services.summarizer import SummarizerService
from lookout.services.supabase_client import get_supabase

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["Cron"], dependencies=[Depends(require_cron_secret)])


@router.post("/sync-at-risk", response_model=SyncReport)
def sync_at_risk(
    limit: int = Query(NEW_CANDIDATE_LIMIT, ge=1, le=2000),
    scheduler: AtRiskScheduler = Depends(get_scheduler),
):
    try:
        return scheduler.run_new_candidates(limit=limit)
    except Exception as e:
        logger.exception("[At-Risk Sync] Fatal error")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/recheck-at-risk", response_model=RecheckReport)
def recheck_at_risk(
    limit: int = Query(RECHECK_LIMIT, ge=1, le=1000),
    scheduler: AtRiskScheduler = Depends(get_scheduler),
):
    try:
        return scheduler.run_recheck(limit=limit)
    except Exception as e:
        logger.exception("[At-Risk Recheck] Fatal error")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/normalize-checkpoints", response_model=NormalizationReport)
def normalize_checkpoints(
    max_checkpoints: int = Query(100, ge=1, le=1000),
    db: Client = Depends(get_supabase),
    summarizer: SummarizerService = Depends(get_summarizer),
):
    try:
        return CheckpointNormalizer(CheckpointStore(db), summarizer).run(max_checkpoints)
    except Exception as e:
        logger.exception("[Normalize] Fatal error")
        raise HTTPException(status_code=500, detail=str(e))
