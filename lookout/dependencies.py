from fastapi import Depends, Header, HTTPException
from supabase import Client

from lookout.config import get_cron_secret
from lookout.services.scheduler import AtRiskScheduler
from lookout.services.summarizer import SummarizerService
from lookout.services.supabase_client import get_supabase
from lookout.services.trackingmore import TrackingMoreService


def get_provider() -> TrackingMoreService:
    return TrackingMoreService()


def get_summarizer() -> SummarizerService:
    return SummarizerService()


def get_scheduler(
    db: Client = Depends(get_supabase),
    provider: TrackingMoreService = Depends(get_provider),
    summarizer: SummarizerService = Depends(get_summarizer),
) -> AtRiskScheduler:
    return AtRiskScheduler(db, provider, summarizer=summarizer if summarizer.enabled else None)


def require_cron_secret(authorization: str | None = Header(default=None)) -> None:
    """Bearer CRON_SECRET guard; open when no secret is configured."""
    secret = get_cron_secret()
    if secret and authorization != f"Bearer {secret}":
        raise HTTPException(status_code=401, detail="Unauthorized")
