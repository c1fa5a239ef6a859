from fastapi import APIRouter, Depends, HTTPException
from supabase import Client

from lookout.dependencies import get_scheduler
from lookout.schemas import EligibilityResponse, ErrorInfo
from lookout.services.checkpoints import CheckpointStore, time_in_states
from lookout.services.scheduler import AtRiskScheduler
from lookout.services.supabase_client import get_supabase

router = APIRouter(tags=["Tracking"])


@router.get("/tracking/{tracking_number}/checkpoints")
def get_checkpoint_timeline(tracking_number: str, db: Client = Depends(get_supabase)):
    try:
        checkpoints = CheckpointStore(db).get_checkpoints_by_tracking(tracking_number)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))

    dwell = time_in_states(checkpoints)
    return {
        "tracking_number": tracking_number,
        "count": len(checkpoints),
        "checkpoints": [cp.model_dump(mode="json") for cp in checkpoints],
        "current_state": dwell[-1].state if dwell else None,
        "hours_in_current_state": round(dwell[-1].duration_hours, 1) if dwell else None,
    }


@router.get("/shipments/{shipment_id}/eligibility", response_model=EligibilityResponse)
def verify_eligibility(shipment_id: str, scheduler: AtRiskScheduler = Depends(get_scheduler)):
    """Fresh carrier lookup. `determined=False` means the answer is unknown, not "not eligible"."""
    try:
        outcome = scheduler.verify_shipment(shipment_id)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
    if outcome is None:
        raise HTTPException(status_code=404, detail="Shipment not found")

    return EligibilityResponse(
        shipment_id=shipment_id,
        determined=outcome.determined,
        eligibility=outcome.eligibility,
        error=ErrorInfo(**outcome.error.to_dict()) if outcome.error else None,
    )
