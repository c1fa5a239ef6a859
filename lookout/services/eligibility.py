"""
Lost in Transit eligibility.

Pure derivation from (tracking record, shipment snapshot, label date). The
result is recomputed on every check and is never sticky: fresh carrier
activity moves an eligible shipment back to at_risk.

Thresholds (days of carrier inactivity):
- required: 15 domestic / 20 international
- filing window closes: 45 domestic / 50 international
"""
from datetime import datetime
from typing import Optional

from lookout.dates import add_days, to_utc, utc_now, whole_days_between
from lookout.schemas import (
    ClaimEligibilityStatus,
    EligibilityResult,
    ShipmentCandidate,
    TrackingRecord,
)
from lookout.services.status_rules import TrackingOutcome, carrier_reports_lost, classify_tracking

LOST_IN_TRANSIT_DOMESTIC_DAYS = 15
LOST_IN_TRANSIT_INTERNATIONAL_DAYS = 20
FILING_WINDOW_DOMESTIC_MAX_DAYS = 45
FILING_WINDOW_INTERNATIONAL_MAX_DAYS = 50

NO_CARRIER_DATA = "No carrier data available"
NEVER_SCANNED = "Never scanned by carrier"


def required_days_for(is_international: bool) -> int:
    return LOST_IN_TRANSIT_INTERNATIONAL_DAYS if is_international else LOST_IN_TRANSIT_DOMESTIC_DAYS


def max_window_days_for(is_international: bool) -> int:
    return FILING_WINDOW_INTERNATIONAL_MAX_DAYS if is_international else FILING_WINDOW_DOMESTIC_MAX_DAYS


def calculate_eligibility(
    tracking: Optional[TrackingRecord],
    shipment: ShipmentCandidate,
    label_date: datetime,
    now: Optional[datetime] = None,
) -> EligibilityResult:
    now = to_utc(now) if now else utc_now()
    is_international = shipment.is_international
    required_days = required_days_for(is_international)
    base = dict(
        is_international=is_international,
        required_days=required_days,
        max_window_days=max_window_days_for(is_international),
    )

    # 1. No provider data: never promote, only estimate from the label date
    if tracking is None:
        return _at_risk_from_label(base, label_date, now, NO_CARRIER_DATA, None)

    base["tracking_provider_id"] = tracking.id
    base["carrier_reports_lost"] = carrier_reports_lost(tracking.latest_event)

    # 2./3. Terminal carrier outcomes
    outcome = classify_tracking(tracking)
    if outcome == TrackingOutcome.DELIVERED:
        return EligibilityResult(status=None, is_delivered=True, **base)
    if outcome == TrackingOutcome.RETURNED:
        return EligibilityResult(status=None, is_returned=True, **base)

    # 4. Record exists but the carrier never scanned it
    last_checkpoint = tracking.last_checkpoint()
    if last_checkpoint is None:
        return _at_risk_from_label(base, label_date, now, tracking.latest_event or NEVER_SCANNED, tracking.id)

    last_scan_date = to_utc(last_checkpoint.timestamp)
    days_silent = whole_days_between(last_scan_date, now)
    scan = dict(
        days_since_last_scan=days_silent,
        eligible_after=add_days(last_scan_date, required_days),
        last_scan_date=last_scan_date,
        last_scan_description=last_checkpoint.tracking_detail or tracking.latest_event,
        last_scan_location=last_checkpoint.display_location(),
    )

    # 5. Filing window closed
    if days_silent >= base["max_window_days"]:
        return EligibilityResult(status=ClaimEligibilityStatus.MISSED_WINDOW, days_remaining=0, **scan, **base)

    # 6. Inactivity threshold met
    if days_silent >= required_days:
        return EligibilityResult(status=ClaimEligibilityStatus.ELIGIBLE, days_remaining=0, **scan, **base)

    # 7. Still waiting
    return EligibilityResult(
        status=ClaimEligibilityStatus.AT_RISK,
        days_remaining=required_days - days_silent,
        **scan,
        **base,
    )


def _at_risk_from_label(base: dict, label_date: datetime, now: datetime, description: str, provider_id) -> EligibilityResult:
    days_since_label = whole_days_between(label_date, now)
    fields = {k: v for k, v in base.items() if k != "tracking_provider_id"}
    return EligibilityResult(
        status=ClaimEligibilityStatus.AT_RISK,
        days_since_last_scan=days_since_label,
        days_remaining=max(0, base["required_days"] - days_since_label),
        eligible_after=add_days(label_date, base["required_days"]),
        last_scan_description=description,
        tracking_provider_id=provider_id,
        **fields,
    )
