# schemas.py
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from lookout.dates import parse_timestamp, to_utc


class ClaimEligibilityStatus(str, Enum):
    AT_RISK = "at_risk"
    ELIGIBLE = "eligible"
    CLAIM_FILED = "claim_filed"
    APPROVED = "approved"
    DENIED = "denied"
    MISSED_WINDOW = "missed_window"


# Set by the claims workflow; this engine never overwrites them.
WORKFLOW_OWNED_STATUSES = frozenset({
    ClaimEligibilityStatus.CLAIM_FILED,
    ClaimEligibilityStatus.APPROVED,
    ClaimEligibilityStatus.DENIED,
})

ENGINE_OWNED_STATUSES = frozenset({
    ClaimEligibilityStatus.AT_RISK,
    ClaimEligibilityStatus.ELIGIBLE,
})


def _normalize_country(value: Optional[str]) -> Optional[str]:
    return (value or "").strip().upper() or None


class ShipmentCandidate(BaseModel):
    """Immutable snapshot of a shipment taken when it was selected for checking."""
    model_config = ConfigDict(frozen=True)

    internal_id: Optional[str] = None
    shipment_id: str
    tracking_id: str
    carrier: str = ""
    client_id: Optional[str] = None
    origin_country: Optional[str] = None
    destination_country: Optional[str] = None
    label_date: datetime
    is_international: bool = False

    @model_validator(mode="before")
    @classmethod
    def derive_international(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("is_international") is None:
            data = dict(data)
            origin = _normalize_country(data.get("origin_country"))
            destination = _normalize_country(data.get("destination_country"))
            data["is_international"] = origin != destination
        return data


# --- Tracking provider payloads (TrackingMore v4) ---

class TrackingCheckpoint(BaseModel):
    model_config = ConfigDict(extra="ignore")

    checkpoint_date: str
    tracking_detail: Optional[str] = None
    location: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country_iso2: Optional[str] = None
    zip: Optional[str] = None
    checkpoint_delivery_status: Optional[str] = None
    checkpoint_delivery_substatus: Optional[str] = None

    @property
    def timestamp(self) -> Optional[datetime]:
        return parse_timestamp(self.checkpoint_date)

    def display_location(self) -> Optional[str]:
        """Flat location string, synthesized from city/state/country when the carrier sends none."""
        if self.location and self.location.strip():
            return self.location.strip()
        parts = [p.strip() for p in (self.city, self.state, self.country_iso2) if p and p.strip()]
        return ", ".join(parts) if parts else None


class TrackInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    trackinfo: list[TrackingCheckpoint] = Field(default_factory=list)


class TrackingRecord(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    tracking_number: str
    courier_code: Optional[str] = Field(None, validation_alias=AliasChoices("courier_code", "carrier_code"))
    status: Optional[str] = Field(None, validation_alias=AliasChoices("delivery_status", "status"))
    latest_event: Optional[str] = None
    latest_checkpoint_time: Optional[str] = None
    original_country: Optional[str] = None
    destination_country: Optional[str] = None
    origin_info: Optional[TrackInfo] = None
    destination_info: Optional[TrackInfo] = None

    def checkpoints(self) -> list[TrackingCheckpoint]:
        """All scans across the origin and destination legs, in provider order."""
        collected: list[TrackingCheckpoint] = []
        for leg in (self.origin_info, self.destination_info):
            if leg:
                collected.extend(leg.trackinfo)
        return collected

    def checkpoints_newest_first(self) -> list[TrackingCheckpoint]:
        dated = [cp for cp in self.checkpoints() if cp.timestamp is not None]
        return sorted(dated, key=lambda cp: _sort_key(cp.timestamp), reverse=True)

    def last_checkpoint(self) -> Optional[TrackingCheckpoint]:
        ordered = self.checkpoints_newest_first()
        return ordered[0] if ordered else None


def _sort_key(dt: datetime) -> float:
    return to_utc(dt).timestamp()


# --- Derived results ---

class EligibilityResult(BaseModel):
    status: Optional[ClaimEligibilityStatus] = None
    days_since_last_scan: Optional[int] = None
    days_remaining: Optional[int] = None
    eligible_after: Optional[datetime] = None
    is_international: bool = False
    required_days: int
    max_window_days: int
    last_scan_date: Optional[datetime] = None
    last_scan_description: Optional[str] = None
    last_scan_location: Optional[str] = None
    is_delivered: bool = False
    is_returned: bool = False
    carrier_reports_lost: bool = False
    tracking_provider_id: Optional[str] = None


class NormalizedType(str, Enum):
    LABEL = "LABEL"
    PICKUP = "PICKUP"
    INTRANSIT = "INTRANSIT"
    HUB = "HUB"
    LOCAL = "LOCAL"
    OFD = "OFD"
    DELIVERED = "DELIVERED"
    ATTEMPT = "ATTEMPT"
    EXCEPTION = "EXCEPTION"
    RETURN = "RETURN"
    CUSTOMS = "CUSTOMS"
    HOLD = "HOLD"


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    CONCERNING = "concerning"
    CRITICAL = "critical"


class CheckpointClassification(BaseModel):
    normalized_type: NormalizedType
    display_title: str = Field(..., min_length=1)
    sentiment: Sentiment


class StoredCheckpoint(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    shipment_id: str
    tracking_number: str
    carrier: str
    carrier_code: Optional[str] = None
    checkpoint_date: str
    raw_description: str = ""
    raw_location: Optional[str] = None
    raw_status: Optional[str] = None
    raw_substatus: Optional[str] = None
    normalized_type: Optional[NormalizedType] = None
    display_title: Optional[str] = None
    sentiment: Optional[Sentiment] = None
    content_hash: str
    source: str = "trackingmore"
    fetched_at: Optional[str] = None
    normalized_at: Optional[str] = None

    @property
    def is_normalized(self) -> bool:
        return self.normalized_type is not None


class DeliverySummary(BaseModel):
    headline: str = Field(..., min_length=1)
    summary: str = ""
    action: str = ""
    sentiment: Sentiment = Sentiment.NEUTRAL
    confidence: int = Field(70, ge=0, le=100)


class SummaryContext(BaseModel):
    shipment_id: str
    tracking_number: Optional[str] = None
    carrier: str = ""
    status: Optional[ClaimEligibilityStatus] = None
    days_since_label: Optional[int] = None
    days_since_last_scan: Optional[int] = None
    days_remaining: Optional[int] = None
    last_scan_description: Optional[str] = None
    last_scan_date: Optional[datetime] = None
    checkpoints: list[StoredCheckpoint] = Field(default_factory=list)


# --- API responses ---

class ErrorInfo(BaseModel):
    kind: str
    detail: str
    code: Optional[int] = None
    retryable: bool = False


class EligibilityResponse(BaseModel):
    shipment_id: str
    determined: bool
    eligibility: Optional[EligibilityResult] = None
    error: Optional[ErrorInfo] = None


class SyncReport(BaseModel):
    total_candidates: int = 0
    processed: int = 0
    at_risk: int = 0
    eligible: int = 0
    missed_window: int = 0
    claim_filed: int = 0
    delivered: int = 0
    returned: int = 0
    unsupported: int = 0
    skipped: int = 0
    errors: list[str] = Field(default_factory=list)
    paid_calls: int = 0
    estimated_cost: float = 0.0


class RecheckReport(BaseModel):
    total_checked: int = 0
    now_eligible: int = 0
    now_delivered: int = 0
    now_returned: int = 0
    missed_window: int = 0
    still_at_risk: int = 0
    still_eligible: int = 0
    claim_filed: int = 0
    provider_failures: int = 0
    archived_checked: int = 0
    archived_delivered: int = 0
    errors: list[str] = Field(default_factory=list)


class NormalizationReport(BaseModel):
    processed: int = 0
    skipped: int = 0
    errors: int = 0
