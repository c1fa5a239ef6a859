import re
from enum import Enum
from typing import Callable, Optional

from lookout.schemas import TrackingRecord

DELIVERY_PHRASES = ("delivered",)
# DHL third-party hand-off to a local delivery service
DELIVERY_ARRANGED_PHRASES = ("delivery has been arranged",)
DELIVERY_NEGATIONS = ("undelivered",)
RETURN_PHRASES = ("returned", "return to sender")

# Carrier has admitted the package is lost
LOST_STATUS_PATTERNS = [
    re.compile(r"^lost,", re.I),
    re.compile(r"unable to locate", re.I),
    re.compile(r"cannot be located", re.I),
    re.compile(r"missing mail search", re.I),
    re.compile(r"package is lost", re.I),
    re.compile(r"declared lost", re.I),
    re.compile(r"presumed lost", re.I),
]


class TrackingOutcome(str, Enum):
    DELIVERED = "delivered"
    RETURNED = "returned"


def mentions_delivery(text: Optional[str]) -> bool:
    text = (text or "").lower()
    if any(phrase in text for phrase in DELIVERY_ARRANGED_PHRASES):
        return True
    if any(neg in text for neg in DELIVERY_NEGATIONS):
        return False
    return any(phrase in text for phrase in DELIVERY_PHRASES)


def mentions_return(text: Optional[str]) -> bool:
    text = (text or "").lower()
    return any(phrase in text for phrase in RETURN_PHRASES)


def carrier_reports_lost(text: Optional[str]) -> bool:
    if not text:
        return False
    return any(pattern.search(text) for pattern in LOST_STATUS_PATTERNS)


def _status_delivered(tracking: TrackingRecord) -> bool:
    return (tracking.status or "").lower() == "delivered"


def _latest_event_delivered(tracking: TrackingRecord) -> bool:
    return mentions_delivery(tracking.latest_event)


def _checkpoint_delivered(tracking: TrackingRecord) -> bool:
    for cp in tracking.checkpoints():
        if (cp.checkpoint_delivery_status or "").lower() == "delivered":
            return True
        if mentions_delivery(cp.tracking_detail):
            return True
    return False


def _returned_to_sender(tracking: TrackingRecord) -> bool:
    if mentions_return(tracking.latest_event):
        return True
    return any(mentions_return(cp.tracking_detail) for cp in tracking.checkpoints())


# Evaluated in order, first match wins. New carrier phrasing goes into the
# phrase tuples above or as an extra rule here.
TERMINAL_RULES: list[tuple[Callable[[TrackingRecord], bool], TrackingOutcome]] = [
    (_status_delivered, TrackingOutcome.DELIVERED),
    (_latest_event_delivered, TrackingOutcome.DELIVERED),
    (_checkpoint_delivered, TrackingOutcome.DELIVERED),
    (_returned_to_sender, TrackingOutcome.RETURNED),
]


def classify_tracking(tracking: TrackingRecord) -> Optional[TrackingOutcome]:
    for predicate, outcome in TERMINAL_RULES:
        if predicate(tracking):
            return outcome
    return None


def is_delivered(tracking: TrackingRecord) -> bool:
    return classify_tracking(tracking) == TrackingOutcome.DELIVERED


def is_returned(tracking: TrackingRecord) -> bool:
    return classify_tracking(tracking) == TrackingOutcome.RETURNED


def delivery_date(tracking: TrackingRecord) -> Optional[str]:
    """Timestamp of the most recent delivered scan, as the carrier reported it."""
    for cp in tracking.checkpoints_newest_first():
        if (cp.checkpoint_delivery_status or "").lower() == "delivered" or mentions_delivery(cp.tracking_detail):
            return cp.checkpoint_date
    return None
