"""
At-risk candidate selection and recheck.

Two passes over the store:
- sync: shipments labeled 15+ days ago with no delivery event, not yet
  tracked. Each costs at most one paid provider create.
- recheck: rows already at_risk (then a bounded sweep of eligible rows),
  oldest-checked first. Lookups hit the free GET path. A small batch of
  missed_window rows is also looked at, only to record late deliveries.

Status derivation lives in eligibility.py; this module only orchestrates.
"""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, Iterator, Optional

from postgrest.exceptions import APIError
from supabase import Client

from lookout.carriers import resolve_carrier_code
from lookout.dates import iso, parse_timestamp, utc_now, whole_days_between
from lookout.errors import ErrorKind, ProviderError
from lookout.schemas import (
    ENGINE_OWNED_STATUSES,
    ClaimEligibilityStatus,
    EligibilityResult,
    RecheckReport,
    ShipmentCandidate,
    SummaryContext,
    SyncReport,
)
from lookout.services.checkpoints import CheckpointStore
from lookout.services.eligibility import LOST_IN_TRANSIT_DOMESTIC_DAYS, calculate_eligibility
from lookout.services.facilities import FacilityDirectory
from lookout.services.status_rules import delivery_date
from lookout.services.trackingmore import REALTIME_CALL_COST, TrackingMoreService

logger = logging.getLogger(__name__)

CHECKS_TABLE = "lost_in_transit_checks"
SHIPMENTS_TABLE = "shipments"
CARE_TICKETS_TABLE = "care_tickets"

# "Still moving" is either the latest tracking status (status_details[0].name)
# or the shipment status. Completed without a delivery event is a stuck package.
TRACKING_IN_PROGRESS_STATUSES = [
    "InTransit",
    "OutForDelivery",
    "DeliveryException",
    "DeliveryAttemptFailed",
    "AwaitingCarrierScan",
]
SHIPMENT_IN_PROGRESS_STATUSES = [
    "LabeledCreated",
    "AwaitingCarrierScan",
    "Completed",
]
IN_PROGRESS_FILTER = ",".join(
    [f"status_details->0->>name.eq.{s}" for s in TRACKING_IN_PROGRESS_STATUSES]
    + [f"status.eq.{s}" for s in SHIPMENT_IN_PROGRESS_STATUSES]
)

LOSS_ISSUE_TYPE = "Loss"
# Any other ticket status (open, under review, credited, denied, resolved) counts as a claim
VOID_CLAIM_STATUSES = ["Cancelled"]

NEW_CANDIDATE_LIMIT = 500
RECHECK_LIMIT = 200
ELIGIBLE_SWEEP_LIMIT = 100
# missed_window rows looked at per recheck run, only to catch late deliveries
ARCHIVED_SWEEP_LIMIT = 30
API_DELAY_SECONDS = 0.5

# Postgres unique_violation
UNIQUE_VIOLATION = "23505"

SHIPMENT_COLUMNS = (
    "id, shipment_id, tracking_id, carrier, client_id, origin_country, "
    "destination_country, fc_name, event_labeled, event_delivered"
)


@dataclass
class RecheckTarget:
    check_id: str
    status: ClaimEligibilityStatus
    candidate: ShipmentCandidate


@dataclass
class CheckOutcome:
    shipment_id: str
    status: Optional[ClaimEligibilityStatus] = None
    previous_status: Optional[ClaimEligibilityStatus] = None
    eligibility: Optional[EligibilityResult] = None
    error: Optional[ProviderError] = None
    crash: Optional[str] = None
    written: bool = False
    paid_calls: int = 0
    checkpoints_stored: int = 0

    @property
    def determined(self) -> bool:
        """True when the status reflects real carrier data rather than a failed lookup."""
        return self.eligibility is not None and self.error is None and self.crash is None

    def describe_failure(self) -> str:
        reason = self.crash or (self.error.describe() if self.error else "unknown failure")
        return f"{self.shipment_id}: {reason}"


def _get_single(rowset):
    return rowset[0] if rowset else None


class AtRiskScheduler:
    def __init__(
        self,
        db: Client,
        provider: TrackingMoreService,
        checkpoints: Optional[CheckpointStore] = None,
        facilities: Optional[FacilityDirectory] = None,
        summarizer=None,
        max_workers: int = 1,
        delay_seconds: float = API_DELAY_SECONDS,
        stop_event: Optional[threading.Event] = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.provider = provider
        self.checkpoints = checkpoints or CheckpointStore(db)
        self.facilities = facilities or FacilityDirectory(db)
        self.summarizer = summarizer
        self.max_workers = max(1, max_workers)
        self.delay_seconds = delay_seconds
        self.stop_event = stop_event or threading.Event()
        self._clock = clock
        self._sleep = sleep

    def stop(self) -> None:
        """Finish the shipment in flight and start no new ones."""
        self.stop_event.set()

    # --- Selection ---

    def get_new_candidates(self, min_days_old: int = LOST_IN_TRANSIT_DOMESTIC_DAYS, limit: int = NEW_CANDIDATE_LIMIT) -> list[ShipmentCandidate]:
        cutoff = self._clock() - timedelta(days=min_days_old)
        resp = (
            self.db.table(SHIPMENTS_TABLE)
            .select(SHIPMENT_COLUMNS)
            .is_("event_delivered", "null")
            .is_("deleted_at", "null")
            .neq("status", "Cancelled")
            .or_(IN_PROGRESS_FILTER)
            .not_.is_("tracking_id", "null")
            .not_.is_("event_labeled", "null")
            .lt("event_labeled", cutoff.isoformat())
            .order("event_labeled")
            .limit(limit * 2)
            .execute()
        )
        rows = [r for r in resp.data or [] if r.get("tracking_id") and r.get("client_id")]
        if not rows:
            return []

        shipment_ids = [r["shipment_id"] for r in rows]
        already_tracked = self._tracked_shipment_ids(shipment_ids)
        claimed = self._shipments_with_loss_claims(shipment_ids)

        candidates = []
        for row in rows:
            if row["shipment_id"] in already_tracked or row["shipment_id"] in claimed:
                continue
            candidate = self._to_candidate(row)
            if candidate is not None:
                candidates.append(candidate)
            if len(candidates) >= limit:
                break
        return candidates

    def get_recheck_candidates(self, limit: int = RECHECK_LIMIT, eligible_limit: int = ELIGIBLE_SWEEP_LIMIT) -> list[RecheckTarget]:
        rows = self._checks_with_status(ClaimEligibilityStatus.AT_RISK, limit)
        if eligible_limit > 0:
            rows += self._checks_with_status(ClaimEligibilityStatus.ELIGIBLE, eligible_limit)
        return self._targets_for(rows)

    def get_archived_candidates(self, limit: int = ARCHIVED_SWEEP_LIMIT) -> list[RecheckTarget]:
        """missed_window rows the provider already knows, least recently looked at first."""
        if limit <= 0:
            return []
        rows = self._checks_with_status(ClaimEligibilityStatus.MISSED_WINDOW, limit, provider_tracked=True)
        return self._targets_for(rows)

    def _targets_for(self, rows: list[dict]) -> list[RecheckTarget]:
        if not rows:
            return []

        resp = (
            self.db.table(SHIPMENTS_TABLE)
            .select(SHIPMENT_COLUMNS)
            .in_("shipment_id", [r["shipment_id"] for r in rows])
            .execute()
        )
        shipments = {s["shipment_id"]: s for s in resp.data or []}

        targets = []
        for check in rows:
            shipment = shipments.get(check["shipment_id"])
            if shipment is None:
                logger.warning(f"[At-Risk Recheck] {check['shipment_id']} has no shipment row, skipping")
                continue
            candidate = self._to_candidate({
                **shipment,
                "tracking_id": check.get("tracking_number") or shipment.get("tracking_id"),
                "carrier": check.get("carrier") or shipment.get("carrier"),
                "is_international": check.get("is_international"),
            })
            if candidate is None:
                continue
            targets.append(RecheckTarget(
                check_id=check["id"],
                status=ClaimEligibilityStatus(check["claim_eligibility_status"]),
                candidate=candidate,
            ))
        return targets

    def has_existing_loss_claim(self, shipment_id: str) -> bool:
        return shipment_id in self._shipments_with_loss_claims([shipment_id])

    def _checks_with_status(self, status: ClaimEligibilityStatus, limit: int, provider_tracked: bool = False) -> list[dict]:
        query = (
            self.db.table(CHECKS_TABLE)
            .select("id, shipment_id, tracking_number, carrier, is_international, claim_eligibility_status, last_recheck_at")
            .eq("claim_eligibility_status", status.value)
        )
        if provider_tracked:
            query = query.not_.is_("trackingmore_tracking_id", "null")
        resp = query.order("last_recheck_at", nullsfirst=True).limit(limit).execute()
        return list(resp.data or [])

    def _tracked_shipment_ids(self, shipment_ids: list[str]) -> set[str]:
        resp = self.db.table(CHECKS_TABLE).select("shipment_id").in_("shipment_id", shipment_ids).execute()
        return {r["shipment_id"] for r in resp.data or []}

    def _shipments_with_loss_claims(self, shipment_ids: list[str]) -> set[str]:
        resp = (
            self.db.table(CARE_TICKETS_TABLE)
            .select("shipment_id, status")
            .in_("shipment_id", shipment_ids)
            .eq("issue_type", LOSS_ISSUE_TYPE)
            .execute()
        )
        return {r["shipment_id"] for r in resp.data or [] if r.get("status") not in VOID_CLAIM_STATUSES}

    def _to_candidate(self, row: dict) -> Optional[ShipmentCandidate]:
        label_date = parse_timestamp(row.get("event_labeled"))
        if label_date is None:
            logger.warning(f"[At-Risk Sync] {row.get('shipment_id')} has no usable label date, skipping")
            return None
        origin = row.get("origin_country") or self.facilities.country_for(row.get("fc_name"))
        return ShipmentCandidate(
            internal_id=str(row["id"]) if row.get("id") is not None else None,
            shipment_id=str(row["shipment_id"]),
            tracking_id=row["tracking_id"],
            carrier=row.get("carrier") or "",
            client_id=row.get("client_id"),
            origin_country=origin,
            destination_country=row.get("destination_country"),
            label_date=label_date,
            is_international=row.get("is_international"),
        )

    # --- Per-shipment work ---

    def process_new_candidate(self, candidate: ShipmentCandidate) -> CheckOutcome:
        """First check of a shipment. Provider failures write nothing so the next pass retries."""
        outcome = CheckOutcome(shipment_id=candidate.shipment_id)
        now = self._clock()

        carrier_code = resolve_carrier_code(candidate.carrier, candidate.tracking_id)
        if not carrier_code:
            outcome.error = ProviderError(ErrorKind.UNSUPPORTED_CARRIER, f"Unsupported carrier: {candidate.carrier or 'unknown'}")
            logger.info(f"[At-Risk Sync] {candidate.shipment_id} skipped: {outcome.error.detail}")
            row = self._new_row(candidate, None, now)
            row.update({"claim_eligibility_status": None, "last_error": outcome.error.describe()})
            self._insert_check(row, outcome)
            return outcome

        lookup = self.provider.lookup(candidate.tracking_id, candidate.carrier)
        outcome.paid_calls = lookup.paid_calls
        if not lookup.success:
            outcome.error = lookup.error
            logger.warning(f"[At-Risk Sync] {candidate.shipment_id} lookup failed: {lookup.error.describe()}")
            return outcome

        outcome.checkpoints_stored = self.checkpoints.store_checkpoints(
            candidate.shipment_id, lookup.tracking, candidate.carrier
        ).stored
        eligibility = calculate_eligibility(lookup.tracking, candidate, candidate.label_date, now)
        outcome.eligibility = eligibility
        outcome.status = self._final_status(eligibility, candidate.shipment_id)

        if eligibility.is_delivered:
            self._mark_delivered(candidate.shipment_id, lookup.tracking)

        row = self._new_row(candidate, lookup.courier_code, now)
        row.update(self._status_fields(eligibility, outcome.status, now))
        row.update(self._assessment_fields(candidate, eligibility, outcome.status, now))
        self._insert_check(row, outcome)
        if outcome.written:
            logger.info(f"[At-Risk Sync] {candidate.shipment_id} marked {outcome.status.value if outcome.status else 'not tracked'}")
        return outcome

    def recheck(self, target: RecheckTarget) -> CheckOutcome:
        """Recompute one tracked row. A failed lookup only touches last_recheck_at and last_error."""
        candidate = target.candidate
        outcome = CheckOutcome(shipment_id=candidate.shipment_id, previous_status=target.status)
        now = self._clock()

        lookup = self.provider.lookup(candidate.tracking_id, candidate.carrier)
        outcome.paid_calls = lookup.paid_calls
        if not lookup.success:
            outcome.error = lookup.error
            logger.warning(f"[At-Risk Recheck] {candidate.shipment_id} lookup failed, status unchanged: {lookup.error.describe()}")
            self._conditional_update(target.check_id, {
                "last_recheck_at": iso(now),
                "last_error": lookup.error.describe(),
            })
            return outcome

        outcome.checkpoints_stored = self.checkpoints.store_checkpoints(
            candidate.shipment_id, lookup.tracking, candidate.carrier
        ).stored
        eligibility = calculate_eligibility(lookup.tracking, candidate, candidate.label_date, now)
        outcome.eligibility = eligibility
        outcome.status = self._final_status(eligibility, candidate.shipment_id)

        if eligibility.is_delivered:
            self._mark_delivered(candidate.shipment_id, lookup.tracking)

        fields = self._status_fields(eligibility, outcome.status, now)
        fields["carrier_code"] = lookup.courier_code
        fields.update(self._assessment_fields(candidate, eligibility, outcome.status, now))
        outcome.written = self._conditional_update(target.check_id, fields)
        if not outcome.written:
            outcome.error = ProviderError(
                ErrorKind.STORE_WRITE_CONFLICT, "Row left the engine-owned states before the write; left unchanged"
            )
            logger.info(f"[At-Risk Recheck] {candidate.shipment_id} was updated by the claims workflow, skipping write")
        elif outcome.status != target.status:
            logger.info(
                f"[At-Risk Recheck] {candidate.shipment_id} {target.status.value} -> "
                f"{outcome.status.value if outcome.status else 'not tracked'}"
            )
        return outcome

    def recheck_archived(self, target: RecheckTarget) -> CheckOutcome:
        """
        Look at a missed_window row again. Only a delivery changes it: the status
        is cleared and the shipment marked delivered. Anything else just moves
        last_recheck_at so the sweep cycles through the archive.
        """
        candidate = target.candidate
        outcome = CheckOutcome(shipment_id=candidate.shipment_id, previous_status=target.status, status=target.status)
        now = self._clock()
        archived = [ClaimEligibilityStatus.MISSED_WINDOW]

        lookup = self.provider.lookup(candidate.tracking_id, candidate.carrier)
        outcome.paid_calls = lookup.paid_calls
        if not lookup.success:
            outcome.error = lookup.error
            self._conditional_update(target.check_id, {
                "last_recheck_at": iso(now),
                "last_error": lookup.error.describe(),
            }, archived)
            return outcome

        outcome.checkpoints_stored = self.checkpoints.store_checkpoints(
            candidate.shipment_id, lookup.tracking, candidate.carrier
        ).stored
        outcome.eligibility = calculate_eligibility(lookup.tracking, candidate, candidate.label_date, now)
        if not outcome.eligibility.is_delivered:
            self._conditional_update(target.check_id, {"last_recheck_at": iso(now)}, archived)
            return outcome

        self._mark_delivered(candidate.shipment_id, lookup.tracking)
        fields = self._status_fields(outcome.eligibility, None, now)
        fields["carrier_code"] = lookup.courier_code
        outcome.written = self._conditional_update(target.check_id, fields, archived)
        outcome.status = None
        logger.info(f"[At-Risk Recheck] Archived {candidate.shipment_id} was delivered")
        return outcome

    def verify_shipment(self, shipment_id: str) -> Optional[CheckOutcome]:
        """
        On-demand eligibility for one shipment, straight from the carrier.
        Stores checkpoints but does not touch the check row. None when the shipment does not exist.
        """
        resp = (
            self.db.table(SHIPMENTS_TABLE)
            .select(SHIPMENT_COLUMNS)
            .eq("shipment_id", shipment_id)
            .limit(1)
            .execute()
        )
        row = _get_single(resp.data)
        if row is None:
            return None

        outcome = CheckOutcome(shipment_id=shipment_id)
        if not row.get("tracking_id"):
            outcome.error = ProviderError(ErrorKind.UNSUPPORTED_CARRIER, "Shipment has no tracking number")
            return outcome
        candidate = self._to_candidate(row)
        if candidate is None:
            outcome.error = ProviderError(ErrorKind.MALFORMED_RESPONSE, "Shipment has no label date")
            return outcome

        lookup = self.provider.lookup(candidate.tracking_id, candidate.carrier)
        outcome.paid_calls = lookup.paid_calls
        if not lookup.success:
            outcome.error = lookup.error
            return outcome

        outcome.checkpoints_stored = self.checkpoints.store_checkpoints(
            shipment_id, lookup.tracking, candidate.carrier
        ).stored
        outcome.eligibility = calculate_eligibility(lookup.tracking, candidate, candidate.label_date, self._clock())
        outcome.status = outcome.eligibility.status
        return outcome

    def _final_status(self, eligibility: EligibilityResult, shipment_id: str) -> Optional[ClaimEligibilityStatus]:
        if eligibility.status == ClaimEligibilityStatus.ELIGIBLE and self.has_existing_loss_claim(shipment_id):
            logger.info(f"[At-Risk] {shipment_id} has an existing Loss claim, marking claim_filed")
            return ClaimEligibilityStatus.CLAIM_FILED
        return eligibility.status

    def _new_row(self, candidate: ShipmentCandidate, carrier_code: Optional[str], now: datetime) -> dict:
        return {
            "shipment_id": candidate.shipment_id,
            "tracking_number": candidate.tracking_id,
            "carrier": candidate.carrier,
            "carrier_code": carrier_code,
            "client_id": candidate.client_id,
            "is_international": candidate.is_international,
            "first_checked_at": iso(now),
            "checked_at": iso(now),
            "last_recheck_at": iso(now),
        }

    @staticmethod
    def _status_fields(eligibility: EligibilityResult, status: Optional[ClaimEligibilityStatus], now: datetime) -> dict:
        return {
            "claim_eligibility_status": status.value if status else None,
            "eligible_after": eligibility.eligible_after.date().isoformat() if eligibility.eligible_after else None,
            "last_scan_date": iso(eligibility.last_scan_date),
            "last_scan_description": eligibility.last_scan_description,
            "last_scan_location": eligibility.last_scan_location,
            "days_since_last_scan": eligibility.days_since_last_scan,
            "trackingmore_tracking_id": eligibility.tracking_provider_id,
            "checked_at": iso(now),
            "last_recheck_at": iso(now),
            "last_error": None,
        }

    def _assessment_fields(
        self,
        candidate: ShipmentCandidate,
        eligibility: EligibilityResult,
        status: Optional[ClaimEligibilityStatus],
        now: datetime,
    ) -> dict:
        if self.summarizer is None or status not in ENGINE_OWNED_STATUSES:
            return {}
        context = SummaryContext(
            shipment_id=candidate.shipment_id,
            tracking_number=candidate.tracking_id,
            carrier=candidate.carrier,
            status=status,
            days_since_label=whole_days_between(candidate.label_date, now),
            days_since_last_scan=eligibility.days_since_last_scan,
            days_remaining=eligibility.days_remaining,
            last_scan_description=eligibility.last_scan_description,
            last_scan_date=eligibility.last_scan_date,
            checkpoints=self.checkpoints.get_checkpoints(candidate.shipment_id),
        )
        summary = self.summarizer.summarize(context)
        return {"ai_assessment": summary.model_dump(mode="json"), "ai_assessed_at": iso(now)}

    def _insert_check(self, row: dict, outcome: CheckOutcome) -> None:
        try:
            self.db.table(CHECKS_TABLE).insert(row).execute()
            outcome.written = True
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                outcome.error = ProviderError(ErrorKind.STORE_WRITE_CONFLICT, e.message or "Shipment already tracked")
                logger.info(f"[At-Risk Sync] {row['shipment_id']} already tracked by another run")
            else:
                outcome.error = ProviderError(ErrorKind.STORE_ERROR, e.message or "Insert failed")
                logger.error(f"[At-Risk Sync] DB error for {row['shipment_id']}: {e.message}")

    def _conditional_update(self, check_id: str, fields: dict, expected: Iterable[ClaimEligibilityStatus] = ENGINE_OWNED_STATUSES) -> bool:
        resp = (
            self.db.table(CHECKS_TABLE)
            .update(fields)
            .eq("id", check_id)
            .in_("claim_eligibility_status", [s.value for s in expected])
            .execute()
        )
        return bool(resp.data)

    def _mark_delivered(self, shipment_id: str, tracking) -> None:
        update = {"delivery_status": "Delivered"}
        delivered_at = delivery_date(tracking)
        if delivered_at:
            update["event_delivered"] = delivered_at
        self.db.table(SHIPMENTS_TABLE).update(update).eq("shipment_id", shipment_id).execute()
        logger.info(f"[At-Risk] {shipment_id} delivered, shipment updated")

    # --- Runs ---

    def _fan_out(self, work: Callable, items: list) -> Iterator[CheckOutcome]:
        def guarded(item) -> Optional[CheckOutcome]:
            if self.stop_event.is_set():
                return None
            shipment_id = item.shipment_id if isinstance(item, ShipmentCandidate) else item.candidate.shipment_id
            try:
                outcome = work(item)
            except Exception as e:
                logger.exception(f"[At-Risk] Error processing {shipment_id}")
                outcome = CheckOutcome(shipment_id=shipment_id, crash=str(e))
            if self.delay_seconds:
                self._sleep(self.delay_seconds)
            return outcome

        if self.max_workers == 1:
            results: Iterable = map(guarded, items)
        else:
            pool = ThreadPoolExecutor(max_workers=self.max_workers)
            results = pool.map(guarded, items)
        try:
            for outcome in results:
                if outcome is not None:
                    yield outcome
        finally:
            if self.max_workers > 1:
                pool.shutdown(wait=True)

    def run_new_candidates(self, min_days_old: int = LOST_IN_TRANSIT_DOMESTIC_DAYS, limit: int = NEW_CANDIDATE_LIMIT) -> SyncReport:
        report = SyncReport()
        candidates = self.get_new_candidates(min_days_old, limit)
        report.total_candidates = len(candidates)
        logger.info(f"[At-Risk Sync] Found {len(candidates)} new candidates to process")

        for outcome in self._fan_out(self.process_new_candidate, candidates):
            report.paid_calls += outcome.paid_calls
            if outcome.error and outcome.error.kind == ErrorKind.UNSUPPORTED_CARRIER:
                report.unsupported += 1
                continue
            if not outcome.written:
                report.skipped += 1
                report.errors.append(outcome.describe_failure())
                continue
            report.processed += 1
            eligibility = outcome.eligibility
            if eligibility.is_delivered:
                report.delivered += 1
            elif eligibility.is_returned:
                report.returned += 1
            elif outcome.status == ClaimEligibilityStatus.AT_RISK:
                report.at_risk += 1
            elif outcome.status == ClaimEligibilityStatus.ELIGIBLE:
                report.eligible += 1
            elif outcome.status == ClaimEligibilityStatus.MISSED_WINDOW:
                report.missed_window += 1
            elif outcome.status == ClaimEligibilityStatus.CLAIM_FILED:
                report.claim_filed += 1

        report.estimated_cost = round(report.paid_calls * REALTIME_CALL_COST, 2)
        logger.info(
            f"[At-Risk Sync] Summary: {report.at_risk} at-risk, {report.eligible} eligible, "
            f"{report.delivered} delivered, {report.skipped} skipped, est. cost ${report.estimated_cost:.2f}"
        )
        return report

    def run_recheck(
        self,
        limit: int = RECHECK_LIMIT,
        eligible_limit: int = ELIGIBLE_SWEEP_LIMIT,
        archived_limit: int = ARCHIVED_SWEEP_LIMIT,
    ) -> RecheckReport:
        report = RecheckReport()
        targets = self.get_recheck_candidates(limit, eligible_limit)
        # Selected up front so rows that reach missed_window in this run wait for the next one
        archived = self.get_archived_candidates(archived_limit)
        logger.info(f"[At-Risk Recheck] Checking {len(targets)} shipments and {len(archived)} archived")

        for outcome in self._fan_out(self.recheck, targets):
            report.total_checked += 1
            if outcome.crash or (outcome.error and outcome.eligibility is None):
                report.provider_failures += 1
                report.errors.append(outcome.describe_failure())
                continue
            if not outcome.written:
                report.errors.append(outcome.describe_failure())
                continue
            eligibility = outcome.eligibility
            if eligibility.is_delivered:
                report.now_delivered += 1
            elif eligibility.is_returned:
                report.now_returned += 1
            elif outcome.status == ClaimEligibilityStatus.MISSED_WINDOW:
                report.missed_window += 1
            elif outcome.status == ClaimEligibilityStatus.CLAIM_FILED:
                report.claim_filed += 1
            elif outcome.status == ClaimEligibilityStatus.ELIGIBLE:
                if outcome.previous_status == ClaimEligibilityStatus.ELIGIBLE:
                    report.still_eligible += 1
                else:
                    report.now_eligible += 1
            else:
                report.still_at_risk += 1

        for outcome in self._fan_out(self.recheck_archived, archived):
            report.archived_checked += 1
            if outcome.crash or outcome.error:
                report.errors.append(outcome.describe_failure())
            elif outcome.written:
                report.archived_delivered += 1
                report.now_delivered += 1

        logger.info(
            f"[At-Risk Recheck] Summary: {report.now_eligible} now eligible, {report.now_delivered} delivered, "
            f"{report.missed_window} missed window, {report.still_at_risk} still at risk, "
            f"{report.provider_failures} provider failures"
        )
        return report
