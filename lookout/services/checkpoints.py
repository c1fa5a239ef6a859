"""
Permanent carrier scan history.

Every provider fetch is written to `tracking_checkpoints`, deduplicated by a
content hash. Provider data expires after a few months; ours does not.
"""
import hashlib
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from postgrest.exceptions import APIError
from supabase import Client

from lookout.dates import calendar_day, parse_timestamp, to_utc, utc_now
from lookout.schemas import (
    CheckpointClassification,
    NormalizationReport,
    StoredCheckpoint,
    TrackingCheckpoint,
    TrackingRecord,
)

logger = logging.getLogger(__name__)

TABLE = "tracking_checkpoints"

DEFAULT_BATCH_SIZE = 20
MAX_BATCH_SIZE = 50
DEFAULT_BATCH_DELAY_SECONDS = 0.5


def calculate_checkpoint_hash(carrier: str, checkpoint_date: str, description: str, location: Optional[str]) -> str:
    """
    Same carrier + day + description + location = same checkpoint.

    The provider often repeats a scan on both legs with a different time of
    day or precision, so only the calendar day takes part.
    """
    day = calendar_day(checkpoint_date) or (checkpoint_date or "").split("T")[0]
    content = "|".join([
        (carrier or "").strip().lower(),
        day,
        " ".join((description or "").strip().lower().split()),
        (location or "").strip().lower(),
    ])
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def build_location(checkpoint: TrackingCheckpoint) -> Optional[str]:
    return checkpoint.display_location()


@dataclass
class StoreResult:
    stored: int = 0
    skipped: int = 0
    error: Optional[str] = None


@dataclass
class StateDwell:
    state: str
    entered_at: datetime
    duration_hours: float


class CheckpointStore:
    def __init__(self, db: Client):
        self.db = db

    def build_rows(self, shipment_id: str, tracking: TrackingRecord, carrier: str) -> list[dict]:
        fetched_at = utc_now().isoformat()
        rows: dict[str, dict] = {}
        for cp in tracking.checkpoints():
            location = build_location(cp)
            description = cp.tracking_detail or ""
            content_hash = calculate_checkpoint_hash(carrier, cp.checkpoint_date, description, location)
            if content_hash in rows:
                continue
            rows[content_hash] = {
                "shipment_id": shipment_id,
                "tracking_number": tracking.tracking_number,
                "carrier": carrier,
                "carrier_code": tracking.courier_code,
                "checkpoint_date": cp.checkpoint_date,
                "raw_description": description,
                "raw_location": location,
                "raw_status": cp.checkpoint_delivery_status,
                "raw_substatus": cp.checkpoint_delivery_substatus,
                "content_hash": content_hash,
                "source": "trackingmore",
                "fetched_at": fetched_at,
            }
        return list(rows.values())

    def store_checkpoints(self, shipment_id: str, tracking: TrackingRecord, carrier: str) -> StoreResult:
        """Upsert both legs' scans. Existing hashes are left untouched; errors are reported, not raised."""
        total = len(tracking.checkpoints())
        if total == 0:
            return StoreResult()

        rows = self.build_rows(shipment_id, tracking, carrier)
        try:
            resp = (
                self.db.table(TABLE)
                .upsert(rows, on_conflict="content_hash", ignore_duplicates=True)
                .execute()
            )
        except APIError as e:
            logger.error(f"[CheckpointStore] Failed to store checkpoints for {shipment_id}: {e.message}")
            return StoreResult(stored=0, skipped=total, error=e.message or "Checkpoint upsert failed")

        stored = len(resp.data or [])
        skipped = total - stored
        logger.info(f"[CheckpointStore] Stored {stored} new checkpoints, skipped {skipped} duplicates for shipment {shipment_id}")
        return StoreResult(stored=stored, skipped=skipped)

    def get_checkpoints(self, shipment_id: str) -> list[StoredCheckpoint]:
        resp = (
            self.db.table(TABLE)
            .select("*")
            .eq("shipment_id", shipment_id)
            .order("checkpoint_date", desc=True)
            .execute()
        )
        return [StoredCheckpoint.model_validate(row) for row in resp.data or []]

    def get_checkpoints_by_tracking(self, tracking_number: str) -> list[StoredCheckpoint]:
        resp = (
            self.db.table(TABLE)
            .select("*")
            .eq("tracking_number", tracking_number)
            .order("checkpoint_date", desc=True)
            .execute()
        )
        return [StoredCheckpoint.model_validate(row) for row in resp.data or []]

    def latest_checkpoint(self, shipment_id: str) -> Optional[StoredCheckpoint]:
        resp = (
            self.db.table(TABLE)
            .select("*")
            .eq("shipment_id", shipment_id)
            .order("checkpoint_date", desc=True)
            .limit(1)
            .execute()
        )
        return StoredCheckpoint.model_validate(resp.data[0]) if resp.data else None

    def get_unnormalized(self, limit: int = 100) -> list[StoredCheckpoint]:
        resp = (
            self.db.table(TABLE)
            .select("*")
            .is_("normalized_type", "null")
            .order("checkpoint_date", desc=True)
            .limit(limit)
            .execute()
        )
        return [StoredCheckpoint.model_validate(row) for row in resp.data or []]

    def apply_normalization(self, checkpoint_id: str, classification: CheckpointClassification) -> bool:
        """Set the normalization fields once. Returns False when the row was already normalized."""
        resp = (
            self.db.table(TABLE)
            .update({
                "normalized_type": classification.normalized_type.value,
                "display_title": classification.display_title,
                "sentiment": classification.sentiment.value,
                "normalized_at": utc_now().isoformat(),
            })
            .eq("id", checkpoint_id)
            .is_("normalized_type", "null")
            .execute()
        )
        return bool(resp.data)


def time_in_states(checkpoints: list[StoredCheckpoint], now: Optional[datetime] = None) -> list[StateDwell]:
    """
    Dwell time per scan, oldest first. Each state lasts until the next scan,
    the last one until `now`. Unnormalized scans count as UNKNOWN.
    """
    now = to_utc(now) if now else utc_now()
    dated = []
    for cp in checkpoints:
        ts = parse_timestamp(cp.checkpoint_date)
        if ts is not None:
            dated.append((to_utc(ts), cp))
    dated.sort(key=lambda pair: pair[0])

    dwell = []
    for i, (entered_at, cp) in enumerate(dated):
        exited_at = dated[i + 1][0] if i + 1 < len(dated) else now
        state = cp.normalized_type.value if cp.normalized_type else "UNKNOWN"
        hours = (exited_at - entered_at).total_seconds() / 3600
        dwell.append(StateDwell(state=state, entered_at=entered_at, duration_hours=hours))
    return dwell


class CheckpointNormalizer:
    """
    Background pass that classifies unnormalized checkpoints.

    One summarizer call per batch; row updates within a batch touch distinct
    rows and run on a thread pool.
    """

    def __init__(
        self,
        store: CheckpointStore,
        summarizer,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay: float = DEFAULT_BATCH_DELAY_SECONDS,
        max_workers: int = 8,
        sleep=time.sleep,
    ):
        self.store = store
        self.summarizer = summarizer
        self.batch_size = max(1, min(batch_size, MAX_BATCH_SIZE))
        self.batch_delay = batch_delay
        self.max_workers = max_workers
        self._sleep = sleep

    def run(self, max_checkpoints: int = 100) -> NormalizationReport:
        report = NormalizationReport()
        pending = self.store.get_unnormalized(max_checkpoints)
        if not pending:
            return report

        logger.info(f"[Normalize] Processing {len(pending)} unnormalized checkpoints")
        for start in range(0, len(pending), self.batch_size):
            batch = pending[start:start + self.batch_size]
            self._run_batch(batch, report)
            if start + self.batch_size < len(pending):
                self._sleep(self.batch_delay)

        logger.info(f"[Normalize] Completed: {report.processed} normalized, {report.skipped} skipped, {report.errors} errors")
        return report

    def _run_batch(self, batch: list[StoredCheckpoint], report: NormalizationReport) -> None:
        classifications = self.summarizer.classify_batch(batch)
        work = []
        for cp, classification in zip(batch, classifications):
            if not cp.id or classification is None:
                report.skipped += 1
                continue
            work.append((cp.id, classification))

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = [pool.submit(self.store.apply_normalization, cp_id, c) for cp_id, c in work]
            for future in futures:
                try:
                    changed = future.result()
                except APIError as e:
                    logger.error(f"[Normalize] Update failed: {e.message}")
                    report.errors += 1
                    continue
                if changed:
                    report.processed += 1
                else:
                    report.skipped += 1
