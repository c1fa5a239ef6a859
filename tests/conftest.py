"""
Shared fixtures: an in-memory stand-in for the Supabase query builder and
builders for provider tracking payloads.
"""
import itertools
import re
from datetime import datetime, timedelta, timezone

import dateutil.parser
import pytest
from postgrest.exceptions import APIError

from lookout.schemas import ShipmentCandidate, TrackingRecord

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

UNIQUE_KEYS = {
    "lost_in_transit_checks": "shipment_id",
    "tracking_checkpoints": "content_hash",
}


class FakeResponse:
    def __init__(self, data):
        self.data = data


def _comparable(value):
    if isinstance(value, str):
        try:
            parsed = dateutil.parser.isoparse(value)
        except ValueError:
            return value
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return value


def _json_path(row, column):
    head, *path = re.split(r"->>?", column)
    value = row.get(head)
    for key in path:
        if isinstance(value, list) and key.isdigit():
            value = value[int(key)] if int(key) < len(value) else None
        elif isinstance(value, dict):
            value = value.get(key)
        else:
            return None
    return value


class FakeQuery:
    def __init__(self, db, table):
        self.db = db
        self.table = table
        self.op = "select"
        self.payload = None
        self.filters = []
        self.upsert_options = {}
        self._negate = False
        self._order = None
        self._limit = None

    # --- operations ---

    def select(self, *columns, **kwargs):
        self.op = "select"
        return self

    def insert(self, rows):
        self.op = "insert"
        self.payload = rows
        return self

    def upsert(self, rows, on_conflict=None, ignore_duplicates=False):
        self.op = "upsert"
        self.payload = rows
        self.upsert_options = {"on_conflict": on_conflict, "ignore_duplicates": ignore_duplicates}
        return self

    def update(self, fields):
        self.op = "update"
        self.payload = fields
        return self

    def delete(self):
        self.op = "delete"
        return self

    # --- filters ---

    @property
    def not_(self):
        self._negate = True
        return self

    def _add(self, predicate):
        if self._negate:
            self._negate = False
            self.filters.append(lambda row, p=predicate: not p(row))
        else:
            self.filters.append(predicate)
        return self

    def eq(self, column, value):
        return self._add(lambda row: row.get(column) == value)

    def neq(self, column, value):
        return self._add(lambda row: row.get(column) != value)

    def is_(self, column, value):
        assert value == "null", "only IS NULL is used"
        return self._add(lambda row: row.get(column) is None)

    def in_(self, column, values):
        values = list(values)
        return self._add(lambda row: row.get(column) in values)

    def lt(self, column, value):
        return self._add(
            lambda row: row.get(column) is not None and _comparable(row.get(column)) < _comparable(value)
        )

    def or_(self, filters):
        """PostgREST `or=(...)` with `column.eq.value` terms; columns may use `->`/`->>` JSON paths."""
        terms = []
        for term in filters.split(","):
            column, op, value = term.split(".", 2)
            assert op == "eq", "only eq terms are used"
            terms.append((column, value))
        return self._add(lambda row: any(_json_path(row, column) == value for column, value in terms))

    def order(self, column, desc=False, nullsfirst=None):
        self._order = (column, desc, nullsfirst)
        return self

    def limit(self, count):
        self._limit = count
        return self

    # --- execution ---

    def _matching(self):
        return [row for row in self.db.rows(self.table) if all(f(row) for f in self.filters)]

    def execute(self):
        self.db.calls.append((self.table, self.op))
        failure = self.db.failures.pop((self.table, self.op), None)
        if failure is not None:
            raise failure
        handler = getattr(self, f"_execute_{self.op}")
        return FakeResponse(handler())

    def _execute_select(self):
        rows = self._matching()
        if self._order:
            column, desc, nullsfirst = self._order
            present = [r for r in rows if r.get(column) is not None]
            missing = [r for r in rows if r.get(column) is None]
            present.sort(key=lambda r: _comparable(r[column]), reverse=desc)
            rows = missing + present if nullsfirst else present + missing
        if self._limit is not None:
            rows = rows[:self._limit]
        return [dict(r) for r in rows]

    def _execute_insert(self):
        rows = self.payload if isinstance(self.payload, list) else [self.payload]
        key = UNIQUE_KEYS.get(self.table)
        table = self.db.rows(self.table)
        for row in rows:
            if key and any(existing.get(key) == row.get(key) for existing in table):
                raise APIError({"message": f"duplicate key value violates unique constraint on {key}", "code": "23505"})
        return [dict(self.db.add(self.table, row)) for row in rows]

    def _execute_upsert(self):
        rows = self.payload if isinstance(self.payload, list) else [self.payload]
        key = self.upsert_options.get("on_conflict") or UNIQUE_KEYS.get(self.table)
        written = []
        for row in rows:
            existing = next((r for r in self.db.rows(self.table) if r.get(key) == row.get(key)), None)
            if existing is None:
                written.append(dict(self.db.add(self.table, row)))
            elif not self.upsert_options.get("ignore_duplicates"):
                existing.update(row)
                written.append(dict(existing))
        return written

    def _execute_update(self):
        rows = self._matching()
        for row in rows:
            row.update(self.payload)
        return [dict(r) for r in rows]

    def _execute_delete(self):
        doomed = self._matching()
        self.db.tables[self.table] = [r for r in self.db.rows(self.table) if r not in doomed]
        return [dict(r) for r in doomed]


class FakeSupabase:
    def __init__(self):
        self.tables = {}
        self.calls = []
        self.failures = {}
        self._ids = itertools.count(1)

    def table(self, name):
        return FakeQuery(self, name)

    def rows(self, name):
        return self.tables.setdefault(name, [])

    def add(self, name, row):
        stored = dict(row)
        stored.setdefault("id", f"{name}-{next(self._ids)}")
        self.rows(name).append(stored)
        return stored

    def seed(self, name, *rows):
        return [self.add(name, row) for row in rows]

    def fail_next(self, name, op, message="boom"):
        self.failures[(name, op)] = APIError({"message": message, "code": "XX000"})


@pytest.fixture
def fake_db():
    return FakeSupabase()


@pytest.fixture
def now():
    return NOW


def checkpoint(when, detail="In transit", location="MEMPHIS, TN", status="transit", **extra):
    return {
        "checkpoint_date": when.isoformat() if isinstance(when, datetime) else when,
        "tracking_detail": detail,
        "location": location,
        "checkpoint_delivery_status": status,
        **extra,
    }


@pytest.fixture
def make_tracking():
    """Build a TrackingRecord from origin/destination checkpoint dicts."""

    def _make(origin=(), destination=(), status="transit", latest_event=None, tracking_number="9400100000000000000000", **extra):
        payload = {
            "id": extra.pop("id", "tm-1"),
            "tracking_number": tracking_number,
            "courier_code": extra.pop("courier_code", "usps"),
            "delivery_status": status,
            "latest_event": latest_event,
            "origin_info": {"trackinfo": list(origin)},
            "destination_info": {"trackinfo": list(destination)},
            **extra,
        }
        return TrackingRecord.model_validate(payload)

    return _make


@pytest.fixture
def make_candidate(now):
    def _make(**overrides):
        fields = {
            "internal_id": "1",
            "shipment_id": "S-1",
            "tracking_id": "9400100000000000000000",
            "carrier": "USPS",
            "client_id": "client-1",
            "origin_country": "US",
            "destination_country": "US",
            "label_date": now - timedelta(days=30),
        }
        fields.update(overrides)
        return ShipmentCandidate(**fields)

    return _make


def days_ago(days, hours=0):
    return NOW - timedelta(days=days, hours=hours)
