from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from conftest import NOW, checkpoint, days_ago
from lookout.dependencies import get_provider, get_scheduler, get_summarizer
from lookout.errors import ErrorKind, ProviderError
from lookout.main import app
from lookout.services.scheduler import AtRiskScheduler
from lookout.services.summarizer import SummarizerService
from lookout.services.supabase_client import get_supabase
from lookout.services.trackingmore import LookupResult, LookupState, TrackingMoreService


@pytest.fixture
def provider():
    return MagicMock(spec=TrackingMoreService)


@pytest.fixture
def client(fake_db, provider, monkeypatch):
    monkeypatch.delenv("CRON_SECRET", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    app.dependency_overrides[get_supabase] = lambda: fake_db
    app.dependency_overrides[get_provider] = lambda: provider
    app.dependency_overrides[get_summarizer] = lambda: SummarizerService()
    app.dependency_overrides[get_scheduler] = lambda: AtRiskScheduler(fake_db, provider, clock=lambda: NOW, sleep=MagicMock())
    yield TestClient(app)
    app.dependency_overrides.clear()


def seed_shipment(fake_db, shipment_id="S-1"):
    fake_db.seed("shipments", {
        "shipment_id": shipment_id,
        "tracking_id": "9400100000000000000000",
        "carrier": "USPS",
        "client_id": "client-1",
        "origin_country": "US",
        "destination_country": "US",
        "fc_name": "Twinsburg (OH)",
        "event_labeled": days_ago(30).isoformat(),
        "event_delivered": None,
        "deleted_at": None,
        "status": "Processing",
        "status_details": [{"name": "InTransit"}],
    })


class TestRoot:
    def test_health(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ONLINE", "engine": "Lookout V1"}


class TestCronEndpoints:
    def test_secret_required_when_configured(self, client, monkeypatch):
        monkeypatch.setenv("CRON_SECRET", "s3cret")

        assert client.post("/cron/sync-at-risk").status_code == 401
        assert client.post("/cron/sync-at-risk", headers={"Authorization": "Bearer wrong"}).status_code == 401

        resp = client.post("/cron/sync-at-risk", headers={"Authorization": "Bearer s3cret"})
        assert resp.status_code == 200

    def test_sync_with_nothing_to_do(self, client, provider):
        resp = client.post("/cron/sync-at-risk")

        assert resp.status_code == 200
        body = resp.json()
        assert body["total_candidates"] == 0
        assert body["estimated_cost"] == 0.0
        provider.lookup.assert_not_called()

    def test_recheck_with_nothing_to_do(self, client):
        resp = client.post("/cron/recheck-at-risk")

        assert resp.status_code == 200
        assert resp.json()["total_checked"] == 0

    def test_store_failure_is_a_server_error(self, client, fake_db):
        fake_db.fail_next("shipments", "select", "relation does not exist")

        resp = client.post("/cron/sync-at-risk")

        assert resp.status_code == 500
        assert "relation does not exist" in resp.json()["detail"]

    def test_limit_is_validated(self, client):
        assert client.post("/cron/sync-at-risk", params={"limit": 0}).status_code == 422

    def test_normalize_uses_rules_without_openai(self, client, fake_db):
        fake_db.seed("tracking_checkpoints", {
            "shipment_id": "S-1",
            "tracking_number": "T-1",
            "carrier": "USPS",
            "checkpoint_date": days_ago(1).isoformat(),
            "raw_description": "Out for delivery",
            "content_hash": "h1",
            "normalized_type": None,
        })

        resp = client.post("/cron/normalize-checkpoints", params={"max_checkpoints": 10})

        assert resp.status_code == 200
        assert resp.json()["processed"] == 1
        assert fake_db.rows("tracking_checkpoints")[0]["normalized_type"] == "OFD"


class TestEligibilityEndpoint:
    def test_unknown_shipment(self, client):
        assert client.get("/shipments/S-404/eligibility").status_code == 404

    def test_provider_timeout_is_undetermined(self, client, fake_db, provider):
        seed_shipment(fake_db)
        provider.lookup.return_value = LookupResult().fail(ProviderError(ErrorKind.PROVIDER_TIMEOUT, "read timed out"))

        resp = client.get("/shipments/S-1/eligibility")

        assert resp.status_code == 200
        body = resp.json()
        assert body["determined"] is False
        assert body["eligibility"] is None
        assert body["error"]["kind"] == "provider_timeout"
        assert body["error"]["retryable"] is True
        assert fake_db.rows("lost_in_transit_checks") == []

    def test_fresh_answer(self, client, fake_db, provider, make_tracking):
        seed_shipment(fake_db)
        tracking = make_tracking(origin=[checkpoint(days_ago(16), detail="Arrived at hub")])
        provider.lookup.return_value = LookupResult(courier_code="usps").succeed(LookupState.FETCHED_EXISTING, tracking)

        resp = client.get("/shipments/S-1/eligibility")

        body = resp.json()
        assert body["determined"] is True
        assert body["error"] is None
        assert body["eligibility"]["status"] == "eligible"
        assert body["eligibility"]["days_since_last_scan"] == 16
        assert len(fake_db.rows("tracking_checkpoints")) == 1
        assert fake_db.rows("lost_in_transit_checks") == []


class TestCheckpointTimeline:
    def test_timeline(self, client, fake_db):
        fake_db.seed(
            "tracking_checkpoints",
            {"shipment_id": "S-1", "tracking_number": "T-1", "carrier": "USPS", "content_hash": "a",
             "checkpoint_date": "2025-02-20T10:00:00+00:00", "raw_description": "Accepted", "normalized_type": "PICKUP"},
            {"shipment_id": "S-1", "tracking_number": "T-1", "carrier": "USPS", "content_hash": "b",
             "checkpoint_date": "2025-02-21T10:00:00+00:00", "raw_description": "Arrived at hub", "normalized_type": "HUB"},
        )

        resp = client.get("/tracking/T-1/checkpoints")

        body = resp.json()
        assert body["count"] == 2
        assert [cp["raw_description"] for cp in body["checkpoints"]] == ["Arrived at hub", "Accepted"]
        assert body["current_state"] == "HUB"
        assert body["hours_in_current_state"] > 0

    def test_empty_timeline(self, client):
        body = client.get("/tracking/NOPE/checkpoints").json()

        assert body["count"] == 0
        assert body["current_state"] is None
