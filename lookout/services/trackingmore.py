import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import requests
from pydantic import ValidationError

from lookout import config
from lookout.carriers import resolve_carrier_code
from lookout.errors import ErrorKind, ProviderError
from lookout.schemas import TrackingRecord

logger = logging.getLogger(__name__)

# Cost of one POST /trackings/realtime; GET on an existing tracking is free
REALTIME_CALL_COST = 0.04

SUCCESS_CODES = {200, 201}
# "Tracking already exists" variants
ALREADY_EXISTS_CODES = {4016, 4101}


class LookupState(str, Enum):
    NOT_ATTEMPTED = "not_attempted"
    FETCHED_EXISTING = "fetched_existing"
    CREATED_NEW = "created_new"
    MISMATCH_REPAIRED = "mismatch_repaired"
    FAILED = "failed"


@dataclass
class Envelope:
    """TrackingMore response envelope. HTTP 200 carries business errors too."""
    code: int
    message: str
    data: Any

    @property
    def ok(self) -> bool:
        return self.code in SUCCESS_CODES


@dataclass
class LookupResult:
    state: LookupState = LookupState.NOT_ATTEMPTED
    tracking: Optional[TrackingRecord] = None
    error: Optional[ProviderError] = None
    courier_code: Optional[str] = None
    paid_calls: int = 0
    trail: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.tracking is not None and self.error is None

    @property
    def cost(self) -> float:
        return round(self.paid_calls * REALTIME_CALL_COST, 2)

    def succeed(self, state: LookupState, tracking: TrackingRecord) -> "LookupResult":
        self.state = state
        self.tracking = tracking
        self.trail.append(state.value)
        return self

    def fail(self, error: ProviderError) -> "LookupResult":
        self.state = LookupState.FAILED
        self.error = error
        self.trail.append(f"failed:{error.kind.value}")
        return self


class TrackingMoreService:
    """
    Create-or-fetch client for the TrackingMore v4 API.

    API Docs: https://www.trackingmore.com/docs/trackingmore/d5ac362fc3cda-api-quick-start
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key or os.getenv("TRACKINGMORE_API_KEY")
        if not self.api_key:
            raise RuntimeError("TrackingMore API key missing from .env")
        self.base_url = (base_url or config.TRACKINGMORE_BASE_URL).rstrip("/")
        self.timeout = timeout or config.TRACKINGMORE_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    @property
    def headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "Tracking-Api-Key": self.api_key,
        }

    def _request(self, method: str, path: str, timeout: Optional[float] = None, **kwargs) -> Envelope | ProviderError:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(
                method, url, headers=self.headers, timeout=timeout or self.timeout, **kwargs
            )
        except requests.Timeout:
            logger.warning(f"[TrackingMore] {method} {path} timed out after {timeout or self.timeout}s")
            return ProviderError(ErrorKind.PROVIDER_TIMEOUT, "Carrier lookup timed out; retry on the next pass")
        except requests.RequestException as e:
            logger.warning(f"[TrackingMore] {method} {path} failed: {e}")
            return ProviderError(ErrorKind.PROVIDER_UNREACHABLE, f"Failed to connect to TrackingMore: {e}")

        try:
            body = response.json()
        except ValueError:
            logger.error(f"[TrackingMore] Non-JSON response ({response.status_code}): {response.text[:200]}")
            return ProviderError(ErrorKind.MALFORMED_RESPONSE, f"Non-JSON response (HTTP {response.status_code})")

        meta = body.get("meta") if isinstance(body, dict) else None
        code = meta.get("code") if isinstance(meta, dict) else None
        if not isinstance(code, int):
            if response.status_code >= 500:
                return ProviderError(ErrorKind.PROVIDER_UNREACHABLE, f"HTTP {response.status_code}")
            return ProviderError(ErrorKind.MALFORMED_RESPONSE, "Response envelope has no meta.code")

        return Envelope(code=code, message=str(meta.get("message") or ""), data=body.get("data"))

    @staticmethod
    def _parse_tracking(data: Any) -> TrackingRecord | ProviderError:
        try:
            return TrackingRecord.model_validate(data)
        except ValidationError as e:
            return ProviderError(ErrorKind.MALFORMED_RESPONSE, f"Unexpected tracking shape: {e.error_count()} errors")

    def get_existing(self, tracking_number: str, courier_code: str) -> Optional[TrackingRecord] | ProviderError:
        """FREE lookup of an already registered tracking. None when not registered."""
        envelope = self._request(
            "GET",
            "/trackings/get",
            params={"tracking_numbers": tracking_number, "courier_code": courier_code},
        )
        if isinstance(envelope, ProviderError):
            return envelope
        if envelope.code != 200 or not envelope.data:
            return None
        if not isinstance(envelope.data, list):
            return ProviderError(ErrorKind.MALFORMED_RESPONSE, "Expected a list of trackings")
        return self._parse_tracking(envelope.data[0])

    def create_realtime(self, tracking_number: str, courier_code: str) -> Envelope | ProviderError:
        """PAID ($0.04): registers the tracking and fetches carrier data immediately."""
        return self._request(
            "POST",
            "/trackings/realtime",
            json={"tracking_number": tracking_number, "courier_code": courier_code},
        )

    def delete_by_id(self, provider_id: str) -> Optional[ProviderError]:
        envelope = self._request(
            "DELETE",
            f"/trackings/delete/{provider_id}",
            timeout=config.TRACKINGMORE_DELETE_TIMEOUT_SECONDS,
        )
        if isinstance(envelope, ProviderError):
            return envelope
        if envelope.code != 200:
            return ProviderError(ErrorKind.PROVIDER_BUSINESS_ERROR, envelope.message or "Delete failed", envelope.code)
        return None

    def lookup(self, tracking_number: str, carrier: Optional[str] = None) -> LookupResult:
        """
        Return the provider's current record, creating it remotely if absent.

        NOT_ATTEMPTED -> FETCHED_EXISTING | CREATED_NEW | MISMATCH_REPAIRED | FAILED
        """
        tracking_number = (tracking_number or "").strip()
        result = LookupResult()

        courier_code = resolve_carrier_code(carrier, tracking_number)
        result.courier_code = courier_code
        if not courier_code:
            return result.fail(ProviderError(
                ErrorKind.UNSUPPORTED_CARRIER,
                f"Unable to determine carrier for {tracking_number} ({carrier or 'no carrier name'})",
            ))

        logger.info(f"[TrackingMore] Looking up {tracking_number} carrier: {courier_code}")

        existing = self.get_existing(tracking_number, courier_code)
        if isinstance(existing, ProviderError):
            return result.fail(existing)
        if existing is not None:
            return result.succeed(LookupState.FETCHED_EXISTING, existing)

        logger.info(f"[TrackingMore] No existing tracking for {tracking_number}, creating via realtime")
        created = self.create_realtime(tracking_number, courier_code)
        result.paid_calls += 1
        if isinstance(created, ProviderError):
            return result.fail(created)
        if created.ok:
            return self._finish(result, LookupState.CREATED_NEW, created)

        if created.code in ALREADY_EXISTS_CODES:
            return self._repair_mismatch(result, tracking_number, courier_code, created)

        logger.warning(f"[TrackingMore] Realtime create rejected {tracking_number}: {created.code} {created.message}")
        return result.fail(ProviderError(
            ErrorKind.PROVIDER_BUSINESS_ERROR, created.message or "Failed to create tracking", created.code
        ))

    def _repair_mismatch(self, result: LookupResult, tracking_number: str, courier_code: str, rejected: Envelope) -> LookupResult:
        # The provider allows one carrier binding per tracking number
        existing = rejected.data if isinstance(rejected.data, dict) else {}
        existing_code = existing.get("courier_code") or existing.get("carrier_code")
        existing_id = existing.get("id")

        if not existing_code or existing_code == courier_code or not existing_id:
            return result.fail(ProviderError(
                ErrorKind.PROVIDER_BUSINESS_ERROR,
                rejected.message or "Tracking exists but cannot be retrieved",
                rejected.code,
            ))

        logger.info(
            f"[TrackingMore] {tracking_number} registered as {existing_code}; deleting and recreating as {courier_code}"
        )
        delete_error = self.delete_by_id(existing_id)
        if delete_error is not None:
            return result.fail(delete_error)

        retried = self.create_realtime(tracking_number, courier_code)
        result.paid_calls += 1
        if isinstance(retried, ProviderError):
            return result.fail(retried)
        if retried.ok:
            return self._finish(result, LookupState.MISMATCH_REPAIRED, retried)
        return result.fail(ProviderError(
            ErrorKind.PROVIDER_BUSINESS_ERROR, retried.message or "Retry after carrier repair failed", retried.code
        ))

    def _finish(self, result: LookupResult, state: LookupState, envelope: Envelope) -> LookupResult:
        parsed = self._parse_tracking(envelope.data)
        if isinstance(parsed, ProviderError):
            return result.fail(parsed)
        return result.succeed(state, parsed)
