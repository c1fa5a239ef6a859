import pytest

from conftest import NOW, checkpoint, days_ago
from lookout.schemas import ClaimEligibilityStatus
from lookout.services.eligibility import NEVER_SCANNED, NO_CARRIER_DATA, calculate_eligibility


def evaluate(tracking, candidate):
    return calculate_eligibility(tracking, candidate, candidate.label_date, NOW)


class TestNoCarrierData:
    """Without a provider response the result is never eligible."""

    @pytest.mark.parametrize("label_days", [3, 15, 30, 90])
    def test_no_tracking_is_at_risk(self, make_candidate, label_days):
        candidate = make_candidate(label_date=days_ago(label_days))

        result = evaluate(None, candidate)

        assert result.status == ClaimEligibilityStatus.AT_RISK
        assert result.days_since_last_scan == label_days
        assert result.last_scan_description == NO_CARRIER_DATA
        assert result.tracking_provider_id is None

    def test_never_scanned_uses_label_clock(self, make_candidate, make_tracking):
        candidate = make_candidate(label_date=days_ago(10))

        result = evaluate(make_tracking(), candidate)

        assert result.status == ClaimEligibilityStatus.AT_RISK
        assert result.days_since_last_scan == 10
        assert result.days_remaining == 5
        assert result.last_scan_description == NEVER_SCANNED
        assert result.tracking_provider_id == "tm-1"
        assert result.eligible_after == days_ago(-5)


class TestSilenceThresholds:
    def test_domestic_exactly_fifteen_days_is_eligible(self, make_candidate, make_tracking):
        tracking = make_tracking(origin=[checkpoint(days_ago(15))])

        result = evaluate(tracking, make_candidate())

        assert result.status == ClaimEligibilityStatus.ELIGIBLE
        assert result.days_since_last_scan == 15
        assert result.days_remaining == 0

    def test_domestic_fourteen_days_is_at_risk(self, make_candidate, make_tracking):
        tracking = make_tracking(origin=[checkpoint(days_ago(14))])

        result = evaluate(tracking, make_candidate())

        assert result.status == ClaimEligibilityStatus.AT_RISK
        assert result.days_remaining == 1

    def test_partial_days_are_floored(self, make_candidate, make_tracking):
        tracking = make_tracking(origin=[checkpoint(days_ago(14, hours=23))])

        assert evaluate(tracking, make_candidate()).status == ClaimEligibilityStatus.AT_RISK

    @pytest.mark.parametrize("days", [45, 46, 120])
    def test_past_filing_window(self, make_candidate, make_tracking, days):
        tracking = make_tracking(origin=[checkpoint(days_ago(days))])

        result = evaluate(tracking, make_candidate())

        assert result.status == ClaimEligibilityStatus.MISSED_WINDOW
        assert result.days_remaining == 0

    def test_us_to_canada_is_international(self, make_candidate, make_tracking):
        candidate = make_candidate(destination_country="CA")
        assert candidate.is_international

        at_19 = evaluate(make_tracking(origin=[checkpoint(days_ago(19))]), candidate)
        at_20 = evaluate(make_tracking(origin=[checkpoint(days_ago(20))]), candidate)
        at_49 = evaluate(make_tracking(origin=[checkpoint(days_ago(49))]), candidate)
        at_50 = evaluate(make_tracking(origin=[checkpoint(days_ago(50))]), candidate)

        assert at_19.required_days == 20
        assert at_19.max_window_days == 50
        assert at_19.status == ClaimEligibilityStatus.AT_RISK
        assert at_19.days_remaining == 1
        assert at_20.status == ClaimEligibilityStatus.ELIGIBLE
        assert at_49.status == ClaimEligibilityStatus.ELIGIBLE
        assert at_50.status == ClaimEligibilityStatus.MISSED_WINDOW

    def test_country_comparison_is_normalized(self, make_candidate):
        assert not make_candidate(origin_country=" us", destination_country="US ").is_international

    def test_latest_scan_across_both_legs(self, make_candidate, make_tracking):
        tracking = make_tracking(
            origin=[checkpoint(days_ago(30), detail="Accepted at USPS Origin Facility")],
            destination=[checkpoint(days_ago(5), detail="Arrived at Post Office", location="TORONTO, ON")],
        )

        result = evaluate(tracking, make_candidate())

        assert result.days_since_last_scan == 5
        assert result.last_scan_description == "Arrived at Post Office"
        assert result.last_scan_location == "TORONTO, ON"
        assert result.last_scan_date == days_ago(5)

    def test_location_synthesized_from_parts(self, make_candidate, make_tracking):
        cp = checkpoint(days_ago(3), location=None, city="Reno", state="NV", country_iso2="US")

        result = evaluate(make_tracking(origin=[cp]), make_candidate())

        assert result.last_scan_location == "Reno, NV, US"

    def test_scan_without_detail(self, make_candidate, make_tracking):
        tracking = make_tracking(origin=[checkpoint(days_ago(16), detail=None)], latest_event="Arrived at hub")

        result = evaluate(tracking, make_candidate())

        assert result.status == ClaimEligibilityStatus.ELIGIBLE
        assert result.last_scan_description == "Arrived at hub"

    def test_naive_timestamps_read_as_utc(self, make_candidate, make_tracking):
        naive = days_ago(15).replace(tzinfo=None).isoformat()

        result = evaluate(make_tracking(origin=[checkpoint(naive)]), make_candidate())

        assert result.status == ClaimEligibilityStatus.ELIGIBLE

    def test_fresh_activity_moves_back_to_at_risk(self, make_candidate, make_tracking):
        """Every check is a full recomputation; eligibility is not sticky."""
        candidate = make_candidate()
        first = evaluate(make_tracking(origin=[checkpoint(days_ago(16))]), candidate)
        second = evaluate(
            make_tracking(origin=[checkpoint(days_ago(16)), checkpoint(days_ago(1), detail="Departed facility")]),
            candidate,
        )

        assert first.status == ClaimEligibilityStatus.ELIGIBLE
        assert second.status == ClaimEligibilityStatus.AT_RISK


class TestTerminalOutcomes:
    def test_delivered_status_wins_regardless_of_silence(self, make_candidate, make_tracking):
        tracking = make_tracking(origin=[checkpoint(days_ago(100))], status="delivered")

        result = evaluate(tracking, make_candidate())

        assert result.status is None
        assert result.is_delivered
        assert result.tracking_provider_id == "tm-1"

    def test_delivered_checkpoint_text(self, make_candidate, make_tracking):
        tracking = make_tracking(origin=[checkpoint(days_ago(20), detail="Delivered, In/At Mailbox")])

        assert evaluate(tracking, make_candidate()).is_delivered

    def test_delivery_arranged_counts_as_delivered(self, make_candidate, make_tracking):
        tracking = make_tracking(latest_event="Delivery has been arranged with local courier")

        assert evaluate(tracking, make_candidate()).is_delivered

    def test_undelivered_is_not_delivered(self, make_candidate, make_tracking):
        tracking = make_tracking(origin=[checkpoint(days_ago(20), detail="Undeliverable as addressed, undelivered")])

        result = evaluate(tracking, make_candidate())

        assert not result.is_delivered
        assert result.status == ClaimEligibilityStatus.ELIGIBLE

    def test_returned_to_sender(self, make_candidate, make_tracking):
        tracking = make_tracking(origin=[checkpoint(days_ago(20))], latest_event="Return to Sender Processed")

        result = evaluate(tracking, make_candidate())

        assert result.status is None
        assert result.is_returned
        assert not result.is_delivered

    def test_carrier_admitting_loss_is_only_a_flag(self, make_candidate, make_tracking):
        tracking = make_tracking(
            origin=[checkpoint(days_ago(3), detail="Lost,HARRISBURG,PA,US")],
            latest_event="Lost,HARRISBURG,PA,US",
        )

        result = evaluate(tracking, make_candidate())

        assert result.carrier_reports_lost
        assert result.status == ClaimEligibilityStatus.AT_RISK
