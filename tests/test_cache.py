from unittest.mock import MagicMock

import pytest
from postgrest.exceptions import APIError

from lookout.cache import ReadThroughCache
from lookout.services.facilities import FacilityDirectory, detect_fc_country


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestReadThroughCache:
    def test_loads_once_within_ttl(self):
        clock = FakeClock()
        loader = MagicMock(return_value={"a": 1})
        cache = ReadThroughCache(loader, ttl_seconds=300, clock=clock)

        cache.get()
        clock.now += 299
        cache.get()

        assert loader.call_count == 1
        assert cache.is_warm

    def test_reloads_after_ttl(self):
        clock = FakeClock()
        loader = MagicMock(side_effect=[{"v": 1}, {"v": 2}])
        cache = ReadThroughCache(loader, ttl_seconds=300, clock=clock)

        assert cache.get() == {"v": 1}
        clock.now += 300
        assert not cache.is_warm
        assert cache.get() == {"v": 2}

    def test_invalidate(self):
        loader = MagicMock(return_value=1)
        cache = ReadThroughCache(loader, clock=FakeClock())

        cache.get()
        cache.invalidate()
        cache.get()

        assert loader.call_count == 2


class TestFacilityCountry:
    @pytest.mark.parametrize("name,expected", [
        ("Ontario 6 (CA)", "US"),
        ("Brampton (Ontario) 2", "CA"),
        ("Vancouver (British Columbia)", "CA"),
        ("Twinsburg (OH)", "US"),
        ("US Warehouse", "US"),
        (None, None),
    ])
    def test_naming_convention(self, name, expected):
        assert detect_fc_country(name) == expected

    def test_table_wins_over_convention(self, fake_db):
        fake_db.seed("fulfillment_centers", {"name": "Mystery FC", "country": "MX"})

        assert FacilityDirectory(fake_db).country_for("Mystery FC") == "MX"

    def test_table_is_cached(self, fake_db):
        fake_db.seed("fulfillment_centers", {"name": "Mystery FC", "country": "MX"})
        directory = FacilityDirectory(fake_db)

        directory.country_for("Mystery FC")
        directory.country_for("Brampton (Ontario) 2")

        assert fake_db.calls.count(("fulfillment_centers", "select")) == 1

    def test_store_failure_falls_back_to_convention(self):
        db = MagicMock()
        db.table.return_value.select.return_value.execute.side_effect = APIError({"message": "down", "code": "500"})

        assert FacilityDirectory(db).country_for("Brampton (Ontario) 2") == "CA"
