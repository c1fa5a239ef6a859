import logging
import re
from typing import Optional

from postgrest.exceptions import APIError
from supabase import Client

from lookout.cache import ReadThroughCache

logger = logging.getLogger(__name__)

CANADIAN_PROVINCES = [
    "Ontario", "Quebec", "British Columbia", "Alberta", "Manitoba",
    "Saskatchewan", "Nova Scotia", "New Brunswick", "Newfoundland",
    "Prince Edward Island", "Northwest Territories", "Yukon", "Nunavut",
]

US_STATES = {
    "AL", "AK", "AZ", "AR", "CA", "CO", "CT", "DE", "FL", "GA",
    "HI", "ID", "IL", "IN", "IA", "KS", "KY", "LA", "ME", "MD",
    "MA", "MI", "MN", "MS", "MO", "MT", "NE", "NV", "NH", "NJ",
    "NM", "NY", "NC", "ND", "OH", "OK", "OR", "PA", "RI", "SC",
    "SD", "TN", "TX", "UT", "VT", "VA", "WA", "WV", "WI", "WY", "DC",
}

STATE_CODE_RE = re.compile(r"\(([A-Z]{2})\)")


def detect_fc_country(fc_name: Optional[str]) -> Optional[str]:
    """
    Country from the fulfillment center naming convention.

    "Ontario 6 (CA)" is Ontario, California: a two-letter state code wins over
    a province name. "Brampton (Ontario) 2" is Canada.
    """
    if not fc_name:
        return None
    match = STATE_CODE_RE.search(fc_name)
    if match and match.group(1) in US_STATES:
        return "US"
    lowered = fc_name.lower()
    if any(f"({province.lower()})" in lowered for province in CANADIAN_PROVINCES):
        return "CA"
    return "US"


class FacilityDirectory:
    """Fulfillment center name -> country, backed by a cached copy of `fulfillment_centers`."""

    def __init__(self, db: Client, cache: Optional[ReadThroughCache[dict[str, str]]] = None):
        self.db = db
        self.cache = cache or ReadThroughCache(self._load)

    def _load(self) -> dict[str, str]:
        resp = self.db.table("fulfillment_centers").select("name, country").execute()
        return {row["name"]: row["country"] for row in resp.data or [] if row.get("name") and row.get("country")}

    def country_for(self, fc_name: Optional[str]) -> Optional[str]:
        if not fc_name:
            return None
        try:
            known = self.cache.get()
        except APIError as e:
            logger.warning(f"[Facilities] Could not load fulfillment centers: {e.message}")
            known = {}
        return known.get(fc_name) or detect_fc_country(fc_name)
