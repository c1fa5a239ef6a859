"""
Carrier code resolution for the tracking provider.

Maps free-text carrier names (as they arrive from the fulfillment platform)
and raw tracking numbers to TrackingMore courier codes.
See: https://www.trackingmore.com/docs/trackingmore/wgwsg4rjvvheh-carrier-code
"""
import re
from typing import Optional

# Internal / freight carriers with no carrier tracking at all
UNSUPPORTED = "__unsupported__"

# Ordered: first substring match wins. A name that contains another
# (e.g. "ups mail innovations" contains "ups") must come before it.
CARRIER_NAME_TABLE: list[tuple[tuple[str, ...], str]] = [
    (("shipbob", "prepaid", "kitting"), UNSUPPORTED),
    (("usps",), "usps"),
    (("upsmi", "mail innovations"), "ups-mi"),
    (("ups",), "ups"),
    (("smartpost",), "fedex"),
    (("fedex",), "fedex"),
    (("dhl ecommerce", "dhl-ecommerce", "dhlecommerce"), "dhl-ecommerce"),
    (("dhl",), "dhl"),
    (("ontrac",), "ontrac"),
    (("amazon",), "amazon-us"),
    (("veho",), "veho"),
    (("lasership",), "lasership"),
    (("spee-dee", "speedee"), "speedee"),
    # Cirro eCommerce is also known as GOFO
    (("cirro", "gofo"), "gofoexpress"),
    (("bettertrucks", "better trucks"), "bettertrucks"),
    (("osm",), "osmworldwide"),
    (("uniuni",), "uniuni"),
    (("passport",), "passport"),
    (("apc",), "apc"),
]

# Ordered: specific shapes before generic digit-length shapes. USPS and FedEx
# both issue 20-22 digit numbers, so the prefixed forms are tested first.
TRACKING_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"^1Z[A-Z0-9]{16}$"), "ups"),
    (re.compile(r"^[A-Z]{2}\d{9}US$"), "usps"),
    (re.compile(r"^(94|93|92|91|70|01|02)\d{18,20}$"), "usps"),
    (re.compile(r"^\d{12}$"), "fedex"),
    (re.compile(r"^\d{15}$"), "fedex"),
    (re.compile(r"^(7|96)\d{19,21}$"), "fedex"),
    (re.compile(r"^\d{20,22}$"), "usps"),
    (re.compile(r"^\d{10}$"), "dhl"),
    (re.compile(r"^[CD]\d{13,14}$"), "ontrac"),
]


def _match_carrier_name(carrier: Optional[str]) -> Optional[str]:
    name = " ".join((carrier or "").strip().lower().split())
    if not name:
        return None
    for needles, code in CARRIER_NAME_TABLE:
        if any(needle in name for needle in needles):
            return code
    return None


def detect_carrier_from_tracking(tracking_number: Optional[str]) -> Optional[str]:
    """Guess the courier code from the tracking number shape alone."""
    tracking = (tracking_number or "").strip().upper()
    if not tracking:
        return None
    for pattern, code in TRACKING_PATTERNS:
        if pattern.match(tracking):
            return code
    return None


def resolve_carrier_code(carrier: Optional[str] = None, tracking_number: Optional[str] = None) -> Optional[str]:
    """
    Canonical courier code, or None when the shipment cannot be tracked.

    Name table first; on a miss, tracking-number shape. Internal carriers
    resolve to None without consulting the tracking number.
    """
    code = _match_carrier_name(carrier)
    if code == UNSUPPORTED:
        return None
    if code:
        return code
    return detect_carrier_from_tracking(tracking_number)
