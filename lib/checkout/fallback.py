"""Fallback URL builder.

Turns a BookingRequest into a search-results URL on the target site:
  https://www.booking.com/searchresults.html?ss=Seaside%20Inn%20Miami%2C%20FL&checkin=2025-06-10&checkout=2025-06-12&group_adults=1&group_children=0&no_rooms=1&selected_currency=USD

Pure function: no browser, no network. Used when automation degrades and as a
standalone link builder. detect_booking_site() names the site a URL is on.
"""

from typing import Optional
from urllib.parse import quote, urlparse

from lib.checkout.models import BookingRequest

DEFAULT_SITE_HOST = "www.booking.com"

# Occupancy and currency are fixed; the human adjusts them on the site.
FIXED_PARAMS = [
    ("group_adults", "1"),
    ("group_children", "0"),
    ("no_rooms", "1"),
    ("selected_currency", "USD"),
]


def build_fallback_url(request: BookingRequest, site_host: str = DEFAULT_SITE_HOST) -> str:
    """Build the deterministic search URL for a request. Never raises."""
    host = (site_host or DEFAULT_SITE_HOST).strip().strip("/")
    if "://" in host:
        host = host.split("://", 1)[1]

    # quote() with no safe chars matches encodeURIComponent: space -> %20, comma -> %2C
    params = [
        ("ss", quote(request.search_term, safe="")),
        ("checkin", request.check_in_date.isoformat()),
        ("checkout", request.check_out_date.isoformat()),
    ]
    params.extend(FIXED_PARAMS)

    query = "&".join(f"{key}={value}" for key, value in params)
    return f"https://{host}/searchresults.html?{query}"


# Display names for the sites a run can end up on, checked in order
_SITE_NAMES = [
    ("expedia.com", "Expedia"),
    ("hotels.com", "Hotels.com"),
    ("booking.com", "Booking.com"),
]


def detect_booking_site(url: Optional[str]) -> str:
    """Human-readable name of the site a URL points at."""
    if not url:
        return "unknown"
    host = urlparse(url).netloc.lower()
    for domain, name in _SITE_NAMES:
        if host == domain or host.endswith("." + domain):
            return name
    return "booking-site"
