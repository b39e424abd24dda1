"""Business logic for automated hotel checkout.

automate_checkout() drives a real browser to the target site's checkout page.
create_fallback_link() builds the search URL the same run would fall back to,
without launching anything.
"""

from typing import Any, Dict, Optional

from loguru import logger

from lib.checkout.config import CheckoutConfig
from lib.checkout.fallback import build_fallback_url, detect_booking_site
from lib.checkout.models import AutomationOutcome, BookingRequest, GuestInfo
from services.booking.navigator import CheckoutNavigator, HandoffCallback, ProgressCallback

__all__ = [
    "automate_checkout",
    "create_fallback_link",
    "detect_booking_site",
    "request_from_payload",
]


async def automate_checkout(
    request: BookingRequest,
    config: Optional[CheckoutConfig] = None,
    on_progress: Optional[ProgressCallback] = None,
    on_handoff: Optional[HandoffCallback] = None,
) -> AutomationOutcome:
    """Run the checkout navigator for one request.

    Never raises for automation problems: the outcome always carries a URL,
    either the live checkout page or the deterministic fallback. success is
    False only when the browser could not be launched.

    Without a config, settings come from CHECKOUT_* environment variables;
    malformed values are logged and replaced by the defaults.

    on_progress receives a ProgressEvent per stage transition (sync or async,
    failures ignored). on_handoff receives the live browser when a run leaves
    it open for the user.
    """
    config = config or CheckoutConfig.from_env()
    logger.info(
        f"Checkout automation: '{request.search_term}' "
        f"{request.check_in_date} -> {request.check_out_date}"
    )

    outcome = await CheckoutNavigator(config).run(request, on_progress=on_progress, on_handoff=on_handoff)

    logger.info(
        f"Checkout automation finished: {outcome.stage.value} "
        f"ref={outcome.booking_reference} site={outcome.booking_site} url={outcome.url}"
    )
    return outcome


def create_fallback_link(request: BookingRequest, config: Optional[CheckoutConfig] = None) -> str:
    """Search-results URL for a request. Pure function, no browser."""
    site_host = config.site_host if config else CheckoutConfig().site_host
    return build_fallback_url(request, site_host)


def request_from_payload(
    hotel: Dict[str, Any],
    guest: Dict[str, Any],
    offer: Optional[Dict[str, Any]] = None,
    preferences: Optional[Dict[str, Any]] = None,
) -> BookingRequest:
    """Build a BookingRequest from the loose dicts the chat layer sends.

    hotel: {"name" | "title", "location" (str or {"address"}), "address", "subtitle"}
    guest: {"firstName", "lastName", "email", "phone", "specialRequests"} (snake_case also accepted)
    offer: {"checkInDate", "checkOutDate"} - missing dates are synthesized.

    Raises pydantic.ValidationError if the result is not a valid request.
    """
    offer = offer or {}
    return BookingRequest(
        target_name=(hotel.get("name") or hotel.get("title") or "").strip(),
        location=_hotel_location(hotel),
        check_in_date=offer.get("checkInDate") or offer.get("check_in_date"),
        check_out_date=offer.get("checkOutDate") or offer.get("check_out_date"),
        guest=GuestInfo.model_validate(guest),
        preferences=preferences or {},
    )


def _hotel_location(hotel: Dict[str, Any]) -> str:
    """First usable location string: location, location.address, address, subtitle."""
    location = hotel.get("location")
    if isinstance(location, str) and location.strip():
        return location.strip()
    if isinstance(location, dict) and location.get("address"):
        return str(location["address"]).strip()
    for key in ("address", "subtitle"):
        if hotel.get(key):
            return str(hotel[key]).strip()
    return ""
