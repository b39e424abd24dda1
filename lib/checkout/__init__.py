"""Checkout automation engine.

Drives a stealth browser from a hotel search to the target site's checkout
page, falling back to a deterministic search URL when the site defeats it.

Shared library: models, candidate table and engine components only.
The stage state machine and public entry points live in services/booking/.
"""

from lib.checkout.config import CheckoutConfig
from lib.checkout.errors import CheckoutError, ErrorKind
from lib.checkout.fallback import build_fallback_url, detect_booking_site
from lib.checkout.models import (
    AutomationOutcome,
    AutomationSession,
    BookingRequest,
    GuestInfo,
    ProgressEvent,
    Stage,
)
from lib.checkout.session import SessionController, SessionHandoff

__all__ = [
    "AutomationOutcome",
    "AutomationSession",
    "BookingRequest",
    "CheckoutConfig",
    "CheckoutError",
    "ErrorKind",
    "GuestInfo",
    "ProgressEvent",
    "SessionController",
    "SessionHandoff",
    "Stage",
    "build_fallback_url",
    "detect_booking_site",
]
