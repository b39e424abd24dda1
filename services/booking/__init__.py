"""Checkout automation service - public interface."""

from services.booking.navigator import CheckoutNavigator
from services.booking.service import (
    automate_checkout,
    create_fallback_link,
    detect_booking_site,
    request_from_payload,
)

__all__ = [
    "automate_checkout",
    "create_fallback_link",
    "detect_booking_site",
    "request_from_payload",
    "CheckoutNavigator",
]
