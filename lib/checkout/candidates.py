"""Ranked candidate table for the target site.

Each Target lists selectors most site-specific first, generic tag-based last.
The resolver walks them in order; stages never hard-code selectors.
"""

from dataclasses import dataclass, replace
from typing import Optional, Tuple


@dataclass(frozen=True)
class Target:
    """A logical element the navigator wants, plus how to recognize it."""

    name: str
    selectors: Tuple[str, ...]
    text: Optional[str] = None          # desired visible text (token matched)
    allow: Tuple[str, ...] = ()         # element text must contain one of these
    deny: Tuple[str, ...] = ()          # ...and none of these (text or href)
    clickable: bool = True              # walk up to the nearest link/button

    def with_text(self, text: str) -> "Target":
        return replace(self, text=text)


@dataclass(frozen=True)
class FormField:
    """One contact-form input and where its value comes from on GuestInfo."""

    name: str
    attribute: str
    selectors: Tuple[str, ...]
    required: bool = True


# =============================================================================
# INTERSTITIALS
# =============================================================================

POPUP_DISMISS_SELECTORS = (
    "#onetrust-accept-btn-handler",
    "button[data-testid='header-banner-button']",
    "[data-testid='cookie-banner-accept-all']",
    "button[aria-label='Dismiss sign-in info.']",
    "[data-testid='header-sign-in-dismiss']",
    "button:has-text('Accept all')",
    "button:has-text('Accept')",
    "button:has-text('I agree')",
    ".cookie-banner button",
    ".consent-banner button",
    "button[data-modal-header-async-type='close']",
    ".bui-modal__close",
    "[role='dialog'] button[aria-label='Close']",
)


# =============================================================================
# SEARCH RESULTS
# =============================================================================

RESULT_TITLE = Target(
    name="result title",
    selectors=(
        "[data-testid='property-card'] [data-testid='title']",
        "[data-testid='title']",
        "[data-testid='property-name']",
        ".sr_property_block h3",
        ".property-card h3",
        "h3, h2",
    ),
)

FIRST_RESULT = Target(
    name="first result",
    selectors=(
        "[data-testid='title-link']",
        "[data-testid='property-card'] a",
        ".sr_property_block a",
        ".property-card a",
        "h3 a",
    ),
)


# =============================================================================
# PROPERTY PAGE
# =============================================================================

ROOM_QUANTITY_SELECTORS = (
    "select.hprt-nos-select",
    "select[data-testid*='select-room']",
    ".hprt-table select",
)

SUB_OPTION = Target(
    name="sub-option",
    selectors=(
        "button[data-testid*='reserve']",
        "button[data-testid*='select-room']",
        ".hprt-reservation-cta button",
        ".hprt-table button",
        "button",
        "a",
        "input[type='submit']",
    ),
    allow=("reserve", "book", "select", "continue", "confirm"),
    deny=("search", "sign in", "register", "filter", "menu", "sort", "business.booking.com"),
)


# =============================================================================
# CONTACT FORM
# =============================================================================

# Path fragments of guest-form pages (host excluded, booking.com contains "book")
GUEST_FORM_PATH_MARKERS = ("book", "reservation", "guest")

CONTACT_FORM_MARKERS = (
    "input[name='firstname']",
    "input[name='lastname']",
    "input[name='guest_firstname']",
    "input[type='email']",
)

FORM_FIELDS = (
    FormField(
        name="first name",
        attribute="first_name",
        selectors=(
            "input[name='firstname']",
            "input[name='guest_firstname']",
            "input[data-testid*='first-name']",
            "input[autocomplete='given-name']",
            "input[placeholder*='First name' i]",
            "#firstname",
        ),
    ),
    FormField(
        name="last name",
        attribute="last_name",
        selectors=(
            "input[name='lastname']",
            "input[name='guest_lastname']",
            "input[data-testid*='last-name']",
            "input[autocomplete='family-name']",
            "input[placeholder*='Last name' i]",
            "#lastname",
        ),
    ),
    FormField(
        name="email",
        attribute="email",
        selectors=(
            "input[name='email']",
            "input[name='guest_email']",
            "input[type='email']",
            "input[data-testid*='email']",
            "input[autocomplete='email']",
            "#email",
        ),
    ),
    FormField(
        name="phone",
        attribute="phone",
        selectors=(
            "input[name='phone']",
            "input[name='guest_phone']",
            "input[type='tel']",
            "input[data-testid*='phone']",
            "input[autocomplete='tel']",
            "#phone",
        ),
        required=False,
    ),
    FormField(
        name="special requests",
        attribute="special_requests",
        selectors=(
            "textarea[name='remarks']",
            "textarea[name='special_requests']",
            "textarea[data-testid*='request']",
            "textarea[placeholder*='request' i]",
            "textarea",
        ),
        required=False,
    ),
)


# =============================================================================
# CHECKOUT
# =============================================================================

CHECKOUT_BUTTON = Target(
    name="checkout control",
    selectors=(
        "button[data-testid*='submit']",
        "button[data-testid*='continue']",
        "button[data-testid*='complete']",
        "button[data-testid*='book']",
        "form button[type='submit']",
        ".bui-button--primary",
        "button",
        "input[type='submit']",
    ),
    allow=("continue", "next", "proceed", "book", "confirm", "complete", "final details", "submit"),
    deny=("search", "sign in", "register", "filter", "menu", "sort", "back", "edit"),
)

PAYMENT_MARKERS = (
    "input[autocomplete='cc-number']",
    "input[name*='cc_number']",
    "iframe[src*='payment']",
    "[data-testid*='payment']",
    "#cc_number",
)

# Path fragments of payment pages (host excluded). book.html is the guest form itself.
CHECKOUT_PATH_MARKERS = ("checkout", "payment")
