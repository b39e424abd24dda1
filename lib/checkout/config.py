"""Configuration for checkout automation runs."""

import os
from typing import Dict, List, Optional, Tuple

from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/131.0.0.0 Safari/537.36"
)

DEFAULT_LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-popup-blocking",
    "--disable-dev-shm-usage",
    "--no-first-run",
    "--no-default-browser-check",
    "--no-sandbox",
]

DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate, br",
}


class CheckoutConfig(BaseModel):
    """Timing, retry and fingerprint settings for one automation run."""
    model_config = ConfigDict(frozen=True)

    site_host: str = "www.booking.com"
    headless: bool = False
    slow_mo_ms: int = 0

    deadline_seconds: float = 30.0
    navigation_timeout_ms: int = 15000
    action_timeout_ms: int = 10000
    popup_timeout_ms: int = 2000
    settle_delay_ms: int = 1500

    max_navigation_attempts: int = 2
    max_click_candidates: int = 3
    max_scan_elements: int = 20

    # Humanization: pause = base ± jitter, typing delay drawn per character
    base_delay_ms: int = 250
    jitter_ms: int = 100
    typing_delay_ms: Tuple[int, int] = (50, 150)

    viewport: Dict[str, int] = Field(default_factory=lambda: {"width": 1366, "height": 768})
    user_agent: str = DEFAULT_USER_AGENT
    locale: str = "en-US"
    timezone_id: str = "America/New_York"
    extra_http_headers: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_HEADERS))
    launch_args: List[str] = Field(default_factory=lambda: list(DEFAULT_LAUNCH_ARGS))

    keep_open_on_degraded: bool = False
    screenshot_dir: Optional[str] = None
    debug: bool = False

    @classmethod
    def from_env(cls, **overrides) -> "CheckoutConfig":
        """Build a config from CHECKOUT_* environment variables (and .env)."""
        load_dotenv()

        values = {}
        headless = os.getenv("CHECKOUT_HEADLESS")
        if headless is not None:
            values["headless"] = _parse_bool(headless)
        site_host = os.getenv("CHECKOUT_SITE_HOST")
        if site_host:
            values["site_host"] = site_host
        deadline = _parse_seconds(os.getenv("CHECKOUT_DEADLINE_SECONDS"), "CHECKOUT_DEADLINE_SECONDS")
        if deadline is not None:
            values["deadline_seconds"] = deadline
        screenshot_dir = os.getenv("CHECKOUT_SCREENSHOT_DIR")
        if screenshot_dir:
            values["screenshot_dir"] = screenshot_dir
        debug = os.getenv("CHECKOUT_DEBUG")
        if debug is not None:
            values["debug"] = _parse_bool(debug)

        values.update(overrides)
        return cls(**values)


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_seconds(value: Optional[str], name: str) -> Optional[float]:
    """Positive number of seconds, or None (keep the default) if unset or malformed."""
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        logger.warning(f"Ignoring {name}={value!r}: not a number, using default")
        return None
    if not seconds > 0 or seconds == float("inf"):
        logger.warning(f"Ignoring {name}={value!r}: must be a positive finite number, using default")
        return None
    return seconds
