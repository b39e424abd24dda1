"""Data models for checkout automation."""

import time
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, model_validator
from pydantic.alias_generators import to_camel

from lib.checkout.errors import ErrorKind


# Accept both snake_case and the camelCase keys the chat layer sends.
_MODEL_CONFIG = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)


def stay_dates(
    check_in: Optional[date] = None,
    check_out: Optional[date] = None,
    today: Optional[date] = None,
) -> tuple:
    """Fill in missing stay dates.

    Both missing: tomorrow -> tomorrow + 1. One missing: the other is derived
    so the stay is one night. A derived check-in that is not in the future
    means the pair is unusable, so both are re-synthesized.
    """
    today = today or date.today()
    if check_in and check_out:
        return check_in, check_out
    if check_in:
        return check_in, check_in + timedelta(days=1)
    if check_out and check_out - timedelta(days=1) > today:
        return check_out - timedelta(days=1), check_out
    tomorrow = today + timedelta(days=1)
    return tomorrow, tomorrow + timedelta(days=1)


def _coerce_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


class GuestInfo(BaseModel):
    """Contact details typed into the target site's form."""
    model_config = _MODEL_CONFIG

    first_name: str
    last_name: str
    email: str
    phone: str = ""
    special_requests: Optional[str] = None


class BookingRequest(BaseModel):
    """Everything one automation run needs. Immutable for the run's lifetime."""
    model_config = _MODEL_CONFIG

    target_name: str
    location: str = ""
    check_in_date: date
    check_out_date: date
    guest: GuestInfo
    preferences: Dict[str, Any] = {}

    @model_validator(mode="before")
    @classmethod
    def _synthesize_dates(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        in_key = "checkInDate" if "checkInDate" in data else "check_in_date"
        out_key = "checkOutDate" if "checkOutDate" in data else "check_out_date"
        check_in, check_out = stay_dates(
            _coerce_date(data.get(in_key)),
            _coerce_date(data.get(out_key)),
        )
        data[in_key] = check_in
        data[out_key] = check_out
        return data

    @model_validator(mode="after")
    def _check_stay(self) -> "BookingRequest":
        if self.check_out_date <= self.check_in_date:
            raise ValueError("check_out_date must be after check_in_date")
        if not self.target_name.strip():
            raise ValueError("target_name must not be blank")
        return self

    @property
    def search_term(self) -> str:
        """Target name and location, whitespace-normalized."""
        return " ".join(f"{self.target_name} {self.location}".split())


class Stage(str, Enum):
    """Stages of the checkout flow, in execution order."""

    INIT = "Init"
    SEARCHING = "Searching"
    LOCATING_TARGET = "LocatingTarget"
    SELECTING_TARGET = "SelectingTarget"
    SELECTING_SUB_OPTION = "SelectingSubOption"
    FILLING_FORM = "FillingForm"
    REACHING_CHECKOUT = "ReachingCheckout"
    SUCCEEDED = "Succeeded"
    DEGRADED = "Degraded"
    FAILED = "Failed"

    @property
    def position(self) -> int:
        return STAGE_ORDER.index(self)

    @property
    def is_terminal(self) -> bool:
        return self in (Stage.SUCCEEDED, Stage.DEGRADED, Stage.FAILED)


STAGE_ORDER = list(Stage)


class ProgressEvent(BaseModel):
    """Emitted once per stage transition for UI display."""
    model_config = _MODEL_CONFIG

    stage_index: int
    stage: Stage
    message: str


class AutomationOutcome(BaseModel):
    """Result of one run. Always carries a URL the caller can open."""
    model_config = _MODEL_CONFIG

    success: bool
    stage: Stage
    degraded: bool = False
    checkout_url: Optional[str] = None
    fallback_url: Optional[str] = None
    automation_log: List[str] = []
    error_kind: Optional[ErrorKind] = None
    booking_reference: str = ""
    booking_site: str = ""
    browser_open: bool = False
    message: str = ""

    @property
    def url(self) -> Optional[str]:
        """Best URL to present: the live checkout page, else the fallback."""
        return self.checkout_url or self.fallback_url


@dataclass
class AutomationSession:
    """Per-run automation state. Owned by the session controller."""

    request: BookingRequest
    deadline: float
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    playwright: Any = None
    browser: Any = None
    context: Any = None
    page: Any = None
    stage: Stage = Stage.INIT
    log: List[str] = field(default_factory=list)
    last_known_url: Optional[str] = None
    expired: bool = False
    closed: bool = False
    handed_off: bool = False

    def record(self, message: str, level: str = "INFO") -> None:
        """Append an automation-log entry and emit it."""
        entry = f"[{self.stage.value}] {message}"
        self.log.append(entry)
        logger.bind(run_id=self.run_id).log(level, f"[checkout {self.run_id}] {entry}")

    def remaining(self) -> float:
        """Seconds left before the deadline."""
        return self.deadline - time.monotonic()
