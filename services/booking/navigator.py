"""Checkout navigator - the stage state machine.

Walks one BookingRequest through the target site:

    Init -> Searching -> LocatingTarget -> SelectingTarget
         -> SelectingSubOption -> FillingForm -> ReachingCheckout -> Succeeded

Any stage failure ends the run in Degraded (success with the fallback URL).
Only a browser that cannot start ends in Failed. run() never raises.
"""

import asyncio
import inspect
import time
from typing import Any, Callable, List, Optional, Set
from urllib.parse import urlparse

from loguru import logger
from playwright.async_api import ElementHandle
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PWTimeoutError

from lib.checkout.candidates import (
    CHECKOUT_BUTTON,
    CHECKOUT_PATH_MARKERS,
    CONTACT_FORM_MARKERS,
    FIRST_RESULT,
    FORM_FIELDS,
    GUEST_FORM_PATH_MARKERS,
    PAYMENT_MARKERS,
    POPUP_DISMISS_SELECTORS,
    RESULT_TITLE,
    ROOM_QUANTITY_SELECTORS,
    SUB_OPTION,
    FormField,
)
from lib.checkout.config import CheckoutConfig
from lib.checkout.errors import (
    CheckoutError,
    DeadlineExceeded,
    ElementNotFound,
    ErrorKind,
    NavigationTimeout,
    VerificationFailure,
)
from lib.checkout.fallback import build_fallback_url, detect_booking_site
from lib.checkout.humanize import Humanizer
from lib.checkout.models import (
    AutomationOutcome,
    AutomationSession,
    BookingRequest,
    ProgressEvent,
    Stage,
)
from lib.checkout.resolver import ElementResolver
from lib.checkout.session import SessionController, SessionHandoff

ProgressCallback = Callable[[ProgressEvent], Any]
HandoffCallback = Callable[[SessionHandoff], Any]

RESULTS_SCROLL_PX = 600

# Error kind for unexpected failures, by the stage they happened in
_STAGE_ERROR_KIND = {
    Stage.INIT: ErrorKind.LAUNCH_FAILURE,
    Stage.SEARCHING: ErrorKind.NAVIGATION_TIMEOUT,
    Stage.LOCATING_TARGET: ErrorKind.ELEMENT_NOT_FOUND,
    Stage.SELECTING_TARGET: ErrorKind.VERIFICATION_FAILURE,
    Stage.SELECTING_SUB_OPTION: ErrorKind.ELEMENT_NOT_FOUND,
    Stage.FILLING_FORM: ErrorKind.VERIFICATION_FAILURE,
    Stage.REACHING_CHECKOUT: ErrorKind.VERIFICATION_FAILURE,
}


class CheckoutNavigator:
    """Runs the checkout state machine. One instance can serve many concurrent runs."""

    def __init__(
        self,
        config: CheckoutConfig,
        resolver: Optional[ElementResolver] = None,
        humanizer: Optional[Humanizer] = None,
        controller: Optional[SessionController] = None,
    ):
        self.config = config
        self.resolver = resolver or ElementResolver(config)
        self.humanizer = humanizer or Humanizer(config)
        self.controller = controller or SessionController(config)
        self._callback_tasks: Set[asyncio.Task] = set()

    # =========================================================================
    # RUN
    # =========================================================================

    async def run(
        self,
        request: BookingRequest,
        on_progress: Optional[ProgressCallback] = None,
        on_handoff: Optional[HandoffCallback] = None,
    ) -> AutomationOutcome:
        """Drive one request to checkout. Always returns an outcome with a URL."""
        fallback_url = build_fallback_url(request, self.config.site_host)

        async with self.controller.open_session(request) as session:
            session.record(f"starting checkout for '{request.search_term}'")
            self._emit(on_progress, session, "Starting browser")
            try:
                await self.controller.launch(session)
                self._check_deadline(session)

                await self._advance(session, Stage.SEARCHING, "Searching for the hotel", on_progress)
                await self._search(session)

                await self._advance(session, Stage.LOCATING_TARGET, "Finding the hotel in results", on_progress)
                results = await self._locate_target(session)

                await self._advance(session, Stage.SELECTING_TARGET, "Opening the hotel page", on_progress)
                await self._select_target(session, results)

                await self._advance(session, Stage.SELECTING_SUB_OPTION, "Selecting a room", on_progress)
                await self._select_sub_option(session)

                await self._advance(session, Stage.FILLING_FORM, "Filling in guest details", on_progress)
                await self._fill_form(session)

                await self._advance(session, Stage.REACHING_CHECKOUT, "Continuing to checkout", on_progress)
                await self._reach_checkout(session)
                self._check_deadline(session)
            except Exception as e:
                outcome = await self._recover(session, e, fallback_url, on_handoff)
            else:
                outcome = await self._succeed(session, fallback_url, on_handoff)

            self._emit(on_progress, session, outcome.message)
            return outcome

    async def _advance(
        self,
        session: AutomationSession,
        stage: Stage,
        message: str,
        on_progress: Optional[ProgressCallback],
    ) -> None:
        """Stage transition: deadline check, log entry, progress event."""
        self._check_deadline(session)
        session.stage = stage
        session.record(message)
        self._emit(on_progress, session, message)

    def _check_deadline(self, session: AutomationSession) -> None:
        if session.expired or session.remaining() <= 0:
            raise DeadlineExceeded(f"run exceeded {self.config.deadline_seconds}s")

    def _raise_if_expired(self, session: AutomationSession, error: Exception) -> None:
        """Browser errors after the watchdog fired are the deadline, not the page."""
        if session.expired:
            raise DeadlineExceeded(f"run exceeded {self.config.deadline_seconds}s") from error

    # =========================================================================
    # STAGES
    # =========================================================================

    async def _search(self, session: AutomationSession) -> None:
        """Load the search results page, retrying transient navigation failures."""
        url = build_fallback_url(session.request, self.config.site_host)
        attempts = self.config.max_navigation_attempts

        for attempt in range(1, attempts + 1):
            try:
                await session.page.goto(
                    url,
                    wait_until="domcontentloaded",
                    timeout=self.config.navigation_timeout_ms,
                )
                session.record(f"search results loaded: {session.page.url}")
                return
            except PlaywrightError as e:
                self._raise_if_expired(session, e)
                session.record(f"navigation attempt {attempt}/{attempts} failed: {e}", level="WARNING")

        raise NavigationTimeout(f"search page did not load after {attempts} attempts")

    async def _locate_target(self, session: AutomationSession) -> List[ElementHandle]:
        """Ranked result handles for the hotel, or the first results if none match."""
        page = session.page
        await self._dismiss_popups(session)
        await self.humanizer.scroll(page, RESULTS_SCROLL_PX)

        name = session.request.target_name
        limit = self.config.max_click_candidates
        results = await self.resolver.candidates(page, RESULT_TITLE.with_text(name), limit=limit)
        if results:
            session.record(f"matched {len(results)} result(s) for '{name}'")
            return results

        results = await self.resolver.candidates(page, FIRST_RESULT, limit=limit)
        if not results:
            raise ElementNotFound("no search results on page")
        session.record(
            f"fallback-to-first-result: nothing matched '{name}', using first visible result",
            level="WARNING",
        )
        return results

    async def _select_target(self, session: AutomationSession, results: List[ElementHandle]) -> None:
        """Click results in rank order until one opens a new page."""
        for i, handle in enumerate(results, 1):
            session.record(f"clicking result {i}/{len(results)}: '{await self._label(handle)}'")
            try:
                if await self._click_and_follow(session, handle):
                    session.last_known_url = session.page.url
                    session.record(f"opened hotel page: {session.page.url}")
                    return
            except PlaywrightError as e:
                self._raise_if_expired(session, e)
                session.record(f"click failed: {e}", level="WARNING")
                continue
            session.record("URL unchanged after click, trying next result", level="WARNING")

        raise VerificationFailure(f"none of {len(results)} result clicks changed the page")

    async def _select_sub_option(self, session: AutomationSession) -> None:
        """Pick a room and press reserve, unless the guest form is already showing."""
        if await self.resolver.exists(session.page, CONTACT_FORM_MARKERS):
            session.record("guest form already present, skipping room selection")
            return

        await self._preselect_quantity(session)
        options = await self.resolver.candidates(
            session.page, SUB_OPTION, limit=self.config.max_click_candidates
        )
        if not options:
            raise ElementNotFound("no reserve/select control on hotel page")

        hotel_url = session.page.url
        for i, handle in enumerate(options, 1):
            session.record(f"clicking option {i}/{len(options)}: '{await self._label(handle)}'")
            try:
                advanced = await self._click_and_follow(session, handle)
                if await self._at_guest_form(session):
                    session.last_known_url = session.page.url
                    session.record(f"reached guest form: {session.page.url}")
                    return
                if advanced:
                    session.record(
                        f"option led to {session.page.url}, not the guest form; going back",
                        level="WARNING",
                    )
                    await self._return_to(session, hotel_url)
                    continue
            except PlaywrightError as e:
                self._raise_if_expired(session, e)
                session.record(f"click failed: {e}", level="WARNING")
                continue
            session.record("option click did not advance, trying next", level="WARNING")

        raise VerificationFailure("room selection did not reach the guest form")

    async def _fill_form(self, session: AutomationSession) -> None:
        """Fill every contact field. Required fields must verify."""
        guest = session.request.guest
        for form_field in FORM_FIELDS:
            value = getattr(guest, form_field.attribute) or ""
            if not value:
                session.record(f"no {form_field.name} provided, skipping")
                continue

            handle = await self.resolver.first_visible(session.page, form_field.selectors, enabled=True)
            if handle is None:
                if form_field.required:
                    raise ElementNotFound(f"{form_field.name} input not found")
                session.record(f"{form_field.name} input not found, skipping")
                continue

            if await self._set_value(session, form_field, handle, value):
                session.record(f"filled {form_field.name}")
            elif form_field.required:
                raise VerificationFailure(f"{form_field.name} did not accept input")
            else:
                session.record(f"{form_field.name} did not accept input, skipping", level="WARNING")

    async def _reach_checkout(self, session: AutomationSession) -> None:
        """Press continue until the page moves on or shows payment inputs."""
        buttons = await self.resolver.candidates(
            session.page, CHECKOUT_BUTTON, limit=self.config.max_click_candidates
        )
        if not buttons:
            raise ElementNotFound("no continue/submit control on guest form")

        for i, handle in enumerate(buttons, 1):
            session.record(f"clicking checkout control {i}/{len(buttons)}: '{await self._label(handle)}'")
            try:
                advanced = await self._click_and_follow(session, handle)
                if advanced or await self._at_payment_stage(session):
                    session.last_known_url = session.page.url
                    session.record(f"reached checkout: {session.page.url}")
                    return
            except PlaywrightError as e:
                self._raise_if_expired(session, e)
                session.record(f"click failed: {e}", level="WARNING")
                continue
            session.record("checkout control did not advance, trying next", level="WARNING")

        raise VerificationFailure("checkout page not reached")

    # =========================================================================
    # PAGE HELPERS
    # =========================================================================

    async def _dismiss_popups(self, session: AutomationSession) -> None:
        """Close cookie banners and sign-in nags. Never fatal."""
        page = session.page
        dismissed = 0
        for selector in POPUP_DISMISS_SELECTORS:
            try:
                handle = await page.query_selector(selector)
                if handle is None or not await handle.is_visible():
                    continue
                await handle.click(timeout=self.config.popup_timeout_ms)
                await self.humanizer.pause()
                dismissed += 1
            except PlaywrightError as e:
                self._raise_if_expired(session, e)
                continue

        if dismissed:
            session.record(f"dismissed {dismissed} popup(s)")

    async def _preselect_quantity(self, session: AutomationSession) -> None:
        """Set the first room-quantity dropdown to 1 so reserve is enabled."""
        select = await self.resolver.first_visible(session.page, ROOM_QUANTITY_SELECTORS)
        if select is None:
            return
        try:
            await select.select_option(value="1", timeout=self.config.action_timeout_ms)
            session.record("room quantity set to 1")
            await self.humanizer.pause()
        except PlaywrightError as e:
            self._raise_if_expired(session, e)
            session.record(f"could not set room quantity: {e}", level="WARNING")

    async def _click_and_follow(self, session: AutomationSession, handle: ElementHandle) -> bool:
        """Click and report whether the page moved on. Follows a new tab if one opens."""
        before = session.page.url
        try:
            async with session.context.expect_page(timeout=self.config.popup_timeout_ms) as page_info:
                await self.humanizer.click(session.page, handle)
            new_page = await page_info.value
        except PWTimeoutError:
            new_page = None

        if new_page is not None:
            await self._settle(new_page)
            session.page = new_page
            session.record(f"followed new tab: {new_page.url}")
            return True

        await self.humanizer.pause(self.config.settle_delay_ms)
        if session.page.url != before:
            await self._settle(session.page)
            return True
        return False

    async def _settle(self, page) -> None:
        try:
            await page.wait_for_load_state("domcontentloaded", timeout=self.config.navigation_timeout_ms)
        except PWTimeoutError:
            logger.debug(f"Page still loading: {page.url}")

    async def _set_value(
        self,
        session: AutomationSession,
        form_field: FormField,
        handle: ElementHandle,
        value: str,
    ) -> bool:
        """Assign the value, verify by reading it back, retry once with keystrokes."""
        try:
            await self.humanizer.fill(handle, value)
            if _same_value(await handle.input_value(), value):
                return True
            session.record(f"{form_field.name} rejected direct fill, typing instead")
        except PlaywrightError as e:
            self._raise_if_expired(session, e)
            session.record(f"{form_field.name} fill failed ({e}), typing instead", level="WARNING")

        try:
            await self.humanizer.type(handle, value)
            return _same_value(await handle.input_value(), value)
        except PlaywrightError as e:
            self._raise_if_expired(session, e)
            session.record(f"{form_field.name} typing failed: {e}", level="WARNING")
            return False

    async def _at_guest_form(self, session: AutomationSession) -> bool:
        """Contact inputs on the page, or a booking path. The host alone never counts."""
        path = urlparse(session.page.url).path.lower()
        if any(marker in path for marker in GUEST_FORM_PATH_MARKERS):
            return True
        return await self.resolver.exists(session.page, CONTACT_FORM_MARKERS)

    async def _return_to(self, session: AutomationSession, url: str) -> None:
        await session.page.goto(url, wait_until="domcontentloaded", timeout=self.config.navigation_timeout_ms)
        await self.humanizer.pause()

    async def _at_payment_stage(self, session: AutomationSession) -> bool:
        path = urlparse(session.page.url).path.lower()
        if any(marker in path for marker in CHECKOUT_PATH_MARKERS):
            return True
        return await self.resolver.exists(session.page, PAYMENT_MARKERS)

    @staticmethod
    async def _label(handle: ElementHandle) -> str:
        try:
            return " ".join((await handle.text_content() or "").split())[:60]
        except PlaywrightError:
            return ""

    # =========================================================================
    # OUTCOMES
    # =========================================================================

    async def _succeed(
        self,
        session: AutomationSession,
        fallback_url: str,
        on_handoff: Optional[HandoffCallback],
    ) -> AutomationOutcome:
        checkout_url = session.page.url
        session.stage = Stage.SUCCEEDED
        session.record(f"checkout reached: {checkout_url}")
        browser_open = await self._release(session, on_handoff)

        return AutomationOutcome(
            success=True,
            stage=Stage.SUCCEEDED,
            checkout_url=checkout_url,
            fallback_url=fallback_url,
            automation_log=list(session.log),
            booking_reference=_booking_reference("AGENT"),
            booking_site=detect_booking_site(checkout_url),
            browser_open=browser_open,
            message="Checkout page reached. Review the details and complete payment.",
        )

    async def _recover(
        self,
        session: AutomationSession,
        error: Exception,
        fallback_url: str,
        on_handoff: Optional[HandoffCallback],
    ) -> AutomationOutcome:
        """Map any stage failure to a terminal outcome. Never raises."""
        failed_stage = session.stage
        kind = self._classify(session, error)
        if kind is not ErrorKind.DEADLINE_EXCEEDED and not session.closed:
            await self.controller.capture(session, failed_stage.value.lower())

        if kind is ErrorKind.LAUNCH_FAILURE:
            session.stage = Stage.FAILED
            session.record(f"{kind.value}: {error}", level="ERROR")
            return AutomationOutcome(
                success=False,
                stage=Stage.FAILED,
                fallback_url=fallback_url,
                automation_log=list(session.log),
                error_kind=kind,
                booking_reference=_booking_reference("FALLBACK"),
                booking_site=detect_booking_site(fallback_url),
                message="The browser could not be started. Use the search link to book.",
            )

        session.stage = Stage.DEGRADED
        session.record(f"{kind.value} during {failed_stage.value}: {error}", level="WARNING")

        browser_open = False
        if self.config.keep_open_on_degraded and not session.expired and not session.closed:
            browser_open = await self._release(session, on_handoff)

        checkout_url = session.last_known_url
        return AutomationOutcome(
            success=True,
            stage=Stage.DEGRADED,
            degraded=True,
            checkout_url=checkout_url,
            fallback_url=fallback_url,
            automation_log=list(session.log),
            error_kind=kind,
            booking_reference=_booking_reference("AGENT" if checkout_url else "FALLBACK"),
            booking_site=detect_booking_site(checkout_url or fallback_url),
            browser_open=browser_open,
            message=(
                f"Automation stopped while {_describe(failed_stage)}. "
                "Use the link to finish booking on the site."
            ),
        )

    @staticmethod
    def _classify(session: AutomationSession, error: Exception) -> ErrorKind:
        if session.expired or isinstance(error, DeadlineExceeded):
            return ErrorKind.DEADLINE_EXCEEDED
        if isinstance(error, CheckoutError):
            return error.kind
        if isinstance(error, PWTimeoutError) and session.stage is Stage.SEARCHING:
            return ErrorKind.NAVIGATION_TIMEOUT
        return _STAGE_ERROR_KIND.get(session.stage, ErrorKind.VERIFICATION_FAILURE)

    async def _release(self, session: AutomationSession, on_handoff: Optional[HandoffCallback]) -> bool:
        """Hand the live page to the user. Returns True if the browser stays open."""
        if on_handoff is None and self.config.headless:
            session.record("headless run with no hand-off receiver, closing browser")
            return False

        handoff = self.controller.hand_off(session)
        if on_handoff is not None:
            try:
                result = on_handoff(handoff)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                session.record(f"hand-off callback failed: {e}", level="WARNING")
        return True

    # =========================================================================
    # PROGRESS
    # =========================================================================

    def _emit(self, callback: Optional[ProgressCallback], session: AutomationSession, message: str) -> None:
        """Fire-and-forget progress event. Callback failures never reach the run."""
        if callback is None:
            return

        event = ProgressEvent(stage_index=session.stage.position, stage=session.stage, message=message)
        try:
            result = callback(event)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._callback_tasks.add(task)
                task.add_done_callback(self._callback_done)
        except Exception as e:
            session.record(f"progress callback failed: {e}", level="WARNING")

    def _callback_done(self, task: asyncio.Task) -> None:
        self._callback_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"Progress callback failed: {error}")


def _same_value(actual: Optional[str], expected: str) -> bool:
    return (actual or "").strip() == expected.strip()


def _booking_reference(kind: str) -> str:
    return f"HTL-{kind}-{int(time.time() * 1000)}"


def _describe(stage: Stage) -> str:
    return {
        Stage.INIT: "starting the browser",
        Stage.SEARCHING: "loading search results",
        Stage.LOCATING_TARGET: "finding the hotel",
        Stage.SELECTING_TARGET: "opening the hotel page",
        Stage.SELECTING_SUB_OPTION: "selecting a room",
        Stage.FILLING_FORM: "filling in guest details",
        Stage.REACHING_CHECKOUT: "continuing to checkout",
    }.get(stage, stage.value)
