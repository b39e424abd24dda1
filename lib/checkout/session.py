"""Session controller: one stealth browser per automation run.

Owns the browser process and page, the deadline watchdog, and cleanup. The
browser is closed on every exit path except a hand-off, where the live page
is deliberately left open for the user to complete payment.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator

from loguru import logger
from playwright.async_api import async_playwright
from playwright_stealth import Stealth

from lib.checkout.config import CheckoutConfig
from lib.checkout.errors import DeadlineExceeded, LaunchFailure
from lib.checkout.models import AutomationSession, BookingRequest


@dataclass
class SessionHandoff:
    """Live browser handed to the user after a successful run."""

    playwright: Any
    browser: Any
    context: Any
    page: Any

    async def close(self) -> None:
        """Close the handed-off browser once the user is done with it."""
        for closer in (self.context, self.browser):
            try:
                if closer:
                    await closer.close()
            except Exception as e:
                logger.debug(f"Hand-off close: {e}")
        try:
            if self.playwright:
                await self.playwright.stop()
        except Exception as e:
            logger.debug(f"Hand-off playwright stop: {e}")


class SessionController:
    """Creates, guards and tears down AutomationSessions.

    Usage:
        controller = SessionController(config)
        async with controller.open_session(request) as session:
            await controller.launch(session)
            # ... drive session.page ...
    """

    def __init__(self, config: CheckoutConfig, playwright_factory=None):
        self.config = config
        self._playwright_factory = playwright_factory

    @asynccontextmanager
    async def open_session(self, request: BookingRequest) -> AsyncIterator[AutomationSession]:
        """Create a session and arm its watchdog. Closes it on exit unless handed off."""
        session = AutomationSession(
            request=request,
            deadline=time.monotonic() + self.config.deadline_seconds,
        )
        watchdog = asyncio.create_task(self._watchdog(session))
        try:
            yield session
        finally:
            if session.expired:
                # Watchdog is closing (or has closed) the browser; let it finish
                await watchdog
            else:
                watchdog.cancel()
            if not session.handed_off:
                await self.close(session)

    async def launch(self, session: AutomationSession) -> None:
        """Start the browser and a configured stealth page.

        Raises LaunchFailure if the process cannot start, DeadlineExceeded if
        the watchdog fired while it was starting.
        """
        session.record("launching browser")
        try:
            factory = self._playwright_factory or async_playwright
            session.playwright = await factory().start()
            session.browser = await session.playwright.chromium.launch(
                headless=self.config.headless,
                slow_mo=self.config.slow_mo_ms or None,
                args=self.config.launch_args,
            )
            session.context = await session.browser.new_context(
                viewport=self.config.viewport,
                user_agent=self.config.user_agent,
                locale=self.config.locale,
                timezone_id=self.config.timezone_id,
                extra_http_headers=self.config.extra_http_headers,
                ignore_https_errors=True,
            )
            await Stealth().apply_stealth_async(session.context)
            session.context.set_default_timeout(self.config.action_timeout_ms)
            session.context.set_default_navigation_timeout(self.config.navigation_timeout_ms)
            session.page = await session.context.new_page()
        except Exception as e:
            await self._teardown(session)
            if session.expired:
                raise DeadlineExceeded("deadline passed while launching") from e
            raise LaunchFailure(f"browser launch failed: {e}") from e

        if session.expired:
            # Watchdog fired before there was a browser to close
            await self._teardown(session)
            raise DeadlineExceeded("deadline passed while launching")

        session.record("browser ready")

    def hand_off(self, session: AutomationSession) -> SessionHandoff:
        """Transfer the live page to the user. The session will not be torn down."""
        session.handed_off = True
        session.record("browser left open for the user")
        return SessionHandoff(
            playwright=session.playwright,
            browser=session.browser,
            context=session.context,
            page=session.page,
        )

    async def close(self, session: AutomationSession) -> None:
        """Close page, context, browser and Playwright. Safe to call twice."""
        if session.closed:
            return
        await self._teardown(session)

    async def _teardown(self, session: AutomationSession) -> None:
        session.closed = True
        for closer in (session.context, session.browser):
            try:
                if closer:
                    await closer.close()
            except Exception as e:
                logger.debug(f"[checkout {session.run_id}] close: {e}")
        try:
            if session.playwright:
                await session.playwright.stop()
        except Exception as e:
            logger.debug(f"[checkout {session.run_id}] playwright stop: {e}")

    async def capture(self, session: AutomationSession, label: str) -> None:
        """Save a screenshot of the current page when screenshot_dir is configured."""
        if not self.config.screenshot_dir or session.page is None or session.closed:
            return
        directory = Path(self.config.screenshot_dir)
        path = directory / f"{session.run_id}_{label}.png"
        try:
            directory.mkdir(parents=True, exist_ok=True)
            await session.page.screenshot(path=str(path))
            logger.info(f"[checkout {session.run_id}] screenshot saved: {path}")
        except Exception as e:
            logger.warning(f"[checkout {session.run_id}] screenshot failed: {e}")

    async def _watchdog(self, session: AutomationSession) -> None:
        await asyncio.sleep(max(0.0, session.remaining()))
        if session.closed or session.handed_off:
            return
        session.expired = True
        session.record("deadline exceeded, force-closing browser", level="WARNING")
        await self.close(session)
