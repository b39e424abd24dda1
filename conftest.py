"""Pytest configuration and shared fixtures."""

import asyncio
from typing import Callable, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock, patch

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PWTimeoutError

from lib.checkout.config import CheckoutConfig
from lib.checkout.models import BookingRequest

# Load env vars
from dotenv import load_dotenv
load_dotenv()


def pytest_addoption(parser):
    parser.addoption("--online", action="store_true", default=False, help="run tests that drive a real browser")


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "online: mark test as online test (real browser, hits the target site)")


def pytest_collection_modifyitems(config, items):
    """Skip online tests unless --online is given."""
    if config.getoption("--online"):
        return
    skip_online = pytest.mark.skip(reason="needs --online")
    for item in items:
        if "online" in item.keywords:
            item.add_marker(skip_online)


# =============================================================================
# Fake browser
# =============================================================================

class FakeJSHandle:
    def __init__(self, element: Optional["FakeElement"]):
        self._element = element

    def as_element(self) -> Optional["FakeElement"]:
        return self._element


class FakeElement:
    """In-memory stand-in for a Playwright ElementHandle."""

    def __init__(
        self,
        text: str = "",
        tag: str = "div",
        href: Optional[str] = None,
        visible: bool = True,
        enabled: bool = True,
        parent: Optional["FakeElement"] = None,
        on_click: Optional[Callable[[], None]] = None,
        accepts_fill: bool = True,
        value: str = "",
        box: Optional[Dict[str, float]] = None,
    ):
        self.text = text
        self.tag = tag
        self.href = href
        self.visible = visible
        self.enabled = enabled
        self.parent = parent
        self.on_click = on_click
        self.accepts_fill = accepts_fill
        self.value = value
        self.box = box if box is not None else {"x": 100.0, "y": 200.0, "width": 120.0, "height": 40.0}
        self.clicks: List[dict] = []
        self.typed: List[str] = []
        self.selected: Optional[str] = None

    @property
    def clickable(self) -> bool:
        return self.tag in ("a", "button")

    async def is_visible(self) -> bool:
        return self.visible

    async def is_enabled(self) -> bool:
        return self.enabled

    async def inner_text(self) -> str:
        return self.text

    async def text_content(self) -> str:
        return self.text

    async def get_attribute(self, name: str) -> Optional[str]:
        if name == "href":
            return self.href
        if name == "value":
            return self.value or None
        return None

    async def evaluate_handle(self, expression: str) -> FakeJSHandle:
        current = self
        while current is not None:
            if current.clickable:
                return FakeJSHandle(current)
            current = current.parent
        return FakeJSHandle(None)

    async def evaluate(self, expression: str, arg=None):
        # Only node identity is evaluated against elements
        return self is arg

    async def bounding_box(self) -> Optional[Dict[str, float]]:
        return self.box

    async def scroll_into_view_if_needed(self, timeout: Optional[float] = None) -> None:
        return None

    async def click(self, **kwargs) -> None:
        self.clicks.append(kwargs)
        if self.on_click:
            self.on_click()

    async def fill(self, value: str, timeout: Optional[float] = None) -> None:
        if self.accepts_fill:
            self.value = value

    async def type(self, text: str, **kwargs) -> None:
        self.typed.append(text)
        self.value += text

    async def input_value(self, timeout: Optional[float] = None) -> str:
        return self.value

    async def select_option(self, value: Optional[str] = None, **kwargs) -> List[str]:
        self.selected = value
        return [value]


Screen = Dict[str, List[FakeElement]]


class FakeMouse:
    def __init__(self):
        self.move = AsyncMock()
        self.wheel = AsyncMock()


class FakePage:
    """Page that serves screens of selector -> elements, routed by URL."""

    def __init__(self, site: "FakeSite", url: str = "about:blank", screen: Optional[str] = None):
        self.site = site
        self.url = url
        self.screen = screen
        self.closed = False
        self.mouse = FakeMouse()
        self.goto_calls: List[str] = []
        self.screenshots: List[str] = []

    def _elements(self, selector: str) -> List[FakeElement]:
        if self.closed:
            raise PlaywrightError("Target page, context or browser has been closed")
        return list(self.site.screens.get(self.screen, {}).get(selector, []))

    async def goto(self, url: str, **kwargs) -> None:
        self.goto_calls.append(url)
        if self.site.goto_delay:
            await asyncio.sleep(self.site.goto_delay)
        if self.closed:
            raise PlaywrightError("Target page, context or browser has been closed")
        if self.site.goto_errors:
            raise self.site.goto_errors.pop(0)
        self.url = url
        self.screen = self.site.route(url)

    async def query_selector_all(self, selector: str) -> List[FakeElement]:
        return self._elements(selector)

    async def query_selector(self, selector: str) -> Optional[FakeElement]:
        found = self._elements(selector)
        return found[0] if found else None

    async def wait_for_load_state(self, state: str = "load", timeout: Optional[float] = None) -> None:
        return None

    async def screenshot(self, path: Optional[str] = None, **kwargs) -> bytes:
        self.screenshots.append(path)
        return b""

    def navigate(self, url: str, screen: Optional[str] = None) -> None:
        self.url = url
        self.screen = screen if screen is not None else self.site.route(url)


class _PageInfo:
    def __init__(self):
        self.page: Optional[FakePage] = None

    @property
    def value(self):
        async def _resolve():
            return self.page
        return _resolve()


class _ExpectPage:
    def __init__(self, context: "FakeContext"):
        self.context = context
        self.info = _PageInfo()

    async def __aenter__(self) -> _PageInfo:
        return self.info

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            return False
        if not self.context.opened_pages:
            raise PWTimeoutError("Timeout exceeded while waiting for event \"page\"")
        self.info.page = self.context.opened_pages.pop(0)
        return False


class FakeContext:
    def __init__(self, site: "FakeSite"):
        self.site = site
        self.opened_pages: List[FakePage] = []
        self.closed = False
        self.default_timeout = None
        self.default_navigation_timeout = None

    def expect_page(self, timeout: Optional[float] = None) -> _ExpectPage:
        return _ExpectPage(self)

    def set_default_timeout(self, timeout: float) -> None:
        self.default_timeout = timeout

    def set_default_navigation_timeout(self, timeout: float) -> None:
        self.default_navigation_timeout = timeout

    async def new_page(self) -> FakePage:
        return self.site.page

    async def close(self) -> None:
        self.closed = True
        for page in [self.site.page] + self.site.tabs:
            page.closed = True


class FakeBrowser:
    def __init__(self, site: "FakeSite"):
        self.site = site
        self.closed = False
        self.new_context_kwargs: Dict = {}

    async def new_context(self, **kwargs) -> FakeContext:
        self.new_context_kwargs = kwargs
        return self.site.context

    async def close(self) -> None:
        self.closed = True


class FakeChromium:
    def __init__(self, site: "FakeSite"):
        self.site = site
        self.launch_kwargs: Dict = {}

    async def launch(self, **kwargs) -> FakeBrowser:
        self.launch_kwargs = kwargs
        if self.site.launch_error:
            raise self.site.launch_error
        return self.site.browser


class FakePlaywright:
    def __init__(self, site: "FakeSite"):
        self.chromium = FakeChromium(site)
        self.stopped = False

    async def stop(self) -> None:
        self.stopped = True


class FakeSite:
    """A scripted target site. Screens map selectors to elements; routes map URL fragments to screens."""

    def __init__(self):
        self.screens: Dict[str, Screen] = {}
        self.routes: List[Tuple[str, str]] = []
        self.goto_errors: List[Exception] = []
        self.goto_delay: float = 0.0
        self.launch_error: Optional[Exception] = None
        self.tabs: List[FakePage] = []
        self.page = FakePage(self)
        self.context = FakeContext(self)
        self.browser = FakeBrowser(self)
        self.playwright = FakePlaywright(self)

    def route(self, url: str) -> Optional[str]:
        for fragment, screen in self.routes:
            if fragment in url:
                return screen
        return None

    def add_screen(self, name: str, url_fragment: Optional[str] = None) -> Screen:
        screen: Screen = {}
        self.screens[name] = screen
        if url_fragment:
            self.routes.append((url_fragment, name))
        return screen

    def open_tab(self, url: str, screen: Optional[str] = None) -> FakePage:
        tab = FakePage(self, url=url, screen=screen if screen is not None else self.route(url))
        self.tabs.append(tab)
        self.context.opened_pages.append(tab)
        return tab

    def playwright_factory(self):
        site = self

        class _Manager:
            async def start(self):
                return site.playwright

        return _Manager()


@pytest.fixture
def fake_site():
    """Fake target site with Stealth patched out of the session controller."""
    site = FakeSite()
    with patch("lib.checkout.session.Stealth") as mock_stealth:
        mock_stealth.return_value.apply_stealth_async = AsyncMock()
        yield site


@pytest.fixture
def make_site(fake_site):
    """Factory for additional fake sites, sharing fake_site's Stealth patch."""
    return FakeSite


@pytest.fixture
def make_element():
    """Factory for fake element handles."""
    return FakeElement


@pytest.fixture
def fast_config():
    """Config with humanized delays zeroed so scenarios run instantly."""
    return CheckoutConfig(
        base_delay_ms=0,
        jitter_ms=0,
        settle_delay_ms=0,
        typing_delay_ms=(0, 0),
        popup_timeout_ms=10,
        deadline_seconds=10.0,
    )


@pytest.fixture
def seaside_request():
    """The Seaside Inn request used across scenarios."""
    return BookingRequest.model_validate({
        "targetName": "Seaside Inn",
        "location": "Miami, FL",
        "checkInDate": "2025-06-10",
        "checkOutDate": "2025-06-12",
        "guest": {
            "firstName": "Ana",
            "lastName": "Lopez",
            "email": "ana@example.com",
            "phone": "5551234",
        },
    })
