"""Element resolver.

Given a Target from the candidate table, searches the live page and returns
ranked element handles (best first) or nothing. Resolution only reads the
page; it never clicks, types, or mutates the DOM.
"""

import re
from typing import Iterable, List, Optional, Sequence, Tuple

from loguru import logger
from playwright.async_api import ElementHandle, Page
from playwright.async_api import Error as PlaywrightError

from lib.checkout.candidates import Target
from lib.checkout.config import CheckoutConfig


EXACT_MATCH_SCORE = 100
MIN_TOKEN_LENGTH = 3  # tokens of 2 chars or fewer are ignored

# Returns the element itself if it is a link/button, else its nearest clickable
# ancestor, else null.
_CLICKABLE_ANCESTOR_JS = """(el) => {
    let current = el;
    while (current && current !== document.body) {
        const tag = current.tagName.toLowerCase();
        if (tag === 'a' || tag === 'button' || current.getAttribute('role') === 'button'
            || typeof current.onclick === 'function') {
            return current;
        }
        current = current.parentElement;
    }
    return null;
}"""

_SAME_NODE_JS = "(el, other) => el.isSameNode(other)"


# =============================================================================
# TEXT MATCHING
# =============================================================================

def normalize_text(text: Optional[str]) -> str:
    """Lowercase and collapse whitespace."""
    return " ".join((text or "").lower().split())


def tokenize(text: Optional[str]) -> List[str]:
    """Whitespace tokens longer than two characters."""
    return [t for t in normalize_text(text).split() if len(t) >= MIN_TOKEN_LENGTH]


def token_matches(text: str, desired: str) -> int:
    """Count desired tokens that share a substring relation with some text token."""
    text_tokens = tokenize(text)
    count = 0
    for wanted in tokenize(desired):
        if any(wanted in token or token in wanted for token in text_tokens):
            count += 1
    return count


def match_score(text: str, desired: str) -> int:
    """Score an element's visible text against the desired text.

    Substring match scores EXACT_MATCH_SCORE. Otherwise the token match count,
    accepted only when it reaches min(2, desired token count); 0 means no match.
    """
    haystack = normalize_text(text)
    needle = normalize_text(desired)
    if not haystack or not needle:
        return 0

    if needle in haystack:
        return EXACT_MATCH_SCORE
    # Card title shorter than the desired name ("Seaside Inn" vs "Seaside Inn Miami")
    if len(tokenize(haystack)) >= 2 and haystack in needle:
        return EXACT_MATCH_SCORE

    wanted = tokenize(needle)
    if not wanted:
        return 0
    matches = token_matches(haystack, needle)
    return matches if matches >= min(2, len(wanted)) else 0


def is_action_text(
    text: str,
    href: Optional[str],
    allow: Sequence[str],
    deny: Sequence[str],
) -> bool:
    """Allow-list / deny-list filter for action controls.

    Allow terms must appear as whole words ("book" accepts "Book now" but not
    the "Booking.com" logo). Deny terms match anywhere in the text or href.
    """
    label = normalize_text(text)
    link = (href or "").lower()
    if len(label) < 2:
        return False
    if allow and not any(_has_word(label, term) for term in allow):
        return False
    if any(term in label or term in link for term in deny):
        return False
    return True


def _has_word(label: str, term: str) -> bool:
    return re.search(rf"\b{re.escape(term)}\b", label) is not None


# =============================================================================
# RESOLVER
# =============================================================================

class ElementResolver:
    """Resolves Targets against a live page."""

    def __init__(self, config: CheckoutConfig):
        self.config = config

    def _log(self, msg: str) -> None:
        """Log message if debug is enabled."""
        if self.config.debug:
            logger.debug(msg)

    async def candidates(
        self,
        page: Page,
        target: Target,
        limit: Optional[int] = None,
    ) -> List[ElementHandle]:
        """Ranked handles for a target, best first. Empty list means NotFound.

        Selectors are tried in priority order; the first selector that yields
        any accepted element decides the candidate set.
        """
        for selector in target.selectors:
            scored = await self._scan(page, selector, target)
            if not scored:
                continue

            # Stable sort keeps DOM order among equal scores
            scored.sort(key=lambda item: -item[0])
            self._log(f"    [RESOLVE] {target.name}: {len(scored)} via {selector}")

            handles: List[ElementHandle] = []
            for _, handle in scored:
                if target.clickable:
                    handle = await self.nearest_clickable(handle) or handle
                # Title and image of one card share the same link
                if await self._already_listed(handle, handles):
                    continue
                handles.append(handle)
                if limit and len(handles) >= limit:
                    break
            return handles

        self._log(f"    [RESOLVE] {target.name}: not found")
        await self._debug_page_elements(page)
        return []

    async def resolve(self, page: Page, target: Target) -> Optional[ElementHandle]:
        """Best handle for a target, or None."""
        found = await self.candidates(page, target, limit=1)
        return found[0] if found else None

    async def first_visible(
        self,
        page: Page,
        selectors: Iterable[str],
        enabled: bool = False,
    ) -> Optional[ElementHandle]:
        """First visible (optionally enabled) element matching any selector, in order."""
        for selector in selectors:
            try:
                handle = await page.query_selector(selector)
                if handle is None or not await handle.is_visible():
                    continue
                if enabled and not await handle.is_enabled():
                    continue
                return handle
            except PlaywrightError as e:
                self._log(f"    [RESOLVE] {selector}: {e}")
                continue
        return None

    async def exists(self, page: Page, selectors: Iterable[str]) -> bool:
        """True if any selector matches a visible element."""
        return await self.first_visible(page, selectors) is not None

    async def nearest_clickable(self, handle: ElementHandle) -> Optional[ElementHandle]:
        """The element itself if natively clickable, else its closest link/button ancestor."""
        try:
            js_handle = await handle.evaluate_handle(_CLICKABLE_ANCESTOR_JS)
            return js_handle.as_element()
        except PlaywrightError as e:
            self._log(f"    [RESOLVE] ancestor walk failed: {e}")
            return None

    async def _already_listed(self, handle: ElementHandle, handles: List[ElementHandle]) -> bool:
        for existing in handles:
            if existing is handle:
                return True
            try:
                if await existing.evaluate(_SAME_NODE_JS, handle):
                    return True
            except PlaywrightError as e:
                self._log(f"    [RESOLVE] node comparison failed: {e}")
        return False

    async def _scan(self, page: Page, selector: str, target: Target) -> List[Tuple[int, ElementHandle]]:
        try:
            handles = await page.query_selector_all(selector)
        except PlaywrightError as e:
            self._log(f"    [RESOLVE] {selector}: {e}")
            return []

        scored = []
        for handle in handles[: self.config.max_scan_elements]:
            try:
                if not await handle.is_visible():
                    continue
                text = await self._element_text(handle)

                if target.allow or target.deny:
                    href = await handle.get_attribute("href")
                    if not is_action_text(text, href, target.allow, target.deny):
                        continue

                score = 1
                if target.text:
                    score = match_score(text, target.text)
                    if score == 0:
                        continue
                scored.append((score, handle))
            except PlaywrightError:
                # Detached mid-scan
                continue
        return scored

    @staticmethod
    async def _element_text(handle: ElementHandle) -> str:
        text = await handle.inner_text()
        if not (text or "").strip():
            text = await handle.get_attribute("value") or ""
        return text.strip()

    async def _debug_page_elements(self, page: Page) -> None:
        """Log visible buttons and links for diagnosing selector drift."""
        if not self.config.debug:
            return

        try:
            labels = []
            for handle in (await page.query_selector_all("button, a"))[:15]:
                txt = (await handle.text_content() or "").strip()
                if txt and len(txt) < 40:
                    labels.append(txt[:30])
            if labels:
                self._log(f"    [DEBUG] Controls on page: {labels}")
        except PlaywrightError as e:
            self._log(f"    [DEBUG] Error getting page elements: {e}")
