"""Humanized page actions.

Pass-through wrappers around click / type / wait that add timing variance and
pointer jitter. No decision logic lives here.
"""

import asyncio
import random
from typing import Awaitable, Callable, Dict, Optional, Tuple

from playwright.async_api import ElementHandle, Page

from lib.checkout.config import CheckoutConfig


class Humanizer:
    """Adds randomized delays and click positions to page actions."""

    def __init__(
        self,
        config: CheckoutConfig,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.rng = rng or random.Random()
        self._sleep = sleep

    def jittered_seconds(self, base_ms: Optional[int] = None) -> float:
        """base ± jitter, in seconds, never negative."""
        base = self.config.base_delay_ms if base_ms is None else base_ms
        jitter = self.config.jitter_ms
        return max(0.0, base + self.rng.uniform(-jitter, jitter)) / 1000

    async def pause(self, base_ms: Optional[int] = None) -> None:
        await self._sleep(self.jittered_seconds(base_ms))

    def click_offset(self, box: Dict[str, float]) -> Tuple[float, float]:
        """A point inside the middle of the box, relative to its top-left corner."""
        return (
            box["width"] * self.rng.uniform(0.25, 0.75),
            box["height"] * self.rng.uniform(0.25, 0.75),
        )

    async def click(self, page: Page, handle: ElementHandle) -> None:
        """Move the pointer to a random point on the element, then click there."""
        timeout = self.config.action_timeout_ms
        await handle.scroll_into_view_if_needed(timeout=timeout)

        box = await handle.bounding_box()
        if box and box["width"] > 0 and box["height"] > 0:
            dx, dy = self.click_offset(box)
            await page.mouse.move(box["x"] + dx, box["y"] + dy, steps=self.rng.randint(3, 8))
            await self.pause(self.config.base_delay_ms // 2)
            await handle.click(
                position={"x": dx, "y": dy},
                delay=self.rng.randint(40, 120),
                timeout=timeout,
            )
        else:
            await handle.click(timeout=timeout)

        await self.pause()

    async def fill(self, handle: ElementHandle, value: str) -> None:
        """Clear the input and assign the value directly."""
        timeout = self.config.action_timeout_ms
        await handle.fill("", timeout=timeout)
        await handle.fill(value, timeout=timeout)
        await self.pause()

    async def type(self, handle: ElementHandle, value: str) -> None:
        """Clear the input and type one keystroke at a time."""
        low, high = self.config.typing_delay_ms
        await handle.click(timeout=self.config.action_timeout_ms)
        await handle.fill("", timeout=self.config.action_timeout_ms)
        for char in value:
            await handle.type(char)
            await self._sleep(self.rng.uniform(low, high) / 1000)
        await self.pause()

    async def scroll(self, page: Page, delta_y: int) -> None:
        """Wheel-scroll in a few uneven steps."""
        steps = self.rng.randint(2, 4)
        remaining = delta_y
        for i in range(steps):
            chunk = remaining if i == steps - 1 else int(delta_y / steps * self.rng.uniform(0.7, 1.3))
            await page.mouse.wheel(0, chunk)
            remaining -= chunk
            await self.pause(self.config.base_delay_ms // 2)
