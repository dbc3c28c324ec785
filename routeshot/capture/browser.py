"""Browser utilities — headless Chromium launch and isolated capture contexts."""

from __future__ import annotations

import asyncio
from typing import Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright

from routeshot.models.config import ViewportSpec

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/122.0.0.0 Safari/537.36"
)

# Resolves once fonts have loaded and two animation frames have painted
STABLE_RENDER_SCRIPT = """
() => document.fonts.ready.then(() => new Promise(resolve =>
    requestAnimationFrame(() => requestAnimationFrame(() => resolve(true)))
))
"""


async def launch_browser(playwright: Playwright, headless: bool = True) -> Browser:
    """Launch Chromium for capture runs."""
    return await playwright.chromium.launch(headless=headless)


async def create_capture_context(
    browser: Browser,
    viewport: ViewportSpec,
    init_script: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> BrowserContext:
    """Create an isolated context sized to a viewport with fixture state pre-seeded.

    Locale, timezone and scale factor are pinned so repeated captures of a
    settled page render identically.
    """
    context = await browser.new_context(
        viewport={"width": viewport.width, "height": viewport.height},
        device_scale_factor=1,
        user_agent=user_agent or DEFAULT_USER_AGENT,
        locale="en-US",
        timezone_id="UTC",
        color_scheme="light",
    )
    if init_script:
        await context.add_init_script(init_script)
    return context


async def wait_for_stable_render(page: Page, settle_ms: int = 0, timeout_ms: int = 30000) -> None:
    """Wait for network idle, web fonts, and an optional extra settle delay.

    Network idle and the font/frame check are each bounded by timeout_ms.
    """
    await page.wait_for_load_state("networkidle", timeout=timeout_ms)
    await asyncio.wait_for(page.evaluate(STABLE_RENDER_SCRIPT), timeout=timeout_ms / 1000)
    if settle_ms > 0:
        await page.wait_for_timeout(settle_ms)
