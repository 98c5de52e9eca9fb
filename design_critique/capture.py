"""
Screenshot Capture Module

Captures web pages with a headless Playwright browser and hands the
result to the pipeline as an ImagePayload, so a URL can be analyzed the
same way as an image file.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from playwright.async_api import async_playwright, TimeoutError as PlaywrightTimeout

from .models import ImagePayload

logger = logging.getLogger(__name__)


class ScreenshotCapturer:
    """
    Captures screenshots of web pages using headless Playwright browser.

    Example:
        capturer = ScreenshotCapturer(viewport={"width": 1920, "height": 1080})
        image = await capturer.capture(
            url="https://example.com/pricing",
            wait_for=".pricing-table"
        )
    """

    def __init__(
        self,
        viewport: Optional[dict] = None,
        save_dir: Optional[Path] = None
    ):
        """
        Initialize screenshot capturer.

        Args:
            viewport: Viewport dimensions {"width": int, "height": int}
                     Defaults to 1920x1080
            save_dir: Also write each PNG here when given
        """
        self.viewport = viewport or {"width": 1920, "height": 1080}
        self.save_dir = save_dir

    async def capture(
        self,
        url: str,
        selector: Optional[str] = None,
        wait_for: Optional[str] = None,
        full_page: bool = True,
        wait_timeout: int = 15000
    ) -> ImagePayload:
        """
        Capture screenshot of a web page.

        Args:
            url: Page URL to capture (file:// or http(s)://)
            selector: CSS selector to click before capture (e.g. a tab button)
            wait_for: CSS selector to wait for before capture
            full_page: Capture full scrollable page (True) or viewport only (False)
            wait_timeout: Milliseconds to wait for navigation and elements

        Returns:
            PNG ImagePayload with source_url set to the page URL

        Raises:
            RuntimeError: If the browser fails to launch, navigate or find elements
        """
        try:
            async with async_playwright() as p:
                browser = await p.chromium.launch(headless=True)
                try:
                    page = await browser.new_page(viewport=self.viewport)
                    await page.goto(url, wait_until="networkidle", timeout=wait_timeout)
                    png = await self._screenshot(page, selector, wait_for, full_page, wait_timeout)
                finally:
                    await browser.close()
        except RuntimeError:
            raise
        except Exception as e:
            raise RuntimeError(f"Screenshot capture failed: {str(e)}") from e

        logger.info("Captured %s (%d bytes)", url, len(png))
        self._save(png, url, selector)
        return ImagePayload.from_bytes(png, "image/png", source_url=url)

    async def capture_multiple(
        self,
        url: str,
        states: list[dict],
        wait_timeout: int = 15000
    ) -> list[ImagePayload]:
        """
        Capture several states of the same page in one browser session.

        Args:
            url: Page URL
            states: State configurations, each with optional
                   ``selector`` to click and ``wait_for`` to await

        Returns:
            One ImagePayload per state, in order

        Example:
            images = await capturer.capture_multiple(
                url="https://example.com/app",
                states=[
                    {"selector": "[data-tab='overview']"},
                    {"selector": "[data-tab='settings']", "wait_for": ".settings"},
                ]
            )
        """
        images = []
        try:
            async with async_playwright() as p:
                browser = await p.chromium.launch(headless=True)
                try:
                    page = await browser.new_page(viewport=self.viewport)
                    await page.goto(url, wait_until="networkidle", timeout=wait_timeout)
                    for state in states:
                        png = await self._screenshot(
                            page, state.get("selector"), state.get("wait_for"), True, wait_timeout
                        )
                        self._save(png, url, state.get("selector"))
                        images.append(ImagePayload.from_bytes(png, "image/png", source_url=url))
                finally:
                    await browser.close()
        except RuntimeError:
            raise
        except Exception as e:
            raise RuntimeError(f"Screenshot capture failed: {str(e)}") from e

        return images

    async def _screenshot(
        self,
        page,
        selector: Optional[str],
        wait_for: Optional[str],
        full_page: bool,
        wait_timeout: int
    ) -> bytes:
        if selector:
            try:
                await page.click(selector, timeout=wait_timeout)
            except PlaywrightTimeout as e:
                raise RuntimeError(f"Failed to find clickable element: {selector}") from e

        if wait_for:
            try:
                await page.wait_for_selector(wait_for, timeout=wait_timeout)
            except PlaywrightTimeout as e:
                raise RuntimeError(f"Timeout waiting for element: {wait_for}") from e

        # Let late layout and web fonts settle
        await page.wait_for_timeout(500)

        return await page.screenshot(full_page=full_page, type="png")

    def _save(self, png: bytes, url: str, selector: Optional[str]) -> Optional[Path]:
        if self.save_dir is None:
            return None
        self.save_dir.mkdir(parents=True, exist_ok=True)
        path = self.save_dir / self._filename(url, selector)
        path.write_bytes(png)
        logger.debug("Saved screenshot to %s", path)
        return path

    def _filename(self, url: str, selector: Optional[str] = None) -> str:
        """screenshot_{timestamp}_{url_fragment}[_{selector}].png"""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")

        url_part = url.rstrip("/").split("/")[-1].split(".")[0] if "/" in url else "page"
        url_part = "".join(c for c in url_part if c.isalnum() or c in "-_")[:20] or "page"

        if selector:
            selector_part = "".join(c for c in selector if c.isalnum() or c in "-_")[:20]
            return f"screenshot_{timestamp}_{url_part}_{selector_part}.png"
        return f"screenshot_{timestamp}_{url_part}.png"
