"""Tests for design_critique.capture with a mocked Playwright browser."""

from __future__ import annotations

import asyncio
import base64
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeout

from design_critique.capture import ScreenshotCapturer

from conftest import PNG_BYTES


@pytest.fixture
def page() -> MagicMock:
    page = MagicMock()
    page.goto = AsyncMock()
    page.click = AsyncMock()
    page.wait_for_selector = AsyncMock()
    page.wait_for_timeout = AsyncMock()
    page.screenshot = AsyncMock(return_value=PNG_BYTES)
    return page


@pytest.fixture
def browser(page) -> MagicMock:
    browser = MagicMock()
    browser.new_page = AsyncMock(return_value=page)
    browser.close = AsyncMock()
    return browser


@pytest.fixture
def playwright(browser):
    """Patch async_playwright() to hand out the fake browser."""
    p = MagicMock()
    p.chromium.launch = AsyncMock(return_value=browser)
    context = MagicMock()
    context.__aenter__.return_value = p
    context.__aexit__.return_value = False
    with patch("design_critique.capture.async_playwright", MagicMock(return_value=context)):
        yield p


class TestCapture:
    def test_returns_png_payload(self, playwright, browser, page):
        capturer = ScreenshotCapturer(viewport={"width": 1280, "height": 800})

        image = asyncio.run(capturer.capture("https://example.com/pricing", selector="#tab", wait_for=".table"))

        assert image.mime_type == "image/png"
        assert image.source_url == "https://example.com/pricing"
        assert base64.b64decode(image.encoded_payload) == PNG_BYTES
        browser.new_page.assert_awaited_once_with(viewport={"width": 1280, "height": 800})
        page.click.assert_awaited_once_with("#tab", timeout=15000)
        page.wait_for_selector.assert_awaited_once_with(".table", timeout=15000)
        page.screenshot.assert_awaited_once_with(full_page=True, type="png")
        browser.close.assert_awaited_once()

    def test_missing_selector(self, playwright, browser, page):
        page.click.side_effect = PlaywrightTimeout("Timeout 15000ms exceeded")

        with pytest.raises(RuntimeError, match="Failed to find clickable element: #missing"):
            asyncio.run(ScreenshotCapturer().capture("https://example.com", selector="#missing"))
        browser.close.assert_awaited_once()

    def test_navigation_error_wrapped(self, playwright, browser, page):
        page.goto.side_effect = ValueError("net::ERR_NAME_NOT_RESOLVED")

        with pytest.raises(RuntimeError, match="Screenshot capture failed"):
            asyncio.run(ScreenshotCapturer().capture("https://nowhere.invalid"))
        browser.close.assert_awaited_once()

    def test_saves_when_directory_given(self, playwright, tmp_path):
        capturer = ScreenshotCapturer(save_dir=tmp_path / "shots")
        asyncio.run(capturer.capture("https://example.com/pricing"))

        saved = list((tmp_path / "shots").glob("*.png"))
        assert len(saved) == 1
        assert saved[0].name.endswith("_pricing.png")
        assert saved[0].read_bytes() == PNG_BYTES


class TestCaptureMultiple:
    def test_one_image_per_state(self, playwright, browser, page):
        states = [{"selector": "[data-tab='a']"}, {"selector": "[data-tab='b']", "wait_for": ".b"}]

        images = asyncio.run(ScreenshotCapturer().capture_multiple("https://example.com/app", states))

        assert len(images) == 2
        assert page.click.await_count == 2
        page.goto.assert_awaited_once()
        browser.close.assert_awaited_once()


class TestFilename:
    def test_url_and_selector_parts(self):
        capturer = ScreenshotCapturer()
        name = capturer._filename("https://example.com/pricing.html", "#plans-tab")
        assert name.startswith("screenshot_")
        assert name.endswith("_pricing_plans-tab.png")

    def test_bare_host(self):
        assert ScreenshotCapturer()._filename("about:blank").endswith("_page.png")
