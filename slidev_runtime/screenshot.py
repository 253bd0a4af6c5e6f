"""Cover screenshots of running previews."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from slidev_runtime.config import Settings
from slidev_runtime.errors import GenerationFailure
from slidev_runtime.registry import InstanceRegistry
from slidev_runtime.validation import require_existing_path

logger = logging.getLogger(__name__)

BROWSER_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]


@dataclass
class ScreenshotResult:
    cover_path: Path


class ScreenshotService:
    def __init__(self, registry: InstanceRegistry, settings: Settings) -> None:
        self._registry = registry
        self._settings = settings

    async def capture(
        self,
        slide_id: int,
        slides_path: str | Path,
        cover_path: str | Path,
        width: Optional[int] = None,
        height: Optional[int] = None,
    ) -> ScreenshotResult:
        """
        Render the deck's preview in headless Chromium and save a full-page image.

        The preview is started if it is not already running, and is left running
        afterwards. The page is rendered with a dark color scheme.

        Raises:
            InvalidArgument: If `slides_path` does not exist.
            SpawnFailure: If the preview cannot be started.
            GenerationFailure: If the browser fails to load or capture the page.
        """
        require_existing_path(slides_path, "slidesPath")
        cover = Path(cover_path)
        cover.parent.mkdir(parents=True, exist_ok=True)

        started = await self._registry.start_preview(slide_id, slides_path)
        url = f"http://localhost:{started.port}"
        viewport = {
            "width": width or self._settings.screenshot_width,
            "height": height or self._settings.screenshot_height,
        }

        logger.info("Capturing %s for slide %s into %s", url, slide_id, cover)
        try:
            async with async_playwright() as p:
                browser = await p.chromium.launch(headless=True, args=BROWSER_ARGS)
                try:
                    page = await browser.new_page(viewport=viewport, device_scale_factor=1)
                    await page.emulate_media(color_scheme="dark")
                    await page.goto(url, wait_until="networkidle", timeout=self._settings.build_timeout_ms)
                    await page.screenshot(path=str(cover), full_page=True)
                finally:
                    await browser.close()
        except PlaywrightError as exc:
            logger.error("Screenshot of slide %s failed: %s", slide_id, exc)
            raise GenerationFailure("screenshot failed", {"reason": str(exc)}) from exc

        return ScreenshotResult(cover_path=cover)
