from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

from playwright.async_api import Browser, Page, Playwright, async_playwright

from order_watch.config import Config
from order_watch.json_logger import JsonLogger, log_event


class BrowserLauncher:
    """Owns the Playwright driver and launches Chromium windows from it.

    The driver is started lazily on the first :meth:`launch` and kept until
    :meth:`shutdown`, so a relaunch after a crash reuses it.
    """

    def __init__(self, *, config: Config, logger: JsonLogger) -> None:
        self.config = config
        self.logger = logger
        self._playwright: Optional[Playwright] = None

    async def _driver(self) -> Playwright:
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        return self._playwright

    async def launch(self) -> Browser:
        playwright = await self._driver()
        chrome_exec = self.config.browser_executable.strip() or None
        headless = self.config.browser_headless
        launch_kwargs: Dict[str, Any] = {
            "headless": headless,
            "slow_mo": self.config.browser_slow_mo_ms,
        }

        if chrome_exec and Path(chrome_exec).is_file():
            launch_kwargs["executable_path"] = chrome_exec
            log_event(
                logger=self.logger,
                phase="init",
                message="Launching Playwright with local Chrome executable",
                executable_path=chrome_exec,
                headless=headless,
            )
        elif chrome_exec:
            log_event(
                logger=self.logger,
                phase="init",
                status="warn",
                message="Configured Chrome executable missing; falling back to bundled Chromium",
                executable_path=chrome_exec,
                headless=headless,
            )
        else:
            log_event(
                logger=self.logger,
                phase="init",
                message="Launching Playwright with bundled Chromium",
                headless=headless,
            )

        try:
            return await playwright.chromium.launch(**launch_kwargs)
        except Exception as exc:
            if launch_kwargs.pop("executable_path", None) is not None:
                log_event(
                    logger=self.logger,
                    phase="init",
                    status="warn",
                    message="Local Chrome launch failed; retrying with bundled Chromium",
                    executable_path=chrome_exec,
                    headless=headless,
                    error=str(exc),
                )
                return await playwright.chromium.launch(**launch_kwargs)
            raise

    async def open_page(self, browser: Browser) -> Page:
        context = await browser.new_context()
        page = await context.new_page()
        page.set_default_timeout(self.config.nav_timeout_ms)
        page.set_default_navigation_timeout(self.config.nav_timeout_ms)
        return page

    async def close_browser(self, browser: Browser | None) -> None:
        """Close every context and then the browser; failures are logged only."""

        if browser is None:
            return
        for context in list(browser.contexts):
            try:
                await context.close()
            except Exception as exc:
                log_event(
                    logger=self.logger,
                    phase="stop",
                    status="warn",
                    message="Failed to close browser context",
                    error=str(exc),
                )
        try:
            await browser.close()
        except Exception as exc:
            log_event(
                logger=self.logger,
                phase="stop",
                status="warn",
                message="Failed to close browser",
                error=str(exc),
            )

    async def shutdown(self) -> None:
        if self._playwright is None:
            return
        playwright, self._playwright = self._playwright, None
        try:
            await playwright.stop()
        except Exception as exc:
            log_event(
                logger=self.logger,
                phase="stop",
                status="warn",
                message="Failed to stop Playwright driver",
                error=str(exc),
            )
