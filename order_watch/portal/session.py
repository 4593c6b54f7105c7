from __future__ import annotations

import re
from dataclasses import dataclass, field

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from order_watch.config import Config
from order_watch.json_logger import JsonLogger, log_event

from . import selectors


class LoginFailedError(RuntimeError):
    """The portal rejected the credentials or the login form could not be driven."""


@dataclass(frozen=True)
class Credentials:
    email: str
    password: str = field(repr=False)

    def is_complete(self) -> bool:
        return bool(self.email.strip()) and bool(self.password)


@dataclass(frozen=True)
class LoginResult:
    success: bool
    error: str | None = None
    final_url: str | None = None


def _login_path(config: Config) -> str:
    match = re.match(r"^https?://[^/]+(/[^?#]*)?", config.login_url)
    path = (match.group(1) if match else None) or selectors.LOGIN_PATH_HINT
    return path.rstrip("/") or selectors.LOGIN_PATH_HINT


async def _login_error_text(page: Page) -> str | None:
    element = await page.query_selector(selectors.LOGIN_ERROR_TEXT)
    if element is None:
        return None
    text = await element.text_content()
    return " ".join((text or "").split()) or "login error indicator present"


async def login(
    page: Page, credentials: Credentials, *, config: Config, logger: JsonLogger
) -> LoginResult:
    """Replay the portal's e-mail login form.

    Returns a failed :class:`LoginResult` rather than raising; the caller
    decides whether a failure is fatal (start) or transient (poll loop).
    """

    if not credentials.is_complete():
        log_event(logger=logger, phase="login", status="error", message="Missing portal credentials")
        return LoginResult(success=False, error="Email and password are required")

    log_event(
        logger=logger,
        phase="login",
        message="Starting portal login",
        login_url=config.login_url,
        email=credentials.email,
        password_len=len(credentials.password),
    )

    try:
        await page.goto(config.login_url, wait_until="networkidle", timeout=config.nav_timeout_ms)
        await page.click(selectors.LOGIN_EMAIL_MODE_BUTTON)
        form = page.locator("div").filter(has_text=re.compile(selectors.LOGIN_EMAIL_FORM_TEXT))
        await form.locator(selectors.LOGIN_EMAIL_INPUT).fill(credentials.email)
        await form.locator(selectors.LOGIN_PASSWORD_INPUT).fill(credentials.password)

        navigation_error: Exception | None = None
        try:
            async with page.expect_navigation(
                wait_until="networkidle", timeout=config.nav_timeout_ms
            ):
                await page.click(selectors.LOGIN_SUBMIT)
        except PlaywrightTimeoutError as exc:
            navigation_error = exc

        if navigation_error is not None:
            log_event(
                logger=logger,
                phase="login",
                status="warn",
                message="Login navigation signalled a timeout; validating page state",
                error=str(navigation_error),
            )

        error_text = await _login_error_text(page)
    except PlaywrightError as exc:
        log_event(
            logger=logger,
            phase="login",
            status="error",
            message="Login flow failed",
            error=str(exc),
        )
        return LoginResult(success=False, error=f"Login failed: {exc}", final_url=page.url)

    if error_text:
        log_event(
            logger=logger,
            phase="login",
            status="error",
            message="Login failed; portal returned explicit error",
            error=error_text,
        )
        return LoginResult(success=False, error=f"Login failed: {error_text}", final_url=page.url)

    log_event(logger=logger, phase="login", message="Login completed", post_login_url=page.url)
    return LoginResult(success=True, final_url=page.url)


async def is_login_prompt(page: Page, *, config: Config) -> bool:
    """True when the page shows the login entry point instead of the portal."""

    url = page.url or ""
    if _login_path(config) in url:
        return True
    try:
        button = await page.query_selector(selectors.LOGIN_EMAIL_MODE_BUTTON)
    except PlaywrightError:
        return False
    if button is None:
        return False
    try:
        return await button.is_visible()
    except PlaywrightError:
        return False


async def ensure_session(
    page: Page, credentials: Credentials, *, config: Config, logger: JsonLogger
) -> bool:
    if not await is_login_prompt(page, config=config):
        return True
    log_event(
        logger=logger,
        phase="session",
        status="warn",
        message="Session expired; replaying login",
        current_url=page.url,
    )
    result = await login(page, credentials, config=config, logger=logger)
    return result.success
