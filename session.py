import logging
import time

from playwright.async_api import Page

from client import capture_screenshot
from config import (
    LOGIN_ATTEMPTS,
    LOGIN_FRESHNESS_SECONDS,
    MAX_LOGIN_ATTEMPTS_PER_RUN,
    NAV_TIMEOUT_MS,
    PORTAL_PASSWORD,
    PORTAL_URL,
    PORTAL_USERNAME,
)
from context import AutomationSession, SubSystem
from navigation import first_visible, page_text, wait_settled
from patterns import (
    AUTH_ERROR_RE,
    CSRF_BANNER_RE,
    LOGIN_BUTTON_SELECTORS,
    LOGOUT_SELECTORS,
    PASSWORD_SELECTORS,
    USERNAME_SELECTORS,
)

logger = logging.getLogger(__name__)

_CLEAR_STORAGE_JS = """() => {
    try { window.localStorage.clear(); } catch (e) {}
    try { window.sessionStorage.clear(); } catch (e) {}
    return true;
}"""


class AuthenticationError(RuntimeError):
    """Login failed for good: explicit auth error, or attempts exhausted."""


class SessionManager:
    def __init__(
        self,
        session: AutomationSession,
        *,
        base_url: str = PORTAL_URL,
        username: str = PORTAL_USERNAME,
        password: str = PORTAL_PASSWORD,
        attempts: int = LOGIN_ATTEMPTS,
        freshness_seconds: float = LOGIN_FRESHNESS_SECONDS,
        max_attempts_per_run: int = MAX_LOGIN_ATTEMPTS_PER_RUN,
        nav_timeout_ms: int = NAV_TIMEOUT_MS,
        settle_ms: int = 2000,
    ):
        self.session = session
        self.base_url = base_url
        self.username = username
        self.password = password
        self.attempts = attempts
        self.freshness_seconds = freshness_seconds
        self.max_attempts_per_run = max_attempts_per_run
        self.nav_timeout_ms = nav_timeout_ms
        self.settle_ms = settle_ms

    async def login_form_visible(self, page: Page | None = None) -> bool:
        page = page or self.session.page
        return await first_visible(page, PASSWORD_SELECTORS) is not None

    async def csrf_banner_visible(self, page: Page) -> bool:
        return bool(CSRF_BANNER_RE.search(await page_text(page)))

    async def authenticated_marker_visible(self, page: Page) -> bool:
        return await first_visible(page, LOGOUT_SELECTORS) is not None

    def _session_fresh(self) -> bool:
        ctx = self.session.context
        if not ctx.authenticated or ctx.last_auth_at is None:
            return False
        return time.monotonic() - ctx.last_auth_at < self.freshness_seconds

    def _consume_attempt(self) -> None:
        if self.session.login_attempts_used >= self.max_attempts_per_run:
            raise AuthenticationError(
                f"Login attempt budget for this run exhausted ({self.max_attempts_per_run})"
            )
        self.session.login_attempts_used += 1

    async def reset_session(self, page: Page) -> None:
        logger.warning("  CSRF / invalid-session banner detected, resetting browser session")
        try:
            await page.context.clear_cookies()
        except Exception as e:
            logger.warning("  Could not clear cookies: %s", e)
        try:
            await page.evaluate(_CLEAR_STORAGE_JS)
        except Exception as e:
            logger.debug("  Could not clear site storage: %s", e)
        try:
            await page.reload(wait_until="domcontentloaded", timeout=self.nav_timeout_ms)
        except Exception as e:
            logger.warning("  Reload after session reset failed: %s", e)
        self.session.context.mark_logged_out()

    async def _fill_credentials(self, page: Page) -> bool:
        username_field = await first_visible(page, USERNAME_SELECTORS)
        password_field = await first_visible(page, PASSWORD_SELECTORS)
        if username_field is None or password_field is None:
            logger.warning("  Credential fields not found (username=%s, password=%s)",
                           username_field is not None, password_field is not None)
            await capture_screenshot(page, "login-fields-not-found")
            return False

        await username_field.fill(self.username)
        await password_field.fill(self.password)
        logger.info("  Credentials filled")

        button = await first_visible(page, LOGIN_BUTTON_SELECTORS)
        if button is None:
            await password_field.press("Enter")
            logger.info("  No login button found, pressed Enter")
        else:
            await button.click()
            logger.info("  Login button clicked")
        return True

    async def login(self) -> bool:
        page = self.session.page
        if self._session_fresh() and not await self.login_form_visible(page):
            logger.debug("  Session still valid, skipping login")
            return True

        if self.session.login_in_progress:
            logger.warning("  Login already in progress, not starting another")
            return False

        self.session.login_in_progress = True
        try:
            return await self._login_attempts(page)
        finally:
            self.session.login_in_progress = False

    async def _login_attempts(self, page: Page) -> bool:
        last_failure = "no attempt made"
        for attempt in range(1, self.attempts + 1):
            self._consume_attempt()
            logger.info("Logging in to portal (attempt %d/%d)", attempt, self.attempts)
            try:
                await page.goto(self.base_url, wait_until="domcontentloaded", timeout=self.nav_timeout_ms)
            except Exception as e:
                last_failure = f"navigation failed: {e}"
                logger.warning("  %s", last_failure)
                continue
            await wait_settled(page, self.settle_ms)

            if await self.csrf_banner_visible(page):
                await self.reset_session(page)
                last_failure = "CSRF / invalid session before login"
                continue

            if await self.authenticated_marker_visible(page):
                logger.info("  Already authenticated")
                self._on_success()
                return True

            try:
                submitted = await self._fill_credentials(page)
            except Exception as e:
                submitted = False
                logger.warning("  Filling credentials failed: %s", e)
            if not submitted:
                last_failure = "credential fields not found"
                continue
            await wait_settled(page, self.settle_ms)

            if await self.csrf_banner_visible(page):
                await self.reset_session(page)
                last_failure = "CSRF / invalid session after submit"
                continue

            body = await page_text(page)
            auth_error = AUTH_ERROR_RE.search(body)
            if auth_error:
                logger.error("  Login rejected by portal: %s", auth_error.group(0))
                await capture_screenshot(page, "login-auth-error")
                raise AuthenticationError(f"Authentication failed: {auth_error.group(0)}")

            if await self.authenticated_marker_visible(page) or not await self.login_form_visible(page):
                logger.info("  Logged in successfully")
                self._on_success()
                return True

            last_failure = "login form still visible after submit"
            logger.warning("  %s", last_failure)

        await capture_screenshot(page, "login-failed")
        raise AuthenticationError(f"Login failed after {self.attempts} attempts: {last_failure}")

    def _on_success(self) -> None:
        ctx = self.session.context
        ctx.mark_authenticated()
        ctx.current_system = SubSystem.MHC

    async def ensure_logged_in(self) -> bool:
        """Re-login when the portal bounced the active page back to the login form."""
        if await self.login_form_visible():
            logger.warning("  Login form visible, session was lost")
            self.session.context.mark_logged_out()
        return await self.login()

    async def logout(self) -> bool:
        page = self.session.page
        control = await first_visible(page, LOGOUT_SELECTORS)
        if control is None:
            logger.warning("Could not find logout control")
            return False
        try:
            await control.click()
            await wait_settled(page, self.settle_ms)
        except Exception as e:
            logger.warning("Logout click failed: %s", e)
            return False
        self.session.context.mark_logged_out()
        logger.info("Logged out")
        return True
