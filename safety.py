import logging

from playwright.async_api import Locator, Page

from config import CLICK_TIMEOUT_MS
from context import AutomationSession
from patterns import CLAIM_FORM_MARKERS, SAFE_ACTION_RE, SUBMIT_RE

logger = logging.getLogger(__name__)

_DESCRIBE_TARGET_JS = """(el) => ({
    tag: el.tagName.toLowerCase(),
    type: (el.getAttribute('type') || '').toLowerCase(),
    text: (el.innerText || el.textContent || '').replace(/\\s+/g, ' ').trim(),
    value: typeof el.value === 'string' ? el.value : (el.getAttribute('value') || ''),
    ariaLabel: el.getAttribute('aria-label') || '',
})"""


class UnsafeActionError(RuntimeError):
    """A submit-like control was about to be clicked on a claim form."""


def is_submit_like(text: str = "", value: str = "", aria_label: str = "", input_type: str = "") -> bool:
    combined = " ".join(part for part in (text, value, aria_label) if part)
    if SAFE_ACTION_RE.search(combined):
        return False
    if SUBMIT_RE.search(combined):
        return True
    return (input_type or "").lower() == "submit"


async def describe_target(target: Locator) -> dict:
    try:
        return await target.evaluate(_DESCRIBE_TARGET_JS)
    except Exception as e:
        logger.debug("  Could not describe click target: %s", e)
        return {}


class SafeActionGate:
    """Every simulated click goes through ``guarded_click``."""

    def __init__(self, session: AutomationSession, *, click_timeout_ms: int = CLICK_TIMEOUT_MS,
                 settle_ms: int = 1200):
        self.session = session
        self.click_timeout_ms = click_timeout_ms
        self.settle_ms = settle_ms

    async def claim_form_active(self, page: Page | None = None) -> bool:
        page = page or self.session.page
        for selector in CLAIM_FORM_MARKERS:
            try:
                if await page.locator(selector).count() > 0:
                    return True
            except Exception:
                continue
        return False

    async def check(self, target: Locator, label: str = "") -> bool:
        """Raise ``UnsafeActionError`` if clicking ``target`` could submit a claim.

        Returns ``False`` when a claim form is open but the target cannot be
        inspected; such a click is skipped rather than risked.
        """
        if not await self.claim_form_active():
            return True
        info = await describe_target(target)
        if not info:
            logger.warning("  Skipping click on %s: target could not be inspected on a claim form", label or "target")
            return False
        if is_submit_like(info.get("text", ""), info.get("value", ""),
                          info.get("ariaLabel", ""), info.get("type", "")):
            logger.critical("  BLOCKED submit-like click on claim form: label=%r target=%s", label, info)
            raise UnsafeActionError(
                f"Refusing to click submit-like control {label or info.get('text') or info.get('value')!r} on a claim form"
            )
        return True

    async def guarded_click(self, target: Locator, label: str = "") -> bool:
        if not await self.check(target, label):
            return False
        page = self.session.page
        try:
            await target.click(timeout=self.click_timeout_ms)
        except Exception as e:
            logger.debug("  Click on %s failed (%s), retrying with force", label or "target", e)
            try:
                await target.click(timeout=self.click_timeout_ms, force=True)
            except Exception as e2:
                logger.warning("  Could not click %s: %s", label or "target", e2)
                return False
        try:
            await page.wait_for_load_state("domcontentloaded")
        except Exception:
            pass
        await page.wait_for_timeout(self.settle_ms)
        if label:
            logger.info("  Clicked: %s", label)
        return True
