import logging

from playwright.async_api import Locator, Page

from context import AutomationSession, poll_until
from dialogs import DialogCoordinator

logger = logging.getLogger(__name__)

_VISIBLE_CONTROLS_JS = """() => {
    return [...document.querySelectorAll('button, a, input[type=button], input[type=submit]')]
        .filter(e => {
            const s = window.getComputedStyle(e);
            return s.display !== 'none' && s.visibility !== 'hidden' && e.offsetWidth > 0;
        })
        .map(e => (e.textContent || e.value || '').trim())
        .filter(t => t.length > 0 && t.length < 60);
}"""


async def first_visible(page: Page, selectors: list[str]) -> Locator | None:
    """First selector (in priority order) with a visible match."""
    for selector in selectors:
        try:
            locator = page.locator(selector).first
            if await locator.is_visible():
                return locator
        except Exception:
            continue
    return None


async def page_text(page: Page) -> str:
    try:
        return await page.inner_text("body", timeout=5000)
    except Exception:
        return ""


async def wait_settled(page: Page, settle_ms: int) -> None:
    try:
        await page.wait_for_load_state("domcontentloaded")
    except Exception:
        pass
    await page.wait_for_timeout(settle_ms)


async def log_visible_controls(page: Page) -> None:
    try:
        labels = await page.evaluate(_VISIBLE_CONTROLS_JS)
        logger.info("  Visible buttons/links: %s", labels[:20])
    except Exception as e:
        logger.debug("  Could not list visible controls: %s", e)


def open_pages(page: Page) -> list[Page]:
    try:
        return list(page.context.pages)
    except Exception:
        return [page]


async def adopt_new_page(session: AutomationSession, dialogs: DialogCoordinator,
                         known: list[Page]) -> Page | None:
    """Adopt a page opened since ``known`` was captured, if there is one.

    The dialog handler moves to the new page before it becomes active; the
    handle it replaces is closed by the arena.
    """
    current = session.page
    for candidate in open_pages(current):
        if candidate is current or any(candidate is p for p in known):
            continue
        try:
            await candidate.wait_for_load_state("domcontentloaded")
        except Exception as e:
            logger.debug("  New page did not finish loading: %s", e)
        dialogs.install(candidate)
        await session.context.arena.adopt(candidate)
        logger.info("  Adopted new page: %s", candidate.url)
        return candidate
    return None


async def wait_for_new_page(session: AutomationSession, dialogs: DialogCoordinator,
                            known: list[Page], *, timeout_ms: int, interval_ms: int) -> Page | None:
    return await poll_until(
        lambda: adopt_new_page(session, dialogs, known),
        timeout_ms=timeout_ms,
        interval_ms=interval_ms,
    )
