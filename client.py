import logging
import re
import time
from contextlib import asynccontextmanager

from playwright.async_api import async_playwright, Page

from config import AWS_REGION, BROWSER_ID, HEADLESS, SCREENSHOT_DIR, USE_AGENTCORE

logger = logging.getLogger(__name__)

_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


@asynccontextmanager
async def get_bedrock_browser(aws_region: str, browser_id: str):
    from bedrock_agentcore.tools.browser_client import browser_session

    logger.info("Connecting to Bedrock Browser")
    with browser_session(aws_region, identifier=browser_id) as client:
        ws_url, headers = client.generate_ws_headers()
        async with async_playwright() as pw:
            browser = await pw.chromium.connect_over_cdp(ws_url, headers=headers)
            context = browser.contexts[0] if browser.contexts else await browser.new_context()
            await context.set_extra_http_headers({"User-Agent": _USER_AGENT})
            page = context.pages[0] if context.pages else await context.new_page()
            try:
                yield page
            finally:
                # the active page may have been replaced by an adopted popup
                for open_page in list(context.pages):
                    await open_page.close()
                await browser.close()
                logger.info("Browser session ended")


@asynccontextmanager
async def get_local_browser(headless: bool = HEADLESS):
    async with async_playwright() as pw:
        browser = await pw.chromium.launch(headless=headless)
        context = await browser.new_context(
            user_agent=_USER_AGENT,
            viewport={"width": 1920, "height": 1080},
        )
        page = await context.new_page()
        try:
            yield page
        finally:
            await context.close()
            await browser.close()
            logger.info("Browser session ended")


@asynccontextmanager
async def get_browser_page():
    """Yield a Playwright Page from either a local browser or AgentCore."""
    if USE_AGENTCORE:
        async with get_bedrock_browser(AWS_REGION, BROWSER_ID) as page:
            yield page
    else:
        async with get_local_browser() as page:
            yield page


def _slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-") or "page"


async def capture_screenshot(page: Page, name: str) -> str | None:
    """Best-effort diagnostic screenshot; never raises."""
    try:
        SCREENSHOT_DIR.mkdir(parents=True, exist_ok=True)
        path = SCREENSHOT_DIR / f"{time.strftime('%Y%m%d-%H%M%S')}_{_slug(name)}.png"
        await page.screenshot(path=str(path), full_page=True)
        logger.debug("  Screenshot saved to %s", path)
        return str(path)
    except Exception as e:
        logger.debug("  Screenshot %s skipped: %s", name, e)
        return None
