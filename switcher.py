import logging

from playwright.async_api import Page

from client import capture_screenshot
from config import POLL_INTERVAL_MS, SWITCH_TIMEOUT_MS
from context import AutomationSession, SubSystem, poll_until
from dialogs import DialogCoordinator
from navigation import adopt_new_page, first_visible, open_pages
from patterns import (
    MENU_TOGGLE_SELECTORS,
    SWITCH_CONTROL_SELECTORS,
    SWITCH_SELECT_SELECTORS,
    SYSTEM_LABELS,
    SYSTEM_SIGNATURES,
)
from safety import SafeActionGate

logger = logging.getLogger(__name__)

_NAV_TEXT_JS = """() => {
    const parts = [];
    document.querySelectorAll('header, nav, .navbar, #menu, .menu, #header, .header').forEach(el => {
        parts.push((el.innerText || '').replace(/\\s+/g, ' ').trim());
    });
    parts.push(document.title || '');
    return parts.join(' | ');
}"""

_SELECT_OPTIONS_JS = """(el) => [...el.options].map(o => ({ value: o.value, label: (o.textContent || '').trim() }))"""

_DETECTION_ORDER = (SubSystem.AIA_CLINIC, SubSystem.SINGLIFE, SubSystem.MHC)


def classify_snapshot(url: str, nav_text: str = "") -> SubSystem | None:
    """Which sub-system a page renders, from its URL first and nav markers second."""
    for system in _DETECTION_ORDER:
        if SYSTEM_SIGNATURES[system].url_re.search(url or ""):
            return system
    text = (nav_text or "").lower()
    for system in _DETECTION_ORDER:
        if any(marker.lower() in text for marker in SYSTEM_SIGNATURES[system].nav_markers):
            return system
    return None


class SystemSwitcher:
    def __init__(
        self,
        session: AutomationSession,
        dialogs: DialogCoordinator,
        gate: SafeActionGate,
        *,
        timeout_ms: int = SWITCH_TIMEOUT_MS,
        poll_interval_ms: int = POLL_INTERVAL_MS,
    ):
        self.session = session
        self.dialogs = dialogs
        self.gate = gate
        self.timeout_ms = timeout_ms
        self.poll_interval_ms = poll_interval_ms

    async def detect_system(self, page: Page | None = None) -> SubSystem | None:
        page = page or self.session.page
        try:
            nav_text = await page.evaluate(_NAV_TEXT_JS)
        except Exception:
            nav_text = ""
        return classify_snapshot(page.url, nav_text)

    async def _find_switch_control(self):
        page = self.session.page
        control = await first_visible(page, SWITCH_CONTROL_SELECTORS)
        if control is not None:
            return control
        for selector in MENU_TOGGLE_SELECTORS:
            toggle = await first_visible(page, [selector])
            if toggle is None:
                continue
            logger.info("  Switch control hidden, opening menu via %s", selector)
            await self.gate.guarded_click(toggle, "menu toggle")
            control = await first_visible(page, SWITCH_CONTROL_SELECTORS)
            if control is not None:
                return control
        return None

    async def _pick_from_list(self, target: SubSystem) -> bool:
        page = self.session.page
        try:
            entry = page.get_by_text(SYSTEM_LABELS[target]).first
            if not await entry.is_visible():
                return False
        except Exception:
            return False
        return await self.gate.guarded_click(entry, f"system entry {target.value}")

    async def _pick_from_select(self, target: SubSystem) -> bool:
        page = self.session.page
        select = await first_visible(page, SWITCH_SELECT_SELECTORS)
        if select is None:
            return False
        try:
            options = await select.evaluate(_SELECT_OPTIONS_JS)
        except Exception as e:
            logger.warning("  Could not read system options: %s", e)
            return False
        for option in options:
            if SYSTEM_LABELS[target].search(option["label"]):
                await select.select_option(value=option["value"])
                logger.info("  Selected system option: %s", option["label"])
                return True
        logger.warning("  No system option matches %s in %s", target.value, [o["label"] for o in options])
        return False

    async def switch_to(self, target: SubSystem, *, force: bool = False) -> bool:
        ctx = self.session.context
        flags = self.session.flags
        if target is SubSystem.AIA_CLINIC and not (flags.flag_for(target) or force):
            logger.info("  Not switching to AIA Clinic: no dialog asked for it")
            return False

        if ctx.current_system is target and await self.detect_system() in (target, None):
            flags.clear_for(target)
            return True

        logger.info("Switching system: %s -> %s", ctx.current_system.value, target.value)
        known = open_pages(self.session.page)

        control = await self._find_switch_control()
        if control is not None:
            await self.gate.guarded_click(control, "Switch System")
        else:
            logger.info("  No Switch System control found, trying system selector")

        picked = await self._pick_from_list(target) or await self._pick_from_select(target)
        if not picked:
            logger.warning("  Could not find a %s entry to switch to", target.value)
            await capture_screenshot(self.session.page, f"switch-{target.value}-entry-not-found")
            return False

        async def _confirmed() -> bool:
            await adopt_new_page(self.session, self.dialogs, known)
            return await self.detect_system() is target

        if await poll_until(_confirmed, timeout_ms=self.timeout_ms, interval_ms=self.poll_interval_ms):
            ctx.current_system = target
            flags.clear_for(target)
            logger.info("  Now on %s", target.value)
            return True

        logger.warning("  Switch to %s not confirmed within %dms", target.value, self.timeout_ms)
        await capture_screenshot(self.session.page, f"switch-{target.value}-timeout")
        return False

    async def switch_if_flagged(self) -> bool:
        """Honour a pending dialog request; ``True`` when nothing was pending."""
        flags = self.session.flags
        if flags.needs_switch_to_singlife:
            return await self.switch_to(SubSystem.SINGLIFE)
        if flags.needs_switch_to_aia:
            return await self.switch_to(SubSystem.AIA_CLINIC)
        return True

    async def ensure_base(self) -> bool:
        if self.session.context.current_system is SubSystem.MHC:
            return True
        return await self.switch_to(SubSystem.MHC)
