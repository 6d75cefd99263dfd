import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from playwright.async_api import Locator

from client import capture_screenshot
from config import DIALOG_WAIT_MS, POLL_INTERVAL_MS
from context import AutomationSession, poll_until
from dialogs import DialogCoordinator
from navigation import first_visible
from patterns import (
    COMPUTE_CLAIM_SELECTORS,
    DRAFT_MARKER_RE,
    DRAFT_SAVED_RE,
    INVALID_LINE_ITEM_RE,
    MUST_COMPUTE_RE,
    SAVE_DRAFT_SELECTORS,
    SUBMIT_RE,
)
from safety import SafeActionGate, UnsafeActionError, describe_target

logger = logging.getLogger(__name__)


@dataclass
class DraftResult:
    saved: bool
    reason: str | None = None
    dialog_message: str | None = None
    retried: bool = False


def is_draft_control(info: dict) -> bool:
    combined = " ".join(info.get(k, "") or "" for k in ("text", "value", "ariaLabel"))
    return bool(DRAFT_MARKER_RE.search(combined)) and not SUBMIT_RE.search(combined)


class DraftSaver:
    def __init__(
        self,
        session: AutomationSession,
        dialogs: DialogCoordinator,
        gate: SafeActionGate,
        *,
        clear_line_items: Callable[[], Awaitable[object]] | None = None,
        dialog_wait_ms: int = DIALOG_WAIT_MS,
        poll_interval_ms: int = POLL_INTERVAL_MS,
    ):
        self.session = session
        self.dialogs = dialogs
        self.gate = gate
        self.clear_line_items = clear_line_items
        self.dialog_wait_ms = dialog_wait_ms
        self.poll_interval_ms = poll_interval_ms

    async def compute_claim(self) -> bool:
        control = await first_visible(self.session.page, COMPUTE_CLAIM_SELECTORS)
        if control is None:
            logger.info("  No Compute Claim control, continuing")
            return False
        return await self.gate.guarded_click(control, "Compute Claim")

    async def find_draft_control(self) -> Locator | None:
        page = self.session.page
        for selector in SAVE_DRAFT_SELECTORS:
            try:
                candidate = page.locator(selector).first
                if not await candidate.is_visible():
                    continue
            except Exception:
                continue
            if is_draft_control(await describe_target(candidate)):
                return candidate
        return None

    def _cleanup_for(self, message: str) -> Callable[[], Awaitable[object]] | None:
        if INVALID_LINE_ITEM_RE.search(message):
            if self.clear_line_items is None:
                return None
            logger.info("  Portal rejected a line item, clearing line items before retry")
            return self.clear_line_items
        if MUST_COMPUTE_RE.search(message):
            logger.info("  Portal asked for Compute Claim before saving")
            return self.compute_claim
        return None

    async def save(self, compute_first: bool = True) -> DraftResult:
        if compute_first:
            try:
                await self.compute_claim()
            except UnsafeActionError:
                raise
            except Exception as e:
                logger.warning("  Compute Claim failed, saving anyway: %s", e)

        retried = False
        while True:
            control = await self.find_draft_control()
            if control is None:
                logger.error("  Save As Draft control not found")
                await capture_screenshot(self.session.page, "draft-control-not-found")
                return DraftResult(saved=False, reason="draft_control_not_found", retried=retried)

            mark = self.dialogs.mark()
            if not await self.gate.guarded_click(control, "Save As Draft"):
                return DraftResult(saved=False, reason="draft_click_failed", retried=retried)

            events = await poll_until(
                lambda: self._events_after(mark),
                timeout_ms=self.dialog_wait_ms,
                interval_ms=self.poll_interval_ms,
            )
            message = events[-1].message if events else None
            if message is None or DRAFT_SAVED_RE.search(message):
                logger.info("  Draft saved%s", f" ({message})" if message else "")
                await capture_screenshot(self.session.page, "draft-saved")
                return DraftResult(saved=True, dialog_message=message, retried=retried)

            cleanup = None if retried else self._cleanup_for(message)
            if cleanup is None:
                logger.error("  Draft save rejected: %s", message)
                await capture_screenshot(self.session.page, "draft-rejected")
                return DraftResult(saved=False, reason="dialog_rejected", dialog_message=message, retried=retried)

            await cleanup()
            retried = True

    async def _events_after(self, mark: int):
        return self.dialogs.events_since(mark)
