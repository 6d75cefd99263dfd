import logging
import time

from playwright.async_api import Dialog, Page

from context import AutomationSession, DialogEvent, DialogKind, RouteFlags
from patterns import (
    AIA_BRAND_RE,
    AIA_SYSTEM_KEYWORD_RE,
    REDIRECT_INSTRUCTION_RE,
    SINGLIFE_BRAND_RE,
    SINGLIFE_SYSTEM_KEYWORD_RE,
)

logger = logging.getLogger(__name__)


def classify_dialog_message(message: str) -> dict[str, bool]:
    """Map dialog text to the route flags it should raise."""
    text = message or ""
    redirect = bool(REDIRECT_INSTRUCTION_RE.search(text))
    return {
        "needs_switch_to_aia": bool(AIA_SYSTEM_KEYWORD_RE.search(text))
        or (redirect and bool(AIA_BRAND_RE.search(text))),
        "needs_switch_to_singlife": bool(SINGLIFE_SYSTEM_KEYWORD_RE.search(text))
        or (redirect and bool(SINGLIFE_BRAND_RE.search(text))),
    }


def apply_dialog_event(flags: RouteFlags, event: DialogEvent) -> None:
    raised = classify_dialog_message(event.message)
    if raised["needs_switch_to_aia"]:
        flags.needs_switch_to_aia = True
    if raised["needs_switch_to_singlife"]:
        flags.needs_switch_to_singlife = True
    flags.last_dialog_message = event.message


class DialogCoordinator:
    """Owns the single native-dialog handler on the active page.

    The handler accepts the dialog before anything else and never touches the
    DOM; its only outputs are a ``DialogEvent`` in the session mailbox and the
    route flags derived from the message text.
    """

    def __init__(self, session: AutomationSession):
        self.session = session
        self._page: Page | None = None

    @property
    def installed_on(self) -> Page | None:
        return self._page

    def install(self, page: Page, *, reset: bool = False) -> None:
        if reset:
            self.session.flags.reset()
        if self._page is page:
            return
        if self._page is not None:
            try:
                self._page.remove_listener("dialog", self._on_dialog)
            except Exception as e:
                logger.debug("  Could not detach dialog handler from previous page: %s", e)
        page.on("dialog", self._on_dialog)
        self._page = page
        logger.debug("  Dialog handler installed")

    async def _on_dialog(self, dialog: Dialog) -> None:
        message = dialog.message or ""
        kind = DialogKind.parse(dialog.type)
        try:
            await dialog.accept()
        except Exception as e:
            logger.warning("  Could not accept %s dialog: %s", kind.value, e)

        event = DialogEvent(
            message=message,
            kind=kind,
            observed_at=time.time(),
            seq=self.session.next_dialog_seq(),
        )
        self.session.dialogs.append(event)
        apply_dialog_event(self.session.flags, event)
        logger.info("  Dialog (%s) accepted: %s", kind.value, message[:200])
        if self.session.flags.any_set():
            logger.info("  Route flags now: aia=%s singlife=%s",
                        self.session.flags.needs_switch_to_aia,
                        self.session.flags.needs_switch_to_singlife)

    def mark(self) -> int:
        """Sequence number to pass to ``events_since`` after an action."""
        return self.session.dialog_seq

    def events_since(self, mark: int) -> list[DialogEvent]:
        return self.session.dialogs_since(mark)
