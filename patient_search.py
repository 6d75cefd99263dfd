import logging

from client import capture_screenshot
from config import MIN_SEARCH_TERM_LENGTH, POLL_INTERVAL_MS, SEARCH_RESULT_TIMEOUT_MS
from context import (
    AutomationSession,
    ProgramKind,
    SearchAttempt,
    SearchOutcome,
    SubSystem,
    poll_until,
)
from dialogs import DialogCoordinator
from field_resolver import FieldResolver
from navigation import first_visible, log_visible_controls, open_pages, page_text, wait_for_new_page
from patterns import (
    ADD_VISIT_TEMPLATES,
    MEMBER_NOT_FOUND_RE,
    NORMAL_VISIT_SELECTORS,
    NRIC,
    PARTNER_PATTERNS,
    PORTAL_LABELS,
    PROGRAM_TILES,
    SEARCH_BUTTON_SELECTORS,
    VISIT_DATE,
    VISIT_FORM_MARKERS,
)
from safety import SafeActionGate
from switcher import SystemSwitcher

logger = logging.getLogger(__name__)

PROGRAM_ORDER = (ProgramKind.OTHER, ProgramKind.AIA)

_RESULT_ROWS_JS = """(term) => {
    const needle = term.toLowerCase();
    const visible = (el) => {
        const s = window.getComputedStyle(el);
        return s.display !== 'none' && s.visibility !== 'hidden' && el.getClientRects().length > 0;
    };
    return [...document.querySelectorAll('table tr')]
        .filter(tr => !tr.querySelector('tr') && !tr.querySelector('input[type=text], input:not([type])'))
        .filter(visible)
        .map(tr => (tr.innerText || '').replace(/\\s+/g, ' ').trim())
        .filter(text => text.toLowerCase().includes(needle));
}"""


def validate_term(term: str, min_length: int = MIN_SEARCH_TERM_LENGTH) -> str | None:
    """Reason the term cannot be searched, or ``None`` if it can."""
    term = (term or "").strip()
    if len(term) < min_length:
        return "term_too_short"
    if not any(ch.isdigit() for ch in term):
        return "term_without_digit"
    return None


def resolve_sub_portal(row_text: str) -> str | None:
    for name, pattern in PARTNER_PATTERNS:
        if pattern.search(row_text or ""):
            return name
    return None


def pick_result_row(rows: list[str]) -> tuple[str | None, str | None, str | None]:
    """Return ``(row_text, sub_portal, failure_reason)`` for the matching rows.

    Several rows are acceptable only when they all resolve to the same
    sub-portal.
    """
    if not rows:
        return None, None, "no_result_rows"
    portals = {resolve_sub_portal(row) for row in rows}
    if len(portals) > 1:
        return None, None, f"ambiguous_rows ({len(rows)} rows, portals {sorted(p or 'base' for p in portals)})"
    return rows[0], resolve_sub_portal(rows[0]), None


class PatientLocator:
    def __init__(
        self,
        session: AutomationSession,
        dialogs: DialogCoordinator,
        gate: SafeActionGate,
        resolver: FieldResolver,
        switcher: SystemSwitcher,
        *,
        min_term_length: int = MIN_SEARCH_TERM_LENGTH,
        result_timeout_ms: int = SEARCH_RESULT_TIMEOUT_MS,
        poll_interval_ms: int = POLL_INTERVAL_MS,
        popup_wait_ms: int = 1500,
    ):
        self.session = session
        self.dialogs = dialogs
        self.gate = gate
        self.resolver = resolver
        self.switcher = switcher
        self.min_term_length = min_term_length
        self.result_timeout_ms = result_timeout_ms
        self.poll_interval_ms = poll_interval_ms
        self.popup_wait_ms = popup_wait_ms

    async def search(self, term: str, visit_date: str | None = None) -> SearchOutcome:
        term = (term or "").strip()
        outcome = SearchOutcome(term=term)
        rejected = validate_term(term, self.min_term_length)
        if rejected:
            logger.warning("  Not searching %r: %s", term, rejected)
            outcome.reason = rejected
            return outcome

        switch_retry_used = False
        for kind in PROGRAM_ORDER:
            attempt = await self._attempt(kind, term, visit_date)
            outcome.attempts.append(attempt)

            if (not attempt.found and not switch_retry_used
                    and self.session.flags.needs_switch_to_aia
                    and self.session.context.current_system is not SubSystem.AIA_CLINIC):
                switch_retry_used = True
                logger.info("  Dialog asked for AIA Clinic, switching and retrying %s search", kind.value)
                if await self.switcher.switch_to(SubSystem.AIA_CLINIC):
                    attempt = await self._attempt(kind, term, visit_date)
                    outcome.attempts.append(attempt)

            if attempt.found:
                logger.info("  Patient found via %s program (sub-portal: %s)",
                            kind.value, attempt.resolved_sub_portal or "base")
                return outcome
            if not attempt.member_not_found:
                outcome.reason = attempt.reason
                logger.warning("  Search stopped on %s program: %s", kind.value, attempt.reason)
                return outcome
            logger.info("  Member not found under %s program", kind.value)

        outcome.reason = "member_not_found"
        return outcome

    async def _ensure_search_form(self, kind: ProgramKind) -> bool:
        page = self.session.page
        known = open_pages(page)
        normal_visit = await first_visible(page, NORMAL_VISIT_SELECTORS)
        if normal_visit is not None:
            await self.gate.guarded_click(normal_visit, "Normal Visit")

        tile = await first_visible(self.session.page, PROGRAM_TILES[kind.value])
        if tile is None:
            if (await self.resolver.locate(NRIC, self.session.page)).ok:
                logger.info("  Program tile for %s not found, searching in the current form", kind.value)
                return True
            logger.warning("  Program tile for %s not found", kind.value)
            await log_visible_controls(self.session.page)
            await capture_screenshot(self.session.page, f"search-form-{kind.value}-not-found")
            return False
        if not await self.gate.guarded_click(tile, f"{kind.value} program tile"):
            return False
        await wait_for_new_page(self.session, self.dialogs, known,
                                timeout_ms=self.popup_wait_ms, interval_ms=self.poll_interval_ms)
        return True

    async def _read_result(self, term: str, mark: int) -> dict | None:
        events = self.dialogs.events_since(mark)
        if events:
            message = events[-1].message
            if MEMBER_NOT_FOUND_RE.search(message):
                return {"status": "member_not_found"}
            return {"status": "dialog", "message": message}

        page = self.session.page
        if MEMBER_NOT_FOUND_RE.search(await page_text(page)):
            return {"status": "member_not_found"}
        rows = await page.evaluate(_RESULT_ROWS_JS, term)
        if rows:
            return {"status": "rows", "rows": rows}
        return None

    async def _attempt(self, kind: ProgramKind, term: str, visit_date: str | None) -> SearchAttempt:
        attempt = SearchAttempt(term=term, program_kind=kind)
        logger.info("  Searching %s under %s program", term, kind.value)
        if not await self._ensure_search_form(kind):
            attempt.reason = "search_form_not_found"
            return attempt
        page = self.session.page

        if visit_date:
            date_field = await self.resolver.locate(VISIT_DATE, page)
            if date_field.ok:
                try:
                    await date_field.element.fill(visit_date)
                except Exception as e:
                    logger.warning("  Could not fill search visit date: %s", e)
            else:
                logger.warning("  Search visit date field not found: %s", date_field.reason)

        field = await self.resolver.locate(NRIC, page)
        if not field.ok:
            attempt.reason = f"identifier_field_{field.reason}"
            return attempt
        await field.element.fill(term)
        echoed = await field.element.input_value()
        if term.upper() not in (echoed or "").upper():
            logger.warning("  Identifier field echoed %r, expected %r", echoed, term)
            attempt.reason = "value_mismatch"
            return attempt

        button = await first_visible(page, SEARCH_BUTTON_SELECTORS)
        mark = self.dialogs.mark()
        if button is None:
            await field.element.press("Enter")
            logger.info("  No search button found, pressed Enter")
        elif not await self.gate.guarded_click(button, "Search"):
            attempt.reason = "search_click_failed"
            return attempt

        result = await poll_until(
            lambda: self._read_result(term, mark),
            timeout_ms=self.result_timeout_ms,
            interval_ms=self.poll_interval_ms,
        )
        if result is None:
            # no row and no message within the deadline
            attempt.member_not_found = True
            attempt.reason = "no_result_within_timeout"
        elif result["status"] == "member_not_found":
            attempt.member_not_found = True
            attempt.reason = "member_not_found"
        elif result["status"] == "dialog":
            attempt.reason = f"dialog: {result['message'][:200]}"
        else:
            row, portal, failure = pick_result_row(result["rows"])
            if failure:
                # mixed portals count as no match under this program
                attempt.member_not_found = True
                attempt.reason = failure
            else:
                attempt.found = True
                attempt.row_text = row
                attempt.resolved_sub_portal = portal
        return attempt

    async def open_patient(self, attempt: SearchAttempt) -> bool:
        """Open the matched patient from the result row, name link first."""
        page = self.session.page
        known = open_pages(page)
        row = page.locator("tr").filter(has_text=attempt.term).last
        for selector in ("a", "input[type='radio']", "td"):
            target = row.locator(selector).first
            try:
                if await target.count() == 0 or not await target.is_visible():
                    continue
            except Exception:
                continue
            if await self.gate.guarded_click(target, f"patient row ({selector})"):
                await wait_for_new_page(self.session, self.dialogs, known,
                                        timeout_ms=self.popup_wait_ms, interval_ms=self.poll_interval_ms)
                return True
        logger.warning("  Could not open patient row for %s", attempt.term)
        await capture_screenshot(page, "patient-row-not-clickable")
        return False

    async def visit_form_visible(self) -> bool:
        return await first_visible(self.session.page, VISIT_FORM_MARKERS) is not None

    async def add_visit(self, portal: str | None = None) -> bool:
        if await self.visit_form_visible():
            return True
        label = PORTAL_LABELS.get(portal or "", "")
        selectors = [t.format(portal=label) for t in ADD_VISIT_TEMPLATES if label or "{portal}" not in t]
        known = open_pages(self.session.page)
        button = await first_visible(self.session.page, selectors)
        if button is None:
            logger.warning("  Add Visit control not found")
            await log_visible_controls(self.session.page)
            await capture_screenshot(self.session.page, "add-visit-not-found")
            return False
        if not await self.gate.guarded_click(button, "Add Visit"):
            return False
        await wait_for_new_page(self.session, self.dialogs, known,
                                timeout_ms=self.popup_wait_ms, interval_ms=self.poll_interval_ms)
        if await poll_until(self.visit_form_visible, timeout_ms=self.result_timeout_ms,
                            interval_ms=self.poll_interval_ms):
            logger.info("  Visit form open")
            return True
        logger.warning("  Visit form did not appear after Add Visit")
        await capture_screenshot(self.session.page, "visit-form-not-found")
        return False
