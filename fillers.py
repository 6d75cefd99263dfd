import logging
import re

from playwright.async_api import Locator

from client import capture_screenshot
from config import CONSULTATION_FEE_MAX
from context import AutomationSession, ClaimDraftState
from field_resolver import FieldResolver
from models import ClaimEntry
from patterns import (
    CHARGE_TYPE,
    CHARGE_TYPE_OPTIONS,
    CONSULTATION_FEE,
    DIAGNOSIS_PRIMARY,
    DRUG_SECTION,
    MC_DAYS,
    MC_START_DATE,
    PROCEDURE_SECTION,
    VISIT_DATE,
    WAIVER_OF_REFERRAL,
    FieldConcept,
)

logger = logging.getLogger(__name__)

_OPTIONS_JS = """(el) => el.tagName.toLowerCase() === 'select'
    ? [...el.options].map(o => ({ value: o.value, label: (o.textContent || '').replace(/\\s+/g, ' ').trim() }))
    : null"""

_TABLE_SECTION_JS = """({ headerSource, stopSource, values, clear }) => {
    const headerRe = new RegExp(headerSource, 'i');
    const stopRe = stopSource ? new RegExp(stopSource, 'i') : null;
    const norm = (s) => (s || '').replace(/\\s+/g, ' ').trim();

    const cells = [...document.querySelectorAll('th, td, b, strong, span')];
    const header = cells.find(el => headerRe.test(norm(el.textContent)) && norm(el.textContent).length < 80);
    if (!header) return { found: false, filled: 0 };
    const table = header.closest('table');
    if (!table) return { found: false, filled: 0 };

    const rows = [...table.querySelectorAll('tr')];
    const start = rows.findIndex(r => r.contains(header));
    const inputs = [];
    for (let i = start + 1; i < rows.length; i++) {
        if (stopRe && stopRe.test(norm(rows[i].innerText))) break;
        for (const input of rows[i].querySelectorAll('input[type="text"], input:not([type])')) {
            if (input.disabled || input.readOnly) continue;
            if (input.getBoundingClientRect().width <= 120) continue;
            inputs.push(input);
        }
    }

    let filled = 0;
    const count = clear ? inputs.length : Math.min(values.length, inputs.length);
    for (let i = 0; i < count; i++) {
        const value = clear ? '' : norm(values[i]);
        if (!clear && !value) continue;
        inputs[i].value = value;
        inputs[i].dispatchEvent(new Event('input', { bubbles: true }));
        inputs[i].dispatchEvent(new Event('change', { bubbles: true }));
        filled++;
    }
    return { found: true, filled, available: inputs.length };
}"""

_WORD_RE = re.compile(r"[a-z0-9]{4,}")


def match_charge_option(options: list[dict], charge_type: str) -> dict | None:
    pattern = CHARGE_TYPE_OPTIONS.get(charge_type)
    if pattern is None:
        return None
    for option in options:
        if option["value"] and pattern.search(option["label"]):
            return option
    return None


def match_diagnosis_option(options: list[dict], code: str | None, description: str | None) -> dict | None:
    """Pick a diagnosis option by code, falling back to description keyword overlap."""
    usable = [o for o in options if o["value"] and not re.match(r"^\s*(?:-+|select|please)", o["label"], re.I)]
    if code:
        needle = code.strip().lower()
        for option in usable:
            if needle and (needle == option["value"].strip().lower() or needle in option["label"].lower()):
                return option
    if description:
        words = set(_WORD_RE.findall(description.lower()))
        best, best_overlap = None, 0
        for option in usable:
            overlap = len(words & set(_WORD_RE.findall(option["label"].lower())))
            if overlap > best_overlap:
                best, best_overlap = option, overlap
        return best
    return None


class ClaimFormFiller:
    """Populates the visit form of the active page, one field at a time.

    Every field goes through ``FieldResolver``; a field that cannot be
    resolved is recorded in ``ClaimDraftState.skipped`` and left alone.
    """

    def __init__(self, session: AutomationSession, resolver: FieldResolver,
                 *, consultation_fee_max: int = CONSULTATION_FEE_MAX):
        self.session = session
        self.resolver = resolver
        self.consultation_fee_max = consultation_fee_max
        self.state = ClaimDraftState()

    async def _locate(self, concept: FieldConcept) -> Locator | None:
        result = await self.resolver.locate(concept, self.session.page)
        if not result.ok:
            self.state.record_skip(concept.name, result.reason or "unknown")
            return None
        return result.element

    async def _fill_text(self, concept: FieldConcept, value: str) -> bool:
        element = await self._locate(concept)
        if element is None:
            return False
        try:
            await element.fill(value)
            echoed = await element.input_value()
        except Exception as e:
            logger.warning("  Could not fill %s: %s", concept.name, e)
            self.state.record_skip(concept.name, "fill_failed")
            return False
        if value not in (echoed or ""):
            logger.warning("  %s echoed %r instead of %r", concept.name, echoed, value)
            self.state.record_skip(concept.name, "value_mismatch")
            return False
        logger.info("  Filled %s: %s", concept.name, value)
        return True

    async def _select(self, concept: FieldConcept, element: Locator, value: str) -> bool:
        try:
            await element.select_option(value=value)
        except Exception as e:
            logger.warning("  Could not select %s=%r: %s", concept.name, value, e)
            self.state.record_skip(concept.name, "fill_failed")
            return False
        return True

    async def _select_options(self, element: Locator) -> list[dict] | None:
        try:
            return await element.evaluate(_OPTIONS_JS)
        except Exception as e:
            logger.debug("  Could not read options: %s", e)
            return None

    async def fill_visit_date(self, visit_date: str) -> bool:
        if await self._fill_text(VISIT_DATE, visit_date):
            self.state.visit_date = visit_date
            return True
        return False

    async def fill_charge_type(self, charge_type: str) -> bool:
        element = await self._locate(CHARGE_TYPE)
        if element is None:
            return False
        options = await self._select_options(element) or []
        option = match_charge_option(options, charge_type)
        if option is None:
            logger.warning("  No charge type option for %r in %s", charge_type, [o["label"] for o in options])
            self.state.record_skip(CHARGE_TYPE.name, "value_mismatch")
            return False
        if not await self._select(CHARGE_TYPE, element, option["value"]):
            return False
        self.state.charge_type = charge_type
        logger.info("  Charge type: %s", option["label"])
        return True

    async def set_waiver_of_referral(self) -> bool:
        element = await self._locate(WAIVER_OF_REFERRAL)
        if element is None:
            return False
        try:
            if not await element.is_checked():
                await element.check()
        except Exception as e:
            logger.warning("  Could not tick waiver of referral: %s", e)
            self.state.record_skip(WAIVER_OF_REFERRAL.name, "fill_failed")
            return False
        self.state.waiver_of_referral = True
        logger.info("  Waiver of referral ticked")
        return True

    async def fill_consultation_fee_max(self) -> bool:
        value = str(self.consultation_fee_max)
        if await self._fill_text(CONSULTATION_FEE, value):
            self.state.consultation_fee = value
            return True
        return False

    async def fill_mc(self, mc_days: int, mc_start_date: str | None) -> bool:
        if mc_days <= 0:
            return True
        element = await self._locate(MC_DAYS)
        if element is None:
            return False
        options = await self._select_options(element)
        if options is not None:
            match = next((o for o in options if o["value"].strip() == str(mc_days)
                          or o["label"].strip() == str(mc_days)), None)
            if match is None:
                self.state.record_skip(MC_DAYS.name, "value_mismatch")
                return False
            if not await self._select(MC_DAYS, element, match["value"]):
                return False
        else:
            try:
                await element.fill(str(mc_days))
            except Exception as e:
                logger.warning("  Could not fill %s: %s", MC_DAYS.name, e)
                self.state.record_skip(MC_DAYS.name, "fill_failed")
                return False
        self.state.mc_days = mc_days
        logger.info("  MC days: %d", mc_days)

        if mc_start_date and await self._fill_text(MC_START_DATE, mc_start_date):
            self.state.mc_start_date = mc_start_date
        return True

    async def fill_diagnosis(self, code: str | None, description: str | None) -> bool:
        if not code and not description:
            return True
        element = await self._locate(DIAGNOSIS_PRIMARY)
        if element is None:
            return False
        options = await self._select_options(element) or []
        option = match_diagnosis_option(options, code, description)
        if option is None:
            logger.warning("  No diagnosis option matches code=%r description=%r", code, description)
            self.state.record_skip(DIAGNOSIS_PRIMARY.name, "value_mismatch")
            return False
        if not await self._select(DIAGNOSIS_PRIMARY, element, option["value"]):
            return False
        self.state.diagnosis = option["label"]
        logger.info("  Diagnosis: %s", option["label"])
        return True

    async def _table_section(self, section: tuple[re.Pattern, re.Pattern], values: list[str],
                             clear: bool = False) -> int:
        header, stop = section
        try:
            result = await self.session.page.evaluate(_TABLE_SECTION_JS, {
                "headerSource": header.pattern,
                "stopSource": stop.pattern,
                "values": values,
                "clear": clear,
            })
        except Exception as e:
            logger.warning("  Table section %s not filled: %s", header.pattern, e)
            return 0
        if not result.get("found"):
            logger.warning("  Table section %s not found", header.pattern)
        return result.get("filled", 0)

    async def fill_line_items(self, drugs: list[str], procedures: list[str]) -> int:
        drug_count = await self._table_section(DRUG_SECTION, drugs) if drugs else 0
        procedure_count = await self._table_section(PROCEDURE_SECTION, procedures) if procedures else 0
        logger.info("  Line items filled: drugs=%d/%d, procedures=%d/%d",
                    drug_count, len(drugs), procedure_count, len(procedures))
        self.state.line_items = drugs[:drug_count] + procedures[:procedure_count]
        return drug_count + procedure_count

    async def clear_line_items(self) -> int:
        cleared = await self._table_section(DRUG_SECTION, [], clear=True)
        cleared += await self._table_section(PROCEDURE_SECTION, [], clear=True)
        self.state.line_items = []
        logger.info("  Cleared %d line item inputs", cleared)
        return cleared

    async def fill(self, claim: ClaimEntry) -> ClaimDraftState:
        self.state = ClaimDraftState()
        await self.fill_visit_date(claim.visit_date)
        await self.fill_charge_type(claim.charge_type)
        if claim.charge_type == "first":
            await self.set_waiver_of_referral()
        await self.fill_consultation_fee_max()
        await self.fill_mc(claim.mc_days, claim.mc_start_date)
        await self.fill_diagnosis(claim.diagnosis_code, claim.diagnosis_description)
        if claim.items:
            await self.fill_line_items([i.name for i in claim.drugs], [i.name for i in claim.procedures])
        if self.state.skipped:
            logger.warning("  Fields skipped: %s", self.state.skipped)
            await capture_screenshot(self.session.page, "visit-form-fields-skipped")
        return self.state
