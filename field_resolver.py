"""Label-anchored field location.

Every visit-form filler resolves its control through ``FieldResolver``. The
resolver runs a chain of strategies (row scan, attribute scan, geometry band)
and only moves to the next one when the previous returned a failure result.
Each strategy is confined to the label's own row or band, so a failed lookup
never turns into a guess at some unrelated control on the page.
"""

import logging
import re
import uuid

from playwright.async_api import Frame, Page

from context import FieldLocatorResult
from patterns import FieldConcept

logger = logging.getLogger(__name__)

CANDIDATE_ATTR = "data-claimfill-candidate"

DEFAULT_CONTROL_SELECTOR = (
    "input:not([type='hidden']):not([type='button']):not([type='submit']):not([type='reset'])"
    ":not([type='image']):not([type='checkbox']):not([type='radio']), select, textarea"
)

_DATE_CONFLICT_RE = re.compile(r"date|visit|\bdt", re.I)

HINT_WEIGHT = 10.0
DATE_HINT_WEIGHT = 5.0
CONFLICT_PENALTY = -50.0
DISABLED_PENALTY = -20.0
MAX_WIDTH_BONUS = 1.0

# Shared helpers injected at the top of every strategy script.
_JS_HELPERS = """
    const norm = (s) => (s || '').replace(/\\s+/g, ' ').trim();
    const visible = (el) => {
        if (!el || !el.isConnected) return false;
        const st = window.getComputedStyle(el);
        if (st.display === 'none' || st.visibility === 'hidden') return false;
        const r = el.getBoundingClientRect();
        return r.width > 0 && r.height > 0;
    };
    const LABEL_TAGS = 'td, th, label, span, b, strong, font, div, p, legend';
    const findLabel = (re) => {
        let label = null;
        let best = Infinity;
        for (const el of document.querySelectorAll(LABEL_TAGS)) {
            const text = norm(el.textContent);
            if (!text || text.length > 120 || !re.test(text)) continue;
            if (!visible(el)) continue;
            if (text.length < best || (text.length === best && label && label.contains(el))) {
                best = text.length;
                label = el;
            }
        }
        return label;
    };
    const describe = (el, key) => {
        el.setAttribute(CANDIDATE_ATTR, key);
        const r = el.getBoundingClientRect();
        return {
            key: key,
            tag: el.tagName.toLowerCase(),
            type: (el.getAttribute('type') || '').toLowerCase(),
            name: el.getAttribute('name') || '',
            id: el.id || '',
            placeholder: el.getAttribute('placeholder') || '',
            className: typeof el.className === 'string' ? el.className : '',
            width: r.width,
            disabled: !!el.disabled,
            readOnly: !!el.readOnly,
        };
    };
    const isLabelText = (text) => /[A-Za-z]{2,}/.test(text || '');
"""

_ROW_SCAN_JS = """({ labelSource, labelFlags, token, controlSelector, candidateAttr }) => {
    const CANDIDATE_ATTR = candidateAttr;
    %s
    const label = findLabel(new RegExp(labelSource, labelFlags));
    if (!label) return { reason: 'label_not_found' };
    const row = label.closest('tr');
    if (!row) return { reason: 'row_not_found' };
    const rowText = norm(row.innerText).slice(0, 200);

    const controls = [];
    const labelCell = label.closest('td, th');

    // Controls sharing the label's cell: only those after the label and before the next label text.
    if (labelCell && labelCell.closest('tr') === row) {
        const walker = document.createTreeWalker(labelCell, NodeFilter.SHOW_ELEMENT | NodeFilter.SHOW_TEXT);
        let started = label === labelCell;
        let node;
        while ((node = walker.nextNode())) {
            if (!started) {
                if (node === label) started = true;
                continue;
            }
            if (node.nodeType === Node.TEXT_NODE) {
                const parent = node.parentElement;
                if (!parent || parent.closest('select, option, textarea, button')) continue;
                if (label !== labelCell && label.contains(parent)) continue;
                if (controls.length && isLabelText(norm(node.textContent))) break;
                continue;
            }
            if (node.matches(controlSelector)) controls.push(node);
        }
    }

    // Following cells, up to the next cell that holds only label text (colspan-aware).
    const cells = Array.from(row.cells);
    let col = 0;
    const spans = cells.map((cell) => {
        const start = col;
        col += Math.max(1, cell.colSpan || 1);
        return { cell, start, end: col };
    });
    const labelIdx = spans.findIndex((s) => s.cell === labelCell);
    if (labelIdx < 0) {
        // Label is not a cell of this row (e.g. a caption spanning the row): whole row is the region.
        for (const el of row.querySelectorAll(controlSelector)) controls.push(el);
    } else {
        let regionEnd = col;
        for (let i = labelIdx + 1; i < spans.length; i++) {
            const cell = spans[i].cell;
            if (!cell.querySelector(controlSelector) && isLabelText(norm(cell.innerText))) {
                regionEnd = spans[i].start;
                break;
            }
        }
        for (let i = labelIdx + 1; i < spans.length; i++) {
            if (spans[i].start >= regionEnd) break;
            for (const el of spans[i].cell.querySelectorAll(controlSelector)) controls.push(el);
        }
    }

    const candidates = [];
    controls.forEach((el, i) => {
        if (!visible(el)) return;
        candidates.push(describe(el, token + '-' + i));
    });
    if (!candidates.length) return { reason: 'input_not_found', rowText };
    return { reason: null, rowText, candidates };
}""" % _JS_HELPERS

_ATTRIBUTE_SCAN_JS = """({ selectors, token, candidateAttr }) => {
    const CANDIDATE_ATTR = candidateAttr;
    %s
    const seen = new Set();
    const candidates = [];
    let i = 0;
    for (const sel of selectors) {
        let found = [];
        try { found = Array.from(document.querySelectorAll(sel)); } catch (e) { continue; }
        for (const el of found) {
            if (seen.has(el) || !visible(el)) continue;
            seen.add(el);
            candidates.push(describe(el, token + '-' + (i++)));
        }
    }
    if (!candidates.length) return { reason: 'input_not_found' };
    return { reason: null, candidates };
}""" % _JS_HELPERS

_GEOMETRY_BAND_JS = """({ labelSource, labelFlags, token, controlSelector, candidateAttr }) => {
    const CANDIDATE_ATTR = candidateAttr;
    %s
    const label = findLabel(new RegExp(labelSource, labelFlags));
    if (!label) return { reason: 'label_not_found' };
    const lr = label.getBoundingClientRect();
    const top = lr.top - 6;
    const bottom = lr.bottom + 6;
    const inBand = (r) => {
        const cy = r.top + r.height / 2;
        return cy >= top && cy <= bottom;
    };

    const texts = [];
    for (const el of document.querySelectorAll(LABEL_TAGS)) {
        if (el === label || el.contains(label) || label.contains(el)) continue;
        if (el.querySelector(controlSelector)) continue;
        const text = norm(el.textContent);
        if (!isLabelText(text) || text.length > 120 || !visible(el)) continue;
        const r = el.getBoundingClientRect();
        if (inBand(r) && r.left >= lr.right - 2) texts.push(r);
    }

    const candidates = [];
    let i = 0;
    for (const el of document.querySelectorAll(controlSelector)) {
        if (!visible(el)) continue;
        const r = el.getBoundingClientRect();
        if (!inBand(r) || r.left < lr.right - 4) continue;
        const blocked = texts.some((t) => t.left >= lr.right - 2 && t.right <= r.left + 2);
        if (blocked) continue;
        const c = describe(el, token + '-' + (i++));
        c.distance = r.left - lr.right;
        candidates.push(c);
    }
    if (!candidates.length) return { reason: 'input_not_found' };
    candidates.sort((a, b) => a.distance - b.distance);
    return { reason: null, candidates: candidates.slice(0, 1) };
}""" % _JS_HELPERS


def _js_regex(pattern: re.Pattern) -> tuple[str, str]:
    flags = "i" if pattern.flags & re.IGNORECASE else ""
    return pattern.pattern, flags


def candidate_attributes(candidate: dict) -> str:
    return " ".join(str(candidate.get(k) or "") for k in ("name", "id", "placeholder", "className")).lower()


def has_concept_conflict(candidate: dict, concept: FieldConcept) -> bool:
    return not concept.is_date and bool(_DATE_CONFLICT_RE.search(candidate_attributes(candidate)))


def hint_count(candidate: dict, concept: FieldConcept) -> int:
    attrs = candidate_attributes(candidate)
    compact = attrs.replace("_", "").replace("-", "")
    return sum(1 for hint in concept.hints
               if hint.lower() in attrs or hint.lower().replace("_", "") in compact)


def score_candidate(candidate: dict, concept: FieldConcept) -> float:
    attrs = candidate_attributes(candidate)
    score = hint_count(candidate, concept) * HINT_WEIGHT
    if has_concept_conflict(candidate, concept):
        score += CONFLICT_PENALTY
    elif concept.is_date and "date" in attrs:
        score += DATE_HINT_WEIGHT
    if candidate.get("disabled") or candidate.get("readOnly"):
        score += DISABLED_PENALTY
    width = float(candidate.get("width") or 0)
    score += min(max(width, 0.0), 400.0) / 400.0 * MAX_WIDTH_BONUS
    return score


def pick_best(candidates: list[dict], concept: FieldConcept) -> tuple[dict | None, float, str | None]:
    """Highest-scoring candidate, or a failure reason."""
    if not candidates:
        return None, 0.0, "input_not_found"
    scored = sorted(((score_candidate(c, concept), i, c) for i, c in enumerate(candidates)),
                    key=lambda t: (-t[0], t[1]))
    best_score, _, best = scored[0]
    if has_concept_conflict(best, concept):
        return None, best_score, "conflicting_concept"
    return best, best_score, None


class LocatorStrategy:
    name = "base"

    async def locate(self, scope: Page | Frame, concept: FieldConcept) -> FieldLocatorResult:
        raise NotImplementedError

    def _result(self, scope: Page | Frame, concept: FieldConcept, payload: dict | None,
                *, require_hint: bool = False) -> FieldLocatorResult:
        if not payload:
            return FieldLocatorResult.failed("input_not_found", self.name)
        if payload.get("reason"):
            return FieldLocatorResult.failed(payload["reason"], self.name)
        best, score, reason = pick_best(payload.get("candidates") or [], concept)
        if reason:
            return FieldLocatorResult.failed(reason, self.name)
        if require_hint and not hint_count(best, concept):
            return FieldLocatorResult.failed("input_not_found", self.name)
        element = scope.locator(f"[{CANDIDATE_ATTR}='{best['key']}']")
        return FieldLocatorResult.found(element, score, self.name)


class RowScanStrategy(LocatorStrategy):
    name = "row_scan"

    async def locate(self, scope, concept):
        source, flags = _js_regex(concept.label)
        payload = await scope.evaluate(_ROW_SCAN_JS, {
            "labelSource": source,
            "labelFlags": flags,
            "token": uuid.uuid4().hex[:10],
            "controlSelector": concept.control_selector or DEFAULT_CONTROL_SELECTOR,
            "candidateAttr": CANDIDATE_ATTR,
        })
        return self._result(scope, concept, payload)


class AttributeScanStrategy(LocatorStrategy):
    name = "attribute_scan"

    async def locate(self, scope, concept):
        if not concept.selectors:
            return FieldLocatorResult.failed("input_not_found", self.name)
        payload = await scope.evaluate(_ATTRIBUTE_SCAN_JS, {
            "selectors": list(concept.selectors),
            "token": uuid.uuid4().hex[:10],
            "candidateAttr": CANDIDATE_ATTR,
        })
        return self._result(scope, concept, payload, require_hint=True)


class GeometryBandStrategy(LocatorStrategy):
    name = "geometry_band"

    async def locate(self, scope, concept):
        source, flags = _js_regex(concept.label)
        payload = await scope.evaluate(_GEOMETRY_BAND_JS, {
            "labelSource": source,
            "labelFlags": flags,
            "token": uuid.uuid4().hex[:10],
            "controlSelector": concept.control_selector or DEFAULT_CONTROL_SELECTOR,
            "candidateAttr": CANDIDATE_ATTR,
        })
        return self._result(scope, concept, payload)


DEFAULT_STRATEGIES = (RowScanStrategy(), AttributeScanStrategy(), GeometryBandStrategy())


class FieldResolver:
    def __init__(self, strategies=DEFAULT_STRATEGIES):
        self.strategies = tuple(strategies)

    async def locate(self, concept: FieldConcept, scope: Page | Frame) -> FieldLocatorResult:
        tried: list[tuple[str, str]] = []
        for strategy in self.strategies:
            try:
                result = await strategy.locate(scope, concept)
            except Exception as e:
                logger.debug("  [%s] %s raised: %s", concept.name, strategy.name, e)
                result = FieldLocatorResult.failed("evaluation_failed", strategy.name)
            if result.ok:
                result.tried = tuple(tried)
                logger.debug("  [%s] resolved via %s (score %.2f)", concept.name, strategy.name, result.score)
                return result
            tried.append((strategy.name, result.reason or "unknown"))

        primary = tried[0][1] if tried else "no_strategy"
        logger.warning("  [%s] field not resolved: %s", concept.name,
                       ", ".join(f"{name}={reason}" for name, reason in tried))
        return FieldLocatorResult(element=None, reason=primary, strategy=None, tried=tuple(tried))
