import json
import logging

from pydantic import ValidationError
from playwright.async_api import Page

from client import capture_screenshot, get_browser_page
from config import FORM_DATA_FILE, validate_config
from context import AutomationSession
from dialogs import DialogCoordinator
from drafts import DraftSaver
from field_resolver import FieldResolver
from fillers import ClaimFormFiller
from models import ClaimEntry
from patient_search import PatientLocator
from safety import SafeActionGate, UnsafeActionError
from session import AuthenticationError, SessionManager
from switcher import SystemSwitcher
from workflow import ClaimPortal, create_claim_graph, run_claim

logger = logging.getLogger(__name__)


def build_portal(page: Page) -> ClaimPortal:
    session = AutomationSession(page)
    dialogs = DialogCoordinator(session)
    dialogs.install(page, reset=True)
    gate = SafeActionGate(session)
    resolver = FieldResolver()
    switcher = SystemSwitcher(session, dialogs, gate)
    filler = ClaimFormFiller(session, resolver)
    return ClaimPortal(
        session=session,
        dialogs=dialogs,
        gate=gate,
        sessions=SessionManager(session),
        switcher=switcher,
        locator=PatientLocator(session, dialogs, gate, resolver, switcher),
        filler=filler,
        drafts=DraftSaver(session, dialogs, gate, clear_line_items=filler.clear_line_items),
    )


def load_claims(raw: list) -> tuple[list[ClaimEntry | None], list[str | None]]:
    """Validate each raw entry; invalid ones come back as ``None`` with the error."""
    claims, errors = [], []
    for item in raw:
        try:
            claims.append(ClaimEntry.model_validate(item))
            errors.append(None)
        except ValidationError as e:
            claims.append(None)
            errors.append("; ".join(f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors()))
    return claims, errors


def _log_summary(results: list[dict]) -> None:
    successful = [r for r in results if r["status"] == "success"]
    failed = [r for r in results if r["status"] == "failed"]
    logger.info("%s", "=" * 70)
    logger.info("DRAFT SUMMARY")
    logger.info("Total: %d  |  Drafted: %d  |  Failed: %d", len(results), len(successful), len(failed))
    if failed:
        logger.info("FAILED ENTRIES:")
        for r in failed:
            reason = r.get("reason") or "Unknown"
            logger.error("  Entry %d: %s", r["entry"], ", ".join(f'{k}="{v}"' for k, v in r["data"].items()))
            logger.error("  Reason: %s%s", reason[:300], "..." if len(reason) > 300 else "")
    logger.info("%s", "=" * 70)


async def process_claims(portal: ClaimPortal, raw_entries: list) -> list[dict]:
    claims, errors = load_claims(raw_entries)
    graph = create_claim_graph(portal)
    await portal.sessions.login()
    results: list[dict] = []

    for i, (entry, claim, error) in enumerate(zip(raw_entries, claims, errors), 1):
        logger.info("%s", "─" * 80)
        logger.info("CLAIM ENTRY %d/%d — %s", i, len(raw_entries),
                    claim.summary() if claim else entry)
        logger.info("%s", "─" * 80)

        if claim is None:
            logger.error("  Entry %d: INVALID — %s", i, error)
            results.append({"entry": i, "data": entry, "status": "failed", "reason": f"invalid entry: {error}"})
            continue

        portal.session.reset_for_new_patient()
        try:
            state = await run_claim(graph, claim, i)
        except (UnsafeActionError, AuthenticationError):
            logger.critical("  Entry %d: aborting run", i)
            await capture_screenshot(portal.session.page, f"entry-{i}-aborted")
            raise
        except Exception as e:
            logger.error("  Entry %d: FAILED — %s", i, e, exc_info=True)
            await capture_screenshot(portal.session.page, f"entry-{i}-error")
            results.append({"entry": i, "data": entry, "status": "failed", "reason": str(e)})
            continue

        if state.get("status") == "success":
            logger.info("  Entry %d: DRAFTED", i)
            results.append({"entry": i, "data": entry, "status": "success"})
        else:
            reason = state.get("reason") or "unknown"
            logger.error("  Entry %d: FAILED — %s", i, reason[:200])
            results.append({"entry": i, "data": entry, "status": "failed", "reason": reason})

    _log_summary(results)
    return results


async def run_agent() -> list[dict]:
    validate_config()

    try:
        with open(FORM_DATA_FILE) as f:
            form_data = json.load(f)
    except FileNotFoundError:
        raise FileNotFoundError(f"Form data file not found: {FORM_DATA_FILE}")

    logger.info("Loaded %d claim entries to draft", len(form_data))

    async with get_browser_page() as page:
        portal = build_portal(page)
        try:
            return await process_claims(portal, form_data)
        finally:
            await capture_screenshot(portal.session.page, "run-finished")
