import logging
from dataclasses import dataclass

from typing_extensions import TypedDict

from langgraph.graph import StateGraph, START, END

from context import AutomationSession, ClaimDraftState, SearchOutcome, SubSystem
from dialogs import DialogCoordinator
from drafts import DraftResult, DraftSaver
from fillers import ClaimFormFiller
from models import ClaimEntry
from patient_search import PatientLocator
from safety import SafeActionGate
from session import SessionManager
from switcher import SystemSwitcher

logger = logging.getLogger(__name__)


@dataclass
class ClaimPortal:
    session: AutomationSession
    dialogs: DialogCoordinator
    gate: SafeActionGate
    sessions: SessionManager
    switcher: SystemSwitcher
    locator: PatientLocator
    filler: ClaimFormFiller
    drafts: DraftSaver


class ClaimState(TypedDict, total=False):
    entry: int
    claim: ClaimEntry
    search: SearchOutcome
    form: ClaimDraftState
    draft: DraftResult
    status: str
    reason: str


def _failed(reason: str) -> dict:
    return {"status": "failed", "reason": reason}


def create_claim_graph(portal: ClaimPortal):
    """Compile the per-claim pipeline: login, route, search, open visit, fill, save."""

    async def login(state: ClaimState) -> dict:
        await portal.sessions.ensure_logged_in()
        return {"status": "running"}

    async def route(state: ClaimState) -> dict:
        claim = state["claim"]
        if claim.routes_to_singlife:
            logger.info("  Contract %r routes to Singlife", claim.contract)
            ok = await portal.switcher.switch_to(SubSystem.SINGLIFE)
        else:
            ok = await portal.switcher.ensure_base()
        return {} if ok else _failed("system_switch_failed")

    async def search(state: ClaimState) -> dict:
        claim = state["claim"]
        outcome = await portal.locator.search(claim.nric, claim.visit_date)
        if not outcome.found and portal.session.flags.needs_switch_to_singlife:
            logger.info("  Dialog asked for Singlife, switching and searching again")
            if await portal.switcher.switch_if_flagged():
                outcome = await portal.locator.search(claim.nric, claim.visit_date)
        if not outcome.found:
            return {"search": outcome, **_failed(f"search: {outcome.reason}")}
        return {"search": outcome}

    async def open_visit(state: ClaimState) -> dict:
        attempt = state["search"].final
        if not await portal.locator.open_patient(attempt):
            return _failed("patient_not_opened")
        if not await portal.locator.add_visit(attempt.resolved_sub_portal):
            return _failed("visit_form_not_found")
        return {}

    async def fill(state: ClaimState) -> dict:
        form = await portal.filler.fill(state["claim"])
        return {"form": form}

    async def save(state: ClaimState) -> dict:
        result = await portal.drafts.save()
        if not result.saved:
            reason = result.reason or "draft_not_saved"
            if result.dialog_message:
                reason = f"{reason}: {result.dialog_message[:200]}"
            return {"draft": result, **_failed(reason)}
        return {"draft": result, "status": "success"}

    def proceed_to(next_node: str):
        def _route(state: ClaimState) -> str:
            return END if state.get("status") == "failed" else next_node
        return _route

    workflow = StateGraph(ClaimState)
    workflow.add_node("login", login)
    workflow.add_node("route", route)
    workflow.add_node("search", search)
    workflow.add_node("open_visit", open_visit)
    workflow.add_node("fill", fill)
    workflow.add_node("save", save)
    workflow.add_edge(START, "login")
    workflow.add_conditional_edges("login", proceed_to("route"))
    workflow.add_conditional_edges("route", proceed_to("search"))
    workflow.add_conditional_edges("search", proceed_to("open_visit"))
    workflow.add_conditional_edges("open_visit", proceed_to("fill"))
    workflow.add_edge("fill", "save")
    workflow.add_edge("save", END)
    return workflow.compile()


async def run_claim(graph, claim: ClaimEntry, entry: int) -> ClaimState:
    final: ClaimState = {}
    async for chunk in graph.astream({"entry": entry, "claim": claim, "status": "running"},
                                     stream_mode="values"):
        final = chunk
        logger.debug("  [Entry %d] state: status=%s", entry, chunk.get("status"))
    return final
