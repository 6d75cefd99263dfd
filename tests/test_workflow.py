import pytest

from agent import load_claims, process_claims
from context import AutomationSession, ClaimDraftState, ProgramKind, SearchAttempt, SearchOutcome, SubSystem
from drafts import DraftResult
from models import ClaimEntry
from safety import UnsafeActionError
from session import AuthenticationError
from tests.conftest import FakePage
from workflow import ClaimPortal, create_claim_graph, run_claim


class StubSessions:
    def __init__(self):
        self.logins = 0
        self.ensures = 0

    async def login(self):
        self.logins += 1
        return True

    async def ensure_logged_in(self):
        self.ensures += 1
        return True


class StubSwitcher:
    def __init__(self, flags=None):
        self.flags = flags
        self.calls = []

    async def switch_to(self, target, *, force=False):
        self.calls.append(target)
        return True

    async def ensure_base(self):
        self.calls.append("base")
        return True

    async def switch_if_flagged(self):
        self.calls.append("flagged")
        self.flags.needs_switch_to_singlife = False
        return True


class StubLocator:
    def __init__(self, session, found=("S1234567A", "S7654321B")):
        self.session = session
        self.found = found
        self.searched = []
        self.flags_at_search = []

    async def search(self, term, visit_date=None):
        self.searched.append((term, visit_date))
        self.flags_at_search.append(self.session.flags.any_set())
        # a dialog during this search asks for AIA Clinic
        self.session.flags.needs_switch_to_aia = True
        outcome = SearchOutcome(term=term)
        if term in self.found:
            outcome.attempts.append(SearchAttempt(term=term, program_kind=ProgramKind.AIA, found=True,
                                                  resolved_sub_portal="aiaclient"))
        else:
            outcome.attempts.append(SearchAttempt(term=term, program_kind=ProgramKind.AIA,
                                                  member_not_found=True, reason="member_not_found"))
            outcome.reason = "member_not_found"
        return outcome

    async def open_patient(self, attempt):
        return True

    async def add_visit(self, portal=None):
        self.portal = portal
        return True


class StubFiller:
    def __init__(self):
        self.filled = []

    async def fill(self, claim):
        self.filled.append(claim.nric)
        return ClaimDraftState(visit_date=claim.visit_date)


class StubDrafts:
    def __init__(self, result=None, error=None):
        self.result = result or DraftResult(saved=True)
        self.error = error

    async def save(self):
        if self.error:
            raise self.error
        return self.result


def make_portal(**overrides):
    session = AutomationSession(FakePage())
    parts = dict(
        session=session,
        dialogs=None,
        gate=None,
        sessions=StubSessions(),
        switcher=StubSwitcher(session.flags),
        locator=StubLocator(session),
        filler=StubFiller(),
        drafts=StubDrafts(),
    )
    parts.update(overrides)
    return ClaimPortal(**parts)


def claim(nric="S1234567A", **kwargs):
    return ClaimEntry(nric=nric, visit_date="01/03/2025", **kwargs)


async def test_claim_runs_through_to_draft():
    portal = make_portal()

    state = await run_claim(create_claim_graph(portal), claim(), 1)

    assert state["status"] == "success"
    assert state["draft"].saved
    assert portal.sessions.ensures == 1
    assert portal.switcher.calls == ["base"]
    assert portal.locator.searched == [("S1234567A", "01/03/2025")]
    assert portal.locator.portal == "aiaclient"
    assert portal.filler.filled == ["S1234567A"]


async def test_singlife_contract_switches_before_search():
    portal = make_portal()

    await run_claim(create_claim_graph(portal), claim(contract="Singlife Shield"), 1)

    assert portal.switcher.calls == [SubSystem.SINGLIFE]


async def test_search_failure_ends_early():
    portal = make_portal()

    state = await run_claim(create_claim_graph(portal), claim("S0000000Z"), 1)

    assert state["status"] == "failed"
    assert state["reason"] == "search: member_not_found"
    assert portal.filler.filled == []


async def test_rejected_draft_reports_dialog():
    portal = make_portal(drafts=StubDrafts(DraftResult(saved=False, reason="dialog_rejected",
                                                       dialog_message="Diagnosis is mandatory")))

    state = await run_claim(create_claim_graph(portal), claim(), 1)

    assert state["status"] == "failed"
    assert state["reason"] == "dialog_rejected: Diagnosis is mandatory"


async def test_unsafe_action_propagates_out_of_graph():
    portal = make_portal(drafts=StubDrafts(error=UnsafeActionError("blocked")))

    with pytest.raises(UnsafeActionError):
        await run_claim(create_claim_graph(portal), claim(), 1)


def test_load_claims_keeps_invalid_entries_as_errors():
    claims, errors = load_claims([
        {"nric": "S1234567A", "visitDate": "01/03/2025"},
        {"nric": "S7654321B"},
    ])
    assert claims[0].nric == "S1234567A" and errors[0] is None
    assert claims[1] is None
    assert "visitDate" in errors[1]


async def test_process_claims_resets_flags_between_patients():
    portal = make_portal()
    raw = [
        {"nric": "S1234567A", "visitDate": "01/03/2025"},
        {"nric": "S0000000Z", "visitDate": "01/03/2025"},
        {"nric": "S7654321B"},
        {"nric": "S7654321B", "visitDate": "02/03/2025"},
    ]

    results = await process_claims(portal, raw)

    assert [r["status"] for r in results] == ["success", "failed", "failed", "success"]
    assert results[1]["reason"] == "search: member_not_found"
    assert results[2]["reason"].startswith("invalid entry")
    assert portal.locator.flags_at_search == [False, False, False]
    assert portal.sessions.logins == 1


async def test_process_claims_aborts_on_authentication_error():
    class FailingSessions(StubSessions):
        async def ensure_logged_in(self):
            raise AuthenticationError("Authentication failed")

    portal = make_portal(sessions=FailingSessions())

    with pytest.raises(AuthenticationError):
        await process_claims(portal, [{"nric": "S1234567A", "visitDate": "01/03/2025"}])


def test_load_claims_reports_malformed_line_items():
    claims, errors = load_claims([{"nric": "S1234567A", "visitDate": "01/03/2025", "items": [5]}])
    assert claims == [None]
    assert "line item must be an object or a name" in errors[0]


async def test_singlife_dialog_switches_and_searches_again():
    portal = make_portal()

    class SinglifeFirstLocator(StubLocator):
        async def search(self, term, visit_date=None):
            if not self.searched:
                self.searched.append((term, visit_date))
                self.session.flags.needs_switch_to_singlife = True
                return SearchOutcome(term=term, reason="dialog: Please switch system to Singlife")
            return await super().search(term, visit_date)

    portal.locator = SinglifeFirstLocator(portal.session)

    state = await run_claim(create_claim_graph(portal), claim(), 1)

    assert state["status"] == "success"
    assert portal.switcher.calls == ["base", "flagged"]
    assert len(portal.locator.searched) == 2
