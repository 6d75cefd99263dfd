import pytest

from context import AutomationSession
from safety import SafeActionGate, UnsafeActionError, is_submit_like
from tests.conftest import FakeLocator


@pytest.mark.parametrize("text,value,aria,input_type,expected", [
    ("Submit", "", "", "", True),
    ("Submit Claim", "", "", "button", True),
    ("", "SUBMIT", "", "button", True),
    ("", "", "Submit visit", "", True),
    ("Go", "", "", "submit", True),
    ("Save As Draft", "", "", "", False),
    ("", "Save Draft", "", "submit", False),
    ("Compute Claim", "", "", "submit", False),
    ("Search", "", "", "button", False),
    ("Resubmission note", "", "", "", False),
])
def test_is_submit_like(text, value, aria, input_type, expected):
    assert is_submit_like(text, value, aria, input_type) is expected


async def test_blocks_submit_on_claim_form(claim_form_page):
    gate = SafeActionGate(AutomationSession(claim_form_page), settle_ms=0)
    target = FakeLocator(info={"tag": "button", "type": "button", "text": "Submit Claim", "value": "", "ariaLabel": ""})

    with pytest.raises(UnsafeActionError):
        await gate.guarded_click(target, "Submit Claim")
    assert target.clicks == []


async def test_blocks_bare_submit_input_on_claim_form(claim_form_page):
    gate = SafeActionGate(AutomationSession(claim_form_page), settle_ms=0)
    target = FakeLocator(info={"tag": "input", "type": "submit", "text": "", "value": "OK", "ariaLabel": ""})

    with pytest.raises(UnsafeActionError):
        await gate.guarded_click(target)
    assert target.clicks == []


async def test_allows_draft_on_claim_form(claim_form_page):
    gate = SafeActionGate(AutomationSession(claim_form_page), settle_ms=0)
    target = FakeLocator(info={"tag": "button", "type": "submit", "text": "Save As Draft", "value": "", "ariaLabel": ""})

    assert await gate.guarded_click(target, "Save As Draft") is True
    assert len(target.clicks) == 1


async def test_submit_text_outside_claim_form_is_clicked(page):
    gate = SafeActionGate(AutomationSession(page), settle_ms=0)
    target = FakeLocator(info={"tag": "button", "type": "submit", "text": "Submit", "value": "", "ariaLabel": ""})

    assert await gate.guarded_click(target, "Login") is True
    assert len(target.clicks) == 1


async def test_uninspectable_target_on_claim_form_is_skipped(claim_form_page):
    gate = SafeActionGate(AutomationSession(claim_form_page), settle_ms=0)
    target = FakeLocator(info=False)

    assert await gate.guarded_click(target, "mystery") is False
    assert target.clicks == []


async def test_retries_with_force_then_succeeds(page):
    gate = SafeActionGate(AutomationSession(page), click_timeout_ms=50, settle_ms=0)
    target = FakeLocator(fail_clicks=1)

    assert await gate.guarded_click(target, "Search") is True
    assert [c["force"] for c in target.clicks] == [False, True]
    assert all(c["timeout"] == 50 for c in target.clicks)


async def test_click_failure_returns_false_without_raising(page):
    gate = SafeActionGate(AutomationSession(page), settle_ms=0)
    target = FakeLocator(fail_clicks=2)

    assert await gate.guarded_click(target, "Search") is False
    assert len(target.clicks) == 2
