import time

import pytest

from context import AutomationSession, PageArena, PortalContext, RouteFlags, SubSystem, poll_until
from tests.conftest import FakePage


async def test_adopt_closes_previous_and_activates_new():
    old, new = FakePage(), FakePage()
    arena = PageArena(old)

    await arena.adopt(new)

    assert arena.active is new
    assert old.closed


async def test_adopting_active_page_is_a_no_op():
    page = FakePage()
    arena = PageArena(page)

    await arena.adopt(page)

    assert arena.active is page
    assert not page.closed


def test_empty_arena_has_no_active_page():
    with pytest.raises(RuntimeError):
        PageArena().active


def test_route_flags_clear_only_their_target():
    flags = RouteFlags(needs_switch_to_aia=True, needs_switch_to_singlife=True)

    flags.clear_for(SubSystem.AIA_CLINIC)

    assert not flags.needs_switch_to_aia
    assert flags.needs_switch_to_singlife
    assert flags.flag_for(SubSystem.SINGLIFE)
    assert not flags.flag_for(SubSystem.MHC)


def test_portal_context_auth_marks():
    ctx = PortalContext(arena=PageArena(FakePage()))
    ctx.mark_authenticated()
    assert ctx.authenticated and ctx.last_auth_at is not None

    ctx.mark_logged_out()
    assert not ctx.authenticated and ctx.last_auth_at is None


def test_session_starts_on_base_system():
    session = AutomationSession(FakePage())
    assert session.context.current_system is SubSystem.MHC
    assert not session.flags.any_set()


async def test_poll_until_returns_first_truthy_value():
    calls = []

    async def check():
        calls.append(1)
        return "row" if len(calls) >= 3 else None

    assert await poll_until(check, timeout_ms=2000, interval_ms=10) == "row"
    assert len(calls) == 3


async def test_poll_until_is_bounded():
    async def never():
        return False

    started = time.monotonic()
    assert await poll_until(never, timeout_ms=150, interval_ms=20) is None
    assert time.monotonic() - started < 1.0


async def test_poll_until_treats_errors_as_not_ready():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("page navigating")
        return True

    assert await poll_until(flaky, timeout_ms=1000, interval_ms=10) is True
