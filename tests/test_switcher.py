import pytest

from context import AutomationSession, SubSystem
from dialogs import DialogCoordinator
from safety import SafeActionGate
from switcher import SystemSwitcher, classify_snapshot
from tests.conftest import FakeLocator, FakePage

AIA_URL = "https://www.mhcasia.net/aiaclinic/home.do"
SINGLIFE_URL = "https://www.mhcasia.net/singlife/home.do"
MHC_URL = "https://www.mhcasia.net/mhc/home.do"
SWITCH = "a:has-text('Switch System')"


def make_switcher(page, **kwargs):
    session = AutomationSession(page)
    dialogs = DialogCoordinator(session)
    dialogs.install(page)
    gate = SafeActionGate(session, settle_ms=0)
    kwargs.setdefault("timeout_ms", 300)
    kwargs.setdefault("poll_interval_ms", 10)
    return session, dialogs, SystemSwitcher(session, dialogs, gate, **kwargs)


@pytest.mark.parametrize("url,nav,expected", [
    (AIA_URL, "", SubSystem.AIA_CLINIC),
    (SINGLIFE_URL, "", SubSystem.SINGLIFE),
    (MHC_URL, "AIA Clinic | Singlife", SubSystem.MHC),
    ("https://portal.test/home", "Home | Singlife | Claims", SubSystem.SINGLIFE),
    ("https://portal.test/home", "Normal Visit | Reports", SubSystem.MHC),
    ("https://portal.test/home", "Reports", None),
])
def test_classify_snapshot(url, nav, expected):
    assert classify_snapshot(url, nav) is expected


async def test_aia_switch_requires_dialog_flag():
    page = FakePage(MHC_URL)
    switch = page.add(SWITCH)
    session, _, switcher = make_switcher(page)

    assert await switcher.switch_to(SubSystem.AIA_CLINIC) is False
    assert switch.clicks == []
    assert session.context.current_system is SubSystem.MHC


async def test_flagged_switch_to_aia_updates_context_and_clears_flag():
    page = FakePage(MHC_URL)
    page.add(SWITCH)

    def _go():
        page.url = AIA_URL

    page.text_entries["AIA Clinic"] = FakeLocator(on_click=_go)
    session, _, switcher = make_switcher(page)
    session.flags.needs_switch_to_aia = True

    assert await switcher.switch_to(SubSystem.AIA_CLINIC) is True
    assert session.context.current_system is SubSystem.AIA_CLINIC
    assert not session.flags.needs_switch_to_aia


async def test_switch_adopts_popup_and_moves_dialog_handler():
    page = FakePage(MHC_URL)
    page.add(SWITCH)
    opened = []

    def _popup():
        opened.append(FakePage(SINGLIFE_URL, context=page.context))

    page.text_entries["Singlife"] = FakeLocator(on_click=_popup)
    session, dialogs, switcher = make_switcher(page)

    assert await switcher.switch_to(SubSystem.SINGLIFE) is True
    popup = opened[0]
    assert session.page is popup
    assert page.closed
    assert dialogs.installed_on is popup
    assert len(popup.listeners["dialog"]) == 1
    assert page.listeners["dialog"] == []


async def test_switch_timeout_leaves_context_unchanged():
    page = FakePage(MHC_URL)
    page.add(SWITCH)
    page.text_entries["AIA Clinic"] = FakeLocator()
    session, _, switcher = make_switcher(page, timeout_ms=100)
    session.flags.needs_switch_to_aia = True

    assert await switcher.switch_to(SubSystem.AIA_CLINIC) is False
    assert session.context.current_system is SubSystem.MHC
    assert session.flags.needs_switch_to_aia


async def test_select_fallback_when_no_list_entry():
    page = FakePage(MHC_URL)

    class SystemSelect(FakeLocator):
        async def select_option(self, value=None, **kwargs):
            await super().select_option(value=value)
            page.url = SINGLIFE_URL

    select = page.add("select[name*='system' i]", SystemSelect(options=[
        {"value": "1", "label": "MHC Asia"},
        {"value": "2", "label": "Singlife"},
    ]))
    session, _, switcher = make_switcher(page)

    assert await switcher.switch_to(SubSystem.SINGLIFE) is True
    assert select.selected == ["2"]
    assert session.context.current_system is SubSystem.SINGLIFE


async def test_switch_control_behind_menu():
    page = FakePage(MHC_URL)
    switch = page.add(SWITCH, visible=False)

    def _open_menu():
        switch.visible = True

    menu = page.add(".dropdown-toggle", on_click=_open_menu)

    def _go():
        page.url = AIA_URL

    page.text_entries["AIA Clinic"] = FakeLocator(on_click=_go)
    session, _, switcher = make_switcher(page)

    assert await switcher.switch_to(SubSystem.AIA_CLINIC, force=True) is True
    assert len(menu.clicks) == 1
    assert len(switch.clicks) == 1


async def test_ensure_base_is_a_no_op_on_base():
    page = FakePage(MHC_URL)
    switch = page.add(SWITCH)
    _, _, switcher = make_switcher(page)

    assert await switcher.ensure_base() is True
    assert switch.clicks == []


async def test_ensure_base_switches_back_home():
    page = FakePage(AIA_URL)
    page.add(SWITCH)

    def _home():
        page.url = MHC_URL

    page.text_entries["MHC Asia"] = FakeLocator(on_click=_home)
    session, _, switcher = make_switcher(page)
    session.context.current_system = SubSystem.AIA_CLINIC

    assert await switcher.ensure_base() is True
    assert session.context.current_system is SubSystem.MHC


async def test_switch_if_flagged_without_flags():
    _, _, switcher = make_switcher(FakePage(MHC_URL))
    assert await switcher.switch_if_flagged() is True
