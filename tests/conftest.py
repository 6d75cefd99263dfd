"""In-memory stand-ins for the parts of the Playwright page API the portal code touches."""

import re

import pytest

import client
from context import FieldLocatorResult


class FakeLocator:
    def __init__(self, *, visible=True, info=None, value="", options=None, fail_clicks=0,
                 echo=None, checked=False, on_click=None, fail_fill=None):
        self.visible = visible
        self.info = info if info is not None else {"tag": "button", "type": "", "text": "", "value": "", "ariaLabel": ""}
        self.value = value
        self.options = options
        self.fail_clicks = fail_clicks
        self.echo = echo
        self.checked = checked
        self.on_click = on_click
        self.fail_fill = fail_fill
        self.clicks: list[dict] = []
        self.fills: list[str] = []
        self.presses: list[str] = []
        self.selected: list[str] = []
        self.children: dict[str, "FakeLocator"] = {}

    @property
    def first(self):
        return self

    @property
    def last(self):
        return self

    def filter(self, **kwargs):
        return self

    def locator(self, selector):
        return self.children.get(selector) or FakeLocator(visible=False)

    async def count(self):
        return 1 if self.visible else 0

    async def is_visible(self):
        return self.visible

    async def click(self, timeout=None, force=False):
        self.clicks.append({"timeout": timeout, "force": force})
        if self.fail_clicks > 0:
            self.fail_clicks -= 1
            raise TimeoutError("element not clickable")
        if self.on_click is not None:
            result = self.on_click()
            if hasattr(result, "__await__"):
                await result

    async def evaluate(self, js, arg=None):
        if "options" in js:
            return self.options
        if self.info is False:
            raise RuntimeError("element detached")
        return self.info

    async def fill(self, value):
        if self.fail_fill is not None:
            raise self.fail_fill
        self.fills.append(value)
        self.value = value

    async def input_value(self):
        return self.echo if self.echo is not None else self.value

    async def press(self, key):
        self.presses.append(key)

    async def is_checked(self):
        return self.checked

    async def check(self):
        self.checked = True

    async def select_option(self, value=None, **kwargs):
        if self.fail_fill is not None:
            raise self.fail_fill
        self.selected.append(value)
        return [value]


class FakeContext:
    def __init__(self):
        self.pages: list = []
        self.cookies_cleared = 0

    async def clear_cookies(self):
        self.cookies_cleared += 1


class FakePage:
    def __init__(self, url="https://www.mhcasia.net/mhc/home", *, context=None, body_text=""):
        self.url = url
        self.body_text = body_text
        self.selectors: dict[str, FakeLocator] = {}
        self.text_entries: dict[str, FakeLocator] = {}
        self.listeners: dict[str, list] = {}
        self.gotos: list[str] = []
        self.reloads = 0
        self.evaluations: list = []
        self.evaluate_result = None
        self.closed = False
        self.context = context or FakeContext()
        self.context.pages.append(self)

    def add(self, selector, locator=None, **kwargs):
        locator = locator or FakeLocator(**kwargs)
        self.selectors[selector] = locator
        return locator

    def locator(self, selector):
        return self.selectors.get(selector) or FakeLocator(visible=False)

    def get_by_text(self, pattern):
        for text, loc in self.text_entries.items():
            if (pattern.search(text) if isinstance(pattern, re.Pattern) else pattern in text):
                return loc
        return FakeLocator(visible=False)

    def on(self, event, handler):
        self.listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event, handler):
        self.listeners.get(event, []).remove(handler)

    async def emit_dialog(self, dialog):
        for handler in list(self.listeners.get("dialog", [])):
            await handler(dialog)

    async def goto(self, url, **kwargs):
        self.gotos.append(url)

    async def reload(self, **kwargs):
        self.reloads += 1

    async def wait_for_load_state(self, state="load", **kwargs):
        return None

    async def wait_for_timeout(self, ms):
        return None

    async def inner_text(self, selector, timeout=None):
        return self.body_text

    async def evaluate(self, js, arg=None):
        self.evaluations.append((js, arg))
        if callable(self.evaluate_result):
            return self.evaluate_result(js, arg)
        return self.evaluate_result

    async def screenshot(self, **kwargs):
        return b""

    async def close(self):
        self.closed = True
        if self in self.context.pages:
            self.context.pages.remove(self)


class FakeDialog:
    def __init__(self, message, type="alert", page=None):
        self.message = message
        self.type = type
        self.accepted = False
        self._page = page

    async def accept(self, prompt_text=None):
        self.accepted = True


class FakeResolver:
    """Resolves concepts by name from a fixed mapping."""

    def __init__(self, **fields):
        self.fields = fields
        self.calls = []

    async def locate(self, concept, scope):
        self.calls.append(concept.name)
        element = self.fields.get(concept.name)
        if element is None:
            return FieldLocatorResult.failed("label_not_found", "stub")
        return FieldLocatorResult.found(element, 1.0, "stub")


CLAIM_FORM_SELECTOR = "button:has-text('Save As Draft')"


@pytest.fixture(autouse=True)
def _screenshots_to_tmp(tmp_path, monkeypatch):
    monkeypatch.setattr(client, "SCREENSHOT_DIR", tmp_path / "screenshots")


@pytest.fixture
def page():
    return FakePage()


@pytest.fixture
def claim_form_page():
    p = FakePage()
    p.add(CLAIM_FORM_SELECTOR, info={"tag": "button", "type": "button", "text": "Save As Draft",
                                     "value": "", "ariaLabel": ""})
    return p
