"""Run-scoped state shared by the portal components.

One ``AutomationSession`` is created per automation run and passed by
reference to every component. It owns the page arena (the single "active
page"), the portal context and the per-patient route flags.
"""

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from playwright.async_api import Locator, Page

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SubSystem(str, Enum):
    MHC = "mhc"
    AIA_CLINIC = "aia_clinic"
    SINGLIFE = "singlife"


class ProgramKind(str, Enum):
    OTHER = "other"
    AIA = "aia"


class DialogKind(str, Enum):
    ALERT = "alert"
    CONFIRM = "confirm"
    PROMPT = "prompt"
    BEFOREUNLOAD = "beforeunload"

    @classmethod
    def parse(cls, raw: str) -> "DialogKind":
        try:
            return cls((raw or "").lower())
        except ValueError:
            return cls.ALERT


@dataclass(frozen=True)
class DialogEvent:
    message: str
    kind: DialogKind
    observed_at: float
    seq: int = 0


@dataclass
class RouteFlags:
    needs_switch_to_aia: bool = False
    needs_switch_to_singlife: bool = False
    last_dialog_message: str | None = None

    def reset(self) -> None:
        self.needs_switch_to_aia = False
        self.needs_switch_to_singlife = False
        self.last_dialog_message = None

    def any_set(self) -> bool:
        return self.needs_switch_to_aia or self.needs_switch_to_singlife

    def flag_for(self, target: SubSystem) -> bool:
        if target is SubSystem.AIA_CLINIC:
            return self.needs_switch_to_aia
        if target is SubSystem.SINGLIFE:
            return self.needs_switch_to_singlife
        return False

    def clear_for(self, target: SubSystem) -> None:
        if target is SubSystem.AIA_CLINIC:
            self.needs_switch_to_aia = False
        elif target is SubSystem.SINGLIFE:
            self.needs_switch_to_singlife = False


@dataclass
class SearchAttempt:
    term: str
    program_kind: ProgramKind
    found: bool = False
    member_not_found: bool = False
    resolved_sub_portal: str | None = None
    reason: str | None = None
    row_text: str | None = None


@dataclass
class SearchOutcome:
    term: str
    attempts: list[SearchAttempt] = field(default_factory=list)
    reason: str | None = None

    @property
    def found(self) -> bool:
        return bool(self.attempts) and self.attempts[-1].found

    @property
    def final(self) -> SearchAttempt | None:
        return self.attempts[-1] if self.attempts else None


@dataclass
class FieldLocatorResult:
    element: Locator | None
    score: float = 0.0
    reason: str | None = None
    strategy: str | None = None
    tried: tuple[tuple[str, str], ...] = ()

    @property
    def ok(self) -> bool:
        return self.element is not None

    @classmethod
    def found(cls, element: Locator, score: float, strategy: str) -> "FieldLocatorResult":
        return cls(element=element, score=score, strategy=strategy)

    @classmethod
    def failed(cls, reason: str, strategy: str | None = None) -> "FieldLocatorResult":
        return cls(element=None, reason=reason, strategy=strategy)


@dataclass
class ClaimDraftState:
    visit_date: str | None = None
    charge_type: str | None = None
    mc_days: int | None = None
    mc_start_date: str | None = None
    diagnosis: str | None = None
    consultation_fee: str | None = None
    waiver_of_referral: bool = False
    line_items: list[str] = field(default_factory=list)
    skipped: dict[str, str] = field(default_factory=dict)

    def record_skip(self, field_name: str, reason: str) -> None:
        self.skipped[field_name] = reason


class PageArena:
    """Page handles owned by the run; exactly one of them is active."""

    def __init__(self, page: Page | None = None):
        self._pages: list[Page] = []
        self._active: int | None = None
        if page is not None:
            self._pages.append(page)
            self._active = 0

    @property
    def active(self) -> Page:
        if self._active is None:
            raise RuntimeError("No active page. Open a browser page first.")
        return self._pages[self._active]

    async def adopt(self, page: Page) -> Page:
        """Make ``page`` the active handle and close the one it replaces."""
        previous = self._pages[self._active] if self._active is not None else None
        if previous is page:
            return page
        self._pages.append(page)
        self._active = len(self._pages) - 1
        if previous is not None:
            self._pages = [p for p in self._pages if p is not previous]
            self._active = len(self._pages) - 1
            try:
                await previous.close()
            except Exception as e:
                logger.warning("  Could not close previous page handle: %s", e)
        return page


@dataclass
class PortalContext:
    arena: PageArena
    current_system: SubSystem = SubSystem.MHC
    authenticated: bool = False
    last_auth_at: float | None = None

    @property
    def page(self) -> Page:
        return self.arena.active

    def mark_authenticated(self) -> None:
        self.authenticated = True
        self.last_auth_at = time.monotonic()

    def mark_logged_out(self) -> None:
        self.authenticated = False
        self.last_auth_at = None


class AutomationSession:
    """Context passed through the call graph in place of ambient globals."""

    def __init__(self, page: Page | None = None, *, dialog_history: int = 50):
        self.context = PortalContext(arena=PageArena(page))
        self.flags = RouteFlags()
        self.dialogs: deque[DialogEvent] = deque(maxlen=dialog_history)
        self.login_in_progress = False
        self.login_attempts_used = 0
        self._dialog_seq = 0

    @property
    def page(self) -> Page:
        return self.context.page

    def next_dialog_seq(self) -> int:
        self._dialog_seq += 1
        return self._dialog_seq

    @property
    def dialog_seq(self) -> int:
        return self._dialog_seq

    def dialogs_since(self, seq: int) -> list[DialogEvent]:
        return [event for event in self.dialogs if event.seq > seq]

    def reset_for_new_patient(self) -> None:
        if self.flags.any_set():
            logger.info("  Clearing stale route flags from previous patient: %s", self.flags)
        self.flags.reset()


async def poll_until(
    check: Callable[[], Awaitable[T]],
    *,
    timeout_ms: int,
    interval_ms: int,
) -> T | None:
    """Call ``check`` until it returns a truthy value or the deadline passes.

    Returns the truthy value, or ``None`` on timeout. Exceptions raised by
    ``check`` count as a falsy poll.
    """
    deadline = time.monotonic() + timeout_ms / 1000
    interval = max(interval_ms, 10) / 1000
    while True:
        try:
            result: Any = await check()
        except Exception as e:
            logger.debug("  poll check raised: %s", e)
            result = None
        if result:
            return result
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return None
        await asyncio.sleep(min(interval, remaining))
