"""Selector lists and text patterns for the portal family.

There is no stable selector contract on the portal; each list is a
prioritised guess, first match wins.
"""

import re
from dataclasses import dataclass, field

from context import SubSystem

# ── Login ────────────────────────────────────────────────────────────────────

USERNAME_SELECTORS = [
    "input[name='txtUserName']",
    "input[name='username']",
    "input[name='user']",
    "input[id*='username' i]",
    "input[id*='user' i]",
    "input[placeholder*='user' i]",
    "form input[type='text']",
]

PASSWORD_SELECTORS = [
    "input[name='txtPassword']",
    "input[type='password']",
    "input[name*='password' i]",
    "input[id*='password' i]",
]

LOGIN_BUTTON_SELECTORS = [
    "button[type='submit']",
    "input[type='submit']",
    "button:has-text('Login')",
    "button:has-text('LOGIN HERE')",
    "button:has-text('Sign In')",
    "a:has-text('Login')",
    "[onclick*='login' i]",
]

LOGOUT_SELECTORS = [
    "a:has-text('Logout')",
    "a:has-text('Log Out')",
    "button:has-text('Logout')",
    "[href*='logout' i]",
    "[onclick*='logout' i]",
]

CSRF_BANNER_RE = re.compile(
    r"csrf|invalid\s+(?:session|token|request)|session\s+(?:has\s+)?(?:expired|invalid|timed?\s*out)",
    re.I,
)
AUTH_ERROR_RE = re.compile(
    r"not\s+able\s+to\s+authenticate|authentication\s+failed|invalid\s+(?:user\s*(?:name|id)?|login)\s+or\s+password"
    r"|incorrect\s+(?:user\s*(?:name|id)?|password)|account\s+(?:is\s+)?locked",
    re.I,
)

# ── Dialogs ──────────────────────────────────────────────────────────────────

REDIRECT_INSTRUCTION_RE = re.compile(
    r"switch\s+(?:the\s+|your\s+)?system|change\s+(?:the\s+|your\s+)?system"
    r"|please\s+(?:use|proceed\s+(?:to|with)|go\s+to|log\s*in\s+to)"
    r"|please\s+select\s+(?:the\s+)?\w+(?:\s+\w+)?\s+(?:system|portal)|under\s+(?:the\s+)?\w+(?:\s+\w+)?\s+system",
    re.I,
)
AIA_BRAND_RE = re.compile(r"\baia\b|aiaclient", re.I)
AIA_SYSTEM_KEYWORD_RE = re.compile(r"aia\s+clinic", re.I)
SINGLIFE_BRAND_RE = re.compile(r"singlife|aviva", re.I)
SINGLIFE_SYSTEM_KEYWORD_RE = re.compile(r"singlife\s+(?:system|clinic|portal)", re.I)

# ── Safety ───────────────────────────────────────────────────────────────────

CLAIM_FORM_MARKERS = [
    "button:has-text('Save As Draft')",
    "input[value*='Save As Draft' i]",
    "input[value*='Draft' i]",
    "[aria-label*='draft' i]",
]
SUBMIT_RE = re.compile(r"\bsubmit", re.I)
SAFE_ACTION_RE = re.compile(r"draft|compute", re.I)

# ── System switching ─────────────────────────────────────────────────────────

SWITCH_CONTROL_SELECTORS = [
    "a:has-text('Switch System')",
    "button:has-text('Switch System')",
    "text=/switch\\s+system/i",
    "[onclick*='switchSystem' i]",
    "[href*='switchsystem' i]",
]
MENU_TOGGLE_SELECTORS = [
    ".dropdown-toggle",
    "a:has-text('Menu')",
    "button:has-text('Menu')",
    "a:has-text('Settings')",
]
SWITCH_SELECT_SELECTORS = [
    "select[name*='system' i]",
    "select[id*='system' i]",
]

SYSTEM_LABELS = {
    SubSystem.MHC: re.compile(r"^\s*MHC(?:\s+Asia)?(?:\s+System)?\s*$", re.I),
    SubSystem.AIA_CLINIC: re.compile(r"AIA\s+Clinic", re.I),
    SubSystem.SINGLIFE: re.compile(r"Singlife", re.I),
}


@dataclass(frozen=True)
class SystemSignature:
    url_re: re.Pattern
    nav_markers: tuple[str, ...] = ()


SYSTEM_SIGNATURES = {
    SubSystem.AIA_CLINIC: SystemSignature(
        url_re=re.compile(r"aiaclinic|/aia/|aia_clinic", re.I),
        nav_markers=("AIA Clinic",),
    ),
    SubSystem.SINGLIFE: SystemSignature(
        url_re=re.compile(r"singlife|aviva", re.I),
        nav_markers=("Singlife",),
    ),
    SubSystem.MHC: SystemSignature(
        url_re=re.compile(r"mhcasia\.net/mhc|/mhc/", re.I),
        nav_markers=("Normal Visit",),
    ),
}

# ── Patient search ───────────────────────────────────────────────────────────

NORMAL_VISIT_SELECTORS = [
    "a:has-text('Normal Visit')",
    "button:has-text('Normal Visit')",
    "a:has-text('Add Normal Visit')",
]
PROGRAM_TILES = {
    "other": ["text=/Search\\s+Other\\s+Programs/i", "a:has-text('Search Other Programs')"],
    "aia": ["text=/Search\\s+under\\s+AIA\\s+Program/i", "a:has-text('AIA Program')"],
}
SEARCH_BUTTON_SELECTORS = [
    "button:has-text('Search')",
    "input[type='submit'][value*='Search' i]",
    "input[type='button'][value*='Search' i]",
    "button[type='submit']",
]
MEMBER_NOT_FOUND_RE = re.compile(
    r"member\s+not\s+found|no\s+(?:matching\s+)?(?:record|member|patient)s?\s+(?:was\s+|were\s+)?found|no\s+result",
    re.I,
)

PARTNER_PATTERNS = [
    ("singlife", re.compile(r"singlife|aviva", re.I)),
    ("aiaclient", re.compile(r"\baia\b|aiaclient", re.I)),
    ("ge", re.compile(r"great\s+eastern|\bge\b", re.I)),
    ("prudential", re.compile(r"prudential", re.I)),
    ("axa", re.compile(r"\baxa\b", re.I)),
]

VISIT_FORM_MARKERS = [
    "text=/Visit\\s+Date/i",
    "text=/Add\\s+Employee\\s+Visit/i",
]
PORTAL_LABELS = {
    "singlife": "Singlife",
    "aiaclient": "AIA",
    "ge": "GE",
    "prudential": "Prudential",
    "axa": "AXA",
}
ADD_VISIT_TEMPLATES = [
    "button:has-text('Add {portal} Visit')",
    "a:has-text('Add {portal} Visit')",
    "button:has-text('Add Visit')",
    "a:has-text('Add Visit')",
    "button:has-text('New Visit')",
]

# ── Draft save ───────────────────────────────────────────────────────────────

COMPUTE_CLAIM_SELECTORS = [
    "button:has-text('Compute Claim')",
    "input[value*='Compute' i]",
    "a:has-text('Compute Claim')",
]
SAVE_DRAFT_SELECTORS = [
    "button:has-text('Save As Draft')",
    "input[value*='Save As Draft' i]",
    "button:has-text('Save Draft')",
    "input[value*='Draft' i]",
    "a:has-text('Save As Draft')",
]
DRAFT_MARKER_RE = re.compile(r"draft", re.I)
DRAFT_SAVED_RE = re.compile(r"sav(?:ed|ing)\s+(?:as\s+)?draft|draft\s+(?:has\s+been\s+|was\s+|is\s+)?saved|successfully\s+saved", re.I)

INVALID_LINE_ITEM_RE = re.compile(
    r"invalid\s+(?:drug|medicine|item|procedure)|(?:drug|medicine|item|procedure)\s+(?:is\s+)?(?:not\s+valid|invalid)"
    r"|please\s+select\s+(?:a\s+)?valid\s+(?:drug|medicine|item|procedure)",
    re.I,
)
MUST_COMPUTE_RE = re.compile(r"must\s+compute\s+claim|please\s+compute", re.I)

# ── Visit form ───────────────────────────────────────────────────────────────

PROCEDURE_RE = re.compile(
    r"xray|x-ray|scan|ultrasound|procedure|physio|ecg|injection|dressing|suturing|vaccine|consultation", re.I
)
INSTRUCTION_ONLY_RE = re.compile(
    r"^(?:use|take)\s+as\s+(?:instructed|directed)$|^unfit\s+for\s+duty$", re.I
)
DRUG_SECTION = (re.compile(r"Drug\s+Name", re.I), re.compile(r"Total\s+Drug\s+Fee", re.I))
PROCEDURE_SECTION = (re.compile(r"Procedure\s+Name", re.I), re.compile(r"Total\s+Proc(?:edure)?\s+Fee", re.I))


@dataclass(frozen=True)
class FieldConcept:
    """A form field described by its row label and attribute hints."""

    name: str
    label: re.Pattern
    hints: tuple[str, ...] = ()
    is_date: bool = False
    selectors: tuple[str, ...] = field(default=())
    control_selector: str | None = None


VISIT_DATE = FieldConcept(
    name="visit_date",
    label=re.compile(r"^\s*Visit\s+Date\b", re.I),
    hints=("visitdate", "visit_date", "visitdt", "dtvisit"),
    is_date=True,
    selectors=("input[name*='visitDate' i]", "input[id*='visitDate' i]", "input[name*='visit_date' i]"),
)
NRIC = FieldConcept(
    name="nric",
    label=re.compile(r"^\s*(?:NRIC|FIN|NRIC\s*/\s*FIN|Member\s+ID|IC\s+No)\b", re.I),
    hints=("nric", "icno", "memberid", "fin", "search"),
    selectors=("input[name*='nric' i]", "input[id*='nric' i]", "input[placeholder*='NRIC' i]"),
)
CHARGE_TYPE = FieldConcept(
    name="charge_type",
    label=re.compile(r"^\s*Charge\s+Type\b", re.I),
    hints=("charge", "chargetype"),
    selectors=("select[name*='charge' i]", "select[id*='charge' i]"),
    control_selector="select",
)
MC_DAYS = FieldConcept(
    name="mc_days",
    label=re.compile(r"^\s*MC\s+Days?\b(?!\s*Start)", re.I),
    hints=("mcday", "mc_day", "mcdays"),
    selectors=("select[name*='mcDay' i]", "input[name*='mcDay' i]"),
)
MC_START_DATE = FieldConcept(
    name="mc_start_date",
    label=re.compile(r"^\s*MC\s+Start\s+Date\b", re.I),
    hints=("mcstart", "mc_start", "mcfrom"),
    is_date=True,
    selectors=("input[name*='mcStart' i]", "input[id*='mcStart' i]"),
)
CONSULTATION_FEE = FieldConcept(
    name="consultation_fee",
    label=re.compile(r"^\s*Consultation\s+Fee\b", re.I),
    hints=("consult", "fee"),
    selectors=("input[name*='consult' i]",),
)
DIAGNOSIS_PRIMARY = FieldConcept(
    name="diagnosis",
    label=re.compile(r"^\s*Diagnosis(?:\s+Pri(?:mary)?)?\b", re.I),
    hints=("diag", "diagnosis", "icd"),
    selectors=("select[name*='diag' i]", "select[id*='diag' i]"),
    control_selector="select",
)
WAIVER_OF_REFERRAL = FieldConcept(
    name="waiver_of_referral",
    label=re.compile(r"Waiver\s+of\s+Referral", re.I),
    hints=("waiver", "referral"),
    selectors=("input[type='checkbox'][name*='waiver' i]", "input[type='checkbox'][id*='waiver' i]"),
    control_selector="input[type='checkbox']",
)

CHARGE_TYPE_OPTIONS = {
    "first": re.compile(r"new|first", re.I),
    "follow": re.compile(r"follow", re.I),
}
