import re
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from patterns import INSTRUCTION_ONLY_RE, PROCEDURE_RE, SINGLIFE_BRAND_RE

PORTAL_DATE_FORMAT = "%d/%m/%Y"
_ACCEPTED_DATE_FORMATS = ("%d/%m/%Y", "%Y-%m-%d", "%d-%m-%Y")


def normalize_date(value: str) -> str:
    """Return ``value`` as DD/MM/YYYY; ISO dates (with or without a time part) are accepted."""
    text = str(value).strip()
    if re.match(r"^\d{4}-\d{2}-\d{2}T", text):
        text = text[:10]
    for fmt in _ACCEPTED_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).strftime(PORTAL_DATE_FORMAT)
        except ValueError:
            continue
    raise ValueError(f"Unrecognised date {value!r}, expected DD/MM/YYYY")


def normalize_charge_type(value: str | None) -> str:
    text = (value or "").strip().lower()
    if not text or "follow" in text:
        return "follow"
    if "first" in text or "new" in text:
        return "first"
    raise ValueError(f"Unknown charge type {value!r}")


class LineItem(BaseModel):
    name: str
    quantity: float = 1
    amount: float | None = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = " ".join(v.split())
        if not v:
            raise ValueError("Line item name is empty")
        return v

    @property
    def is_procedure(self) -> bool:
        return bool(PROCEDURE_RE.search(self.name))


class ClaimEntry(BaseModel):
    """One patient visit to draft, as delivered by the upstream clinic system."""

    model_config = ConfigDict(populate_by_name=True)

    nric: str
    visit_date: str = Field(alias="visitDate")
    charge_type: Literal["first", "follow"] = Field(default="follow", alias="chargeType")
    mc_days: int = Field(default=0, ge=0, alias="mcDays")
    mc_start_date: str | None = Field(default=None, alias="mcStartDate")
    diagnosis_code: str | None = Field(default=None, alias="diagnosisCode")
    diagnosis_description: str | None = Field(default=None, alias="diagnosisDescription")
    items: list[LineItem] = Field(default_factory=list)
    contract: str | None = None

    @field_validator("nric")
    @classmethod
    def _clean_nric(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("visit_date", "mc_start_date")
    @classmethod
    def _portal_date(cls, v: str | None) -> str | None:
        if v is None or not str(v).strip():
            return None
        return normalize_date(v)

    @field_validator("charge_type", mode="before")
    @classmethod
    def _charge_type(cls, v):
        return normalize_charge_type(v)

    @field_validator("items", mode="before")
    @classmethod
    def _drop_instructions(cls, v):
        if v is None:
            return []
        if isinstance(v, (str, dict)):
            v = [v]
        if not isinstance(v, list):
            raise ValueError("items must be a list of line items")
        kept = []
        for item in v:
            if isinstance(item, str):
                item = {"name": item}
            if isinstance(item, dict):
                raw_name = item.get("name", "")
            elif isinstance(item, LineItem):
                raw_name = item.name
            else:
                raise ValueError(f"line item must be an object or a name, got {type(item).__name__}")
            name = " ".join(str(raw_name or "").split())
            if not name or INSTRUCTION_ONLY_RE.match(name):
                continue
            kept.append(item)
        return kept

    @model_validator(mode="after")
    def _default_mc_start(self):
        if self.visit_date is None:
            raise ValueError("visit_date is required")
        if self.mc_days > 0 and not self.mc_start_date:
            self.mc_start_date = self.visit_date
        return self

    @property
    def routes_to_singlife(self) -> bool:
        return bool(self.contract and SINGLIFE_BRAND_RE.search(self.contract))

    @property
    def drugs(self) -> list[LineItem]:
        return [item for item in self.items if not item.is_procedure]

    @property
    def procedures(self) -> list[LineItem]:
        return [item for item in self.items if item.is_procedure]

    def summary(self) -> str:
        return f'nric="{self.nric}", visit_date="{self.visit_date}", charge_type="{self.charge_type}"'
