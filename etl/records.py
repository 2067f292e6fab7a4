"""Inbound processed-record models.

A processed record is one scraped and pre-analysed job posting. Records are
validated here before any store is touched.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ai.analysis import CapabilityCandidate, SkillCandidate

_DATE_FORMATS = ("%Y-%m-%d", "%d %b %Y", "%d-%b-%Y", "%d %B %Y", "%d/%m/%Y")

OPEN_ENDED = {"ongoing", "open until filled", "n/a", ""}


def parse_posting_date(value: Any) -> date | None:
    """Parse posting dates; open-ended markers such as "Ongoing" mean no date."""
    if value is None or isinstance(value, date) and not isinstance(value, datetime):
        return value
    if isinstance(value, datetime):
        return value.date()
    text = str(value).strip()
    if text.lower() in OPEN_ENDED:
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Unrecognised date: {value!r}")


class CompanyRef(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None
    website: str | None = None
    parent: str | None = None


class DocumentRef(BaseModel):
    url: str = Field(min_length=1)
    title: str | None = None
    type: str | None = None


class TaxonomyRef(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None
    taxonomy_type: str = "core"


class ProcessedRecord(BaseModel):
    """One job posting as produced by the scraper and pre-analysis."""
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    source_id: str | None = None
    original_id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    company: CompanyRef
    division: str | None = None
    description: str | None = None
    open_date: date | None = None
    close_date: date | None = None
    locations: list[str] = Field(default_factory=list)
    job_type: str | None = None
    remuneration: str | None = None
    source_url: str | None = None
    raw_payload: dict[str, Any] | None = None
    documents: list[DocumentRef] = Field(default_factory=list)
    capabilities: list[CapabilityCandidate] = Field(default_factory=list)
    skills: list[SkillCandidate] = Field(default_factory=list)
    taxonomies: list[TaxonomyRef] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def accept_flat_fields(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if isinstance(data.get("company"), str):
            data["company"] = {"name": data["company"]}
        if "locations" not in data and data.get("location"):
            data["locations"] = [data["location"]]
        data["taxonomies"] = [
            {"name": t} if isinstance(t, str) else t for t in data.get("taxonomies") or []
        ]
        data["skills"] = [{"name": s} if isinstance(s, str) else s for s in data.get("skills") or []]
        return data

    @field_validator("open_date", "close_date", mode="before")
    @classmethod
    def parse_dates(cls, v):
        return parse_posting_date(v)

    @field_validator("locations", mode="before")
    @classmethod
    def clean_locations(cls, v):
        if isinstance(v, str):
            v = [v]
        return [loc.strip() for loc in v or [] if loc and loc.strip()]

    @property
    def record_id(self) -> str:
        return f"{self.source_id or '?'}:{self.original_id}"
