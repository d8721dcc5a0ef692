from enum import Enum
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator


def prune_empty(value: Any) -> Any:
    """
    Recursively drop unknown values: None, blank strings, and lists or dicts
    that end up empty once their own children are pruned.
    Returns None when the value itself is empty.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return value if value.strip() else None
    if isinstance(value, dict):
        pruned = {}
        for key, item in value.items():
            kept = prune_empty(item)
            if kept is not None:
                pruned[key] = kept
        return pruned or None
    if isinstance(value, (list, tuple)):
        items = [kept for kept in (prune_empty(item) for item in value) if kept is not None]
        return items or None
    return value


class ListingStub(BaseModel):
    """
    Lightweight per-row record produced during listing discovery.
    The canonical detail URL is its identity.
    """

    model_config = ConfigDict(frozen=True)

    url: str
    listing_job_id: str | None = None
    title: str | None = None
    company: str | None = None
    location: str | None = None
    salary: str | None = None
    job_type: str | None = None
    summary: str | None = None
    bullet_points: tuple[str, ...] = ()

    @field_validator("url")
    @classmethod
    def _absolute_http_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"listing URL must be absolute http(s), got '{value}'")
        return value


class StructuredPosting(BaseModel):
    """
    One schema.org JobPosting object recovered from a detail page.
    Shape-varying fields stay raw; the record builder normalizes them.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type_: Any = Field(default=None, alias="@type")
    title: str | None = None
    name: str | None = None
    date_posted: str | None = Field(default=None, alias="datePosted")
    valid_through: str | None = Field(default=None, alias="validThrough")
    description: str | None = None
    hiring_organization: Any = Field(default=None, alias="hiringOrganization")
    job_location: Any = Field(default=None, alias="jobLocation")
    base_salary: Any = Field(default=None, alias="baseSalary")
    employment_type: Any = Field(default=None, alias="employmentType")
    identifier: Any = None

    job_benefits: Any = Field(default=None, alias="jobBenefits")
    qualifications: Any = None
    responsibilities: Any = None
    skills: Any = None
    education_requirements: Any = Field(default=None, alias="educationRequirements")
    experience_requirements: Any = Field(default=None, alias="experienceRequirements")
    work_hours: Any = Field(default=None, alias="workHours")
    industry: Any = None
    occupational_category: Any = Field(default=None, alias="occupationalCategory")
    job_location_type: Any = Field(default=None, alias="jobLocationType")

    @field_validator(
        "title", "name", "date_posted", "valid_through", "description", mode="before"
    )
    @classmethod
    def _scalar_to_text(cls, value: Any) -> str | None:
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, (int, float)):
            return str(value)
        # Lists and objects in a text slot carry nothing usable
        return None


class JobRecord(BaseModel):
    """
    Final output unit. Absent fields mean "unknown"; `to_output()` prunes them.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    url: str
    scraped_at: str = Field(alias="scrapedAt")
    title: str | None = None
    company: str | None = None
    location: str | None = None
    salary: str | dict[str, Any] | None = None
    job_type: str | None = None
    date_posted: str | None = None
    description_html: str | None = None
    description_text: str | None = None

    listing_job_id: str | None = None
    job_id: str | None = None
    employment_type: str | None = None
    base_salary: str | dict[str, Any] | None = None
    hiring_organization: str | None = None
    summary: str | None = None
    bullet_points: list[str] | None = None
    industry: str | None = None
    sector: str | None = None
    job_nature: str | None = None

    def to_output(self) -> dict[str, Any]:
        """Serialize with output key names, pruned of every empty value."""
        return prune_empty(self.model_dump(by_alias=True)) or {}


class OutcomeKind(str, Enum):
    RECORD = "record"
    FALLBACK = "fallback"
    LISTING = "listing"
    SKIP = "skip"


class DetailOutcome(BaseModel):
    """Result of enriching one listing: a full record, a stub-only record, or nothing."""

    kind: OutcomeKind
    url: str
    record: JobRecord | None = None
    error: str | None = None
