"""
Merges listing-level and detail-level data into a JobRecord.

Listing values take precedence field by field; the embedded JobPosting
fills the gaps and is the only source of the description.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from bs4 import BeautifulSoup

from job_harvester.models import (
    DetailOutcome,
    JobRecord,
    ListingStub,
    OutcomeKind,
    StructuredPosting,
    prune_empty,
)
from job_harvester.structured import extract_structured_posting
from job_harvester.text import text_or_none

logger = logging.getLogger(__name__)

ADDRESS_PARTS = ("addressLocality", "addressRegion", "addressCountry")


def utc_timestamp() -> str:
    return datetime.now(tz=UTC).isoformat()


def first_present(*values: Any) -> Any:
    """First value that is not None or a blank string."""
    for value in values:
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def _number_or_text(value: Any) -> Any:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        return value.strip() or None
    return None


def normalize_salary(raw: Any) -> str | dict[str, Any] | None:
    """
    A salary string passes through unchanged; a MonetaryAmount object is
    decomposed into currency, unit, minValue, maxValue and value, with
    absent parts omitted.
    """
    if raw is None:
        return None
    if isinstance(raw, str):
        return raw if raw.strip() else None
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return str(raw)
    if not isinstance(raw, dict):
        return None

    nested = raw.get("value")
    quantity = nested if isinstance(nested, dict) else {}
    salary = {
        "currency": _number_or_text(raw.get("currency")),
        "unit": _number_or_text(quantity.get("unitText") or raw.get("unitText")),
        "minValue": _number_or_text(quantity.get("minValue", raw.get("minValue"))),
        "maxValue": _number_or_text(quantity.get("maxValue", raw.get("maxValue"))),
        "value": _number_or_text(quantity.get("value") if quantity else nested),
    }
    return prune_empty(salary)


def normalize_identifier(raw: Any) -> str | None:
    """Collapse a PropertyValue-style identifier to a single string."""
    if isinstance(raw, dict):
        raw = first_present(raw.get("value"), raw.get("@id"))
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (str, int, float)):
        return text_or_none(str(raw))
    return None


def normalize_employment_type(raw: Any) -> str | None:
    if isinstance(raw, list):
        parts = [str(item).strip() for item in raw if isinstance(item, str) and item.strip()]
        return ", ".join(parts) or None
    if isinstance(raw, str):
        return raw.strip() or None
    return None


def organization_name(raw: Any) -> str | None:
    if isinstance(raw, dict):
        raw = first_present(raw.get("name"), raw.get("legalName"))
    if isinstance(raw, str):
        return text_or_none(raw)
    return None


def format_address(job_location: Any) -> str | None:
    """Join locality, region and country of a (first) job location."""
    location = job_location[0] if isinstance(job_location, list) and job_location else job_location
    if isinstance(location, str):
        return text_or_none(location)
    if not isinstance(location, dict):
        return None

    address = location.get("address")
    if isinstance(address, str):
        return text_or_none(address)
    if not isinstance(address, dict):
        return text_or_none(location.get("name")) if isinstance(location.get("name"), str) else None

    parts = []
    for key in ADDRESS_PARTS:
        part = address.get(key)
        if isinstance(part, dict):
            part = part.get("name")
        if isinstance(part, str) and part.strip():
            parts.append(part.strip())
    return ", ".join(parts) or None


def _listing_fields(stub: ListingStub) -> dict[str, Any]:
    return {
        "title": stub.title,
        "company": stub.company,
        "location": stub.location,
        "salary": stub.salary,
        "job_type": stub.job_type,
        "listing_job_id": stub.listing_job_id,
        "summary": stub.summary,
        "bullet_points": list(stub.bullet_points),
    }


def _passthrough_fields(posting: StructuredPosting) -> dict[str, Any]:
    passthrough = {
        "benefits": posting.job_benefits,
        "qualifications": posting.qualifications,
        "responsibilities": posting.responsibilities,
        "skills": posting.skills,
        "education_requirements": posting.education_requirements,
        "experience_requirements": posting.experience_requirements,
        "work_hours": posting.work_hours,
        "valid_through": posting.valid_through,
    }
    return {key: value for key, value in passthrough.items() if value is not None}


def _as_text(value: Any) -> str | None:
    if isinstance(value, list):
        return normalize_employment_type(value)
    if isinstance(value, str):
        return text_or_none(value)
    return None


def merge_record(
    stub: ListingStub,
    posting: StructuredPosting | None,
    scraped_at: str | None = None,
) -> JobRecord:
    """Merge listing and structured data, listing values first."""
    fields = _listing_fields(stub)
    scraped_at = scraped_at or utc_timestamp()

    if posting is None:
        return JobRecord(url=stub.url, scraped_at=scraped_at, **fields)

    base_salary = normalize_salary(posting.base_salary)
    employment_type = normalize_employment_type(posting.employment_type)
    hiring_organization = organization_name(posting.hiring_organization)
    description_html = posting.description if posting.description and posting.description.strip() else None

    return JobRecord(
        url=stub.url,
        scraped_at=scraped_at,
        title=first_present(stub.title, text_or_none(posting.title), text_or_none(posting.name)),
        company=first_present(stub.company, hiring_organization),
        location=first_present(stub.location, format_address(posting.job_location)),
        salary=first_present(stub.salary, base_salary),
        job_type=first_present(stub.job_type, employment_type),
        date_posted=text_or_none(posting.date_posted),
        description_html=description_html,
        description_text=text_or_none(description_html),
        listing_job_id=stub.listing_job_id,
        job_id=normalize_identifier(posting.identifier),
        employment_type=employment_type,
        base_salary=base_salary,
        hiring_organization=hiring_organization,
        summary=stub.summary,
        bullet_points=list(stub.bullet_points),
        industry=_as_text(posting.industry),
        sector=_as_text(posting.occupational_category),
        job_nature=_as_text(posting.job_location_type),
        **_passthrough_fields(posting),
    )


def stub_record(stub: ListingStub, scraped_at: str | None = None) -> JobRecord | None:
    """A record built from listing data alone; None if the listing has no title."""
    record = merge_record(stub, None, scraped_at)
    return record if record.title else None


def build_record(
    stub: ListingStub,
    document: str | BeautifulSoup,
    scraped_at: str | None = None,
) -> DetailOutcome:
    """Enrich a stub with the structured posting embedded in its detail page."""
    posting = extract_structured_posting(document)
    if posting is None:
        logger.debug(f"No structured posting found for {stub.url}")

    record = merge_record(stub, posting, scraped_at)
    if not record.title:
        logger.warning(f"No title: {stub.url}")
        return DetailOutcome(kind=OutcomeKind.SKIP, url=stub.url, error="no usable title")

    return DetailOutcome(kind=OutcomeKind.RECORD, url=stub.url, record=record)


def fallback_outcome(
    stub: ListingStub,
    error: Exception | str,
    scraped_at: str | None = None,
) -> DetailOutcome:
    """Stub-only outcome used when the detail page could not be fetched."""
    record = stub_record(stub, scraped_at)
    if record is None:
        return DetailOutcome(kind=OutcomeKind.SKIP, url=stub.url, error=str(error))
    return DetailOutcome(kind=OutcomeKind.FALLBACK, url=stub.url, record=record, error=str(error))

