"""
Employee cache write-back.

Turns Apollo people into cache records, saves batches of them and writes
revealed contact details back to a person's cached rows.
"""

import logging
from dataclasses import dataclass

from errors import CacheError, ValidationError
from tenant import TenantContext
from utils import clean_text, get_data_source, is_fake_email, truncate_id

logger = logging.getLogger(__name__)


@dataclass
class SaveSummary:
    """Counters for one batch save."""

    saved: int = 0
    updated: int = 0
    errors: int = 0
    total: int = 0


def format_apollo_person(person: dict) -> dict:
    """Convert one Apollo person into the cache record shape."""
    org = person.get("organization") or {}
    name = clean_text(person.get("name"))
    if not name:
        name = clean_text(f"{person.get('first_name') or ''} {person.get('last_name') or ''}")

    # Search results carry locked placeholders like email_not_unlocked@domain.com
    email = clean_text(person.get("email") or person.get("work_email"))
    if is_fake_email(email):
        email = None

    return {
        "id": clean_text(person.get("id") or person.get("person_id")),
        "name": name,
        "title": clean_text(person.get("title") or person.get("job_title")),
        "email": email,
        "phone": clean_text(person.get("phone_number") or person.get("phone")),
        "linkedin_url": clean_text(person.get("linkedin_url") or person.get("linkedin")),
        "photo_url": clean_text(person.get("photo_url") or person.get("photo")),
        "headline": clean_text(person.get("headline") or person.get("job_title")),
        "city": clean_text(person.get("city")),
        "state": clean_text(person.get("state")),
        "country": clean_text(person.get("country")),
        "company_id": clean_text(org.get("id") or person.get("organization_id") or person.get("company_id")),
        "company_name": clean_text(org.get("name") or person.get("company_name")),
        "company_domain": clean_text(org.get("primary_domain") or org.get("domain") or person.get("company_domain")),
        "data_source": get_data_source(),
        "employee_data": person,
    }


def format_apollo_people(people: list[dict]) -> list[dict]:
    """Convert Apollo people to cache records, skipping entries without an id."""
    records = []
    for person in people or []:
        record = format_apollo_person(person)
        if not record["id"]:
            logger.debug("Skipping Apollo person without id")
            continue
        records.append(record)
    return records


def to_public_employee(row: dict) -> dict:
    """
    Public output shape for a cache row or a formatted provider record.

    The public id is always the Apollo person id.
    """
    employee_data = row.get("employee_data") or {}
    return {
        "id": row.get("apollo_person_id") or row.get("id"),
        "name": row.get("name"),
        "title": row.get("title"),
        "email": row.get("email"),
        "phone": row.get("phone"),
        "linkedin_url": row.get("linkedin_url"),
        "photo_url": row.get("photo_url"),
        "headline": row.get("headline"),
        "city": row.get("city"),
        "state": row.get("state"),
        "country": row.get("country"),
        "company_id": row.get("company_id"),
        "company_name": row.get("company_name"),
        "company_domain": row.get("company_domain"),
        "organization": employee_data.get("organization") or {},
    }


def save_employees_to_cache(db, records: list[dict], tenant: TenantContext) -> SaveSummary:
    """
    Upsert formatted records one by one.

    A failing record is counted and skipped; the rest of the batch still runs.
    """
    summary = SaveSummary(total=len(records))
    for record in records:
        try:
            inserted = db.upsert_employee(tenant.tenant_id, record, schema=tenant.schema)
        except (CacheError, ValidationError) as e:
            summary.errors += 1
            logger.warning(f"Failed to cache employee {record.get('id')}: {e.message}")
            continue
        if inserted:
            summary.saved += 1
        else:
            summary.updated += 1

    logger.info(
        f"Cached employees for tenant {truncate_id(tenant.tenant_id)}: "
        f"{summary.saved} new, {summary.updated} updated, {summary.errors} errors"
    )
    return summary


def cache_contact(
    db,
    tenant: TenantContext,
    person_id: str,
    email: str | None = None,
    phone: str | None = None,
    person: dict | None = None,
) -> bool:
    """
    Write a revealed email and/or phone to the tenant's rows for a person.

    Existing rows get a coalescing update. When the person is not cached
    yet, a row is created from the provider payload (or a minimal record).

    Returns:
        True if an existing row was updated or a new row was created

    Raises:
        CacheError: database failure
    """
    if not email and not phone:
        return False

    updated = db.update_employee_contact(
        tenant.tenant_id, person_id, email=email, phone=phone, schema=tenant.schema
    )
    if updated:
        logger.info(f"Cached contact for person {person_id} ({updated} rows)")
        return True

    record = format_apollo_person(person) if person else {"employee_data": {"id": person_id}}
    record["id"] = person_id
    if email:
        record["email"] = email
    if phone:
        record["phone"] = phone
    db.upsert_employee(tenant.tenant_id, record, schema=tenant.schema)
    logger.info(f"Created cache row for person {person_id}")
    return True
