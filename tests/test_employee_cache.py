"""
Tests for employee cache formatting and write-back.

Run with: pytest tests/test_employee_cache.py -v
"""

from unittest.mock import MagicMock

from conftest import make_person
from employee_cache import (
    SaveSummary,
    cache_contact,
    format_apollo_people,
    format_apollo_person,
    save_employees_to_cache,
    to_public_employee,
)
from errors import CacheError
from tenant import TenantContext

TENANT = TenantContext("tenant-a")


class TestFormatting:
    """Tests for Apollo person -> cache record conversion."""

    def test_format_person(self):
        record = format_apollo_person(make_person("p1", email="jane@acme.com"))

        assert record["id"] == "p1"
        assert record["name"] == "Pat Person p1"
        assert record["email"] == "jane@acme.com"
        assert record["company_id"] == "org-1"
        assert record["company_name"] == "Acme Logistics"
        assert record["company_domain"] == "acme.com"
        assert record["data_source"] == "apollo_io"
        assert record["employee_data"]["id"] == "p1"

    def test_name_from_first_last(self):
        record = format_apollo_person({"id": "p1", "first_name": "Jane", "last_name": "Doe"})
        assert record["name"] == "Jane Doe"

    def test_locked_email_dropped(self):
        record = format_apollo_person(make_person("p1", email="email_not_unlocked@domain.com"))
        assert record["email"] is None

    def test_headline_falls_back_to_job_title(self):
        record = format_apollo_person({"id": "p1", "job_title": "Owner"})
        assert record["title"] == "Owner"
        assert record["headline"] == "Owner"

    def test_format_people_skips_missing_ids(self):
        records = format_apollo_people([make_person("p1"), {"name": "No Id"}, make_person("p2")])
        assert [r["id"] for r in records] == ["p1", "p2"]

    def test_format_people_none(self):
        assert format_apollo_people(None) == []


class TestPublicEmployee:
    """Tests for the public output shape."""

    def test_cache_row_uses_person_id(self):
        row = {"id": 17, "apollo_person_id": "p1", "name": "Jane", "employee_data": {"organization": {"name": "Acme"}}}

        employee = to_public_employee(row)

        assert employee["id"] == "p1"
        assert employee["organization"] == {"name": "Acme"}

    def test_formatted_record(self):
        employee = to_public_employee(format_apollo_person(make_person("p9")))

        assert employee["id"] == "p9"
        assert employee["company_name"] == "Acme Logistics"
        assert "employee_data" not in employee


class TestSaveEmployees:
    """Tests for batch saves."""

    def test_counts_inserts_and_updates(self, sqlite_db):
        records = format_apollo_people([make_person("p1"), make_person("p2")])
        save_employees_to_cache(sqlite_db, records, TENANT)

        records = format_apollo_people([make_person("p2"), make_person("p3")])
        summary = save_employees_to_cache(sqlite_db, records, TENANT)

        assert summary == SaveSummary(saved=1, updated=1, errors=0, total=2)

    def test_failing_record_does_not_abort_batch(self):
        db = MagicMock()
        db.upsert_employee.side_effect = [True, CacheError("write", "locked"), False]

        summary = save_employees_to_cache(db, [{"id": "a"}, {"id": "b"}, {"id": "c"}], TENANT)

        assert summary == SaveSummary(saved=1, updated=1, errors=1, total=3)
        assert db.upsert_employee.call_count == 3


class TestCacheContact:
    """Tests for single-contact write-back."""

    def test_updates_existing_row(self, sqlite_db):
        save_employees_to_cache(sqlite_db, format_apollo_people([make_person("p1")]), TENANT)

        assert cache_contact(sqlite_db, TENANT, "p1", email="jane@acme.com") is True

        row = sqlite_db.find_employee_by_person_id("tenant-a", "p1")
        assert row["email"] == "jane@acme.com"
        assert row["name"] == "Pat Person p1"

    def test_creates_row_from_payload(self, sqlite_db):
        cache_contact(sqlite_db, TENANT, "p1", phone="+15550100", person=make_person("p1"))

        row = sqlite_db.find_employee_by_person_id("tenant-a", "p1")
        assert row["phone"] == "+15550100"
        assert row["company_name"] == "Acme Logistics"

    def test_creates_minimal_row(self, sqlite_db):
        cache_contact(sqlite_db, TENANT, "p1", email="jane@acme.com")

        row = sqlite_db.find_employee_by_person_id("tenant-a", "p1")
        assert row["email"] == "jane@acme.com"
        assert row["employee_data"] == {"id": "p1"}

    def test_nothing_to_write(self):
        db = MagicMock()

        assert cache_contact(db, TENANT, "p1") is False
        db.update_employee_contact.assert_not_called()

    def test_scoped_to_tenant(self, sqlite_db):
        other = TenantContext("tenant-b")
        save_employees_to_cache(sqlite_db, format_apollo_people([make_person("p1")]), other)

        cache_contact(sqlite_db, TENANT, "p1", email="jane@acme.com")

        assert sqlite_db.find_employee_by_person_id("tenant-b", "p1")["email"] is None
        assert sqlite_db.find_employee_by_person_id("tenant-a", "p1")["email"] == "jane@acme.com"
