"""
Shared fixtures.

libsql_experimental is a native extension; it is mocked before any module
imports it. Repository tests that need real SQL run against an in-memory
SQLite connection, which has the same execute/commit/cursor shape.
"""

import sqlite3
import sys
from unittest.mock import MagicMock

import pytest

sys.modules["libsql_experimental"] = MagicMock()

from leads_db import LeadsDatabase
from tenant import TenantContext


@pytest.fixture
def sqlite_db():
    """LeadsDatabase backed by an initialized in-memory SQLite database."""
    db = LeadsDatabase(url="file:test.db")
    db._conn = sqlite3.connect(":memory:")
    db.init_schema("main")
    yield db
    db._conn.close()


@pytest.fixture
def tenant_a():
    return TenantContext(tenant_id="tenant-a")


@pytest.fixture
def tenant_b():
    return TenantContext(tenant_id="tenant-b")


def make_person(person_id: str, **overrides) -> dict:
    """Apollo people-search style record."""
    person = {
        "id": person_id,
        "first_name": "Pat",
        "last_name": f"Person {person_id}",
        "name": f"Pat Person {person_id}",
        "title": "CEO",
        "linkedin_url": f"https://linkedin.com/in/{person_id}",
        "city": "Austin",
        "state": "Texas",
        "country": "United States",
        "organization": {
            "id": "org-1",
            "name": "Acme Logistics",
            "primary_domain": "acme.com",
            "industry": "logistics & supply chain",
            "city": "Austin",
            "state": "Texas",
            "country": "United States",
        },
    }
    person.update(overrides)
    return person
