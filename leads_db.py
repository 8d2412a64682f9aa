"""
Lead cache database connection and operations (libsql / Turso, SQLite dialect).

All SQL lives here. Every statement is scoped by tenant_id and runs against
the schema named by the caller's TenantContext.
"""

import json
import logging

import libsql_experimental as libsql

from errors import CacheError, ValidationError
from utils import get_data_source, is_sql_identifier

# Configure logging
logger = logging.getLogger(__name__)

# Columns read back from employees_cache, in SELECT order
EMPLOYEE_COLUMNS = (
    "id",
    "tenant_id",
    "apollo_person_id",
    "employee_name",
    "employee_title",
    "employee_email",
    "employee_phone",
    "employee_linkedin_url",
    "employee_photo_url",
    "employee_headline",
    "employee_city",
    "employee_state",
    "employee_country",
    "company_id",
    "company_name",
    "company_domain",
    "employee_data",
    "data_source",
    "created_at",
    "updated_at",
)

# SQLite has a max of 999 parameters per query
MAX_EXCLUDE_IDS = 900


def _like_pattern(term: str) -> str:
    """Case-insensitive substring pattern with LIKE wildcards escaped."""
    escaped = term.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _row_to_employee(r) -> dict:
    """Map an employees_cache row to a dict with short field names."""
    raw = r[16]
    try:
        employee_data = json.loads(raw) if raw else {}
    except (TypeError, ValueError) as e:
        logger.warning(f"Could not parse employee_data for {r[2]}: {e}")
        employee_data = {}
    return {
        "id": r[0],
        "tenant_id": r[1],
        "apollo_person_id": r[2],
        "name": r[3],
        "title": r[4],
        "email": r[5],
        "phone": r[6],
        "linkedin_url": r[7],
        "photo_url": r[8],
        "headline": r[9],
        "city": r[10],
        "state": r[11],
        "country": r[12],
        "company_id": r[13] or None,
        "company_name": r[14],
        "company_domain": r[15],
        "employee_data": employee_data,
        "data_source": r[17],
        "created_at": r[18],
        "updated_at": r[19],
    }


class LeadsDatabase:
    """Lead cache database connection manager."""

    def __init__(self, url: str, auth_token: str | None = None):
        self.url = url
        self.auth_token = auth_token
        self._conn = None

    @property
    def connection(self):
        """Get or create database connection."""
        if self._conn is None:
            if self.auth_token:
                self._conn = libsql.connect(self.url, auth_token=self.auth_token)
            else:
                self._conn = libsql.connect(self.url)
        return self._conn

    def _reconnect(self):
        """Force a new connection (e.g. after a stale Hrana stream)."""
        self._conn = None
        return self.connection

    def _is_stale_stream_error(self, exc: Exception) -> bool:
        """Check if an exception is a stale Hrana stream error."""
        msg = str(exc).lower()
        return "stream not found" in msg or ("hrana" in msg and "404" in msg)

    def execute(self, query: str, params: tuple = ()) -> list:
        """Execute query and return results. Reconnects on stale stream."""
        try:
            try:
                cursor = self.connection.execute(query, params)
                return cursor.fetchall()
            except Exception as e:
                if self._is_stale_stream_error(e):
                    logger.warning("Stale Hrana stream detected, reconnecting...")
                    cursor = self._reconnect().execute(query, params)
                    return cursor.fetchall()
                raise
        except Exception as e:
            raise CacheError("read", str(e)) from e

    def execute_write(self, query: str, params: tuple = ()) -> int:
        """Execute insert/update/delete and return lastrowid. Reconnects on stale stream."""
        return self._write(query, params)[0]

    def execute_update(self, query: str, params: tuple = ()) -> int:
        """Execute update/delete and return the number of affected rows."""
        return self._write(query, params)[1]

    def _write(self, query: str, params: tuple) -> tuple[int, int]:
        try:
            try:
                cursor = self.connection.execute(query, params)
                self.connection.commit()
                return cursor.lastrowid, cursor.rowcount
            except Exception as e:
                if self._is_stale_stream_error(e):
                    logger.warning("Stale Hrana stream detected, reconnecting...")
                    conn = self._reconnect()
                    cursor = conn.execute(query, params)
                    conn.commit()
                    return cursor.lastrowid, cursor.rowcount
                raise
        except Exception as e:
            raise CacheError("write", str(e)) from e

    # --- Schema ---

    def init_schema(self, schema: str = "main") -> None:
        """Initialize database schema for one tenant schema."""
        if not is_sql_identifier(schema):
            raise ValidationError(f"Invalid schema name: {schema!r}")

        schema_statements = [
            # Employees cache (one row per tenant/company/person)
            f"""
            CREATE TABLE IF NOT EXISTS {schema}.employees_cache (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                tenant_id TEXT NOT NULL,
                apollo_person_id TEXT NOT NULL,
                employee_name TEXT,
                employee_title TEXT,
                employee_email TEXT,
                employee_phone TEXT,
                employee_linkedin_url TEXT,
                employee_photo_url TEXT,
                employee_headline TEXT,
                employee_city TEXT,
                employee_state TEXT,
                employee_country TEXT,
                company_id TEXT NOT NULL DEFAULT '',
                company_name TEXT,
                company_domain TEXT,
                employee_data TEXT NOT NULL DEFAULT '{{}}',
                data_source TEXT NOT NULL DEFAULT 'apollo_io',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                is_deleted INTEGER NOT NULL DEFAULT 0
            )
            """,
            f"CREATE UNIQUE INDEX IF NOT EXISTS {schema}.uq_employees_cache_person "
            "ON employees_cache(tenant_id, company_id, apollo_person_id)",
            f"CREATE INDEX IF NOT EXISTS {schema}.idx_employees_cache_tenant_created "
            "ON employees_cache(tenant_id, created_at)",
            # Raw search result cache
            f"""
            CREATE TABLE IF NOT EXISTS {schema}.apollo_search_cache (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                search_key TEXT NOT NULL,
                tenant_id TEXT NOT NULL,
                user_id TEXT,
                results TEXT NOT NULL,
                hit_count INTEGER NOT NULL DEFAULT 1,
                last_accessed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                metadata TEXT NOT NULL DEFAULT '{{}}',
                is_deleted INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """,
            f"CREATE UNIQUE INDEX IF NOT EXISTS {schema}.uq_search_cache_key "
            "ON apollo_search_cache(search_key, tenant_id)",
            # Search audit trail
            f"""
            CREATE TABLE IF NOT EXISTS {schema}.apollo_search_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                tenant_id TEXT NOT NULL,
                user_id TEXT,
                search_params TEXT,
                results_count INTEGER,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """,
            f"CREATE INDEX IF NOT EXISTS {schema}.idx_search_history_user "
            "ON apollo_search_history(tenant_id, user_id, created_at)",
            # Credit usage ledger
            f"""
            CREATE TABLE IF NOT EXISTS {schema}.credit_usage (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                tenant_id TEXT NOT NULL,
                operation TEXT NOT NULL,
                credits_used INTEGER NOT NULL,
                results_returned INTEGER NOT NULL DEFAULT 0,
                reference_id TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """,
            f"CREATE INDEX IF NOT EXISTS {schema}.idx_usage_tenant_created "
            "ON credit_usage(tenant_id, created_at)",
        ]

        try:
            for statement in schema_statements:
                self.connection.execute(statement)
            self.connection.commit()
        except Exception as e:
            raise CacheError("schema init", str(e)) from e
        logger.info(f"Schema {schema} initialized")

        # Migrations for existing tables (add columns if they don't exist)
        self._run_migrations(schema)

    def _run_migrations(self, schema: str) -> None:
        """Run schema migrations for existing tables."""
        migrations = [
            ("employees_cache", "is_deleted",
             f"ALTER TABLE {schema}.employees_cache ADD COLUMN is_deleted INTEGER NOT NULL DEFAULT 0"),
            ("employees_cache", "data_source",
             f"ALTER TABLE {schema}.employees_cache ADD COLUMN data_source TEXT NOT NULL DEFAULT 'apollo_io'"),
        ]

        for table, column, statement in migrations:
            # Check if column exists
            try:
                self.connection.execute(f"SELECT {column} FROM {schema}.{table} LIMIT 1")
                logger.debug(f"Migration: {table}.{column} already exists")
            except Exception:
                # Column doesn't exist, add it
                try:
                    self.connection.execute(statement)
                    self.connection.commit()
                    logger.info(f"Migration: Added {column} to {schema}.{table}")
                except Exception as e:
                    error_str = str(e).lower()
                    if "duplicate" in error_str or "already exists" in error_str:
                        logger.debug(f"Migration: {table}.{column} already exists (from error)")
                    else:
                        logger.error(f"Migration failed for {table}.{column}: {e}")

    # --- Employees Cache ---

    def find_employee_by_person_id(self, tenant_id: str, person_id: str, schema: str = "main") -> dict | None:
        """
        Get the most recently updated cached employee for a person id.

        A person cached under several companies has one row per company.
        Email and phone missing on the latest row are filled from the
        newest older row that has them.
        """
        rows = self.execute(
            f"SELECT {', '.join(EMPLOYEE_COLUMNS)} FROM {schema}.employees_cache "
            "WHERE tenant_id = ? AND apollo_person_id = ? AND is_deleted = 0 "
            "ORDER BY updated_at DESC, id DESC",
            (tenant_id, str(person_id)),
        )
        if not rows:
            return None

        employee = _row_to_employee(rows[0])
        for r in rows[1:]:
            if employee["email"] and employee["phone"]:
                break
            employee["email"] = employee["email"] or r[5]
            employee["phone"] = employee["phone"] or r[6]
        return employee

    def find_employee_by_name(self, tenant_id: str, name: str, schema: str = "main") -> dict | None:
        """Get the most recently updated cached employee with this exact name (case-insensitive)."""
        rows = self.execute(
            f"SELECT {', '.join(EMPLOYEE_COLUMNS)} FROM {schema}.employees_cache "
            "WHERE tenant_id = ? AND LOWER(employee_name) = LOWER(?) AND is_deleted = 0 "
            "ORDER BY updated_at DESC, id DESC LIMIT 1",
            (tenant_id, name.strip()),
        )
        if not rows:
            return None
        return _row_to_employee(rows[0])

    def search_employees(
        self,
        tenant_id: str,
        titles: list[str] | None = None,
        locations: list[str] | None = None,
        industries: list[str] | None = None,
        page: int = 1,
        per_page: int = 100,
        exclude_ids: list[str] | None = None,
        schema: str = "main",
    ) -> list[dict]:
        """
        Search cached employees by filter groups.

        Within a group, values OR together; groups AND together. Matching is
        case-insensitive substring. Newest rows first, one row per person.

        Only the first MAX_EXCLUDE_IDS of exclude_ids fit in the query;
        callers with longer lists filter the rest themselves.
        """
        where = ["tenant_id = ?", "is_deleted = 0"]
        params: list = [tenant_id]

        title_fields = [
            "employee_title",
            "json_extract(employee_data, '$.title')",
        ]
        location_fields = [
            "employee_city",
            "employee_state",
            "employee_country",
            "json_extract(employee_data, '$.organization.city')",
            "json_extract(employee_data, '$.organization.state')",
            "json_extract(employee_data, '$.organization.country')",
        ]
        industry_fields = [
            "json_extract(employee_data, '$.organization.industry')",
            "company_name",
            "json_extract(employee_data, '$.organization.name')",
            "json_extract(employee_data, '$.organization.keywords')",
            "json_extract(employee_data, '$.organization.short_description')",
        ]

        for terms, fields in (
            (titles, title_fields),
            (locations, location_fields),
            (industries, industry_fields),
        ):
            if not terms:
                continue
            clauses = []
            for term in terms:
                pattern = _like_pattern(term)
                for column in fields:
                    clauses.append(f"LOWER(COALESCE({column}, '')) LIKE ? ESCAPE '\\'")
                    params.append(pattern)
            where.append("(" + " OR ".join(clauses) + ")")

        if exclude_ids:
            ids = [str(i) for i in exclude_ids][:MAX_EXCLUDE_IDS]
            if len(exclude_ids) > MAX_EXCLUDE_IDS:
                logger.debug(f"Exclude list has {len(exclude_ids)} ids, only {MAX_EXCLUDE_IDS} applied in SQL")
            placeholders = ",".join("?" for _ in ids)
            where.append(f"apollo_person_id NOT IN ({placeholders})")
            params.extend(ids)

        offset = (max(page, 1) - 1) * per_page
        params.extend([per_page, offset])

        # A person can be cached under several companies; keep their latest row
        columns = ", ".join(EMPLOYEE_COLUMNS)
        rows = self.execute(
            f"SELECT {columns} FROM ("
            f"SELECT {columns}, ROW_NUMBER() OVER ("
            "PARTITION BY apollo_person_id ORDER BY updated_at DESC, id DESC"
            f") AS person_rank FROM {schema}.employees_cache "
            f"WHERE {' AND '.join(where)}"
            ") WHERE person_rank = 1 "
            "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            tuple(params),
        )
        return [_row_to_employee(r) for r in rows]

    def upsert_employee(self, tenant_id: str, record: dict, schema: str = "main") -> bool:
        """
        Insert or update one cached employee.

        Contact, location and company fields keep their stored value when the
        new one is absent; name, title and the raw data blob are always
        replaced.

        Returns:
            True if a new row was inserted, False if an existing row was updated

        Raises:
            ValidationError: record has no person id
            CacheError: database failure
        """
        person_id = str(record.get("id") or record.get("apollo_person_id") or record.get("person_id") or "")
        if not person_id:
            raise ValidationError("Employee record has no apollo_person_id")

        company_id = str(record.get("company_id") or "")
        existing = self.execute(
            f"SELECT 1 FROM {schema}.employees_cache "
            "WHERE tenant_id = ? AND company_id = ? AND apollo_person_id = ?",
            (tenant_id, company_id, person_id),
        )

        self.execute_write(
            f"INSERT INTO {schema}.employees_cache ("
            "tenant_id, apollo_person_id, employee_name, employee_title, employee_email, "
            "employee_phone, employee_linkedin_url, employee_photo_url, "
            "employee_headline, employee_city, employee_state, employee_country, "
            "company_id, company_name, company_domain, data_source, employee_data"
            ") VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT (tenant_id, company_id, apollo_person_id) DO UPDATE SET "
            "employee_name = excluded.employee_name, "
            "employee_title = excluded.employee_title, "
            "employee_email = COALESCE(excluded.employee_email, employee_email), "
            "employee_phone = COALESCE(excluded.employee_phone, employee_phone), "
            "employee_linkedin_url = COALESCE(excluded.employee_linkedin_url, employee_linkedin_url), "
            "employee_photo_url = COALESCE(excluded.employee_photo_url, employee_photo_url), "
            "employee_headline = COALESCE(excluded.employee_headline, employee_headline), "
            "employee_city = COALESCE(excluded.employee_city, employee_city), "
            "employee_state = COALESCE(excluded.employee_state, employee_state), "
            "employee_country = COALESCE(excluded.employee_country, employee_country), "
            "company_name = COALESCE(excluded.company_name, company_name), "
            "company_domain = COALESCE(excluded.company_domain, company_domain), "
            "employee_data = excluded.employee_data, "
            "is_deleted = 0, "
            "updated_at = CURRENT_TIMESTAMP",
            (
                tenant_id,
                person_id,
                record.get("name") or None,
                record.get("title") or None,
                record.get("email") or None,
                record.get("phone") or None,
                record.get("linkedin_url") or None,
                record.get("photo_url") or None,
                record.get("headline") or None,
                record.get("city") or None,
                record.get("state") or None,
                record.get("country") or None,
                company_id,
                record.get("company_name") or None,
                record.get("company_domain") or None,
                record.get("data_source") or get_data_source(),
                json.dumps(record.get("employee_data") or {}),
            ),
        )
        return not existing

    def update_employee_contact(
        self,
        tenant_id: str,
        person_id: str,
        email: str | None = None,
        phone: str | None = None,
        schema: str = "main",
    ) -> int:
        """Set email and/or phone on every cached row for a person. Returns rows updated."""
        return self.execute_update(
            f"UPDATE {schema}.employees_cache SET "
            "employee_email = COALESCE(?, employee_email), "
            "employee_phone = COALESCE(?, employee_phone), "
            "updated_at = CURRENT_TIMESTAMP "
            "WHERE tenant_id = ? AND apollo_person_id = ? AND is_deleted = 0",
            (email or None, phone or None, tenant_id, str(person_id)),
        )

    def soft_delete_employee(self, tenant_id: str, person_id: str, schema: str = "main") -> int:
        """Flag a person's cached rows as deleted. Returns rows affected."""
        return self.execute_update(
            f"UPDATE {schema}.employees_cache SET is_deleted = 1, updated_at = CURRENT_TIMESTAMP "
            "WHERE tenant_id = ? AND apollo_person_id = ? AND is_deleted = 0",
            (tenant_id, str(person_id)),
        )

    # --- Search Result Cache ---

    def get_cached_search(
        self, tenant_id: str, search_key: str, ttl_hours: int = 24, schema: str = "main"
    ) -> list[dict] | None:
        """Get fresh cached search results and bump the hit counter."""
        rows = self.execute(
            f"SELECT results FROM {schema}.apollo_search_cache "
            "WHERE search_key = ? AND tenant_id = ? AND is_deleted = 0 "
            "AND updated_at > datetime('now', ?)",
            (search_key, tenant_id, f"-{int(ttl_hours)} hours"),
        )
        if not rows:
            return None

        self.execute_write(
            f"UPDATE {schema}.apollo_search_cache "
            "SET hit_count = hit_count + 1, last_accessed_at = CURRENT_TIMESTAMP "
            "WHERE search_key = ? AND tenant_id = ?",
            (search_key, tenant_id),
        )
        return json.loads(rows[0][0])

    def cache_search_results(
        self,
        tenant_id: str,
        search_key: str,
        results: list[dict],
        user_id: str | None = None,
        metadata: dict | None = None,
        schema: str = "main",
    ) -> None:
        """Create or refresh a search cache entry."""
        self.execute_write(
            f"INSERT INTO {schema}.apollo_search_cache "
            "(search_key, tenant_id, user_id, results, hit_count, last_accessed_at, metadata, is_deleted) "
            "VALUES (?, ?, ?, ?, 1, CURRENT_TIMESTAMP, ?, 0) "
            "ON CONFLICT (search_key, tenant_id) DO UPDATE SET "
            "results = excluded.results, "
            "hit_count = hit_count + 1, "
            "last_accessed_at = CURRENT_TIMESTAMP, "
            "metadata = excluded.metadata, "
            "is_deleted = 0, "
            "updated_at = CURRENT_TIMESTAMP",
            (search_key, tenant_id, user_id, json.dumps(results), json.dumps(metadata or {})),
        )

    def prune_search_cache(self, hours_old: int = 24, tenant_id: str | None = None, schema: str = "main") -> int:
        """Delete search cache entries older than hours_old. Returns count deleted."""
        if tenant_id:
            return self.execute_update(
                f"DELETE FROM {schema}.apollo_search_cache "
                "WHERE updated_at < datetime('now', ?) AND tenant_id = ?",
                (f"-{int(hours_old)} hours", tenant_id),
            )
        return self.execute_update(
            f"DELETE FROM {schema}.apollo_search_cache WHERE updated_at < datetime('now', ?)",
            (f"-{int(hours_old)} hours",),
        )

    def get_search_cache_stats(self, tenant_id: str | None = None, schema: str = "main") -> dict:
        """Get search cache statistics, optionally for one tenant."""
        sql = (
            "SELECT COUNT(*), COALESCE(SUM(hit_count), 0), COALESCE(AVG(hit_count), 0), "
            f"MAX(last_accessed_at) FROM {schema}.apollo_search_cache WHERE is_deleted = 0"
        )
        params: tuple = ()
        if tenant_id:
            sql += " AND tenant_id = ?"
            params = (tenant_id,)
        rows = self.execute(sql, params)
        r = rows[0] if rows else (0, 0, 0, None)
        return {
            "total_entries": r[0],
            "total_hits": r[1],
            "avg_hits_per_entry": r[2],
            "most_recent_access": r[3],
        }

    # --- Search History ---

    def save_search_history(
        self,
        tenant_id: str,
        user_id: str | None,
        search_params: dict,
        results_count: int,
        schema: str = "main",
    ) -> int:
        """Record a search in the audit trail. Returns history id."""
        return self.execute_write(
            f"INSERT INTO {schema}.apollo_search_history "
            "(tenant_id, user_id, search_params, results_count) VALUES (?, ?, ?, ?)",
            (tenant_id, user_id, json.dumps(search_params), results_count),
        )

    def get_search_history(
        self, tenant_id: str, user_id: str | None, limit: int = 50, page: int = 1, schema: str = "main"
    ) -> list[dict]:
        """Get a user's search history, newest first."""
        offset = (max(page, 1) - 1) * limit
        rows = self.execute(
            f"SELECT id, search_params, results_count, created_at FROM {schema}.apollo_search_history "
            "WHERE tenant_id = ? AND user_id IS ? "
            "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            (tenant_id, user_id, limit, offset),
        )
        return [
            {
                "id": r[0],
                "search_params": json.loads(r[1]) if r[1] else {},
                "results_count": r[2],
                "created_at": r[3],
            }
            for r in rows
        ]

    def delete_search_history(self, tenant_id: str, history_id: int, user_id: str | None, schema: str = "main") -> int:
        """Delete one history entry owned by the user. Returns rows deleted."""
        return self.execute_update(
            f"DELETE FROM {schema}.apollo_search_history "
            "WHERE tenant_id = ? AND id = ? AND user_id IS ?",
            (tenant_id, history_id, user_id),
        )

    # --- Credit Usage ---

    def log_credit_usage(
        self,
        tenant_id: str,
        operation: str,
        credits_used: int,
        results_returned: int = 0,
        reference_id: str | None = None,
        schema: str = "main",
    ) -> None:
        """Log credits consumed by one operation."""
        self.execute_write(
            f"INSERT INTO {schema}.credit_usage "
            "(tenant_id, operation, credits_used, results_returned, reference_id) "
            "VALUES (?, ?, ?, ?, ?)",
            (tenant_id, operation, credits_used, results_returned, reference_id),
        )

    def get_usage_summary(self, tenant_id: str, days: int = 30, schema: str = "main") -> list[dict]:
        """Get per-operation usage totals for a tenant."""
        rows = self.execute(
            "SELECT operation, SUM(credits_used) as credits, "
            "SUM(results_returned) as results, COUNT(*) as calls "
            f"FROM {schema}.credit_usage WHERE tenant_id = ? AND created_at >= datetime('now', ?) "
            "GROUP BY operation",
            (tenant_id, f"-{int(days)} days"),
        )
        return [
            {"operation": r[0], "credits": r[1], "results": r[2], "calls": r[3]}
            for r in rows
        ]
