"""
Employee search with cache fallback.

Cached employees are served first. When the cache cannot fill the page,
Apollo's people search is queried once at the maximum page size, the
results are written back to the cache, and both sources are merged.
"""

import logging
from dataclasses import dataclass, field

from apollo_client import PeopleSearchParams, ProviderError
from employee_cache import format_apollo_people, save_employees_to_cache, to_public_employee
from errors import CacheError, ValidationError
from tenant import DEFAULT_SCHEMA, TenantContext, require_tenant
from utils import clean_list, get_employee_search_config, truncate_id

logger = logging.getLogger(__name__)


@dataclass
class EmployeeSearchFilters:
    """Filter groups for employee search. Values OR within a group; groups AND."""

    titles: list[str] = field(default_factory=list)
    locations: list[str] = field(default_factory=list)
    industries: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "EmployeeSearchFilters":
        """Build filters from request-style keys (person_titles, organization_locations, ...)."""
        return cls(
            titles=clean_list(data.get("titles", data.get("person_titles"))),
            locations=clean_list(data.get("locations", data.get("organization_locations"))),
            industries=clean_list(data.get("industries", data.get("organization_industries"))),
        )

    def normalized(self) -> "EmployeeSearchFilters":
        return EmployeeSearchFilters(
            titles=clean_list(self.titles),
            locations=clean_list(self.locations),
            industries=clean_list(self.industries),
        )

    def is_empty(self) -> bool:
        return not (self.titles or self.locations or self.industries)


class EmployeeSearchService:
    """
    Cache-first people search for one tenant at a time.
    """

    def __init__(
        self,
        db,
        client,
        environment: str | None = None,
        dev_tenant_id: str | None = None,
        default_schema: str = DEFAULT_SCHEMA,
    ):
        self.db = db
        self.client = client
        self.environment = environment
        self.dev_tenant_id = dev_tenant_id
        self.default_schema = default_schema

    def _clamp(self, page: int, per_page: int | None) -> tuple[int, int]:
        config = get_employee_search_config()
        max_per_page = config.get("max_per_page", 100)
        if per_page is None:
            per_page = config.get("default_per_page", max_per_page)
        return max(int(page or 1), 1), max(1, min(int(per_page), max_per_page))

    def _search_cache(self, tenant: TenantContext, filters: EmployeeSearchFilters, page: int,
                      per_page: int, exclude_ids: list[str]) -> list[dict]:
        try:
            return self.db.search_employees(
                tenant.tenant_id,
                titles=filters.titles,
                locations=filters.locations,
                industries=filters.industries,
                page=page,
                per_page=per_page,
                exclude_ids=exclude_ids,
                schema=tenant.schema,
            )
        except CacheError as e:
            logger.warning(f"Employee cache search failed, continuing without cache: {e.message}")
            return []

    def _fetch_provider(self, filters: EmployeeSearchFilters, page: int) -> list[dict] | None:
        """One people search call at the provider page size. None means the provider was unavailable."""
        if self.client is None:
            logger.warning("Apollo API key not configured, serving cached employees only")
            return None

        params = PeopleSearchParams(
            titles=filters.titles,
            locations=filters.locations,
            industries=filters.industries,
            page=page,
            per_page=get_employee_search_config().get("provider_page_size", 100),
        )
        try:
            response = self.client.search_people(params)
        except ProviderError as e:
            logger.warning(f"Apollo people search failed, serving cached employees only: {e.message}")
            return None
        return response.get("people") or []

    def search_employees(
        self,
        filters: EmployeeSearchFilters | dict,
        page: int = 1,
        per_page: int | None = None,
        tenant: TenantContext | None = None,
        exclude_ids: list[str] | None = None,
    ) -> dict:
        """
        Search employees, cache first.

        Args:
            filters: EmployeeSearchFilters (or a dict of filter lists)
            page: 1-based page number
            per_page: Employees wanted (clamped to 1..100)
            tenant: Caller's tenant context
            exclude_ids: Apollo person ids to leave out of cache and provider rows

        Returns:
            Dict with success, employees, count, source ("cache", "provider" or
            "mixed") and cache_warning when the write-back failed

        Raises:
            ValidationError: no filter values given
            TenantContextError: no tenant could be resolved
        """
        if isinstance(filters, dict):
            filters = EmployeeSearchFilters.from_dict(filters)
        filters = filters.normalized()
        if filters.is_empty():
            raise ValidationError("At least one of titles, locations or industries is required")

        tenant = require_tenant(
            tenant,
            "search_employees",
            environment=self.environment,
            dev_tenant_id=self.dev_tenant_id,
            default_schema=self.default_schema,
        )
        page, per_page = self._clamp(page, per_page)
        excluded = {str(i) for i in exclude_ids or []}

        cache_rows = self._search_cache(tenant, filters, page, per_page, sorted(excluded))
        logger.info(
            f"Employee search (tenant {truncate_id(tenant.tenant_id)}): "
            f"{len(cache_rows)}/{per_page} from cache"
        )
        # The SQL exclude list is capped, and one person may span company rows
        seen = set()
        cached = []
        for row in cache_rows:
            employee = to_public_employee(row)
            if employee["id"] in excluded or employee["id"] in seen:
                continue
            seen.add(employee["id"])
            cached.append(employee)

        if len(cached) >= per_page:
            return self._result(cached[:per_page], "cache")

        people = self._fetch_provider(filters, page)
        if not people:
            return self._result(cached, "cache")

        records = [r for r in format_apollo_people(people) if r["id"] not in excluded]

        cache_warning = None
        if records:
            summary = save_employees_to_cache(self.db, records, tenant)
            if summary.errors:
                cache_warning = f"{summary.errors} of {summary.total} employees could not be cached"

        fresh = []
        for record in records:
            if record["id"] in seen:
                continue
            seen.add(record["id"])
            fresh.append(to_public_employee(record))
        employees = (cached + fresh)[:per_page]

        if not fresh:
            source = "cache"
        elif cached:
            source = "mixed"
        else:
            source = "provider"
        return self._result(employees, source, cache_warning)

    @staticmethod
    def _result(employees: list[dict], source: str, cache_warning: str | None = None) -> dict:
        result = {
            "success": True,
            "employees": employees,
            "count": len(employees),
            "source": source,
        }
        if cache_warning:
            result["cache_warning"] = cache_warning
        return result
