"""
Company (organization) search with a 24-hour search result cache, a
per-user search history and per-company lead listing.
"""

import logging
from dataclasses import asdict

from apollo_client import ApolloClient, OrganizationSearchParams, PeopleSearchParams
from employee_cache import format_apollo_people, save_employees_to_cache, to_public_employee
from errors import CacheError, ConfigurationError, RecordNotFoundError, ValidationError
from tenant import DEFAULT_SCHEMA, TenantContext, require_tenant
from utils import clean_list, get_search_cache_config, get_search_history_config, truncate_id

logger = logging.getLogger(__name__)


def params_from_dict(data: dict) -> OrganizationSearchParams:
    """Build organization search params from request-style keys."""
    per_page = data.get("per_page", data.get("limit", 50))
    # Ranges are "min,max" strings, so a single string is one range
    ranges = data.get("employee_ranges", data.get("company_size"))
    if isinstance(ranges, str):
        ranges = [ranges]
    return OrganizationSearchParams(
        keywords=clean_list(data.get("keywords")),
        industries=clean_list(data.get("industries", data.get("industry"))),
        locations=clean_list(data.get("locations", data.get("location"))),
        employee_ranges=clean_list(ranges),
        page=max(int(data.get("page") or 1), 1),
        per_page=max(1, min(int(per_page or 50), ApolloClient.MAX_PER_PAGE)),
    )


def format_company(org: dict) -> dict:
    """Public shape for an Apollo organization."""
    return {
        "id": org.get("id"),
        "name": org.get("name"),
        "website": org.get("website_url"),
        "domain": org.get("primary_domain"),
        "industry": org.get("industry") or org.get("primary_vertical"),
        "location": {
            "city": org.get("city") or org.get("organization_raw_address_city"),
            "state": org.get("state") or org.get("organization_raw_address_state"),
            "country": org.get("country") or org.get("organization_raw_address_country"),
        },
        "size": org.get("estimated_num_employees") or org.get("num_current_employees"),
        "description": org.get("short_description"),
        "technologies": org.get("technology_names") or [],
        "linkedin_url": org.get("linkedin_url"),
        "twitter_url": org.get("twitter_url"),
        "facebook_url": org.get("facebook_url"),
        "phone": (org.get("primary_phone") or {}).get("number") or org.get("phone"),
    }


class CompanySearchService:
    """
    Organization search, company leads, search cache maintenance and search history.
    """

    def __init__(
        self,
        db,
        client,
        cost_tracker,
        environment: str | None = None,
        dev_tenant_id: str | None = None,
        default_schema: str = DEFAULT_SCHEMA,
    ):
        self.db = db
        self.client = client
        self.cost_tracker = cost_tracker
        self.environment = environment
        self.dev_tenant_id = dev_tenant_id
        self.default_schema = default_schema

    def _resolve(self, tenant: TenantContext | None, operation: str) -> TenantContext:
        return require_tenant(
            tenant,
            operation,
            environment=self.environment,
            dev_tenant_id=self.dev_tenant_id,
            default_schema=self.default_schema,
        )

    def search_companies(
        self,
        params: OrganizationSearchParams | dict,
        tenant: TenantContext | None = None,
        user_id: str | None = None,
    ) -> dict:
        """
        Search organizations, serving fresh cached results for free.

        Returns:
            Dict with success, companies, count, from_cache, cost and
            cache_warning when the result could not be cached

        Raises:
            ValidationError: no search criteria
            TenantContextError: no tenant could be resolved
            ConfigurationError: cache miss and no API key
            ProviderError: Apollo call failed
        """
        if isinstance(params, dict):
            params = params_from_dict(params)
        if not params.has_criteria():
            raise ValidationError("At least one of keywords, industries, locations or employee_ranges is required")

        tenant = self._resolve(tenant, "search_companies")
        search_key = ApolloClient.get_query_hash(params)
        ttl_hours = get_search_cache_config().get("ttl_hours", 24)

        try:
            cached = self.db.get_cached_search(tenant.tenant_id, search_key, ttl_hours=ttl_hours, schema=tenant.schema)
        except CacheError as e:
            logger.warning(f"Search cache read failed, treating as miss: {e.message}")
            cached = None

        if cached is not None:
            logger.info(f"Company search {search_key} served from cache ({len(cached)} companies)")
            return {
                "success": True,
                "companies": cached,
                "count": len(cached),
                "from_cache": True,
                "cost": 0,
            }

        if self.client is None:
            raise ConfigurationError("APOLLO_API_KEY", "Cannot search companies without an Apollo API key.")

        response = self.client.search_organizations(params)
        companies = [format_company(org) for org in response.get("organizations", [])]
        cost = self.cost_tracker.cost_for("search")
        self.cost_tracker.record(tenant, "search", cost, results=len(companies), reference_id=search_key)

        result = {
            "success": True,
            "companies": companies,
            "count": len(companies),
            "from_cache": False,
            "cost": cost,
            "pagination": response.get("pagination", {}),
        }

        try:
            self.db.cache_search_results(
                tenant.tenant_id,
                search_key,
                companies,
                user_id=user_id,
                metadata={"pagination": result["pagination"]},
                schema=tenant.schema,
            )
        except CacheError as e:
            logger.warning(f"Company search {search_key} not cached: {e.message}")
            result["cache_warning"] = e.user_message

        try:
            self.db.save_search_history(
                tenant.tenant_id, user_id, asdict(params), len(companies), schema=tenant.schema
            )
        except CacheError as e:
            logger.warning(f"Search history not saved: {e.message}")

        logger.info(
            f"Company search {search_key} (tenant {truncate_id(tenant.tenant_id)}): "
            f"{len(companies)} companies from Apollo"
        )
        return result

    def get_company(self, company_id: str) -> dict:
        """Fetch and format one organization from Apollo."""
        if not company_id:
            raise ValidationError("company_id is required")
        if self.client is None:
            raise ConfigurationError("APOLLO_API_KEY")
        return format_company(self.client.get_organization(company_id))

    def get_company_leads(
        self,
        company_id: str,
        limit: int = 25,
        page: int = 1,
        title_filter: str | None = None,
        tenant: TenantContext | None = None,
    ) -> dict:
        """
        List people working at one organization, optionally narrowed by title.

        Results are written to the employee cache so later searches and
        reveals can use them.

        Returns:
            Dict with success, employees, count, pagination and cache_warning
            when some employees could not be cached

        Raises:
            ValidationError: no company_id
            TenantContextError: no tenant could be resolved
            ConfigurationError: no API key
            ProviderError: Apollo call failed
        """
        if not company_id:
            raise ValidationError("company_id is required")
        tenant = self._resolve(tenant, "get_company_leads")
        if self.client is None:
            raise ConfigurationError("APOLLO_API_KEY", "Cannot list company leads without an Apollo API key.")

        params = PeopleSearchParams(
            titles=clean_list([title_filter]),
            organization_ids=[str(company_id)],
            page=max(int(page or 1), 1),
            per_page=max(1, min(int(limit or 25), ApolloClient.MAX_PER_PAGE)),
        )
        response = self.client.search_people(params)
        records = format_apollo_people(response.get("people", []))

        result = {
            "success": True,
            "employees": [to_public_employee(r) for r in records],
            "count": len(records),
            "pagination": response.get("pagination", {}),
        }
        if records:
            summary = save_employees_to_cache(self.db, records, tenant)
            if summary.errors:
                result["cache_warning"] = f"{summary.errors} of {summary.total} employees could not be cached"

        logger.info(
            f"Company {company_id} leads (tenant {truncate_id(tenant.tenant_id)}): "
            f"{len(records)} employees from Apollo"
        )
        return result

    def get_search_history(
        self,
        user_id: str | None,
        limit: int | None = None,
        page: int = 1,
        tenant: TenantContext | None = None,
    ) -> list[dict]:
        """Get a user's past searches, newest first."""
        tenant = self._resolve(tenant, "get_search_history")
        config = get_search_history_config()
        limit = max(1, min(int(limit or config.get("default_limit", 50)), config.get("max_limit", 100)))
        return self.db.get_search_history(
            tenant.tenant_id, user_id, limit=limit, page=max(int(page or 1), 1), schema=tenant.schema
        )

    def delete_search_history(
        self, history_id: int, user_id: str | None, tenant: TenantContext | None = None
    ) -> None:
        """
        Delete one history entry.

        Raises:
            RecordNotFoundError: no entry with that id for this tenant and user
        """
        tenant = self._resolve(tenant, "delete_search_history")
        deleted = self.db.delete_search_history(tenant.tenant_id, history_id, user_id, schema=tenant.schema)
        if not deleted:
            raise RecordNotFoundError("search history", history_id)
        logger.info(f"Deleted search history {history_id}")

    def get_cache_stats(self, tenant: TenantContext | None = None) -> dict:
        tenant = self._resolve(tenant, "get_cache_stats")
        return self.db.get_search_cache_stats(tenant.tenant_id, schema=tenant.schema)

    def prune_search_cache(self, hours_old: int | None = None, tenant: TenantContext | None = None) -> int:
        """Delete this tenant's search cache entries older than hours_old. Returns count deleted."""
        tenant = self._resolve(tenant, "prune_search_cache")
        if hours_old is None:
            hours_old = get_search_cache_config().get("ttl_hours", 24)
        deleted = self.db.prune_search_cache(hours_old, tenant_id=tenant.tenant_id, schema=tenant.schema)
        logger.info(f"Pruned {deleted} search cache entries older than {hours_old}h")
        return deleted
