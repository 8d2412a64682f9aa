"""
Wires the database, Apollo client, cost tracker and services from credentials.
"""

import logging
from dataclasses import dataclass

from apollo_client import ApolloClient
from company_search import CompanySearchService
from cost_tracker import CostTracker
from credentials import load_credentials
from employee_search import EmployeeSearchService
from leads_db import LeadsDatabase
from reveal import ContactRevealService
from tenant import TenantContext, require_tenant

logger = logging.getLogger(__name__)


@dataclass
class LeadServices:
    """Everything a caller needs, built once per process."""

    db: LeadsDatabase
    client: ApolloClient | None
    cost_tracker: CostTracker
    reveal: ContactRevealService
    employees: EmployeeSearchService
    companies: CompanySearchService
    default_schema: str = "main"
    environment: str | None = None
    dev_tenant_id: str | None = None

    def resolve_tenant(self, context: TenantContext | None, operation: str) -> TenantContext:
        return require_tenant(
            context,
            operation,
            environment=self.environment,
            dev_tenant_id=self.dev_tenant_id,
            default_schema=self.default_schema,
        )


def build_services(creds: dict | None = None) -> LeadServices:
    """
    Build all services from a credentials dict (see credentials.load_credentials).

    Without an Apollo API key the client is None: cache reads keep working,
    reveals raise ConfigurationError and employee search serves cache only.
    """
    if creds is None:
        creds = load_credentials()

    db = LeadsDatabase(creds["LEADS_DATABASE_URL"], creds.get("LEADS_AUTH_TOKEN"))

    api_key = creds.get("APOLLO_API_KEY")
    client = ApolloClient(api_key, creds.get("APOLLO_API_BASE_URL")) if api_key else None
    if client is None:
        logger.warning("APOLLO_API_KEY not set; provider calls are disabled")

    cost_tracker = CostTracker(db)
    scope = {
        "environment": creds.get("APP_ENV"),
        "dev_tenant_id": creds.get("DEV_TENANT_ID"),
        "default_schema": creds.get("DEFAULT_SCHEMA") or "main",
    }

    return LeadServices(
        db=db,
        client=client,
        cost_tracker=cost_tracker,
        reveal=ContactRevealService(
            db, client, cost_tracker, webhook_url=creds.get("APOLLO_WEBHOOK_URL"), **scope
        ),
        employees=EmployeeSearchService(db, client, **scope),
        companies=CompanySearchService(db, client, cost_tracker, **scope),
        **scope,
    )
