"""
Tenant context resolution.

Every cache read and write is scoped by tenant_id and runs against a schema
resolved here. The context is always passed explicitly; nothing is read from
request globals.
"""

import logging
from dataclasses import dataclass

from errors import TenantContextError
from utils import is_sql_identifier, truncate_id

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA = "main"
PRODUCTION_ENVIRONMENTS = {"production", "staging"}


@dataclass(frozen=True)
class TenantContext:
    """Owner scope for one operation."""

    tenant_id: str | None
    schema: str = DEFAULT_SCHEMA


def is_production(environment: str | None) -> bool:
    """Production-like environments never fall back to a dev tenant."""
    return (environment or "").strip().lower() in PRODUCTION_ENVIRONMENTS


def require_tenant(
    context: TenantContext | None,
    operation: str,
    environment: str | None = None,
    dev_tenant_id: str | None = None,
    default_schema: str = DEFAULT_SCHEMA,
) -> TenantContext:
    """
    Resolve a usable tenant context or raise.

    Args:
        context: Context supplied by the caller (may be None)
        operation: Operation name, for error messages
        environment: Deployment environment ("production", "development", ...)
        dev_tenant_id: Fallback tenant for non-production environments
        default_schema: Schema used when the context does not name one

    Returns:
        TenantContext with a tenant_id and a validated schema name

    Raises:
        TenantContextError: No tenant available, or the schema name is unsafe
    """
    schema = (context.schema if context and context.schema else default_schema)
    if not is_sql_identifier(schema):
        raise TenantContextError(operation, f"Invalid schema name: {schema!r}")

    tenant_id = context.tenant_id if context else None
    if tenant_id:
        return TenantContext(tenant_id=str(tenant_id), schema=schema)

    if is_production(environment):
        logger.error(f"Tenant context missing for {operation} (environment={environment})")
        raise TenantContextError(operation, "Tenant ID must be provided by the caller.")

    if dev_tenant_id:
        logger.warning(f"Using DEV_TENANT_ID fallback for {operation} ({truncate_id(dev_tenant_id)})")
        return TenantContext(tenant_id=str(dev_tenant_id), schema=schema)

    logger.error(f"No tenant ID available for {operation}")
    raise TenantContextError(operation, "Set DEV_TENANT_ID for development.")
