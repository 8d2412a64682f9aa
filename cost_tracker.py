"""
Credit costs and usage ledger for Apollo reveals and searches.
"""

import logging
from dataclasses import dataclass

from errors import CacheError
from tenant import TenantContext
from utils import get_credit_cost, truncate_id

logger = logging.getLogger(__name__)


@dataclass
class UsageSummary:
    """Summary of credit usage."""

    total_credits: int
    total_results: int
    total_calls: int
    by_operation: dict[str, dict]


class CostTracker:
    """
    Looks up operation costs and records charged operations per tenant.
    """

    def __init__(self, db):
        """
        Initialize cost tracker.

        Args:
            db: LeadsDatabase instance
        """
        self.db = db

    def cost_for(self, operation: str) -> int:
        """
        Credit cost of one operation.

        Args:
            operation: "email_reveal", "phone_reveal" or "search"

        Returns:
            Credits charged by the provider for one call
        """
        return get_credit_cost(operation)

    def record(
        self,
        tenant: TenantContext,
        operation: str,
        credits: int,
        results: int = 0,
        reference_id: str | None = None,
    ) -> bool:
        """
        Log credit usage for a completed operation.

        Ledger writes never fail the operation that spent the credits.

        Returns:
            True if the usage row was written
        """
        if credits <= 0:
            return False
        try:
            self.db.log_credit_usage(
                tenant_id=tenant.tenant_id,
                operation=operation,
                credits_used=credits,
                results_returned=results,
                reference_id=reference_id,
                schema=tenant.schema,
            )
            return True
        except CacheError as e:
            logger.warning(
                f"Failed to record {credits} credits for {operation} "
                f"(tenant {truncate_id(tenant.tenant_id)}): {e.message}"
            )
            return False

    def get_usage_summary(self, tenant: TenantContext, days: int = 30) -> UsageSummary:
        """
        Get usage summary for the specified period.

        Args:
            tenant: Resolved tenant context
            days: Number of days to look back

        Returns:
            UsageSummary with totals and breakdown by operation
        """
        summary_data = self.db.get_usage_summary(tenant.tenant_id, days, schema=tenant.schema)

        total_credits = 0
        total_results = 0
        total_calls = 0
        by_operation = {}

        for row in summary_data:
            credits = row["credits"] or 0
            results = row["results"] or 0
            calls = row["calls"] or 0

            total_credits += credits
            total_results += results
            total_calls += calls

            by_operation[row["operation"]] = {
                "credits": credits,
                "results": results,
                "calls": calls,
            }

        return UsageSummary(
            total_credits=total_credits,
            total_results=total_results,
            total_calls=total_calls,
            by_operation=by_operation,
        )
