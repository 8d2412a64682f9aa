#!/usr/bin/env python3
"""
Lead cache maintenance and manual operations.

Usage:
    python scripts/leads_admin.py --schema main init-schema
    python scripts/leads_admin.py --tenant acme cache-stats
    python scripts/leads_admin.py --tenant acme prune-search-cache --hours 48
    python scripts/leads_admin.py --tenant acme usage --days 7
    python scripts/leads_admin.py --tenant acme reveal-email <person_id>
    python scripts/leads_admin.py --tenant acme reveal-phone <person_id>
    python scripts/leads_admin.py --tenant acme deliver-phone webhook.json
    python scripts/leads_admin.py search-employees --title CEO --location Texas --per-page 25
    python scripts/leads_admin.py --tenant acme company-leads <organization_id> --title CTO
    python scripts/leads_admin.py --verbose ...        # Debug logging
"""

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path

# Ensure project root is on sys.path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from credentials import load_credentials
from employee_search import EmployeeSearchFilters
from errors import LeadsError
from lead_services import build_services
from reveal import parse_phone_webhook
from tenant import TenantContext

logger = logging.getLogger("leads_admin")


def _print(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def _tenant(args, services) -> TenantContext:
    return TenantContext(tenant_id=args.tenant, schema=args.schema or services.default_schema)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_init_schema(args, services) -> None:
    schema = args.schema or services.default_schema
    services.db.init_schema(schema)
    logger.info("Schema %s initialized", schema)


def cmd_prune_search_cache(args, services) -> None:
    deleted = services.companies.prune_search_cache(args.hours, tenant=_tenant(args, services))
    _print({"deleted": deleted})


def cmd_cache_stats(args, services) -> None:
    _print(services.companies.get_cache_stats(tenant=_tenant(args, services)))


def cmd_usage(args, services) -> None:
    summary = services.cost_tracker.get_usage_summary(
        services.resolve_tenant(_tenant(args, services), "usage"), days=args.days
    )
    _print(asdict(summary))


def cmd_reveal_email(args, services) -> None:
    result = services.reveal.reveal_email(args.person_id, employee_name=args.name, tenant=_tenant(args, services))
    _print(result.to_dict())


def cmd_reveal_phone(args, services) -> None:
    result = services.reveal.reveal_phone(args.person_id, employee_name=args.name, tenant=_tenant(args, services))
    _print(result.to_dict())


def cmd_deliver_phone(args, services) -> None:
    with open(args.payload) as f:
        payload = json.load(f)

    pairs = parse_phone_webhook(payload)
    if not pairs:
        logger.warning("No person/phone pairs found in %s", args.payload)

    tenant = _tenant(args, services)
    stored = sum(1 for person_id, phone in pairs if services.reveal.handle_phone_delivery(person_id, phone, tenant))
    _print({"received": len(pairs), "stored": stored})


def cmd_search_employees(args, services) -> None:
    filters = EmployeeSearchFilters(
        titles=args.title or [],
        locations=args.location or [],
        industries=args.industry or [],
    )
    result = services.employees.search_employees(
        filters,
        page=args.page,
        per_page=args.per_page,
        tenant=_tenant(args, services),
        exclude_ids=args.exclude or None,
    )
    _print(result)


def cmd_company_leads(args, services) -> None:
    result = services.companies.get_company_leads(
        args.company_id,
        limit=args.limit,
        page=args.page,
        title_filter=args.title,
        tenant=_tenant(args, services),
    )
    _print(result)


COMMANDS = {
    "init-schema": cmd_init_schema,
    "prune-search-cache": cmd_prune_search_cache,
    "cache-stats": cmd_cache_stats,
    "usage": cmd_usage,
    "reveal-email": cmd_reveal_email,
    "reveal-phone": cmd_reveal_phone,
    "deliver-phone": cmd_deliver_phone,
    "search-employees": cmd_search_employees,
    "company-leads": cmd_company_leads,
}


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Lead cache admin")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--tenant", help="Tenant id (falls back to DEV_TENANT_ID outside production)")
    parser.add_argument("--schema", help="Schema name (default: DEFAULT_SCHEMA)")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-schema", help="Create tables and run column migrations")

    prune = sub.add_parser("prune-search-cache", help="Delete stale search cache entries")
    prune.add_argument("--hours", type=int, default=None, help="Age threshold (default: cache TTL)")

    sub.add_parser("cache-stats", help="Search cache statistics")

    usage = sub.add_parser("usage", help="Credit usage summary")
    usage.add_argument("--days", type=int, default=30)

    for name in ("reveal-email", "reveal-phone"):
        reveal = sub.add_parser(name, help=f"{name.replace('-', ' ').capitalize()} for one person")
        reveal.add_argument("person_id", nargs="?", default=None)
        reveal.add_argument("--name", help="Look up the cache by employee name")

    deliver = sub.add_parser("deliver-phone", help="Store phones from a saved webhook payload")
    deliver.add_argument("payload", help="Path to the webhook JSON body")

    search = sub.add_parser("search-employees", help="Cache-first employee search")
    search.add_argument("--title", action="append", help="Job title (repeatable)")
    search.add_argument("--location", action="append", help="Location (repeatable)")
    search.add_argument("--industry", action="append", help="Industry (repeatable)")
    search.add_argument("--exclude", action="append", help="Apollo person id to skip (repeatable)")
    search.add_argument("--page", type=int, default=1)
    search.add_argument("--per-page", type=int, default=None)

    leads = sub.add_parser("company-leads", help="People at one organization")
    leads.add_argument("company_id")
    leads.add_argument("--title", help="Job title filter")
    leads.add_argument("--limit", type=int, default=25)
    leads.add_argument("--page", type=int, default=1)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    # Logging
    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Load credentials
    try:
        creds = load_credentials()
    except ValueError as e:
        logger.error("Credential error: %s", e)
        return 1

    services = build_services(creds)

    try:
        COMMANDS[args.command](args, services)
    except LeadsError as e:
        logger.error("%s failed: %s", args.command, e.user_message)
        logger.debug("Detail: %s", e.message)
        return 1
    except (OSError, ValueError) as e:
        logger.error("%s failed: %s", args.command, e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
