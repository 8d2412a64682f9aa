"""
Utility functions for the lead cache.
Includes config loading, contact validation and identifier checks.
"""

import re
from pathlib import Path
from functools import lru_cache

import yaml


# --- Configuration Loading ---

@lru_cache(maxsize=1)
def load_config() -> dict:
    """Load lead cache configuration from YAML file.

    Cached for the process lifetime; restart the process to pick up YAML changes.
    """
    config_path = Path(__file__).parent / "config" / "leads.yaml"
    with open(config_path, "r") as f:
        return yaml.safe_load(f)


def get_provider_config() -> dict:
    """Get provider settings (base URL, page size, timeouts)."""
    config = load_config()
    return config.get("provider", {})


def get_provider_timeout(operation: str) -> int:
    """Get provider timeout in seconds for 'match', 'search' or 'organizations'."""
    timeouts = get_provider_config().get("timeouts", {})
    return timeouts.get(operation, 30)


def get_credit_costs() -> dict:
    """Get credit cost per billable operation."""
    config = load_config()
    return config.get("credit_costs", {"email_reveal": 1, "phone_reveal": 8, "search": 1})


def get_credit_cost(operation: str) -> int:
    """Get credit cost for one operation ('email_reveal', 'phone_reveal', 'search')."""
    return get_credit_costs().get(operation, 0)


def get_fake_email_patterns() -> list[str]:
    """Get placeholder email substrings."""
    config = load_config()
    return config.get("fake_email_patterns", [])


def get_employee_search_config() -> dict:
    """Get employee search paging configuration."""
    config = load_config()
    return config.get(
        "employee_search",
        {"default_per_page": 100, "max_per_page": 100, "provider_page_size": 100},
    )


def get_search_cache_config() -> dict:
    """Get search result cache configuration."""
    config = load_config()
    return config.get("search_cache", {"ttl_hours": 24})


def get_search_history_config() -> dict:
    """Get search history paging configuration."""
    config = load_config()
    return config.get("search_history", {"default_limit": 50, "max_limit": 100})


def get_data_source() -> str:
    """Get provenance tag written to cache rows."""
    config = load_config()
    return config.get("data_source", "apollo_io")


# --- Contact Validation ---

def is_fake_email(email: str | None, patterns: list[str] | None = None) -> bool:
    """Check if an email is missing or matches a placeholder pattern.

    Heuristic substring match against the whole address, case-insensitive.
    """
    if not email or not str(email).strip():
        return True
    if patterns is None:
        patterns = get_fake_email_patterns()
    email_lower = str(email).strip().lower()
    return any(pattern.lower() in email_lower for pattern in patterns)


def has_phone(phone: str | None) -> bool:
    """Phone is usable if non-empty after trimming."""
    return bool(phone and str(phone).strip())


def first_valid_email(candidates, patterns: list[str] | None = None) -> str | None:
    """Return the first non-placeholder email from an iterable, or None."""
    for candidate in candidates or []:
        if not is_fake_email(candidate, patterns):
            return str(candidate).strip()
    return None


def clean_text(value) -> str | None:
    """Strip a value to a string, mapping empty/None to None."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def clean_list(values) -> list[str]:
    """Normalize a filter value (str, list or None) to a list of non-empty strings."""
    if values is None:
        return []
    if isinstance(values, str):
        values = values.split(",")
    return [str(v).strip() for v in values if v is not None and str(v).strip()]


# --- Identifiers ---

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def is_sql_identifier(name: str | None) -> bool:
    """Check that a schema/table name is safe to interpolate into SQL."""
    return bool(name) and bool(_IDENTIFIER_RE.match(name))


def truncate_id(value: str | None, length: int = 8) -> str:
    """Shorten an identifier for log output."""
    if not value:
        return "none"
    value = str(value)
    return value[:length] + "..." if len(value) > length else value
