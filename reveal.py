"""
Email and phone reveal with cache-first lookup.

A cached, usable contact is returned at zero cost. Otherwise Apollo's person
match endpoint is called (which costs credits) and the result is written
back to the employee cache.

Phone reveals can be asynchronous: when a webhook URL is configured Apollo
answers immediately and delivers the number later. handle_phone_delivery()
completes that second phase.
"""

import logging
from dataclasses import dataclass

from apollo_client import ProviderError
from employee_cache import cache_contact
from errors import CacheError, ConfigurationError, ValidationError
from tenant import DEFAULT_SCHEMA, TenantContext, require_tenant
from utils import clean_text, first_valid_email, has_phone, is_fake_email, truncate_id

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "not available"
PHONE_REQUEST_FAILED = "Phone reveal request failed"
ASYNC_PHONE_MESSAGE = "Phone number will be delivered asynchronously to the configured webhook."


@dataclass
class RevealResult:
    """Outcome of one reveal."""

    field: str  # "email" or "phone"
    value: str | None = None
    from_cache: bool = False
    cost: int = 0
    error: str | None = None
    processing: bool = False
    message: str | None = None
    cache_warning: str | None = None

    def to_dict(self) -> dict:
        result = {
            self.field: self.value,
            "from_cache": self.from_cache,
            "cost": self.cost,
        }
        if self.error:
            result["error"] = self.error
        if self.processing:
            result["processing"] = True
        if self.message:
            result["message"] = self.message
        if self.cache_warning:
            result["cache_warning"] = self.cache_warning
        return result


def _extract_phone(person: dict) -> str | None:
    """First non-empty raw number (falling back to the sanitized one)."""
    for entry in person.get("phone_numbers") or []:
        if not isinstance(entry, dict):
            continue
        number = clean_text(entry.get("raw_number")) or clean_text(entry.get("sanitized_number"))
        if number:
            return number
    return clean_text(person.get("phone") or person.get("sanitized_phone"))


def parse_phone_webhook(payload: dict) -> list[tuple[str, str]]:
    """
    Extract (person_id, phone) pairs from an Apollo phone webhook body.

    Accepts {"people": [...]}, {"person": {...}} or a flat
    {"person_id": ..., "phone": ...}. Entries without both values are skipped.
    """
    if not isinstance(payload, dict):
        return []

    if isinstance(payload.get("people"), list):
        people = payload["people"]
    elif isinstance(payload.get("person"), dict):
        people = [payload["person"]]
    else:
        people = [payload]

    pairs = []
    for person in people:
        if not isinstance(person, dict):
            continue
        person_id = clean_text(person.get("id") or person.get("person_id"))
        phone = _extract_phone(person)
        if person_id and phone:
            pairs.append((person_id, phone))
        else:
            logger.debug(f"Webhook entry skipped (person_id={person_id}, has_phone={bool(phone)})")
    return pairs


class ContactRevealService:
    """
    Reveals emails and phones for one tenant at a time.
    """

    def __init__(
        self,
        db,
        client,
        cost_tracker,
        webhook_url: str | None = None,
        environment: str | None = None,
        dev_tenant_id: str | None = None,
        default_schema: str = DEFAULT_SCHEMA,
    ):
        """
        Args:
            db: LeadsDatabase instance
            client: ApolloClient, or None when no API key is configured
            cost_tracker: CostTracker instance
            webhook_url: Apollo webhook for asynchronous phone delivery
            environment: Deployment environment, for tenant fallback rules
            dev_tenant_id: Tenant used outside production when none is given
            default_schema: Schema used when the tenant context has none
        """
        self.db = db
        self.client = client
        self.cost_tracker = cost_tracker
        self.webhook_url = webhook_url
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

    def _lookup_cached(self, tenant: TenantContext, person_id: str | None, employee_name: str | None) -> dict | None:
        """Find the cached row by person id (or by name). Read failures count as a miss."""
        try:
            if person_id:
                return self.db.find_employee_by_person_id(tenant.tenant_id, person_id, schema=tenant.schema)
            if employee_name:
                return self.db.find_employee_by_name(tenant.tenant_id, employee_name, schema=tenant.schema)
        except CacheError as e:
            logger.warning(f"Cache lookup failed, treating as miss: {e.message}")
        return None

    def _require_client(self, person_id: str | None, field_name: str):
        if not person_id:
            raise ValidationError(f"person_id is required for {field_name} reveal")
        if self.client is None:
            raise ConfigurationError("APOLLO_API_KEY", f"Cannot reveal {field_name} without an Apollo API key.")
        return self.client

    def _match(self, client, tenant: TenantContext, operation: str, cost: int, person_id: str, **kwargs) -> dict:
        """Call person match; charge and record cost on server errors before re-raising."""
        try:
            return client.match_person(person_id, **kwargs)
        except ProviderError as e:
            e.credits_charged = cost if e.is_server_error else 0
            logger.error(
                f"{operation} failed for person {person_id} (HTTP {e.status_code}, "
                f"charged {e.credits_charged}): {e.message}"
            )
            self.cost_tracker.record(tenant, operation, e.credits_charged, reference_id=person_id)
            raise

    def _write_back(self, tenant: TenantContext, person_id: str, person: dict, **contact) -> str | None:
        """Cache a revealed contact. Returns a warning instead of raising."""
        try:
            cache_contact(self.db, tenant, person_id, person=person, **contact)
        except (CacheError, ValidationError) as e:
            logger.warning(f"Revealed contact for {person_id} not cached: {e.message}")
            return e.user_message
        return None

    def reveal_email(
        self,
        person_id: str | None,
        employee_name: str | None = None,
        tenant: TenantContext | None = None,
    ) -> RevealResult:
        """
        Reveal a work or personal email (1 credit unless cached).

        Raises:
            TenantContextError: no tenant could be resolved
            ValidationError: nothing cached and no person_id
            ConfigurationError: nothing cached and no API key
            ProviderError: Apollo call failed (credits_charged set)
        """
        tenant = self._resolve(tenant, "reveal_email")
        person_id = clean_text(person_id)

        cached = self._lookup_cached(tenant, person_id, employee_name)
        if cached and not is_fake_email(cached.get("email")):
            logger.info(f"Email for {person_id or employee_name} served from cache (0 credits)")
            return RevealResult(field="email", value=cached["email"], from_cache=True, cost=0)

        client = self._require_client(person_id, "email")
        cost = self.cost_tracker.cost_for("email_reveal")
        response = self._match(client, tenant, "email_reveal", cost, person_id, reveal_personal_emails=True)
        person = response.get("person") or {}

        email = first_valid_email(
            [person.get("email"), *(person.get("personal_emails") or []), response.get("email")]
        )
        self.cost_tracker.record(tenant, "email_reveal", cost, results=1 if email else 0, reference_id=person_id)

        if not email:
            logger.warning(f"No usable email returned for person {person_id}")
            return RevealResult(field="email", cost=cost, error=NOT_AVAILABLE)

        logger.info(f"Email revealed for person {person_id} ({cost} credits, tenant {truncate_id(tenant.tenant_id)})")
        warning = self._write_back(tenant, person_id, person, email=email)
        return RevealResult(field="email", value=email, cost=cost, cache_warning=warning)

    def reveal_phone(
        self,
        person_id: str | None,
        employee_name: str | None = None,
        tenant: TenantContext | None = None,
    ) -> RevealResult:
        """
        Reveal a phone number (8 credits unless cached).

        With a webhook URL configured the number arrives later and the result
        is marked processing; nothing is cached until handle_phone_delivery().
        """
        tenant = self._resolve(tenant, "reveal_phone")
        person_id = clean_text(person_id)

        cached = self._lookup_cached(tenant, person_id, employee_name)
        if cached and has_phone(cached.get("phone")):
            logger.info(f"Phone for {person_id or employee_name} served from cache (0 credits)")
            return RevealResult(field="phone", value=cached["phone"].strip(), from_cache=True, cost=0)

        client = self._require_client(person_id, "phone")
        cost = self.cost_tracker.cost_for("phone_reveal")
        response = self._match(
            client, tenant, "phone_reveal", cost, person_id,
            reveal_phone_number=True, webhook_url=self.webhook_url,
        )

        if response.get("success") is False:
            logger.warning(f"Phone reveal request rejected for person {person_id}")
            return RevealResult(field="phone", cost=0, error=PHONE_REQUEST_FAILED)

        if self.webhook_url:
            self.cost_tracker.record(tenant, "phone_reveal", cost, reference_id=person_id)
            logger.info(f"Phone reveal for person {person_id} submitted, awaiting webhook")
            return RevealResult(field="phone", cost=cost, processing=True, message=ASYNC_PHONE_MESSAGE)

        person = response.get("person") or {}
        phone = _extract_phone(person)
        self.cost_tracker.record(tenant, "phone_reveal", cost, results=1 if phone else 0, reference_id=person_id)

        if not phone:
            logger.warning(f"No phone returned for person {person_id}")
            return RevealResult(field="phone", cost=cost, error=NOT_AVAILABLE)

        logger.info(f"Phone revealed for person {person_id} ({cost} credits)")
        warning = self._write_back(tenant, person_id, person, phone=phone)
        return RevealResult(field="phone", value=phone, cost=cost, cache_warning=warning)

    def handle_phone_delivery(self, person_id: str | None, phone: str | None, tenant: TenantContext | None = None) -> bool:
        """
        Store a phone number delivered by webhook.

        Returns:
            True if the number was cached

        Raises:
            ValidationError: missing person id or phone
            TenantContextError: no tenant could be resolved
        """
        person_id = clean_text(person_id)
        if not person_id:
            raise ValidationError("person_id is required for phone delivery")
        if not has_phone(phone):
            raise ValidationError("phone is required for phone delivery")
        tenant = self._resolve(tenant, "handle_phone_delivery")

        try:
            return cache_contact(self.db, tenant, person_id, phone=phone.strip())
        except CacheError as e:
            logger.error(f"Delivered phone for {person_id} could not be cached: {e.message}")
            return False
