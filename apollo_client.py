"""
Apollo.io API client with API-key authentication and status-code error mapping.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field

import requests

from errors import LeadsError
from utils import get_provider_config, get_provider_timeout, clean_list

# Configure logging
logger = logging.getLogger(__name__)

# Set up console handler if not already configured
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class ProviderError(LeadsError):
    """Base exception for Apollo API errors."""

    def __init__(self, status_code: int, message: str, user_message: str, recoverable: bool = True):
        self.status_code = status_code
        self.credits_charged = 0
        super().__init__(message=message, user_message=user_message, recoverable=recoverable)

    @property
    def is_server_error(self) -> bool:
        """5xx responses may have consumed provider capacity."""
        return self.status_code >= 500


class ProviderAuthError(ProviderError):
    """API key rejected (401)."""

    def __init__(self, message: str):
        super().__init__(
            status_code=401,
            message=message,
            user_message="Apollo authentication failed. Please check your API key.",
            recoverable=False,
        )


class ProviderForbiddenError(ProviderError):
    """Plan lacks the requested capability (403)."""

    def __init__(self, message: str):
        super().__init__(
            status_code=403,
            message=message,
            user_message="Your Apollo plan does not include this feature.",
            recoverable=False,
        )


class ProviderNotFoundError(ProviderError):
    """Unknown person or organization id (404)."""

    def __init__(self, message: str):
        super().__init__(
            status_code=404,
            message=message,
            user_message="Apollo has no record for this person.",
            recoverable=False,
        )


class ProviderRateLimitError(ProviderError):
    """Rate limit exceeded (429)."""

    def __init__(self, retry_after: int = 60, detail: str = ""):
        self.retry_after = retry_after
        if retry_after >= 60:
            wait_display = f"{retry_after // 60} minute{'s' if retry_after >= 120 else ''}"
        else:
            wait_display = f"{retry_after} seconds"
        msg = f"Rate limit reached. Try again in {wait_display}."
        if detail:
            msg = f"{detail} {msg}"
        super().__init__(
            status_code=429,
            message=f"Rate limit exceeded. Retry after {retry_after} seconds. {detail}".strip(),
            user_message=msg,
            recoverable=True,
        )


class ProviderServerError(ProviderError):
    """Apollo failed on its side (5xx)."""

    def __init__(self, status_code: int, message: str):
        super().__init__(
            status_code=status_code,
            message=f"API error {status_code}: {message}",
            user_message=f"Apollo is having problems ({status_code}). Please try again later.",
            recoverable=True,
        )


class ProviderAPIError(ProviderError):
    """Any other API failure: unexpected 4xx, transport error (status 0), bad JSON."""

    def __init__(self, status_code: int, message: str):
        # Keep UI text short and single-line; full detail stays in .message
        safe = " ".join(str(message).split())
        if len(safe) > 200:
            safe = safe[:200] + "..."
        super().__init__(
            status_code=status_code,
            message=f"API error {status_code}: {message}",
            user_message=f"Apollo API error ({status_code}): {safe}",
            recoverable=status_code == 0,
        )


@dataclass
class PeopleSearchParams:
    """Parameters for People Search API query."""

    titles: list[str] = field(default_factory=list)
    locations: list[str] = field(default_factory=list)
    industries: list[str] = field(default_factory=list)
    organization_ids: list[str] = field(default_factory=list)
    page: int = 1
    per_page: int = 100


@dataclass
class OrganizationSearchParams:
    """Parameters for Organization Search API query."""

    keywords: list[str] = field(default_factory=list)
    industries: list[str] = field(default_factory=list)
    locations: list[str] = field(default_factory=list)
    employee_ranges: list[str] = field(default_factory=list)  # e.g. ["1,10", "11,50"]
    page: int = 1
    per_page: int = 50

    def has_criteria(self) -> bool:
        return bool(self.keywords or self.industries or self.locations or self.employee_ranges)


def normalize_base_url(base_url: str | None) -> str:
    """Default the base URL and make api.apollo.io URLs include the /api/ prefix."""
    url = (base_url or get_provider_config().get("base_url") or ApolloClient.DEFAULT_BASE_URL).rstrip("/")
    if "api.apollo.io" in url and "/api/" not in url + "/":
        url = url.replace("api.apollo.io", "api.apollo.io/api", 1)
    return url


class ApolloClient:
    """
    Apollo.io API client. No retries: every failure is mapped and raised once.
    """

    DEFAULT_BASE_URL = "https://api.apollo.io/api/v1"

    PEOPLE_MATCH = "/people/match"
    PEOPLE_SEARCH = "/mixed_people/api_search"
    ORGANIZATION_SEARCH = "/mixed_companies/api_search"
    ORGANIZATIONS = "/organizations"

    MAX_PER_PAGE = 100

    def __init__(self, api_key: str, base_url: str | None = None):
        self.api_key = api_key
        self.base_url = normalize_base_url(base_url)
        self._session = requests.Session()
        self.last_exchange: dict | None = None  # Captures last API request/response for debugging

    def _request(
        self,
        method: str,
        endpoint: str,
        timeout: int = 30,
        **kwargs,
    ) -> dict:
        """Make an authenticated API request and map failures to ProviderError subclasses."""
        url = f"{self.base_url}{endpoint}"
        request_body = kwargs.get("json", {})

        self.last_exchange = {
            "request": {
                "method": method,
                "url": url,
                "body": request_body or None,
            },
            "response": None,
            "error": None,
        }

        headers = {
            "X-Api-Key": self.api_key,
            "Content-Type": "application/json",
            "Cache-Control": "no-cache",
        }

        logger.info(f"API Request: {method} {endpoint}")
        if request_body:
            logger.debug(f"Request body: {json.dumps(request_body)}")

        try:
            response = self._session.request(
                method,
                url,
                headers=headers,
                timeout=timeout,
                **kwargs,
            )
        except requests.RequestException as e:
            self.last_exchange["error"] = f"Connection error: {str(e)}"
            logger.error(f"Connection error on {endpoint}: {e}")
            raise ProviderAPIError(0, f"Connection error: {str(e)}")

        try:
            resp_body = response.json()
        except ValueError:
            resp_body = response.text[:2000] if response.text else None
        self.last_exchange["response"] = {
            "status_code": response.status_code,
            "body": resp_body,
        }

        status = response.status_code
        detail = _error_detail(resp_body, response)

        if status == 401:
            logger.error(f"Auth error on {endpoint}: {detail}")
            raise ProviderAuthError(f"Invalid API key: {detail}")

        if status == 403:
            logger.error(f"Forbidden on {endpoint}: {detail}")
            raise ProviderForbiddenError(f"Forbidden: {detail}")

        if status == 404:
            logger.warning(f"Not found on {endpoint}: {detail}")
            raise ProviderNotFoundError(f"Not found: {detail}")

        if status == 429:
            try:
                retry_after = int(response.headers.get("Retry-After", 60))
            except (TypeError, ValueError):
                retry_after = 60
            logger.warning(f"Rate limited on {endpoint}. Retry-After: {retry_after}s, detail: {detail}")
            raise ProviderRateLimitError(retry_after, detail)

        if status >= 500:
            logger.error(f"Server error {status} on {endpoint}: {detail}")
            raise ProviderServerError(status, detail)

        if status >= 400:
            logger.error(f"Client error {status} on {endpoint}: {detail}")
            raise ProviderAPIError(status, detail)

        if not isinstance(resp_body, dict):
            logger.error(f"Invalid JSON response from {endpoint}")
            raise ProviderAPIError(status, "Invalid JSON response")

        logger.info(f"API Response: {endpoint} -> HTTP {status}")
        return resp_body

    def match_person(
        self,
        person_id: str,
        reveal_personal_emails: bool = False,
        reveal_phone_number: bool = False,
        webhook_url: str | None = None,
    ) -> dict:
        """
        Match a person by Apollo id, optionally revealing email or phone.

        This endpoint USES CREDITS when a reveal flag is set. Phone reveals
        with a webhook_url are delivered asynchronously to that URL.

        Returns the raw response dict (person under 'person').
        """
        request_body = {"id": person_id}
        if reveal_personal_emails:
            request_body["reveal_personal_emails"] = True
        if reveal_phone_number:
            request_body["reveal_phone_number"] = True
            if webhook_url:
                request_body["webhook_url"] = webhook_url

        logger.info(
            f"Person Match: id={person_id}, email={reveal_personal_emails}, "
            f"phone={reveal_phone_number}, async={bool(webhook_url)}"
        )
        return self._request("POST", self.PEOPLE_MATCH, json=request_body, timeout=get_provider_timeout("match"))

    def search_people(self, params: PeopleSearchParams) -> dict:
        """
        Query People Search API by title, location, industry or organization id.

        Returns dict with 'people' (list) and 'pagination' info.
        """
        per_page = max(1, min(params.per_page, self.MAX_PER_PAGE))
        request_body = {
            "page": max(params.page, 1),
            "per_page": per_page,
        }
        if params.titles:
            request_body["person_titles"] = params.titles
        if params.locations:
            request_body["organization_locations"] = params.locations
        if params.industries:
            request_body["organization_industries"] = params.industries
        if params.organization_ids:
            request_body["organization_ids"] = params.organization_ids

        logger.info(
            f"People Search: titles={params.titles}, locations={params.locations}, "
            f"industries={params.industries}, organization_ids={params.organization_ids}, "
            f"page={request_body['page']}, per_page={per_page}"
        )
        response = self._request("POST", self.PEOPLE_SEARCH, json=request_body, timeout=get_provider_timeout("search"))

        people = response.get("people")
        if people is None:
            logger.warning(f"People Search returned unexpected format, keys: {list(response.keys())}")
            people = []

        result = {
            "people": people,
            "pagination": response.get("pagination", {}),
        }
        logger.info(f"People Search complete: {len(people)} results on page {request_body['page']}")
        return result

    def search_organizations(self, params: OrganizationSearchParams) -> dict:
        """
        Query Organization Search API.

        Returns dict with 'organizations' (list) and 'pagination' info.
        """
        per_page = max(1, min(params.per_page, self.MAX_PER_PAGE))
        request_body = {
            "page": max(params.page, 1),
            "per_page": per_page,
        }
        if params.keywords:
            request_body["q_keywords"] = " ".join(params.keywords)
        if params.industries:
            request_body["organization_industries"] = params.industries
        if params.locations:
            request_body["organization_locations"] = params.locations
        if params.employee_ranges:
            request_body["organization_num_employees_ranges"] = params.employee_ranges

        logger.info(f"Organization Search: keywords={params.keywords}, page={request_body['page']}")
        response = self._request(
            "POST", self.ORGANIZATION_SEARCH, json=request_body, timeout=get_provider_timeout("organizations")
        )

        # Mixed search returns CRM accounts and net-new organizations separately
        organizations = (response.get("organizations") or []) + (response.get("accounts") or [])
        result = {
            "organizations": organizations,
            "pagination": response.get("pagination", {}),
        }
        logger.info(f"Organization Search complete: {len(organizations)} results")
        return result

    def get_organization(self, organization_id: str) -> dict:
        """Fetch one organization by Apollo id."""
        response = self._request(
            "GET", f"{self.ORGANIZATIONS}/{organization_id}", timeout=get_provider_timeout("organizations")
        )
        return response.get("organization") or {}

    @staticmethod
    def get_query_hash(params: PeopleSearchParams | OrganizationSearchParams) -> str:
        """Generate cache key hash for search parameters (page size excluded)."""
        if isinstance(params, PeopleSearchParams):
            key_data = {
                "type": "people",
                "titles": sorted(v.lower() for v in clean_list(params.titles)),
                "locations": sorted(v.lower() for v in clean_list(params.locations)),
                "industries": sorted(v.lower() for v in clean_list(params.industries)),
                "organization_ids": sorted(clean_list(params.organization_ids)),
                "page": params.page,
            }
        else:
            key_data = {
                "type": "organizations",
                "keywords": sorted(v.lower() for v in clean_list(params.keywords)),
                "industries": sorted(v.lower() for v in clean_list(params.industries)),
                "locations": sorted(v.lower() for v in clean_list(params.locations)),
                "employee_ranges": sorted(clean_list(params.employee_ranges)),
                "page": params.page,
                "per_page": params.per_page,
            }

        key_str = json.dumps(key_data, sort_keys=True)
        return hashlib.sha256(key_str.encode()).hexdigest()[:16]


def _error_detail(body, response) -> str:
    """Pull a short error description out of a response body."""
    if isinstance(body, dict):
        detail = body.get("error") or body.get("message") or body.get("error_message")
        if detail:
            return str(detail)
    text = getattr(response, "text", "") or ""
    return text[:200]
