"""
Tests for Apollo API client.

Run with: pytest tests/test_apollo_client.py -v
"""

from unittest.mock import MagicMock

import pytest
import requests

from apollo_client import (
    ApolloClient,
    OrganizationSearchParams,
    PeopleSearchParams,
    ProviderAPIError,
    ProviderAuthError,
    ProviderForbiddenError,
    ProviderNotFoundError,
    ProviderRateLimitError,
    ProviderServerError,
    normalize_base_url,
)


def _response(status_code=200, body=None, headers=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    if isinstance(body, Exception):
        response.json.side_effect = body
    else:
        response.json.return_value = body if body is not None else {}
    response.headers = headers or {}
    response.text = text
    return response


class TestBaseUrl:
    """Tests for base URL normalization."""

    def test_default(self):
        assert normalize_base_url(None) == "https://api.apollo.io/api/v1"

    def test_inserts_api_prefix(self):
        assert normalize_base_url("https://api.apollo.io/v1") == "https://api.apollo.io/api/v1"

    def test_keeps_existing_prefix(self):
        assert normalize_base_url("https://api.apollo.io/api/v1/") == "https://api.apollo.io/api/v1"

    def test_other_hosts_untouched(self):
        assert normalize_base_url("http://localhost:8080/v1") == "http://localhost:8080/v1"


class TestApolloClient:
    """Tests for ApolloClient class."""

    @pytest.fixture
    def client(self):
        """Create client instance."""
        return ApolloClient(api_key="test-api-key")

    @pytest.fixture
    def mock_session(self, client):
        """Mock the requests session."""
        mock = MagicMock()
        client._session = mock
        return mock

    def test_init(self, client):
        assert client.api_key == "test-api-key"
        assert client.base_url == "https://api.apollo.io/api/v1"
        assert client.last_exchange is None

    def test_sends_api_key_header(self, client, mock_session):
        mock_session.request.return_value = _response(body={"person": {"id": "p1"}})

        client.match_person("p1")

        _, kwargs = mock_session.request.call_args
        assert kwargs["headers"]["X-Api-Key"] == "test-api-key"
        assert kwargs["timeout"] == 30

    def test_match_person_email_reveal(self, client, mock_session):
        mock_session.request.return_value = _response(body={"person": {"id": "p1", "email": "a@acme.com"}})

        result = client.match_person("p1", reveal_personal_emails=True)

        args, kwargs = mock_session.request.call_args
        assert args == ("POST", "https://api.apollo.io/api/v1/people/match")
        assert kwargs["json"] == {"id": "p1", "reveal_personal_emails": True}
        assert result["person"]["email"] == "a@acme.com"

    def test_match_person_phone_reveal_with_webhook(self, client, mock_session):
        mock_session.request.return_value = _response(body={"success": True})

        client.match_person("p1", reveal_phone_number=True, webhook_url="https://example.org/hook")

        _, kwargs = mock_session.request.call_args
        assert kwargs["json"] == {
            "id": "p1",
            "reveal_phone_number": True,
            "webhook_url": "https://example.org/hook",
        }

    def test_webhook_ignored_without_phone_reveal(self, client, mock_session):
        mock_session.request.return_value = _response(body={"person": {}})

        client.match_person("p1", webhook_url="https://example.org/hook")

        _, kwargs = mock_session.request.call_args
        assert "webhook_url" not in kwargs["json"]

    def test_search_people(self, client, mock_session):
        mock_session.request.return_value = _response(body={
            "people": [{"id": "p1"}, {"id": "p2"}],
            "pagination": {"page": 2, "total_entries": 102},
        })

        result = client.search_people(PeopleSearchParams(titles=["CEO"], locations=["Texas"], page=2, per_page=100))

        args, kwargs = mock_session.request.call_args
        assert args[1].endswith("/mixed_people/api_search")
        assert kwargs["json"] == {
            "page": 2,
            "per_page": 100,
            "person_titles": ["CEO"],
            "organization_locations": ["Texas"],
        }
        assert kwargs["timeout"] == 120
        assert [p["id"] for p in result["people"]] == ["p1", "p2"]
        assert result["pagination"]["total_entries"] == 102

    def test_search_people_by_organization(self, client, mock_session):
        mock_session.request.return_value = _response(body={"people": []})

        client.search_people(PeopleSearchParams(organization_ids=["o1"], per_page=25))

        _, kwargs = mock_session.request.call_args
        assert kwargs["json"] == {"page": 1, "per_page": 25, "organization_ids": ["o1"]}

    def test_search_people_caps_page_size(self, client, mock_session):
        mock_session.request.return_value = _response(body={"people": []})

        client.search_people(PeopleSearchParams(titles=["CEO"], per_page=500))

        _, kwargs = mock_session.request.call_args
        assert kwargs["json"]["per_page"] == 100

    def test_search_people_missing_key(self, client, mock_session):
        mock_session.request.return_value = _response(body={"contacts": []})

        result = client.search_people(PeopleSearchParams(titles=["CEO"]))

        assert result["people"] == []

    def test_search_organizations_merges_accounts(self, client, mock_session):
        mock_session.request.return_value = _response(body={
            "organizations": [{"id": "o1"}],
            "accounts": [{"id": "a1"}],
        })

        result = client.search_organizations(OrganizationSearchParams(keywords=["freight", "trucking"]))

        _, kwargs = mock_session.request.call_args
        assert kwargs["json"]["q_keywords"] == "freight trucking"
        assert kwargs["timeout"] == 45
        assert [o["id"] for o in result["organizations"]] == ["o1", "a1"]

    def test_get_organization(self, client, mock_session):
        mock_session.request.return_value = _response(body={"organization": {"id": "o1", "name": "Acme"}})

        result = client.get_organization("o1")

        args, _ = mock_session.request.call_args
        assert args == ("GET", "https://api.apollo.io/api/v1/organizations/o1")
        assert result["name"] == "Acme"

    def test_last_exchange_captured(self, client, mock_session):
        mock_session.request.return_value = _response(body={"person": {}})

        client.match_person("p1")

        assert client.last_exchange["request"]["body"] == {"id": "p1"}
        assert client.last_exchange["response"]["status_code"] == 200


class TestErrorMapping:
    """Tests for HTTP status to exception mapping."""

    @pytest.fixture
    def client(self):
        client = ApolloClient(api_key="test-api-key")
        client._session = MagicMock()
        return client

    @pytest.mark.parametrize("status, error_class", [
        (401, ProviderAuthError),
        (403, ProviderForbiddenError),
        (404, ProviderNotFoundError),
        (500, ProviderServerError),
        (503, ProviderServerError),
        (400, ProviderAPIError),
        (422, ProviderAPIError),
    ])
    def test_status_mapping(self, client, status, error_class):
        client._session.request.return_value = _response(status, {"error": "nope"})

        with pytest.raises(error_class) as exc_info:
            client.match_person("p1")

        assert exc_info.value.status_code == status
        assert "nope" in exc_info.value.message

    def test_rate_limit_reads_retry_after(self, client):
        client._session.request.return_value = _response(429, {}, headers={"Retry-After": "120"})

        with pytest.raises(ProviderRateLimitError) as exc_info:
            client.match_person("p1")

        assert exc_info.value.retry_after == 120

    def test_rate_limit_bad_retry_after(self, client):
        client._session.request.return_value = _response(429, {}, headers={"Retry-After": "soon"})

        with pytest.raises(ProviderRateLimitError) as exc_info:
            client.match_person("p1")

        assert exc_info.value.retry_after == 60

    def test_connection_error(self, client):
        client._session.request.side_effect = requests.ConnectionError("refused")

        with pytest.raises(ProviderAPIError) as exc_info:
            client.match_person("p1")

        assert exc_info.value.status_code == 0
        assert exc_info.value.recoverable is True
        assert "refused" in client.last_exchange["error"]

    def test_timeout(self, client):
        client._session.request.side_effect = requests.Timeout("timed out")

        with pytest.raises(ProviderAPIError) as exc_info:
            client.search_people(PeopleSearchParams(titles=["CEO"]))

        assert exc_info.value.status_code == 0

    def test_invalid_json(self, client):
        client._session.request.return_value = _response(200, ValueError("no json"), text="<html>")

        with pytest.raises(ProviderAPIError, match="Invalid JSON"):
            client.match_person("p1")

    def test_no_retry(self, client):
        client._session.request.return_value = _response(503, {"error": "down"})

        with pytest.raises(ProviderServerError):
            client.match_person("p1")

        assert client._session.request.call_count == 1


class TestQueryHash:
    """Tests for search cache key hashing."""

    def test_hash_length(self):
        assert len(ApolloClient.get_query_hash(OrganizationSearchParams(keywords=["a"]))) == 16

    def test_order_and_case_insensitive(self):
        a = OrganizationSearchParams(keywords=["Freight", "trucking"], locations=["Texas"])
        b = OrganizationSearchParams(keywords=["TRUCKING", "freight"], locations=["texas"])
        assert ApolloClient.get_query_hash(a) == ApolloClient.get_query_hash(b)

    def test_page_changes_hash(self):
        a = OrganizationSearchParams(keywords=["freight"], page=1)
        b = OrganizationSearchParams(keywords=["freight"], page=2)
        assert ApolloClient.get_query_hash(a) != ApolloClient.get_query_hash(b)

    def test_people_and_org_hashes_differ(self):
        people = PeopleSearchParams(titles=["ceo"])
        orgs = OrganizationSearchParams(keywords=["ceo"])
        assert ApolloClient.get_query_hash(people) != ApolloClient.get_query_hash(orgs)
