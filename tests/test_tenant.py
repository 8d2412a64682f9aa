"""
Tests for tenant context resolution.

Run with: pytest tests/test_tenant.py -v
"""

import pytest

from errors import TenantContextError
from tenant import TenantContext, is_production, require_tenant


class TestIsProduction:
    """Tests for production environment detection."""

    @pytest.mark.parametrize("env", ["production", "staging", "PRODUCTION", " Staging "])
    def test_production_like(self, env):
        assert is_production(env) is True

    @pytest.mark.parametrize("env", ["development", "test", "", None])
    def test_non_production(self, env):
        assert is_production(env) is False


class TestRequireTenant:
    """Tests for require_tenant()."""

    def test_returns_given_tenant(self):
        ctx = require_tenant(TenantContext("acme", "tenant_acme"), "op", environment="production")
        assert ctx == TenantContext("acme", "tenant_acme")

    def test_missing_schema_uses_default(self):
        ctx = require_tenant(TenantContext("acme", schema=""), "op", default_schema="leads")
        assert ctx.schema == "leads"

    def test_production_never_falls_back(self):
        with pytest.raises(TenantContextError) as exc_info:
            require_tenant(None, "reveal_email", environment="production", dev_tenant_id="dev-tenant")
        assert exc_info.value.operation == "reveal_email"

    def test_staging_never_falls_back(self):
        with pytest.raises(TenantContextError):
            require_tenant(TenantContext(None), "op", environment="staging", dev_tenant_id="dev-tenant")

    def test_development_uses_dev_tenant(self, caplog):
        with caplog.at_level("WARNING", logger="tenant"):
            ctx = require_tenant(None, "search_employees", environment="development", dev_tenant_id="dev-tenant")
        assert ctx.tenant_id == "dev-tenant"
        assert ctx.schema == "main"
        assert "DEV_TENANT_ID fallback" in caplog.text

    def test_development_without_dev_tenant_raises(self):
        with pytest.raises(TenantContextError) as exc_info:
            require_tenant(None, "op", environment="development")
        assert "DEV_TENANT_ID" in exc_info.value.message

    def test_unsafe_schema_rejected(self):
        with pytest.raises(TenantContextError):
            require_tenant(TenantContext("acme", "main; DROP TABLE x"), "op")

    def test_tenant_id_coerced_to_str(self):
        ctx = require_tenant(TenantContext(42), "op")
        assert ctx.tenant_id == "42"

    def test_context_is_immutable(self):
        ctx = TenantContext("acme")
        with pytest.raises(AttributeError):
            ctx.tenant_id = "other"
