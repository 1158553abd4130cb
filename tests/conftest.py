import pytest
from unittest.mock import MagicMock
from fastapi.testclient import TestClient

from tenant_billing.context import ServiceContext
from tenant_billing.storage.supabase import QueryResult

CHAIN_METHODS = ("select", "insert", "update", "eq", "neq", "in_", "order", "limit")


def rows(*data: dict) -> QueryResult:
    return QueryResult(data=list(data))


def count(n: int) -> QueryResult:
    return QueryResult(data=[], count=n)


class FakeSupabase:
    """
    Chainable Supabase mock keyed by table name.

    Every ``table(name)`` call consumes the next queued result for that
    table; the last one repeats. A queued exception is raised from execute().
    """

    def __init__(self, tables: dict[str, list] | None = None):
        self._results = {name: list(results) for name, results in (tables or {}).items()}
        self.queries: dict[str, list[MagicMock]] = {}

    def table(self, name: str) -> MagicMock:
        query = MagicMock(name=f"query[{name}]")
        for method in CHAIN_METHODS:
            getattr(query, method).return_value = query

        queued = self._results.get(name, [])
        result = queued.pop(0) if len(queued) > 1 else (queued[0] if queued else QueryResult(data=[], count=0))
        if isinstance(result, Exception):
            query.execute.side_effect = result
        else:
            query.execute.return_value = result

        self.queries.setdefault(name, []).append(query)
        return query

    def close(self) -> None:
        pass


ORG = {"id": "org-1", "name": "Acme", "stripe_customer_id": "cus_123", "module_overrides": None}

SUBSCRIPTION = {
    "id": "sub-1",
    "organization_id": "org-1",
    "package_id": "pkg-1",
    "stripe_subscription_id": "sub_stripe_1",
    "status": "active",
    "billing_interval": "month",
    "cancel_at_period_end": False,
}


def package_row(pricing_model: str = "per_user", **features) -> dict:
    base_features = {
        "max_projects": 5,
        "max_users": 10,
        "max_templates": 3,
        "ai_features_enabled": True,
        "export_features_enabled": False,
        "ops_tool_enabled": False,
        "analytics_enabled": True,
        "api_access_enabled": False,
        "custom_dashboards_enabled": False,
        "support_level": "email",
    }
    base_features.update(features)
    return {
        "id": "pkg-1",
        "name": "Team",
        "pricing_model": pricing_model,
        "price_per_user_monthly": 12,
        "price_per_user_yearly": 120,
        "base_price_monthly": 49,
        "base_price_yearly": 490,
        "stripe_product_id": "prod_1",
        "stripe_price_id_monthly": "price_month",
        "stripe_price_id_yearly": None,
        "features": base_features,
    }


def context_tables(package: dict | None = None, **extra) -> dict:
    """Tables resolving org-1 to an active subscription on ``package``."""
    tables = {
        "organizations": [rows(ORG)],
        "subscriptions": [rows(SUBSCRIPTION)],
        "packages": [rows(package or package_row())],
    }
    tables.update(extra)
    return tables


@pytest.fixture
def make_ctx():
    """Factory for a ServiceContext over a FakeSupabase and an optional billing mock."""
    def factory(tables: dict | None = None, billing: MagicMock | None = None) -> ServiceContext:
        return ServiceContext(db=FakeSupabase(tables), billing=billing)
    return factory


@pytest.fixture
def billing():
    mock_billing = MagicMock(name="stripe_billing")
    mock_billing.webhook_secret = "whsec_test"
    return mock_billing


@pytest.fixture
def api():
    """TestClient over the app; call with a ServiceContext to install it."""
    from tenant_billing.main import app

    def factory(ctx: ServiceContext) -> TestClient:
        app.state.service_context = ctx
        return TestClient(app)

    yield factory
    app.state.service_context = None
