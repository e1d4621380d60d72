"""
Tests for the aggregated health check
"""
from unittest.mock import MagicMock, Mock, patch

from podcastflow.services.health_check import (
    ComponentHealth,
    HealthStatus,
    check_all,
    check_database,
    check_email_provider,
    check_tenant_pools,
)
from podcastflow.tenancy import schema


def _component(status, name="component"):
    return lambda: ComponentHealth(name=name, status=status, message="")


class TestComponentChecks:
    """Test individual component checks"""

    def test_database_ok(self, test_engine):
        health = check_database()
        assert health.status == HealthStatus.OK
        assert health.response_time_ms is not None

    def test_database_down(self):
        engine = Mock()
        engine.connect.side_effect = ConnectionError("refused")
        with patch("podcastflow.db.engine.get_engine", return_value=engine):
            health = check_database()

        assert health.status == HealthStatus.DOWN
        assert health.details == {"error_type": "ConnectionError"}

    def test_tenant_pools_ok_when_none_open(self):
        health = check_tenant_pools()
        assert health.status == HealthStatus.OK
        assert health.message == "0 tenant pools open"

    def test_tenant_pool_failure_degrades(self, monkeypatch):
        engine = MagicMock()
        engine.pool.checkedout.return_value = 0
        engine.connect.side_effect = ConnectionError("gone")
        monkeypatch.setitem(schema._engines, "org_acme", engine)

        health = check_tenant_pools()

        assert health.status == HealthStatus.DEGRADED
        assert "org_acme" in health.details["issues"][0]

    def test_email_provider_dev(self, dev_provider):
        health = check_email_provider()
        assert health.status == HealthStatus.OK
        assert "'dev'" in health.message

    def test_email_provider_unavailable(self, monkeypatch):
        provider = Mock()
        provider.name = "smtp"
        provider.is_available.return_value = False
        monkeypatch.setattr("podcastflow.services.email_provider._email_provider", provider)

        assert check_email_provider().status == HealthStatus.DEGRADED


class TestCheckAll:
    """Test status aggregation"""

    def test_all_ok(self):
        result = check_all([_component(HealthStatus.OK, "a"), _component(HealthStatus.OK, "b")])
        assert result["status"] == "ok"
        assert set(result["components"]) == {"a", "b"}

    def test_degraded(self):
        result = check_all([_component(HealthStatus.OK, "a"), _component(HealthStatus.DEGRADED, "b")])
        assert result["status"] == "degraded"

    def test_down_wins(self):
        result = check_all([_component(HealthStatus.DEGRADED, "a"), _component(HealthStatus.DOWN, "b")])
        assert result["status"] == "down"

    def test_raising_check_is_down(self):
        def check_cache():
            raise RuntimeError("boom")

        result = check_all([check_cache])

        assert result["status"] == "down"
        assert result["components"]["cache"]["status"] == "down"

    def test_default_checks(self, test_engine, dev_provider):
        result = check_all()
        assert result["status"] == "ok"
        assert set(result["components"]) == {"database", "tenant_pools", "email"}
