"""
Tests for tenant table repositories
"""
import pytest
from datetime import datetime
from unittest.mock import patch

from podcastflow.exceptions import ShowHasOrdersError
from podcastflow.tenancy import models
from podcastflow.tenancy.schema import QueryResult


def _campaign(name, status="draft", advertiser_id="adv_1"):
    return {
        "name": name,
        "advertiser_id": advertiser_id,
        "start_date": datetime(2026, 1, 1),
        "end_date": datetime(2026, 3, 31),
        "status": status,
    }


class TestCreateAndRead:
    def test_create_assigns_prefixed_id(self, tenant_engine):
        advertiser = models.advertisers.create("acme", {"name": "Coffee Co"})

        assert advertiser["id"].startswith("adv_")
        assert advertiser["name"] == "Coffee Co"
        assert advertiser["is_active"] is True

    def test_create_keeps_explicit_id(self, tenant_engine):
        show = models.shows.create("acme", {"id": "show_fixed", "name": "Daily"})
        assert show["id"] == "show_fixed"

    def test_find_unique(self, tenant_engine):
        created = models.campaigns.create("acme", _campaign("Spring Push"))

        found = models.campaigns.find_unique("acme", created["id"])

        assert found["name"] == "Spring Push"
        assert models.campaigns.find_unique("acme", "camp_missing") is None

    def test_find_many_filters_and_orders(self, tenant_engine):
        models.campaigns.create("acme", _campaign("Bravo", status="active"))
        models.campaigns.create("acme", _campaign("Alpha", status="active"))
        models.campaigns.create("acme", _campaign("Charlie", status="draft"))

        rows = models.campaigns.find_many("acme", where={"status": "active"}, order_by={"name": "asc"})

        assert [r["name"] for r in rows] == ["Alpha", "Bravo"]

    def test_find_many_in_filter(self, tenant_engine):
        models.campaigns.create("acme", _campaign("A", status="active"))
        models.campaigns.create("acme", _campaign("B", status="paused"))
        models.campaigns.create("acme", _campaign("C", status="draft"))

        rows = models.campaigns.find_many(
            "acme",
            where={"status": {"in": ["active", "paused"]}},
            order_by={"name": "desc"},
        )

        assert [r["name"] for r in rows] == ["B", "A"]

    def test_find_many_limit_offset(self, tenant_engine):
        for name in ["A", "B", "C", "D"]:
            models.shows.create("acme", {"name": name})

        rows = models.shows.find_many("acme", order_by={"name": "asc"}, limit=2, offset=1)

        assert [r["name"] for r in rows] == ["B", "C"]

    def test_count(self, tenant_engine):
        models.campaigns.create("acme", _campaign("A", status="active"))
        models.campaigns.create("acme", _campaign("B", status="draft"))

        assert models.campaigns.count("acme") == 2
        assert models.campaigns.count("acme", {"status": "active"}) == 1

    def test_null_filter(self, tenant_engine):
        models.advertisers.create("acme", {"name": "Direct"})
        models.advertisers.create("acme", {"name": "Via Agency", "agency_id": "agency_1"})

        rows = models.advertisers.find_many("acme", where={"agency_id": None})

        assert [r["name"] for r in rows] == ["Direct"]


class TestValidation:
    def test_unknown_filter_column(self):
        with pytest.raises(ValueError, match="Unknown column"):
            models.campaigns.find_many("acme", where={"nope": 1})

    def test_unknown_order_column(self):
        with pytest.raises(ValueError):
            models.campaigns.find_many("acme", order_by={"nope": "asc"})

    def test_unsupported_operator(self):
        with pytest.raises(ValueError, match="Unsupported filter"):
            models.campaigns.find_many("acme", where={"status": {"like": "act%"}})

    def test_unknown_create_column(self):
        with pytest.raises(ValueError):
            models.shows.create("acme", {"name": "x", "bogus": True})


class TestReadsNeverRaise:
    def test_failed_read_returns_empty(self):
        failed = QueryResult(error=Exception("relation does not exist"))
        with patch.object(models, "safe_query_schema", return_value=failed):
            assert models.campaigns.find_many("acme") == []
            assert models.campaigns.find_unique("acme", "camp_1") is None
            assert models.campaigns.count("acme") == 0

    def test_write_failure_raises(self):
        with patch.object(models, "query_schema", side_effect=RuntimeError("connection refused")):
            with pytest.raises(RuntimeError):
                models.shows.create("acme", {"name": "Daily"})


class TestUpdateDelete:
    def test_update(self, tenant_engine):
        campaign = models.campaigns.create("acme", _campaign("Old Name"))

        updated = models.campaigns.update("acme", campaign["id"], {"name": "New Name", "id": "ignored"})

        assert updated["id"] == campaign["id"]
        assert updated["name"] == "New Name"

    def test_update_missing_returns_none(self, tenant_engine):
        assert models.campaigns.update("acme", "camp_missing", {"name": "x"}) is None

    def test_delete(self, tenant_engine):
        advertiser = models.advertisers.create("acme", {"name": "Gone Soon"})

        assert models.advertisers.delete("acme", advertiser["id"]) is True
        assert models.advertisers.delete("acme", advertiser["id"]) is False


class TestShowDeletion:
    def test_show_without_orders_deleted(self, tenant_engine):
        show = models.shows.create("acme", {"name": "Solo"})

        assert models.shows.delete("acme", show["id"]) is True
        assert models.shows.find_unique("acme", show["id"]) is None

    def test_show_with_orders_rejected(self, tenant_engine):
        show = models.shows.create("acme", {"name": "Booked"})
        for number in ("ORD-1", "ORD-2"):
            models.orders.create("acme", {
                "order_number": number,
                "campaign_id": "camp_1",
                "show_id": show["id"],
                "advertiser_id": "adv_1",
                "total_amount": 500.0,
            })

        with pytest.raises(ShowHasOrdersError) as exc_info:
            models.shows.delete("acme", show["id"])

        assert exc_info.value.order_count == 2
        assert models.shows.find_unique("acme", show["id"]) is not None

    def test_missing_show(self, tenant_engine):
        assert models.shows.delete("acme", "show_missing") is False
