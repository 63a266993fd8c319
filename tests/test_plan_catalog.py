# -*- coding: utf-8 -*-

import pytest

from billsync.config import parse_plan_catalog
from billsync.models import SubscriptionStatus
from billsync.services.plan_catalog import PlanCatalog, map_processor_status


class TestStatusMapping:

    @pytest.mark.parametrize("processor_status,expected", [
        ("active", SubscriptionStatus.ACTIVE),
        ("trialing", SubscriptionStatus.ACTIVE),
        ("past_due", SubscriptionStatus.PAST_DUE),
        ("unpaid", SubscriptionStatus.PAST_DUE),
        ("paused", SubscriptionStatus.PAST_DUE),
        ("canceled", SubscriptionStatus.CANCELED),
        ("incomplete_expired", SubscriptionStatus.CANCELED),
        ("incomplete", SubscriptionStatus.INCOMPLETE),
    ])
    def test_known_statuses(self, processor_status, expected):
        assert map_processor_status(processor_status) == expected

    def test_unknown_status_is_incomplete(self):
        """Test that statuses added by the processor never grant access."""
        assert map_processor_status("something_new") == SubscriptionStatus.INCOMPLETE
        assert map_processor_status(None) == SubscriptionStatus.INCOMPLETE


class TestPlanCatalog:

    def test_plan_for_known_price(self):
        catalog = PlanCatalog({"price_a": "premium", "price_b": "business"})

        assert catalog.plan_for_price("price_b") == "business"

    def test_unknown_price_uses_default(self):
        """Test that unknown prices fall back to the default plan."""
        catalog = PlanCatalog({"price_a": "premium"}, default_plan="basic")

        assert catalog.plan_for_price("price_zzz") == "basic"

    def test_known_price_check(self):
        assert PlanCatalog({"price_a": "premium"}).is_known_price("price_a") is True
        assert PlanCatalog({"price_a": "premium"}).is_known_price("price_b") is False
        assert PlanCatalog({}).is_known_price("price_anything") is True

    def test_from_config(self):
        catalog = PlanCatalog.from_config({
            "BILLSYNC_PLAN_CATALOG": parse_plan_catalog("price_a=premium, price_b=business,broken"),
            "BILLSYNC_DEFAULT_PLAN": "starter",
        })

        assert catalog.prices == {"price_a": "premium", "price_b": "business"}
        assert catalog.default_plan == "starter"
