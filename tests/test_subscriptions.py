import stripe

from conftest import ORG, SUBSCRIPTION, context_tables, count, package_row, rows
from tenant_billing.services import subscriptions


def _stripe_subscription(**overrides) -> dict:
    sub = {
        "id": "sub_stripe_1",
        "status": "active",
        "cancel_at_period_end": False,
        "current_period_start": 1_700_000_000,
        "current_period_end": 1_702_592_000,
        "metadata": {},
        "items": {"data": [{"id": "si_1", "quantity": 3, "price": {"id": "price_month", "recurring": {"interval": "month"}}}]},
    }
    sub.update(overrides)
    return sub


def _sdk_subscription(**overrides) -> stripe.Subscription:
    values = _stripe_subscription(**overrides)
    values["object"] = "subscription"
    values["items"] = {"object": "list", **values["items"]}
    return stripe.Subscription.construct_from(values, "sk_test")


class TestQuantityReconciler:

    def test_requires_billing_provider(self, make_ctx):
        ctx = make_ctx(context_tables(), billing=None)

        result = subscriptions.update_subscription_quantity_for_users(ctx, "org-1")

        assert result.success is False
        assert result.error == "Stripe is not configured"
        assert "organizations" not in ctx.db.queries

    def test_missing_context_fails(self, make_ctx, billing):
        ctx = make_ctx({"organizations": [rows(ORG)], "subscriptions": [rows()]}, billing=billing)

        result = subscriptions.update_subscription_quantity_for_users(ctx, "org-1")

        assert result.success is False
        billing.retrieve_subscription.assert_not_called()

    def test_flat_rate_is_not_reconciled(self, make_ctx, billing):
        ctx = make_ctx(context_tables(package_row(pricing_model="flat_rate")), billing=billing)

        result = subscriptions.update_subscription_quantity_for_users(ctx, "org-1")

        assert result.success is True
        assert result.new_quantity is None
        billing.retrieve_subscription.assert_not_called()
        billing.update_subscription_item_quantity.assert_not_called()

    def test_requires_stripe_subscription_id(self, make_ctx, billing):
        sub = {**SUBSCRIPTION, "stripe_subscription_id": None}
        ctx = make_ctx(context_tables(subscriptions=[rows(sub)]), billing=billing)

        result = subscriptions.update_subscription_quantity_for_users(ctx, "org-1")

        assert result.success is False
        assert result.error == "No active Stripe subscription found"

    def test_zero_users_fails_without_network_call(self, make_ctx, billing):
        ctx = make_ctx(context_tables(users=[count(0)]), billing=billing)

        result = subscriptions.update_subscription_quantity_for_users(ctx, "org-1")

        assert result.success is False
        assert result.error == "User count must be at least 1"
        billing.retrieve_subscription.assert_not_called()

    def test_updates_first_item_with_always_invoice(self, make_ctx, billing):
        billing.retrieve_subscription.return_value = _stripe_subscription()
        ctx = make_ctx(context_tables(users=[count(7)]), billing=billing)

        result = subscriptions.update_subscription_quantity_for_users(ctx, "org-1")

        assert result.success is True
        assert result.new_quantity == 7
        billing.retrieve_subscription.assert_called_once_with("sub_stripe_1")
        billing.update_subscription_item_quantity.assert_called_once_with(
            "sub_stripe_1", "si_1", 7, proration_behavior="always_invoice"
        )

    def test_subscription_without_items_fails(self, make_ctx, billing):
        billing.retrieve_subscription.return_value = _stripe_subscription(items={"data": []})
        ctx = make_ctx(context_tables(users=[count(2)]), billing=billing)

        result = subscriptions.update_subscription_quantity_for_users(ctx, "org-1")

        assert result.success is False
        billing.update_subscription_item_quantity.assert_not_called()

    def test_stripe_error_is_returned_not_raised(self, make_ctx, billing):
        billing.retrieve_subscription.return_value = _stripe_subscription()
        billing.update_subscription_item_quantity.side_effect = stripe.InvalidRequestError(
            "No such subscription item", param="items"
        )
        ctx = make_ctx(context_tables(users=[count(4)]), billing=billing)

        result = subscriptions.update_subscription_quantity_for_users(ctx, "org-1")

        assert result.success is False
        assert "No such subscription item" in result.error


class TestWebhookSync:

    def test_updates_subscription_and_organization(self, make_ctx):
        ctx = make_ctx({
            "subscriptions": [rows({"id": "sub-1", "organization_id": "org-1", "package_id": "pkg-1"})],
            "organizations": [rows(ORG)],
        })

        synced = subscriptions.update_subscription_from_webhook(
            ctx, _stripe_subscription(status="past_due", cancel_at_period_end=True)
        )

        assert synced is True
        sub_update = ctx.db.queries["subscriptions"][1].update.call_args.args[0]
        assert sub_update["status"] == "past_due"
        assert sub_update["cancel_at_period_end"] is True
        assert sub_update["stripe_price_id"] == "price_month"
        assert sub_update["billing_interval"] == "month"
        assert sub_update["current_period_start"].startswith("2023-11-14")
        org_update = ctx.db.queries["organizations"][0].update.call_args.args[0]
        assert org_update["subscription_status"] == "past_due"

    def test_backfills_package_from_metadata(self, make_ctx):
        ctx = make_ctx({
            "subscriptions": [rows({"id": "sub-1", "organization_id": "org-1", "package_id": None})],
            "packages": [rows(package_row())],
        })

        subscriptions.update_subscription_from_webhook(ctx, _stripe_subscription(metadata={"package_id": "pkg-1"}))

        sub_update = ctx.db.queries["subscriptions"][1].update.call_args.args[0]
        assert sub_update["package_id"] == "pkg-1"
        assert sub_update["status"] == "active"

    def test_unknown_subscription_is_ignored(self, make_ctx):
        ctx = make_ctx({"subscriptions": [rows()]})

        assert subscriptions.update_subscription_from_webhook(ctx, _stripe_subscription()) is False
        assert len(ctx.db.queries["subscriptions"]) == 1

    def test_invoice_failure_marks_past_due(self, make_ctx):
        ctx = make_ctx({"subscriptions": [rows({"id": "sub-1", "organization_id": "org-1"})]})

        updated = subscriptions.update_subscription_status_from_invoice(
            ctx, {"id": "in_1", "subscription": "sub_stripe_1"}, "past_due"
        )

        assert updated is True
        query = ctx.db.queries["subscriptions"][0]
        query.update.assert_called_once()
        assert query.update.call_args.args[0]["status"] == "past_due"
        query.eq.assert_called_with("stripe_subscription_id", "sub_stripe_1")

    def test_invoice_subscription_from_parent_details(self, make_ctx):
        ctx = make_ctx({"subscriptions": [rows({"id": "sub-1", "organization_id": "org-1"})]})
        invoice = {"id": "in_2", "parent": {"subscription_details": {"subscription": "sub_stripe_1"}}}

        assert subscriptions.update_subscription_status_from_invoice(ctx, invoice, "active") is True


class TestCheckout:

    def test_checkout_uses_package_price_and_user_quantity(self, make_ctx, billing):
        billing.retrieve_price.return_value = {"id": "price_month", "recurring": {"usage_type": "licensed"}}
        billing.create_checkout_session.return_value = {"id": "cs_1", "url": "https://checkout.stripe.com/cs_1"}
        ctx = make_ctx(
            {"organizations": [rows(ORG)], "packages": [rows(package_row())], "users": [count(4)]},
            billing=billing,
        )

        url = subscriptions.create_checkout_session(ctx, "org-1", "pkg-1", "https://app/ok", "https://app/cancel")

        assert url == "https://checkout.stripe.com/cs_1"
        kwargs = billing.create_checkout_session.call_args.kwargs
        assert kwargs["customer"] == "cus_123"
        assert kwargs["line_items"] == [{"price": "price_month", "quantity": 4}]
        assert kwargs["subscription_data"]["metadata"]["billing_interval"] == "month"

    def test_checkout_creates_licensed_price_for_metered_product(self, make_ctx, billing):
        billing.list_active_prices.return_value = [
            {"id": "price_metered", "recurring": {"interval": "year", "usage_type": "metered"}}
        ]
        billing.create_licensed_price.return_value = {"id": "price_new"}
        billing.retrieve_price.return_value = {"id": "price_new", "recurring": {"usage_type": "licensed"}}
        billing.create_checkout_session.return_value = {"id": "cs_2", "url": "https://checkout.stripe.com/cs_2"}
        ctx = make_ctx(
            {"organizations": [rows(ORG)], "packages": [rows(package_row())], "users": [count(1)]},
            billing=billing,
        )

        url = subscriptions.create_checkout_session(ctx, "org-1", "pkg-1", "ok", "cancel", "year")

        assert url == "https://checkout.stripe.com/cs_2"
        billing.create_licensed_price.assert_called_once_with("prod_1", 12000, "year")
        price_update = ctx.db.queries["packages"][1].update.call_args.args[0]
        assert price_update == {"stripe_price_id_yearly": "price_new"}

    def test_checkout_without_stripe_returns_none(self, make_ctx):
        ctx = make_ctx({"organizations": [rows(ORG)]})
        assert subscriptions.create_checkout_session(ctx, "org-1", "pkg-1", "ok", "cancel") is None

    def test_portal_requires_customer(self, make_ctx, billing):
        ctx = make_ctx({"organizations": [rows({**ORG, "stripe_customer_id": None})]}, billing=billing)

        assert subscriptions.create_portal_session(ctx, "org-1", "https://app") is None
        billing.create_portal_session.assert_not_called()


class TestStripeObjects:

    def test_reconciler_reads_sdk_subscription(self, make_ctx, billing):
        billing.retrieve_subscription.return_value = _sdk_subscription()
        ctx = make_ctx(context_tables(users=[count(4)]), billing=billing)

        result = subscriptions.update_subscription_quantity_for_users(ctx, "org-1")

        assert result.success is True
        assert result.new_quantity == 4
        billing.update_subscription_item_quantity.assert_called_once_with(
            "sub_stripe_1", "si_1", 4, proration_behavior="always_invoice"
        )

    def test_reconciler_with_null_billing_interval(self, make_ctx, billing):
        billing.retrieve_subscription.return_value = _sdk_subscription()
        sub = {**SUBSCRIPTION, "billing_interval": None}
        ctx = make_ctx(context_tables(subscriptions=[rows(sub)], users=[count(2)]), billing=billing)

        result = subscriptions.update_subscription_quantity_for_users(ctx, "org-1")

        assert result.success is True
        assert result.new_quantity == 2

    def test_webhook_sync_reads_sdk_subscription(self, make_ctx):
        ctx = make_ctx({
            "subscriptions": [rows({"id": "sub-1", "organization_id": "org-1", "package_id": "pkg-1"})],
        })

        synced = subscriptions.update_subscription_from_webhook(
            ctx, _sdk_subscription(status="canceled", metadata={"billing_interval": "year"})
        )

        assert synced is True
        sub_update = ctx.db.queries["subscriptions"][1].update.call_args.args[0]
        assert sub_update["status"] == "canceled"
        assert sub_update["stripe_price_id"] == "price_month"
        assert sub_update["billing_interval"] == "month"
        assert sub_update["current_period_end"].startswith("2023-12-14")

    def test_webhook_sync_minimal_sdk_subscription(self, make_ctx):
        ctx = make_ctx({"subscriptions": [rows({"id": "sub-1", "organization_id": "org-1", "package_id": "pkg-1"})]})
        minimal = stripe.Subscription.construct_from({"id": "sub_stripe_1", "status": "canceled"}, "sk_test")

        assert subscriptions.update_subscription_from_webhook(ctx, minimal) is True
        sub_update = ctx.db.queries["subscriptions"][1].update.call_args.args[0]
        assert sub_update["status"] == "canceled"
        assert sub_update["current_period_start"] is None
        assert "stripe_price_id" not in sub_update

    def test_invoice_sdk_object(self, make_ctx):
        ctx = make_ctx({"subscriptions": [rows({"id": "sub-1", "organization_id": "org-1"})]})
        invoice = stripe.Invoice.construct_from(
            {"id": "in_3", "object": "invoice", "parent": {"subscription_details": {"subscription": "sub_stripe_1"}}},
            "sk_test",
        )

        assert subscriptions.update_subscription_status_from_invoice(ctx, invoice, "past_due") is True

    def test_checkout_reads_sdk_price_and_session(self, make_ctx, billing):
        billing.retrieve_price.return_value = stripe.Price.construct_from(
            {"id": "price_month", "object": "price", "recurring": {"interval": "month", "usage_type": "licensed"}},
            "sk_test",
        )
        billing.create_checkout_session.return_value = stripe.checkout.Session.construct_from(
            {"id": "cs_3", "object": "checkout.session", "url": "https://checkout.stripe.com/cs_3"},
            "sk_test",
        )
        ctx = make_ctx(
            {"organizations": [rows(ORG)], "packages": [rows(package_row())], "users": [count(3)]},
            billing=billing,
        )

        url = subscriptions.create_checkout_session(ctx, "org-1", "pkg-1", "ok", "cancel")

        assert url == "https://checkout.stripe.com/cs_3"
        assert billing.create_checkout_session.call_args.kwargs["line_items"] == [{"price": "price_month", "quantity": 3}]

    def test_product_price_lookup_reads_sdk_prices(self, make_ctx, billing):
        billing.list_active_prices.return_value = [
            stripe.Price.construct_from(
                {"id": "price_year", "object": "price", "recurring": {"interval": "year", "usage_type": "licensed"}},
                "sk_test",
            )
        ]
        billing.retrieve_price.return_value = stripe.Price.construct_from(
            {"id": "price_year", "object": "price", "recurring": {"interval": "year", "usage_type": "licensed"}},
            "sk_test",
        )
        billing.create_checkout_session.return_value = {"id": "cs_4", "url": "https://checkout.stripe.com/cs_4"}
        ctx = make_ctx(
            {"organizations": [rows(ORG)], "packages": [rows(package_row())], "users": [count(1)]},
            billing=billing,
        )

        url = subscriptions.create_checkout_session(ctx, "org-1", "pkg-1", "ok", "cancel", "year")

        assert url == "https://checkout.stripe.com/cs_4"
        billing.create_licensed_price.assert_not_called()
        assert ctx.db.queries["packages"][1].update.call_args.args[0] == {"stripe_price_id_yearly": "price_year"}
