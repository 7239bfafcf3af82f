# Overview: Pytest coverage for location billing, autopay lifecycle and the monthly billing pass.

"""
Subscription Billing Tests

Covers:
- Monthly amount: billable locations x unit price, free and deleted excluded
- Location toggling: first location stays free, cached amount refreshed
- Autopay: processor customer/card/subscription calls and local record
- Monthly pass: day gating, one ledger row per period, failure isolation
- Billing API routes
"""

from datetime import datetime
from decimal import Decimal

import pytest

from repairdesk.errors import BadRequestError, ConfigurationError, NotFoundError, PaymentError
from repairdesk.models import Location, Subscription, SubscriptionPayment
from repairdesk.services import billing_service
from repairdesk.services.tenant_service import create_location
from repairdesk.time_utils import utcnow


BILLING_DAY = datetime(2026, 3, 1, 2, 0, 0)


def make_subscription(db_session, company, **overrides):
    values = dict(
        company_id=company.id,
        status="active",
        billing_day=1,
        autopay_enabled=True,
        external_subscription_id=f"SUB-{company.id}",
        external_customer_id=f"CUST-{company.id}",
        monthly_amount=Decimal("50.00"),
    )
    values.update(overrides)
    subscription = Subscription(**values)
    db_session.add(subscription)
    db_session.commit()
    return subscription


class TestMonthlyAmount:
    """calculate_monthly_amount recomputes from the locations table."""

    def test_first_location_is_free(self, db_session, company_a, main_location_a):
        amount = billing_service.calculate_monthly_amount(company_a.id)
        assert main_location_a.is_free is True
        assert amount.amount == Decimal("0.00")
        assert amount.location_count == 0
        assert amount.free_location_count == 1

    def test_billable_locations_times_unit_price(self, db_session, company_a, main_location_a, branch_location_a):
        create_location(company_a.id, "Airport")
        db_session.commit()

        amount = billing_service.calculate_monthly_amount(company_a.id)
        assert amount.amount == Decimal("100.00")
        assert amount.location_count == 2
        assert amount.free_location_count == 1

    def test_soft_deleted_locations_excluded(self, db_session, company_a, main_location_a, branch_location_a):
        branch_location_a.deleted_at = utcnow()
        db_session.commit()

        amount = billing_service.calculate_monthly_amount(company_a.id)
        assert amount.amount == Decimal("0.00")
        assert amount.location_count == 0
        assert amount.free_location_count == 1

    def test_unit_price_from_config(self, app, db_session, company_a, branch_location_a, monkeypatch):
        monkeypatch.setitem(app.config, "BILLING_AMOUNT_PER_LOCATION", Decimal("29.99"))
        amount = billing_service.calculate_monthly_amount(company_a.id)
        assert amount.amount == Decimal("29.99")

    def test_company_without_locations(self, db_session, company_a):
        amount = billing_service.calculate_monthly_amount(company_a.id)
        assert amount.to_dict() == {"amount": 0.0, "locationCount": 0, "freeLocationCount": 0}

    def test_other_company_locations_not_counted(
        self, db_session, company_a, branch_location_a, company_b, main_location_b
    ):
        create_location(company_b.id, "Beta Second")
        create_location(company_b.id, "Beta Third")
        db_session.commit()

        assert billing_service.calculate_monthly_amount(company_a.id).location_count == 1
        assert billing_service.calculate_monthly_amount(company_b.id).location_count == 2


class TestToggleLocationBilling:
    """toggle_location_billing flips is_free and refreshes the cached amount."""

    def test_mark_branch_free(self, db_session, company_a, branch_location_a):
        amount = billing_service.toggle_location_billing(branch_location_a.id, company_a.id, True)
        db_session.commit()

        assert amount.amount == Decimal("0.00")
        assert amount.free_location_count == 2
        assert db_session.get(Location, branch_location_a.id).is_free is True

    def test_mark_branch_billable_again(self, db_session, company_a, branch_location_a):
        billing_service.toggle_location_billing(branch_location_a.id, company_a.id, True)
        amount = billing_service.toggle_location_billing(branch_location_a.id, company_a.id, False)
        assert amount.amount == Decimal("50.00")

    def test_first_location_cannot_become_billable(self, db_session, company_a, main_location_a, branch_location_a):
        with pytest.raises(BadRequestError, match="first location"):
            billing_service.toggle_location_billing(main_location_a.id, company_a.id, False)

    def test_cross_tenant_location_not_found(self, db_session, company_a, main_location_b):
        with pytest.raises(NotFoundError):
            billing_service.toggle_location_billing(main_location_b.id, company_a.id, True)

    def test_updates_subscription_monthly_amount(self, db_session, company_a, branch_location_a):
        subscription = make_subscription(db_session, company_a)

        billing_service.toggle_location_billing(branch_location_a.id, company_a.id, True)
        db_session.commit()

        assert db_session.get(Subscription, subscription.id).monthly_amount == Decimal("0.00")


class TestAutopay:
    """enable_autopay / disable_autopay against a fake processor."""

    def test_enable_creates_processor_subscription(
        self, db_session, company_a, branch_location_a, square_integration_a, fake_processor
    ):
        subscription = billing_service.enable_autopay(company_a.id, "cnon:card-token")
        db_session.commit()

        assert fake_processor.call_names() == [
            "create_customer", "save_card_for_customer", "create_subscription",
        ]
        _, request = fake_processor.adapter.calls[2]
        assert request.plan_id == "PLAN-TEST"
        assert request.location_id == "LOC-MAIN"
        assert request.customer_id == "CUST-1"
        assert request.card_id == "CARD-1"
        assert request.idempotency_key.startswith(f"{company_a.id}-")

        _, customer_request = fake_processor.adapter.calls[0]
        assert customer_request.email == "billing@fixit.example"

        assert subscription.external_subscription_id == "SUB-1"
        assert subscription.external_customer_id == "CUST-1"
        assert subscription.external_card_id == "CARD-1"
        assert subscription.status == "active"
        assert subscription.autopay_enabled is True
        assert subscription.monthly_amount == Decimal("50.00")
        assert subscription.billing_day == 1

    def test_pending_processor_status_maps_to_pending(
        self, db_session, company_a, branch_location_a, square_integration_a, fake_processor
    ):
        fake_processor.configure(subscription_status="PENDING")
        subscription = billing_service.enable_autopay(company_a.id, "cnon:card-token")
        assert subscription.status == "pending"

    def test_second_enable_only_swaps_card(
        self, db_session, company_a, branch_location_a, square_integration_a, fake_processor
    ):
        billing_service.enable_autopay(company_a.id, "cnon:first")
        db_session.commit()
        billing_service.enable_autopay(company_a.id, "cnon:second")
        db_session.commit()

        names = fake_processor.call_names()
        assert names.count("create_customer") == 1
        assert names.count("create_subscription") == 1
        assert names[-1] == "update_subscription"
        assert db_session.query(Subscription).filter_by(company_id=company_a.id).count() == 1

    def test_requires_payment_integration(self, db_session, company_a, branch_location_a):
        with pytest.raises(ConfigurationError, match="not configured"):
            billing_service.enable_autopay(company_a.id, "cnon:card-token")

    def test_requires_billable_locations(
        self, db_session, company_a, main_location_a, square_integration_a, fake_processor
    ):
        with pytest.raises(ConfigurationError, match="No billable locations"):
            billing_service.enable_autopay(company_a.id, "cnon:card-token")
        assert fake_processor.call_names() == []

    def test_requires_plan_id(
        self, app, db_session, company_a, branch_location_a, square_integration_a, fake_processor, monkeypatch
    ):
        monkeypatch.setitem(app.config, "SQUARE_SUBSCRIPTION_PLAN_ID", "")
        with pytest.raises(ConfigurationError, match="plan ID"):
            billing_service.enable_autopay(company_a.id, "cnon:card-token")

    def test_plan_id_from_company_settings(
        self, app, db_session, company_a, branch_location_a, square_integration_a, fake_processor, monkeypatch
    ):
        monkeypatch.setitem(app.config, "SQUARE_SUBSCRIPTION_PLAN_ID", "")
        settings = dict(company_a.settings)
        settings["squarePlanId"] = "PLAN-COMPANY"
        company_a.settings = settings
        db_session.commit()

        billing_service.enable_autopay(company_a.id, "cnon:card-token")
        _, request = fake_processor.adapter.calls[-1]
        assert request.plan_id == "PLAN-COMPANY"

    def test_processor_failure_becomes_payment_error(
        self, db_session, company_a, branch_location_a, square_integration_a, fake_processor
    ):
        fake_processor.configure(fail_with="Card declined")
        with pytest.raises(PaymentError, match="Autopay setup failed: Card declined"):
            billing_service.enable_autopay(company_a.id, "cnon:card-token")
        assert billing_service.get_subscription(company_a.id) is None

    def test_disable_autopay(self, db_session, company_a):
        subscription = make_subscription(db_session, company_a)
        billing_service.disable_autopay(company_a.id)
        db_session.commit()

        refreshed = db_session.get(Subscription, subscription.id)
        assert refreshed.autopay_enabled is False
        assert refreshed.external_subscription_id == f"SUB-{company_a.id}"

    def test_disable_without_subscription(self, db_session, company_a):
        with pytest.raises(NotFoundError, match="Subscription not found"):
            billing_service.disable_autopay(company_a.id)


class TestProcessSubscriptionBilling:
    """One ledger row per subscription per billing period."""

    def test_creates_pending_row_for_period(self, db_session, company_a, branch_location_a):
        subscription = make_subscription(db_session, company_a)

        payment = billing_service.process_subscription_billing(subscription, now=datetime(2026, 3, 1, 2, 0))

        assert payment is not None
        assert payment.status == "pending"
        assert payment.amount == Decimal("50.00")
        assert payment.location_count == 1
        assert payment.failure_reason is None
        assert payment.billing_period_start == datetime(2026, 3, 1, 0, 0, 0)
        assert payment.billing_period_end == datetime(2026, 3, 31, 23, 59, 59)

    def test_second_run_same_period_is_noop(self, db_session, company_a, branch_location_a):
        subscription = make_subscription(db_session, company_a)

        first = billing_service.process_subscription_billing(subscription, now=datetime(2026, 3, 1, 2, 0))
        second = billing_service.process_subscription_billing(subscription, now=datetime(2026, 3, 1, 23, 0))

        assert first is not None
        assert second is None
        assert db_session.query(SubscriptionPayment).count() == 1

    def test_next_month_gets_new_row(self, db_session, company_a, branch_location_a):
        subscription = make_subscription(db_session, company_a)

        billing_service.process_subscription_billing(subscription, now=datetime(2026, 3, 1))
        billing_service.process_subscription_billing(subscription, now=datetime(2026, 4, 1))

        assert db_session.query(SubscriptionPayment).count() == 2

    def test_without_autopay_records_manual_payment(self, db_session, company_a, branch_location_a):
        subscription = make_subscription(db_session, company_a, autopay_enabled=False)

        payment = billing_service.process_subscription_billing(subscription, now=BILLING_DAY)

        assert payment.status == "pending"
        assert payment.failure_reason == "Autopay not enabled"

    def test_amount_recomputed_not_cached(self, db_session, company_a, branch_location_a):
        subscription = make_subscription(db_session, company_a, monthly_amount=Decimal("999.00"))

        payment = billing_service.process_subscription_billing(subscription, now=BILLING_DAY)
        assert payment.amount == Decimal("50.00")

    def test_unique_conflict_counts_as_already_billed(self, db_session, company_a, branch_location_a, monkeypatch):
        """An overlapping run that misses the existing-row check hits the unique constraint."""
        subscription = make_subscription(db_session, company_a)
        first = billing_service.process_subscription_billing(subscription, now=BILLING_DAY)
        db_session.commit()

        monkeypatch.setattr(billing_service, "_period_already_billed", lambda *args: False)
        second = billing_service.process_subscription_billing(subscription, now=BILLING_DAY)

        assert first is not None
        assert second is None
        assert db_session.query(SubscriptionPayment).count() == 1

    def test_unique_conflict_keeps_caller_changes(self, db_session, company_a, branch_location_a, monkeypatch):
        subscription = make_subscription(db_session, company_a)
        billing_service.process_subscription_billing(subscription, now=BILLING_DAY)
        db_session.commit()

        monkeypatch.setattr(billing_service, "_period_already_billed", lambda *args: False)
        company_a.name = "Fix-It Phones & Tablets"
        assert billing_service.process_subscription_billing(subscription, now=BILLING_DAY) is None
        db_session.commit()

        db_session.expire_all()
        assert company_a.name == "Fix-It Phones & Tablets"
        assert db_session.query(SubscriptionPayment).count() == 1

    def test_ledger_row_is_not_committed_by_the_service(self, db_session, company_a, branch_location_a):
        subscription = make_subscription(db_session, company_a)

        assert billing_service.process_subscription_billing(subscription, now=BILLING_DAY) is not None
        db_session.rollback()

        assert db_session.query(SubscriptionPayment).count() == 0


class TestProcessMonthlyBilling:
    """The daily billing pass."""

    def test_skips_when_not_billing_day(self, db_session, company_a, branch_location_a):
        make_subscription(db_session, company_a)

        assert billing_service.process_monthly_billing(now=datetime(2026, 3, 2)) == 0
        assert db_session.query(SubscriptionPayment).count() == 0

    def test_bills_due_subscriptions(
        self, db_session, company_a, branch_location_a, company_b, main_location_b
    ):
        make_subscription(db_session, company_a)
        make_subscription(db_session, company_b, status="pending", autopay_enabled=False)

        assert billing_service.process_monthly_billing(now=BILLING_DAY) == 2
        assert db_session.query(SubscriptionPayment).count() == 2

    def test_rerun_same_day_creates_nothing(self, db_session, company_a, branch_location_a):
        make_subscription(db_session, company_a)

        assert billing_service.process_monthly_billing(now=BILLING_DAY) == 1
        assert billing_service.process_monthly_billing(now=BILLING_DAY) == 0
        assert db_session.query(SubscriptionPayment).count() == 1

    def test_skips_cancelled_and_past_due(self, db_session, company_a, company_b):
        make_subscription(db_session, company_a, status="cancelled")
        make_subscription(db_session, company_b, status="past_due")

        assert billing_service.process_monthly_billing(now=BILLING_DAY) == 0

    def test_skips_other_billing_day(self, db_session, company_a):
        make_subscription(db_session, company_a, billing_day=15)

        assert billing_service.process_monthly_billing(now=BILLING_DAY) == 0

    def test_failure_isolated_to_one_company(
        self, db_session, company_a, branch_location_a, company_b, main_location_b, monkeypatch
    ):
        failing = make_subscription(db_session, company_a)
        healthy = make_subscription(db_session, company_b)
        failing_id, healthy_id = failing.id, healthy.id
        original = billing_service.process_subscription_billing

        def flaky(subscription, now=None):
            if subscription.id == failing_id:
                raise RuntimeError("ledger unavailable")
            return original(subscription, now=now)

        monkeypatch.setattr(billing_service, "process_subscription_billing", flaky)

        assert billing_service.process_monthly_billing(now=BILLING_DAY) == 1

        db_session.expire_all()
        assert db_session.get(Subscription, failing_id).status == "past_due"
        assert db_session.get(Subscription, healthy_id).status == "active"
        rows = db_session.query(SubscriptionPayment).all()
        assert [row.subscription_id for row in rows] == [healthy_id]


class TestBillingHistory:

    def test_history_is_company_scoped(self, db_session, company_a, branch_location_a, company_b):
        make_subscription(db_session, company_a)
        make_subscription(db_session, company_b)
        billing_service.process_monthly_billing(now=BILLING_DAY)

        history = billing_service.get_billing_history(company_a.id)
        assert len(history) == 1
        assert history[0].company_id == company_a.id

    def test_handle_payment_failure_marks_past_due(self, db_session, company_a):
        subscription = make_subscription(db_session, company_a)
        billing_service.handle_payment_failure(company_a.id, "Card expired")
        db_session.commit()
        assert db_session.get(Subscription, subscription.id).status == "past_due"

    def test_handle_payment_failure_without_subscription(self, db_session, company_a):
        billing_service.handle_payment_failure(company_a.id, "Card expired")


class TestBillingRoutes:
    """HTTP surface under /api/billing."""

    def test_requires_tenant_header(self, client, db_session):
        response = client.get('/api/billing/amount')
        assert response.status_code == 401
        assert response.json == {"error": "Tenant context required"}

    def test_get_amount(self, client, db_session, company_a, branch_location_a, tenant_headers):
        response = client.get('/api/billing/amount', headers=tenant_headers(company_a))
        assert response.status_code == 200
        assert response.json == {"amount": 50.0, "locationCount": 1, "freeLocationCount": 1}

    def test_get_subscription_when_none(self, client, db_session, company_a, branch_location_a, tenant_headers):
        response = client.get('/api/billing/subscription', headers=tenant_headers(company_a))
        assert response.status_code == 200
        assert response.json["subscription"] is None
        assert response.json["billing"]["amount"] == 50.0

    def test_toggle_location(self, client, db_session, company_a, branch_location_a, tenant_headers):
        response = client.patch(
            f'/api/billing/locations/{branch_location_a.id}',
            json={"isFree": True},
            headers=tenant_headers(company_a),
        )
        assert response.status_code == 200
        assert response.json["amount"] == 0.0
        assert response.json["freeLocationCount"] == 2

    def test_toggle_first_location_rejected(
        self, client, db_session, company_a, main_location_a, branch_location_a, tenant_headers
    ):
        response = client.patch(
            f'/api/billing/locations/{main_location_a.id}',
            json={"isFree": False},
            headers=tenant_headers(company_a),
        )
        assert response.status_code == 400
        assert "first location" in response.json["error"]

    def test_toggle_requires_boolean(self, client, db_session, company_a, branch_location_a, tenant_headers):
        response = client.patch(
            f'/api/billing/locations/{branch_location_a.id}',
            json={"isFree": "yes"},
            headers=tenant_headers(company_a),
        )
        assert response.status_code == 400

    def test_toggle_cross_tenant_location(self, client, db_session, company_a, main_location_b, tenant_headers):
        response = client.patch(
            f'/api/billing/locations/{main_location_b.id}',
            json={"isFree": True},
            headers=tenant_headers(company_a),
        )
        assert response.status_code == 404

    def test_enable_autopay_requires_card_token(self, client, db_session, company_a, tenant_headers):
        response = client.post('/api/billing/autopay', json={}, headers=tenant_headers(company_a))
        assert response.status_code == 400
        assert response.json["error"] == "cardToken is required"

    def test_enable_autopay_without_integration(
        self, client, db_session, company_a, branch_location_a, tenant_headers
    ):
        response = client.post(
            '/api/billing/autopay', json={"cardToken": "cnon:x"}, headers=tenant_headers(company_a)
        )
        assert response.status_code == 400
        assert response.json["error"] == "Payment integration not configured"

    def test_enable_autopay(
        self, client, db_session, company_a, branch_location_a, square_integration_a, fake_processor, tenant_headers
    ):
        response = client.post(
            '/api/billing/autopay', json={"cardToken": "cnon:x"}, headers=tenant_headers(company_a)
        )
        assert response.status_code == 200
        assert response.json["autopay_enabled"] is True
        assert response.json["external_subscription_id"] == "SUB-1"

    def test_disable_autopay_without_subscription(self, client, db_session, company_a, tenant_headers):
        response = client.delete('/api/billing/autopay', headers=tenant_headers(company_a))
        assert response.status_code == 404

    def test_history(self, client, db_session, company_a, branch_location_a, tenant_headers):
        make_subscription(db_session, company_a)
        billing_service.process_monthly_billing(now=BILLING_DAY)

        response = client.get('/api/billing/history', headers=tenant_headers(company_a))
        assert response.status_code == 200
        payments = response.json["payments"]
        assert len(payments) == 1
        assert payments[0]["amount"] == 50.0
        assert payments[0]["billing_period_start"] == "2026-03-01T00:00:00Z"
