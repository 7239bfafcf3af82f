"""
Pytest fixtures for repairdesk backend tests.

Provides test database setup, two isolated tenants (companies) with
locations, users, inventory and invoices, a test client, and a fake payment
adapter that stands in for the processor.
"""

from decimal import Decimal

import pytest

from repairdesk import create_app
from repairdesk.extensions import db
from repairdesk.integrations.payment import PaymentAdapter, PaymentProviderError
from repairdesk.integrations.payment.types import (
    ConnectionTestResult,
    CustomerResult,
    PaymentResult,
    RefundResult,
    SubscriptionResult,
    TerminalCheckoutResult,
)
from repairdesk.models import Company, Customer, Invoice, InventoryItem, User
from repairdesk.services import credential_service
from repairdesk.services.inventory_service import set_quantity_for_location
from repairdesk.services.tenant_service import create_location


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'ENCRYPTION_KEY': 'test-encryption-passphrase',
    'BILLING_AMOUNT_PER_LOCATION': Decimal('50'),
    'BILLING_DAY_OF_MONTH': 1,
    'BILLING_SCHEDULER_ENABLED': False,
    'SQUARE_SUBSCRIPTION_PLAN_ID': 'PLAN-TEST',
    'SQUARE_WEBHOOK_SIGNATURE_KEY': '',
    'SQUARE_WEBHOOK_URL': '',
    'STRIPE_WEBHOOK_SECRET': '',
    'DEFAULT_CURRENCY': 'USD',
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def company_a(db_session):
    """Create Company A (first tenant)."""
    company = Company(name="Fix-It Phones", email="billing@fixit.example", settings={}, is_active=True)
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture(scope='function')
def company_b(db_session):
    """Create Company B (second tenant)."""
    company = Company(name="Beta Repairs", email="owner@beta.example", settings={}, is_active=True)
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture(scope='function')
def main_location_a(db_session, company_a):
    """First location of Company A (always free)."""
    location = create_location(company_a.id, "Downtown")
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def branch_location_a(db_session, company_a, main_location_a):
    """Second, billable location of Company A."""
    location = create_location(company_a.id, "Uptown")
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def main_location_b(db_session, company_b):
    location = create_location(company_b.id, "Beta Main")
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def user_a(db_session, company_a):
    user = User(company_id=company_a.id, email="tech@fixit.example", first_name="Robin", last_name="Tech")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def user_b(db_session, company_b):
    user = User(company_id=company_b.id, email="tech@beta.example", first_name="Sam", last_name="Beta")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def item_a(db_session, company_a):
    """Inventory item in Company A."""
    item = InventoryItem(company_id=company_a.id, sku="SCR-IP13", name="iPhone 13 Screen")
    db_session.add(item)
    db_session.commit()
    return item


@pytest.fixture(scope='function')
def item_b(db_session, company_b):
    item = InventoryItem(company_id=company_b.id, sku="BAT-S21", name="Galaxy S21 Battery")
    db_session.add(item)
    db_session.commit()
    return item


@pytest.fixture(scope='function')
def stocked_item_a(db_session, item_a, main_location_a, branch_location_a):
    """item_a with 10 on hand at the main location and none at the branch."""
    set_quantity_for_location(item_a.id, main_location_a.id, 10, item_a.company_id)
    db_session.commit()
    return item_a


@pytest.fixture(scope='function')
def customer_a(db_session, company_a):
    customer = Customer(company_id=company_a.id, name="Jordan Customer", email="jordan@example.com")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def customer_b(db_session, company_b):
    customer = Customer(company_id=company_b.id, name="Casey Customer")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def invoice_a(db_session, company_a, customer_a):
    """Issued, unpaid invoice for 100.00 in Company A."""
    invoice = Invoice(
        company_id=company_a.id,
        customer_id=customer_a.id,
        invoice_number="INV-1001",
        status="issued",
        total_amount=Decimal("100.00"),
    )
    db_session.add(invoice)
    db_session.commit()
    return invoice


@pytest.fixture(scope='function')
def invoice_b(db_session, company_b, customer_b):
    invoice = Invoice(
        company_id=company_b.id,
        customer_id=customer_b.id,
        invoice_number="INV-1001",
        status="issued",
        total_amount=Decimal("40.00"),
    )
    db_session.add(invoice)
    db_session.commit()
    return invoice


@pytest.fixture(scope='function')
def square_integration_a(db_session, company_a):
    """Enabled Square integration for Company A (credentials encrypted at rest)."""
    config = credential_service.save_integration(
        company_a.id,
        "payment",
        provider="square",
        credentials={
            "accessToken": "EAAAsandbox-token-1234",
            "applicationId": "sandbox-sq0idb-app",
            "locationId": "LOC-MAIN",
        },
        settings={"testMode": True},
    )
    db_session.commit()
    return config


class FakePaymentAdapter(PaymentAdapter):
    """
    In-memory processor.

    Records every call in `calls` and answers with the configured outcomes.
    Set `fail_with` to a message to make the next call raise.
    """

    provider = "square"
    display_name = "Fake"

    def __init__(self, config):
        super().__init__(config)
        self.calls = []
        self.payment_status = "succeeded"
        self.refund_status = "succeeded"
        self.fail_with = None
        self.subscription_status = "ACTIVE"

    def _record(self, name, request):
        self.calls.append((name, request))
        if self.fail_with:
            raise PaymentProviderError(self.fail_with, provider=self.provider)

    def test_connection(self):
        self._record("test_connection", None)
        return ConnectionTestResult(True)

    def process_payment(self, request):
        self._record("process_payment", request)
        return PaymentResult(
            transaction_id=f"txn-{request.invoice_id}",
            status=self.payment_status,
            payment_method="card",
            amount=request.amount,
            currency=request.currency,
        )

    def refund_payment(self, request):
        self._record("refund_payment", request)
        return RefundResult(
            refund_id="rf-1",
            status=self.refund_status,
            amount=request.amount or Decimal("100.00"),
            currency="USD",
            transaction_id=request.transaction_id,
        )

    def create_terminal_checkout(self, request):
        self._record("create_terminal_checkout", request)
        return TerminalCheckoutResult(checkout_id="chk-1", status="pending", device_id=request.device_id)

    def get_terminal_checkout_status(self, checkout_id):
        self._record("get_terminal_checkout_status", checkout_id)
        return TerminalCheckoutResult(checkout_id=checkout_id, status="completed", device_id="dev-1")

    def create_customer(self, request):
        self._record("create_customer", request)
        return CustomerResult(customer_id="CUST-1", email=request.email)

    def save_card_for_customer(self, customer_id, card_token):
        self._record("save_card_for_customer", (customer_id, card_token))
        return "CARD-1"

    def create_subscription(self, request):
        self._record("create_subscription", request)
        return SubscriptionResult(
            subscription_id="SUB-1",
            status=self.subscription_status,
            plan_id=request.plan_id,
            customer_id=request.customer_id,
        )

    def update_subscription(self, request):
        self._record("update_subscription", request)
        return SubscriptionResult(
            subscription_id=request.subscription_id,
            status="ACTIVE",
            plan_id=request.plan_id or "",
            customer_id="CUST-1",
        )


class FakeProcessor:
    """Adapter factory handing out one shared FakePaymentAdapter per test."""

    def __init__(self):
        self.adapter = None
        self.outcomes = {}

    def configure(self, **outcomes):
        self.outcomes.update(outcomes)

    def __call__(self, config, **kwargs):
        if self.adapter is None:
            self.adapter = FakePaymentAdapter(config)
        else:
            self.adapter.config = config
        for key, value in self.outcomes.items():
            setattr(self.adapter, key, value)
        return self.adapter

    def call_names(self):
        return [name for name, _ in (self.adapter.calls if self.adapter else [])]


@pytest.fixture(scope='function')
def fake_processor(monkeypatch):
    """Route every adapter lookup to a FakePaymentAdapter."""
    from repairdesk.services import billing_service, payment_service
    import repairdesk.integrations.payment as payment_package

    processor = FakeProcessor()
    monkeypatch.setattr(payment_service, "get_payment_adapter", processor)
    monkeypatch.setattr(billing_service, "get_payment_adapter", processor)
    monkeypatch.setattr(payment_package, "get_payment_adapter", processor)
    return processor


@pytest.fixture(scope='function')
def tenant_headers():
    """Headers the upstream gateway forwards for an authenticated request."""
    def _headers(company, user=None) -> dict:
        headers = {'X-Company-Id': str(company.id)}
        if user is not None:
            headers['X-User-Id'] = str(user.id)
        return headers
    return _headers
