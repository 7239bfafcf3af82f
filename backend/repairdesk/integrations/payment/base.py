# Overview: Capability contract every payment processor adapter implements.

from __future__ import annotations

from abc import ABC, abstractmethod

from ...utils.encryption import decrypt_credentials
from .types import (
    ConnectionTestResult,
    CustomerRequest,
    CustomerResult,
    PaymentProviderError,
    PaymentRequest,
    PaymentResult,
    RefundRequest,
    RefundResult,
    SubscriptionRequest,
    SubscriptionResult,
    SubscriptionUpdate,
    TerminalCheckoutRequest,
    TerminalCheckoutResult,
)


class PaymentAdapter(ABC):
    """
    One adapter instance per resolved integration config.

    Charging and refunding are mandatory. Terminal checkouts and stored-card
    subscriptions are optional capabilities: the defaults raise
    PaymentProviderError so callers get a clear "not supported" failure.
    """

    provider: str = ""
    display_name: str = ""

    def __init__(self, config):
        self.config = config

    @property
    def test_mode(self) -> bool:
        return self.config.test_mode

    def credentials(self) -> dict[str, str]:
        return decrypt_credentials(self.config.credentials)

    def unsupported(self, capability: str) -> PaymentProviderError:
        return PaymentProviderError(
            f"{capability} is not supported by {self.display_name or self.provider}",
            provider=self.provider,
        )

    @abstractmethod
    def test_connection(self) -> ConnectionTestResult:
        ...

    @abstractmethod
    def process_payment(self, request: PaymentRequest) -> PaymentResult:
        ...

    @abstractmethod
    def refund_payment(self, request: RefundRequest) -> RefundResult:
        ...

    def create_terminal_checkout(self, request: TerminalCheckoutRequest) -> TerminalCheckoutResult:
        raise self.unsupported("Terminal checkout")

    def get_terminal_checkout_status(self, checkout_id: str) -> TerminalCheckoutResult:
        raise self.unsupported("Terminal checkout")

    def create_customer(self, request: CustomerRequest) -> CustomerResult:
        raise self.unsupported("Customer creation")

    def save_card_for_customer(self, customer_id: str, card_token: str) -> str:
        raise self.unsupported("Saving cards")

    def create_subscription(self, request: SubscriptionRequest) -> SubscriptionResult:
        raise self.unsupported("Subscriptions")

    def update_subscription(self, request: SubscriptionUpdate) -> SubscriptionResult:
        raise self.unsupported("Subscriptions")
