"""
Payment processor adapters.

The provider is resolved once per integration config; callers hold the
adapter and never switch on the provider name themselves.
"""

from .base import PaymentAdapter
from .paypal import PayPalAdapter
from .square import SquareAdapter
from .stripe_adapter import StripeAdapter
from .types import PaymentProviderError

ADAPTERS = {
    SquareAdapter.provider: SquareAdapter,
    StripeAdapter.provider: StripeAdapter,
    PayPalAdapter.provider: PayPalAdapter,
}


def get_payment_adapter(config, **kwargs) -> PaymentAdapter:
    adapter_cls = ADAPTERS.get(config.provider)
    if adapter_cls is None:
        raise PaymentProviderError(f"Payment provider {config.provider} is not supported", provider=config.provider)
    return adapter_cls(config, **kwargs)


__all__ = [
    "ADAPTERS",
    "PaymentAdapter",
    "PayPalAdapter",
    "PaymentProviderError",
    "SquareAdapter",
    "StripeAdapter",
    "get_payment_adapter",
]
