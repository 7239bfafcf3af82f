# Overview: Per-company integration settings with credentials encrypted at rest.

"""
Integration credentials live in companies.settings["integrations"][type]:

    {
        "type": "payment",
        "provider": "square",
        "enabled": true,
        "credentials": {"accessToken": "<fernet token>", ...},
        "settings": {"testMode": true},
        "lastTested": "...Z", "lastError": null,
        "createdAt": "...Z", "updatedAt": "...Z"
    }

get_integration() never decrypts. Adapters call decrypt_credentials()
themselves at the moment they need a secret.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm.attributes import flag_modified

from ..errors import BadRequestError, NotFoundError
from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from ..utils.encryption import decrypt_credentials, encrypt_credentials, mask
from .tenant_service import require_company

logger = logging.getLogger(__name__)

INTEGRATION_TYPES = ("payment", "email", "sms")
PAYMENT_PROVIDERS = ("square", "stripe", "paypal")


@dataclass
class IntegrationConfig:
    type: str
    provider: str
    enabled: bool = True
    credentials: dict[str, str] = field(default_factory=dict)
    settings: dict[str, Any] = field(default_factory=dict)
    last_tested: str | None = None
    last_error: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def test_mode(self) -> bool:
        return bool(self.settings.get("testMode"))

    @classmethod
    def from_settings(cls, type_: str, raw: dict) -> "IntegrationConfig":
        return cls(
            type=raw.get("type") or type_,
            provider=raw.get("provider", ""),
            enabled=bool(raw.get("enabled", True)),
            credentials=dict(raw.get("credentials") or {}),
            settings=dict(raw.get("settings") or {}),
            last_tested=raw.get("lastTested"),
            last_error=raw.get("lastError"),
            created_at=raw.get("createdAt"),
            updated_at=raw.get("updatedAt"),
        )

    def to_settings(self) -> dict:
        return {
            "type": self.type,
            "provider": self.provider,
            "enabled": self.enabled,
            "credentials": self.credentials,
            "settings": self.settings,
            "lastTested": self.last_tested,
            "lastError": self.last_error,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    def decrypted_credentials(self) -> dict[str, str]:
        return decrypt_credentials(self.credentials)

    def to_public_dict(self) -> dict:
        """Settings view safe to return to the browser: secrets masked."""
        masked = {key: mask(value) for key, value in self.decrypted_credentials().items()}
        data = self.to_settings()
        data["credentials"] = masked
        return data


def _integrations(company) -> dict:
    return dict((company.settings or {}).get("integrations") or {})


def _store(company, integrations: dict) -> None:
    settings = dict(company.settings or {})
    settings["integrations"] = integrations
    company.settings = settings
    flag_modified(company, "settings")
    db.session.flush()


def get_integration(company_id: int, type_: str) -> IntegrationConfig | None:
    """Stored integration for the company (credentials still encrypted), or None."""
    company = require_company(company_id)
    raw = _integrations(company).get(type_)
    if not raw:
        return None
    return IntegrationConfig.from_settings(type_, raw)


def save_integration(
    company_id: int,
    type_: str,
    *,
    provider: str,
    credentials: dict[str, str | None],
    settings: dict | None = None,
    enabled: bool = True,
) -> IntegrationConfig:
    """
    Create or replace an integration.

    Credentials arrive in plaintext and are encrypted before they touch the
    settings document. Caller commits.
    """
    if type_ not in INTEGRATION_TYPES:
        raise BadRequestError(f"Unknown integration type: {type_}")
    if type_ == "payment" and provider not in PAYMENT_PROVIDERS:
        raise BadRequestError(f"Payment provider {provider} is not supported")

    company = require_company(company_id)
    integrations = _integrations(company)
    existing = integrations.get(type_) or {}
    now = to_utc_z(utcnow())

    config = IntegrationConfig(
        type=type_,
        provider=provider,
        enabled=enabled,
        credentials=encrypt_credentials(credentials or {}),
        settings=dict(settings or {}),
        created_at=existing.get("createdAt") or now,
        updated_at=now,
    )
    integrations[type_] = config.to_settings()
    _store(company, integrations)
    logger.info("Saved %s integration (%s) for company %s", type_, provider, company_id)
    return config


def delete_integration(company_id: int, type_: str) -> None:
    company = require_company(company_id)
    integrations = _integrations(company)
    if type_ not in integrations:
        raise NotFoundError(f"Integration {type_} not found")
    del integrations[type_]
    _store(company, integrations)


def mark_integration_tested(company_id: int, type_: str, success: bool, error: str | None = None) -> None:
    company = require_company(company_id)
    integrations = _integrations(company)
    raw = dict(integrations.get(type_) or {})
    if not raw:
        raise NotFoundError(f"Integration {type_} not found")
    now = to_utc_z(utcnow())
    raw["lastTested"] = now
    raw["lastError"] = None if success else error
    raw["updatedAt"] = now
    integrations[type_] = raw
    _store(company, integrations)


def test_integration(company_id: int, type_: str = "payment"):
    """
    Run the provider's connection test and record the outcome.

    Returns the adapter's ConnectionTestResult.
    """
    from ..integrations.payment import get_payment_adapter

    config = get_integration(company_id, type_)
    if not config:
        raise NotFoundError(f"Integration {type_} not found")

    result = get_payment_adapter(config).test_connection()
    mark_integration_tested(company_id, type_, result.success, result.error)
    if not result.success:
        logger.warning("Integration test failed for company %s: %s", company_id, result.error)
    return result
