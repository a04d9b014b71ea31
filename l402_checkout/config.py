"""
Settings for the demo resource server, gateway and client.

Values come from the environment with local defaults:

    L402_SERVER_URL      http://localhost:8080
    L402_GATEWAY_URL     http://localhost:8081
    L402_AUTH_TOKEN      static bearer token accepted by the resource server
    L402_PAYMENT_TTL     payment instruction lifetime in seconds (600)
    L402_ENFORCE_EXPIRY  reject checkouts after expires_at (false)
    L402_LOG_LEVEL       INFO
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import List, Mapping, Optional

from .l402 import PAYMENT_REQUEST_TTL, Offer, OfferType, PaymentMethod

DEFAULT_AUTH_TOKEN = "01badad5-f2f0-43cf-be44-4f8e1c4d8641"

DEFAULT_OFFERS: List[Offer] = [
    Offer(
        id="offer_0001",
        title="Pro",
        description="10 credits for all the datasets in the platform",
        type=OfferType.TOP_UP,
        balance=10,
        amount=10,
        currency="USD",
        payment_methods=(PaymentMethod.LIGHTNING, PaymentMethod.FAKE_PAY),
    ),
    Offer(
        id="offer_0002",
        title="Dataset purchase",
        description="Unlimited access to a specific dataset",
        type=OfferType.ONE_TIME,
        amount=100,
        currency="USD",
        payment_methods=(PaymentMethod.LIGHTNING, PaymentMethod.ONCHAIN, PaymentMethod.FAKE_PAY),
    ),
    Offer(
        id="offer_0003",
        title="Unlimited",
        description="Unlimited access to all the datasets in the platform",
        type=OfferType.SUBSCRIPTION,
        amount=500,
        currency="USD",
        payment_methods=(
            PaymentMethod.LIGHTNING,
            PaymentMethod.ONCHAIN,
            PaymentMethod.CREDIT_CARD,
            PaymentMethod.FAKE_PAY,
        ),
    ),
]

_TRUE = {"1", "true", "yes", "on"}


@dataclass
class Settings:
    server_url: str = "http://localhost:8080"
    gateway_url: str = "http://localhost:8081"
    auth_token: str = DEFAULT_AUTH_TOKEN
    payment_ttl: int = PAYMENT_REQUEST_TTL
    enforce_expiry: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        defaults = cls()
        ttl = env.get("L402_PAYMENT_TTL")
        return cls(
            server_url=env.get("L402_SERVER_URL", defaults.server_url).rstrip("/"),
            gateway_url=env.get("L402_GATEWAY_URL", defaults.gateway_url).rstrip("/"),
            auth_token=env.get("L402_AUTH_TOKEN", defaults.auth_token),
            payment_ttl=int(ttl) if ttl else defaults.payment_ttl,
            enforce_expiry=env.get("L402_ENFORCE_EXPIRY", "").strip().lower() in _TRUE,
            log_level=env.get("L402_LOG_LEVEL", defaults.log_level).upper(),
        )

    # Resource server endpoints
    @property
    def resource_url(self) -> str:
        return f"{self.server_url}/private-resource"

    @property
    def payment_success_url(self) -> str:
        return f"{self.server_url}/payment-success"

    # Gateway endpoints
    @property
    def payment_request_url(self) -> str:
        return f"{self.gateway_url}/payment-request"

    @property
    def charge_url(self) -> str:
        return f"{self.gateway_url}/charge"

    @property
    def checkout_url(self) -> str:
        return f"{self.gateway_url}/checkout"


def configure_logging(level: str = "INFO") -> None:
    """Basic log format for the demo entry points."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
