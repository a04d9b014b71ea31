"""
l402-checkout: L402 payment-challenge flow for FastAPI.

A resource server answers unpaid requests with a 402 challenge listing
offers, a gateway turns a chosen offer into payment instructions and
reports completed payments back, and the client pays through a wallet and
retries once.

Usage:
    from l402_checkout import FakeWallet, L402Client

    async with L402Client(wallet=FakeWallet("offer_0001")) as client:
        response = await client.fetch("http://localhost:8080/private-resource")
"""

from .client import L402Client, l402_fetch
from .errors import (
    ClientError,
    CorrelationMismatch,
    L402Error,
    MalformedChallenge,
    MissingCorrelation,
    NotificationFailed,
    OfferNotFound,
    PaymentDeclined,
    PaymentNotSupported,
    PaymentRequestExpired,
    Phase,
    TransportFailed,
    UnsupportedPaymentMethod,
    WalletError,
    WalletPaymentFailed,
)
from .issuer import ChallengeIssuer, GatewayIssuer, issue_challenge
from .l402 import (
    L402_VERSION,
    L402Challenge,
    Offer,
    OfferType,
    PaymentMethod,
    PaymentNotice,
    PaymentRequestRequest,
    PaymentRequestResponse,
    PayReq,
    parse_challenge,
    parse_notice_headers,
)
from .ledger import AccessLedger
from .notifier import PaymentNotifier
from .resolver import PaymentRequestResolver
from .wallet import FakeWallet, InspectWallet

__version__ = "0.1.0"

__all__ = [
    # Messages
    "L402_VERSION",
    "L402Challenge",
    "Offer",
    "OfferType",
    "PaymentMethod",
    "PaymentNotice",
    "PaymentRequestRequest",
    "PaymentRequestResponse",
    "PayReq",
    "parse_challenge",
    "parse_notice_headers",
    # Roles
    "ChallengeIssuer",
    "GatewayIssuer",
    "issue_challenge",
    "PaymentRequestResolver",
    "PaymentNotifier",
    "AccessLedger",
    # Client
    "L402Client",
    "l402_fetch",
    "FakeWallet",
    "InspectWallet",
    # Errors
    "L402Error",
    "ClientError",
    "Phase",
    "MalformedChallenge",
    "WalletPaymentFailed",
    "TransportFailed",
    "WalletError",
    "OfferNotFound",
    "PaymentNotSupported",
    "PaymentDeclined",
    "UnsupportedPaymentMethod",
    "PaymentRequestExpired",
    "MissingCorrelation",
    "CorrelationMismatch",
    "NotificationFailed",
]
