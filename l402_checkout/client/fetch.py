"""
Transparent L402 retry client.

When an endpoint answers 402, the challenge is parsed, handed to the wallet,
and the original request is sent again exactly once:

    SENDING → AWAITING → DONE
                       → PAYING → RETRYING → DONE
    (any step)         → FAILED

A second 402 on the retry is returned as-is; looping is the caller's call.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Dict, Optional

import httpx

from ..errors import Phase, TransportFailed, WalletPaymentFailed
from ..l402 import parse_challenge
from ..wallet import is_wallet

logger = logging.getLogger(__name__)

PAYMENT_REQUIRED = 402


class State(str, Enum):
    SENDING = "sending"
    AWAITING = "awaiting_challenge_or_result"
    PAYING = "paying_via_wallet"
    RETRYING = "retrying_once"
    DONE = "done"
    FAILED = "failed"


async def _send(
    http_client: httpx.AsyncClient,
    method: str,
    url: str,
    phase: Phase,
    kwargs: Dict[str, Any],
) -> httpx.Response:
    try:
        return await http_client.request(method, url, **kwargs)
    except httpx.HTTPError as e:
        raise TransportFailed(f"{method} {url} failed: {e}", phase=phase) from e


async def auto_pay(
    http_client: httpx.AsyncClient,
    wallet: Any,
    method: str,
    url: str,
    on_state: Optional[Callable[[State], None]] = None,
    **kwargs: Any,
) -> httpx.Response:
    """
    Send a request, paying and retrying once on 402.

    Args:
        http_client: Client used for both the original and the retried request.
        wallet: Object with an async pay(challenge) method.
        method: HTTP method.
        url: Request URL.
        on_state: Called on every state transition.
        **kwargs: Passed unchanged to httpx for both sends.

    Returns:
        The first non-402 response, or the response to the single retry.

    Raises:
        TransportFailed: The original (phase send) or retried (phase retry)
            request could not be sent.
        MalformedChallenge: The 402 body is not a challenge.
        WalletPaymentFailed: The wallet raised; the wallet error is the cause.
    """

    def enter(state: State) -> None:
        if on_state is not None:
            on_state(state)

    try:
        enter(State.SENDING)
        logger.info(f"Making {method} request to {url}")
        response = await _send(http_client, method, url, Phase.SEND, kwargs)

        enter(State.AWAITING)
        if response.status_code != PAYMENT_REQUIRED:
            logger.debug(f"Non-402 response ({response.status_code}), returning directly")
            enter(State.DONE)
            return response

        logger.info("Received 402 Payment Required response")
        challenge = parse_challenge(response.content)
        logger.info(
            f"Parsed challenge {challenge.payment_context_token} "
            f"with {len(challenge.offers)} offers"
        )

        enter(State.PAYING)
        try:
            await wallet.pay(challenge)
        except Exception as e:
            logger.warning(f"Wallet could not pay challenge {challenge.payment_context_token}: {e}")
            raise WalletPaymentFailed(e) from e

        enter(State.RETRYING)
        logger.info("Wallet payment step done, retrying original request")
        retry_response = await _send(http_client, method, url, Phase.RETRY, kwargs)
        if retry_response.status_code == PAYMENT_REQUIRED:
            logger.warning("Retry after payment still answered 402, returning it as-is")
    except Exception:
        enter(State.FAILED)
        raise

    enter(State.DONE)
    return retry_response


class L402Client:
    """
    HTTP client that handles L402 challenges through a wallet.

    Usage:
        async with L402Client(wallet=FakeWallet("offer_0001")) as client:
            response = await client.fetch("http://localhost:8080/private-resource")
    """

    def __init__(
        self,
        wallet: Any,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the L402Client.

        Args:
            wallet: Wallet used to pay challenges.
            headers: Default headers for all requests.
            transport: Optional httpx transport (tests, ASGI apps).
            timeout: Request timeout in seconds.
            http_client: Pre-built client; not closed by this instance.
        """
        if not is_wallet(wallet):
            raise ValueError("L402Client: wallet must have a pay() method")

        self.wallet = wallet
        self.default_headers = headers or {}
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(transport=transport, timeout=timeout)

        # State of the most recent cycle
        self.state = State.DONE
        self.request_count = 0
        self.payment_count = 0

    def _on_state(self, state: State) -> None:
        self.state = state
        if state is State.RETRYING:
            self.payment_count += 1

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request through the pay-and-retry cycle."""
        self.request_count += 1
        kwargs["headers"] = {**self.default_headers, **(kwargs.get("headers") or {})}
        return await auto_pay(self._http, self.wallet, method, url, on_state=self._on_state, **kwargs)

    async def fetch(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        body: Any = None,
    ) -> httpx.Response:
        """
        Fetch a URL with automatic L402 payment handling.

        Args:
            url: URL to fetch.
            method: HTTP method.
            headers: Additional headers (merged with defaults).
            body: Request body; dicts and lists are sent as JSON.
        """
        kwargs: Dict[str, Any] = {"headers": headers}
        if body is not None:
            if isinstance(body, (dict, list)):
                kwargs["json"] = body
            else:
                kwargs["content"] = body
        return await self.request(method, url, **kwargs)

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "request_count": self.request_count,
            "payment_count": self.payment_count,
            "state": self.state.value,
        }

    async def close(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> "L402Client":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()


async def l402_fetch(
    url: str,
    wallet: Any,
    method: str = "GET",
    headers: Optional[Dict[str, str]] = None,
    body: Any = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.Response:
    """
    One-shot fetch with automatic L402 payment handling.

    Creates a temporary client, runs a single pay-and-retry cycle and closes
    the client.
    """
    async with L402Client(wallet=wallet, transport=transport) as client:
        return await client.fetch(url, method=method, headers=headers, body=body)
