"""Tests for the transparent retry client."""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from l402_checkout.client import L402Client, State, auto_pay, l402_fetch
from l402_checkout.config import DEFAULT_OFFERS
from l402_checkout.errors import (
    MalformedChallenge,
    Phase,
    PaymentNotSupported,
    TransportFailed,
    WalletPaymentFailed,
)
from l402_checkout.issuer import ChallengeIssuer
from l402_checkout.l402 import L402Challenge

URL = "http://localhost:8080/private-resource"
CHALLENGE = ChallengeIssuer("http://localhost:8081/payment-request").issue_challenge(DEFAULT_OFFERS)


class ScriptedServer:
    """Answers requests from a list of responses and records each call."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    @property
    def transport(self):
        return httpx.MockTransport(self)


def challenge_response():
    return httpx.Response(402, json=CHALLENGE.to_dict())


def granted_response():
    return httpx.Response(200, json={"message": "Access granted to dataset 123", "status": "success"})


def paying_wallet():
    wallet = AsyncMock()
    wallet.pay = AsyncMock(return_value=None)
    return wallet


def failing_wallet(error=None):
    wallet = AsyncMock()
    wallet.pay = AsyncMock(side_effect=error or PaymentNotSupported("cannot pay"))
    return wallet


class TestRetryCycle:
    @pytest.mark.asyncio
    async def test_non_402_returned_unchanged(self):
        server = ScriptedServer(granted_response())
        wallet = paying_wallet()

        async with L402Client(wallet=wallet, transport=server.transport) as client:
            response = await client.fetch(URL)

        assert response.status_code == 200
        assert response.json()["status"] == "success"
        assert len(server.requests) == 1
        wallet.pay.assert_not_called()

    @pytest.mark.asyncio
    async def test_error_status_is_not_a_challenge(self):
        server = ScriptedServer(httpx.Response(401, text="Unauthorized: missing bearer token"))
        wallet = paying_wallet()

        async with L402Client(wallet=wallet, transport=server.transport) as client:
            response = await client.fetch(URL)

        assert response.status_code == 401
        wallet.pay.assert_not_called()

    @pytest.mark.asyncio
    async def test_pays_and_retries_once(self):
        server = ScriptedServer(challenge_response(), granted_response())
        wallet = paying_wallet()

        async with L402Client(wallet=wallet, transport=server.transport) as client:
            response = await client.fetch(URL)

        assert response.status_code == 200
        assert len(server.requests) == 2
        wallet.pay.assert_awaited_once()
        paid_challenge = wallet.pay.await_args.args[0]
        assert isinstance(paid_challenge, L402Challenge)
        assert paid_challenge == CHALLENGE

    @pytest.mark.asyncio
    async def test_second_402_is_returned_as_is(self):
        server = ScriptedServer(challenge_response(), challenge_response())
        wallet = paying_wallet()

        async with L402Client(wallet=wallet, transport=server.transport) as client:
            response = await client.fetch(URL)

        assert response.status_code == 402
        assert len(server.requests) == 2
        wallet.pay.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_wallet_failure_stops_after_one_call(self):
        server = ScriptedServer(challenge_response(), granted_response())
        cause = PaymentNotSupported("cannot pay")
        wallet = failing_wallet(cause)

        async with L402Client(wallet=wallet, transport=server.transport) as client:
            with pytest.raises(WalletPaymentFailed) as exc_info:
                await client.fetch(URL)

        assert len(server.requests) == 1
        assert exc_info.value.phase is Phase.PAY
        assert exc_info.value.cause is cause
        assert exc_info.value.__cause__ is cause

    @pytest.mark.asyncio
    async def test_malformed_challenge(self):
        server = ScriptedServer(httpx.Response(402, text="pay me"))
        wallet = paying_wallet()

        async with L402Client(wallet=wallet, transport=server.transport) as client:
            with pytest.raises(MalformedChallenge) as exc_info:
                await client.fetch(URL)

        assert exc_info.value.phase is Phase.PARSE
        assert len(server.requests) == 1
        wallet.pay.assert_not_called()

    @pytest.mark.asyncio
    async def test_initial_send_failure(self):
        server = ScriptedServer(httpx.ConnectError("connection refused"))

        async with L402Client(wallet=paying_wallet(), transport=server.transport) as client:
            with pytest.raises(TransportFailed) as exc_info:
                await client.fetch(URL)

        assert exc_info.value.phase is Phase.SEND
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_retry_send_failure(self):
        server = ScriptedServer(challenge_response(), httpx.ReadTimeout("timed out"))

        async with L402Client(wallet=paying_wallet(), transport=server.transport) as client:
            with pytest.raises(TransportFailed) as exc_info:
                await client.fetch(URL)

        assert exc_info.value.phase is Phase.RETRY
        assert len(server.requests) == 2

    @pytest.mark.asyncio
    async def test_retry_is_the_original_request(self):
        server = ScriptedServer(challenge_response(), granted_response())

        async with L402Client(
            wallet=paying_wallet(),
            transport=server.transport,
            headers={"Authorization": "Bearer secret-token"},
        ) as client:
            await client.fetch(URL, method="POST", headers={"X-Trace": "abc"}, body={"q": 1})

        first, second = server.requests
        assert first.method == second.method == "POST"
        assert first.url == second.url
        assert first.content == second.content
        assert json.loads(first.content) == {"q": 1}
        for request in (first, second):
            assert request.headers["Authorization"] == "Bearer secret-token"
            assert request.headers["X-Trace"] == "abc"


class TestClientState:
    @pytest.mark.asyncio
    async def test_stats_after_payment(self):
        server = ScriptedServer(challenge_response(), granted_response(), granted_response())

        async with L402Client(wallet=paying_wallet(), transport=server.transport) as client:
            await client.fetch(URL)
            await client.fetch(URL)
            stats = client.get_stats()

        assert stats == {"request_count": 2, "payment_count": 1, "state": "done"}

    @pytest.mark.asyncio
    async def test_state_failed(self):
        server = ScriptedServer(challenge_response())

        async with L402Client(wallet=failing_wallet(), transport=server.transport) as client:
            with pytest.raises(WalletPaymentFailed):
                await client.fetch(URL)
            assert client.state is State.FAILED
            assert client.payment_count == 0

    @pytest.mark.asyncio
    async def test_state_transitions(self):
        server = ScriptedServer(challenge_response(), granted_response())
        states = []

        async with httpx.AsyncClient(transport=server.transport) as http_client:
            await auto_pay(http_client, paying_wallet(), "GET", URL, on_state=states.append)

        assert states == [
            State.SENDING,
            State.AWAITING,
            State.PAYING,
            State.RETRYING,
            State.DONE,
        ]

    @pytest.mark.asyncio
    async def test_state_transitions_without_challenge(self):
        server = ScriptedServer(granted_response())
        states = []

        async with httpx.AsyncClient(transport=server.transport) as http_client:
            await auto_pay(http_client, paying_wallet(), "GET", URL, on_state=states.append)

        assert states == [State.SENDING, State.AWAITING, State.DONE]

    def test_requires_wallet(self):
        with pytest.raises(ValueError, match="pay"):
            L402Client(wallet=object())

    @pytest.mark.asyncio
    async def test_does_not_close_external_client(self):
        server = ScriptedServer(granted_response(), granted_response())
        async with httpx.AsyncClient(transport=server.transport) as http_client:
            async with L402Client(wallet=paying_wallet(), http_client=http_client) as client:
                await client.fetch(URL)
            assert not http_client.is_closed
            await http_client.get(URL)


class TestL402Fetch:
    @pytest.mark.asyncio
    async def test_one_shot(self):
        server = ScriptedServer(challenge_response(), granted_response())
        response = await l402_fetch(URL, wallet=paying_wallet(), transport=server.transport)
        assert response.status_code == 200
        assert len(server.requests) == 2
