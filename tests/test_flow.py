"""End-to-end: client, resource server and gateway wired in-process."""

import httpx
import pytest

from l402_checkout.client import L402Client
from l402_checkout.config import Settings
from l402_checkout.errors import PaymentDeclined, PaymentNotSupported, WalletPaymentFailed
from l402_checkout.gateway import create_gateway
from l402_checkout.issuer import GatewayIssuer
from l402_checkout.notifier import PaymentNotifier
from l402_checkout.server import create_server
from l402_checkout.wallet import FakeWallet, InspectWallet

SETTINGS = Settings()
AUTH = {"Authorization": f"Bearer {SETTINGS.auth_token}"}


class CountingTransport(httpx.AsyncBaseTransport):
    """Wraps a transport and counts the requests sent through it."""

    def __init__(self, inner: httpx.AsyncBaseTransport):
        self.inner = inner
        self.requests = []

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return await self.inner.handle_async_request(request)


class Deployment:
    """Server and gateway apps that reach each other over ASGI transports."""

    def __init__(self, use_charge=False):
        self.server_app = None
        server_transport = httpx.ASGITransport(app=self._server)

        notifier = PaymentNotifier(SETTINGS.payment_success_url, transport=server_transport)
        self.gateway_app = create_gateway(SETTINGS, notifier=notifier)
        self.gateway_transport = httpx.ASGITransport(app=self.gateway_app)

        issuer = None
        if use_charge:
            issuer = GatewayIssuer(SETTINGS.charge_url, transport=self.gateway_transport)
        self.server_app = create_server(SETTINGS, issuer=issuer)
        self.server_transport = CountingTransport(server_transport)

    def checkout_confirm(self, visited):
        """Confirm source that completes the payment by visiting the checkout URL."""

        async def confirm(resp):
            async with httpx.AsyncClient(transport=self.gateway_transport) as client:
                page = await client.get(resp.payment_request.checkout_url)
            visited.append(page)
            return page.status_code == 200

        return confirm

    async def _server(self, scope, receive, send):
        # the gateway is built before the server app exists
        await self.server_app(scope, receive, send)


class TestFullFlow:
    @pytest.mark.asyncio
    async def test_pay_and_retry(self):
        deployment = Deployment()
        visited = []
        wallet = FakeWallet(
            "offer_0001",
            confirm=deployment.checkout_confirm(visited),
            transport=deployment.gateway_transport,
            out=lambda s: None,
        )

        async with L402Client(
            wallet=wallet, headers=AUTH, transport=deployment.server_transport
        ) as client:
            response = await client.get(SETTINGS.resource_url)
            stats = client.get_stats()

        assert response.status_code == 200
        assert response.json() == {"message": "Access granted to dataset 123", "status": "success"}
        assert len(deployment.server_transport.requests) == 2
        assert len(visited) == 1
        assert "Payment Successful" in visited[0].text
        assert stats["payment_count"] == 1

        ledger_stats = deployment.server_app.state.ledger.to_dict()
        assert ledger_stats["total_paid"] == 1
        assert ledger_stats["revenue"] == {"USD": 10}

    @pytest.mark.asyncio
    async def test_challenge_minted_by_gateway(self):
        deployment = Deployment(use_charge=True)
        wallet = FakeWallet(
            "offer_0003",
            confirm=deployment.checkout_confirm([]),
            transport=deployment.gateway_transport,
            out=lambda s: None,
        )

        async with L402Client(
            wallet=wallet, headers=AUTH, transport=deployment.server_transport
        ) as client:
            response = await client.get(SETTINGS.resource_url)

        assert response.status_code == 200
        assert deployment.server_app.state.ledger.to_dict()["revenue"] == {"USD": 500}

    @pytest.mark.asyncio
    async def test_declined_payment_keeps_resource_locked(self):
        deployment = Deployment()
        wallet = FakeWallet(
            "offer_0001",
            confirm=lambda resp: False,
            transport=deployment.gateway_transport,
            out=lambda s: None,
        )

        async with L402Client(
            wallet=wallet, headers=AUTH, transport=deployment.server_transport
        ) as client:
            with pytest.raises(WalletPaymentFailed) as exc_info:
                await client.get(SETTINGS.resource_url)
        async with httpx.AsyncClient(transport=deployment.server_transport) as plain:
            again = await plain.get(SETTINGS.resource_url, headers=AUTH)

        assert isinstance(exc_info.value.cause, PaymentDeclined)
        assert again.status_code == 402

    @pytest.mark.asyncio
    async def test_inspect_only(self):
        deployment = Deployment()
        printed = []

        async with L402Client(
            wallet=InspectWallet(out=printed.append),
            headers=AUTH,
            transport=deployment.server_transport,
        ) as client:
            with pytest.raises(WalletPaymentFailed) as exc_info:
                await client.get(SETTINGS.resource_url)

        assert isinstance(exc_info.value.cause, PaymentNotSupported)
        assert len(deployment.server_transport.requests) == 1
        assert any("offer_0002" in line for line in printed)
