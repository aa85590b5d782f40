"""Shared-package test configuration."""

import httpx
import pytest
from stockpulse.config import Settings


@pytest.fixture
def paypal_settings():
    return Settings(
        paypal_client_id="client-id",
        paypal_client_secret="client-secret",
        paypal_webhook_id="WH-TEST",
        paypal_base_url_override="https://paypal.test",
    )


@pytest.fixture
def transmission_headers():
    return {
        "paypal-auth-algo": "SHA256withRSA",
        "paypal-transmission-id": "tx-1",
        "paypal-cert-id": "cert-1",
        "paypal-transmission-sig": "sig-1",
        "paypal-transmission-time": "2024-05-01T10:00:00Z",
    }


class PayPalStub:
    """Records requests and answers them from a path -> response table."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.routes: dict[str, object] = {
            "/v1/oauth2/token": httpx.Response(
                200, json={"access_token": "token-1", "expires_in": 32400}
            ),
        }

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, json={"name": "RESOURCE_NOT_FOUND"})
        if isinstance(route, Exception):
            raise route
        if callable(route):
            return route(request)
        return route


@pytest.fixture
def paypal_stub():
    return PayPalStub()


@pytest.fixture
async def http_client(paypal_stub):
    async with httpx.AsyncClient(transport=httpx.MockTransport(paypal_stub)) as client:
        yield client
