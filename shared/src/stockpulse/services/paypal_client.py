"""Async PayPal REST client: OAuth tokens, webhook verification, billing."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

from stockpulse.config import Settings, get_settings
from stockpulse.exceptions import (
    AuthError,
    ConfigurationError,
    PayPalAPIError,
    VerificationUnavailable,
)
from stockpulse.schemas.paypal import TransmissionMetadata

logger = logging.getLogger(__name__)

VERIFICATION_SUCCESS = "SUCCESS"
# Refresh tokens this many seconds before PayPal says they expire.
TOKEN_EXPIRY_SKEW_SECONDS = 60


class PayPalClient:
    """Thin typed wrapper over the PayPal REST endpoints used for billing."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = http_client or httpx.AsyncClient(
            timeout=self._settings.paypal_timeout_seconds
        )
        self._token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    @property
    def base_url(self) -> str:
        return self._settings.paypal_base_url

    def _credentials(self) -> tuple[str, str]:
        client_id = self._settings.paypal_client_id.strip()
        client_secret = self._settings.paypal_client_secret.strip()
        if not client_id or not client_secret:
            raise ConfigurationError("PayPal client credentials are not configured")
        return client_id, client_secret

    async def get_access_token(self) -> str:
        """Exchange client credentials for a bearer token, reusing a cached one."""
        client_id, client_secret = self._credentials()
        async with self._token_lock:
            if self._token and time.monotonic() < self._token_expires_at:
                return self._token

            try:
                response = await self._client.post(
                    f"{self.base_url}/v1/oauth2/token",
                    auth=(client_id, client_secret),
                    data={"grant_type": "client_credentials"},
                    headers={"Accept": "application/json"},
                )
            except httpx.HTTPError as exc:
                raise AuthError(f"PayPal token request failed: {exc}") from exc

            if response.status_code >= 400:
                raise AuthError(
                    f"PayPal token request rejected ({response.status_code})",
                    status_code=response.status_code,
                )

            data = response.json()
            token = str(data.get("access_token") or "")
            if not token:
                raise AuthError(
                    "PayPal token response missing access_token",
                    status_code=response.status_code,
                )
            expires_in = int(data.get("expires_in") or 0)
            self._token = token
            self._token_expires_at = time.monotonic() + max(
                0, expires_in - TOKEN_EXPIRY_SKEW_SECONDS
            )
            logger.info("PayPal access token refreshed expires_in=%s", expires_in)
            return token

    def invalidate_token(self) -> None:
        self._token = None
        self._token_expires_at = 0.0

    async def verify_webhook_signature(
        self,
        webhook_event: dict[str, Any],
        metadata: TransmissionMetadata,
    ) -> bool:
        """Ask PayPal whether a webhook delivery is authentic.

        Returns False for anything other than an explicit ``SUCCESS``.
        Raises VerificationUnavailable on timeout and AuthError when no
        token can be obtained, so callers can ask PayPal to redeliver.
        Raises ConfigurationError when no webhook id is configured.
        """
        missing = metadata.missing()
        if missing:
            logger.warning("PayPal webhook missing headers: %s", ", ".join(missing))
            return False
        webhook_id = self._settings.paypal_webhook_id.strip()
        if not webhook_id:
            raise ConfigurationError("PAYPAL_WEBHOOK_ID is not configured")

        token = await self.get_access_token()
        payload = {
            "auth_algo": metadata.auth_algo,
            "cert_id": metadata.cert_id,
            "transmission_id": metadata.transmission_id,
            "transmission_sig": metadata.transmission_sig,
            "transmission_time": metadata.transmission_time,
            "webhook_id": webhook_id,
            "webhook_event": webhook_event,
        }
        try:
            response = await self._client.post(
                f"{self.base_url}/v1/notifications/verify-webhook-signature",
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.TimeoutException as exc:
            raise VerificationUnavailable("PayPal signature verification timed out") from exc
        except httpx.HTTPError as exc:
            logger.warning("PayPal signature verification request failed: %s", exc)
            return False

        if response.status_code >= 400:
            logger.warning(
                "PayPal signature verification returned %s", response.status_code
            )
            return False
        try:
            body = response.json()
        except ValueError:
            logger.warning("PayPal signature verification returned a non-JSON body")
            return False
        status = body.get("verification_status") if isinstance(body, dict) else None
        if status != VERIFICATION_SUCCESS:
            logger.warning("PayPal signature verification status: %s", status)
            return False
        return True

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        token = await self.get_access_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        url = f"{self.base_url}{path}"
        logger.info("PayPal request %s %s", method, path)
        try:
            response = await self._client.request(method, url, json=json, headers=headers)
        except httpx.HTTPError as exc:
            raise PayPalAPIError(f"PayPal request failed at {path}: {exc}") from exc

        if response.status_code == 401:
            # Token revoked or expired early; the next call fetches a fresh one.
            self.invalidate_token()
        if response.status_code >= 400:
            detail: object = response.text.strip()[:400]
            try:
                detail = response.json()
            except ValueError:
                pass
            raise PayPalAPIError(
                f"PayPal API request failed ({response.status_code}) at {path}",
                status_code=response.status_code,
                detail=detail,
            )
        if not response.content:
            return {}
        return response.json()

    async def create_product(self, product: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "/v1/catalogs/products", json=product)

    async def create_plan(self, plan: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "/v1/billing/plans", json=plan)

    async def get_plan(self, plan_id: str) -> dict[str, Any] | None:
        """Fetch a billing plan; None when PayPal does not know it."""
        try:
            return await self._request("GET", f"/v1/billing/plans/{plan_id}")
        except PayPalAPIError as exc:
            if exc.status_code in (400, 404):
                return None
            raise

    async def create_subscription(self, subscription: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "/v1/billing/subscriptions", json=subscription)

    async def get_subscription(self, subscription_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/v1/billing/subscriptions/{subscription_id}")

    async def update_subscription_plan(self, subscription_id: str, plan_id: str) -> None:
        """Point an existing subscription at another billing plan."""
        await self._request(
            "PATCH",
            f"/v1/billing/subscriptions/{subscription_id}",
            json=[{"op": "replace", "path": "/plan_id", "value": plan_id}],
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
