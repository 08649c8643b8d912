from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional
from urllib.parse import quote

import httpx
from pydantic import ValidationError as SchemaValidationError

from chargebee_subscriptions.config import Settings, get_settings
from chargebee_subscriptions.core.exceptions import ConfigurationError, RemoteServiceError
from chargebee_subscriptions.schemas.subscription import HostedPage, SubscriptionResult

logger = logging.getLogger(__name__)


def _encode(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def serialize(params: Mapping[str, Any], prefix: Optional[str] = None) -> Dict[str, str]:
    """Flatten nested params into Chargebee's form keys, e.g. ``addons[id][0]``."""
    flat: Dict[str, str] = {}
    for key, value in params.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, Mapping):
            flat.update(serialize(value, name))
        elif isinstance(value, (list, tuple)):
            for index, item in enumerate(value):
                if isinstance(item, Mapping):
                    for sub_key, sub_value in item.items():
                        if sub_value is not None:
                            flat[f"{name}[{sub_key}][{index}]"] = _encode(sub_value)
                elif item is not None:
                    flat[f"{name}[{index}]"] = _encode(item)
        else:
            flat[name] = _encode(value)
    return flat


class ChargebeeClient:
    """Chargebee v2 REST client for subscriptions and hosted pages."""

    def __init__(
        self,
        site: str,
        api_key: str,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not site or not api_key:
            raise ConfigurationError("CHARGEBEE_SITE and CHARGEBEE_KEY must be configured")
        self.site = site
        self.base_url = f"https://{site}.chargebee.com/api/v2"
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            auth=(api_key, ""),
            headers={"Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **kwargs: Any) -> "ChargebeeClient":
        settings = settings or get_settings()
        return cls(
            settings.chargebee_site,
            settings.chargebee_key.get_secret_value(),
            timeout=kwargs.pop("timeout", settings.chargebee_timeout),
            **kwargs,
        )

    async def create_subscription(self, params: Mapping[str, Any]) -> SubscriptionResult:
        data = await self._request("POST", "/subscriptions", params)
        return self._subscription_result(data)

    async def retrieve_subscription(self, subscription_id: str) -> SubscriptionResult:
        data = await self._request("GET", f"/subscriptions/{quote(subscription_id, safe='')}")
        return self._subscription_result(data)

    async def update_subscription(
        self, subscription_id: str, params: Mapping[str, Any]
    ) -> SubscriptionResult:
        data = await self._request("POST", f"/subscriptions/{quote(subscription_id, safe='')}", params)
        return self._subscription_result(data)

    async def cancel_subscription(
        self, subscription_id: str, params: Optional[Mapping[str, Any]] = None
    ) -> SubscriptionResult:
        data = await self._request(
            "POST", f"/subscriptions/{quote(subscription_id, safe='')}/cancel", params
        )
        return self._subscription_result(data)

    async def reactivate_subscription(
        self, subscription_id: str, params: Optional[Mapping[str, Any]] = None
    ) -> SubscriptionResult:
        data = await self._request(
            "POST", f"/subscriptions/{quote(subscription_id, safe='')}/reactivate", params
        )
        return self._subscription_result(data)

    async def remove_scheduled_cancellation(self, subscription_id: str) -> SubscriptionResult:
        data = await self._request(
            "POST",
            f"/subscriptions/{quote(subscription_id, safe='')}/remove_scheduled_cancellation",
        )
        return self._subscription_result(data)

    async def checkout_new_for_items(self, params: Mapping[str, Any]) -> HostedPage:
        data = await self._request("POST", "/hosted_pages/checkout_new_for_items", params)
        return self._hosted_page(data)

    async def retrieve_hosted_page(self, hosted_page_id: str) -> HostedPage:
        data = await self._request("GET", f"/hosted_pages/{quote(hosted_page_id, safe='')}")
        return self._hosted_page(data)

    async def _request(
        self, method: str, path: str, params: Optional[Mapping[str, Any]] = None
    ) -> Dict[str, Any]:
        form = serialize(params) if params else None
        try:
            if method == "GET":
                response = await self.client.get(path, params=form)
            else:
                response = await self.client.post(path, data=form)
        except httpx.HTTPError as exc:
            logger.error("Chargebee %s %s failed: %s", method, path, exc)
            raise RemoteServiceError(f"Chargebee request failed: {exc}") from exc

        if response.status_code >= 400:
            raise self._error_from_response(method, path, response)

        try:
            return response.json()
        except ValueError as exc:
            raise RemoteServiceError(
                "Chargebee returned a non-JSON response", status_code=response.status_code
            ) from exc

    def _error_from_response(self, method: str, path: str, response: httpx.Response) -> RemoteServiceError:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        message = body.get("message") or response.text or f"HTTP {response.status_code}"
        logger.error(
            "Chargebee %s %s returned %s (%s): %s",
            method,
            path,
            response.status_code,
            body.get("api_error_code"),
            message,
        )
        return RemoteServiceError(
            message,
            status_code=response.status_code,
            api_error_code=body.get("api_error_code"),
            error_type=body.get("type"),
        )

    @staticmethod
    def _subscription_result(data: Any) -> SubscriptionResult:
        if not isinstance(data, dict) or not data.get("subscription"):
            raise RemoteServiceError("Chargebee response is missing the subscription resource")
        try:
            return SubscriptionResult.model_validate(data)
        except SchemaValidationError as exc:
            raise RemoteServiceError(f"Unexpected subscription payload: {exc}") from exc

    @staticmethod
    def _hosted_page(data: Any) -> HostedPage:
        page = data.get("hosted_page") if isinstance(data, dict) else None
        if not page:
            raise RemoteServiceError("Chargebee response is missing the hosted_page resource")
        try:
            return HostedPage.model_validate(page)
        except SchemaValidationError as exc:
            raise RemoteServiceError(f"Unexpected hosted page payload: {exc}") from exc

    async def close(self):
        await self.client.aclose()
