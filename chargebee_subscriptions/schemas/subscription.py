from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _from_timestamp(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return value


class AddOnSelection(BaseModel):
    id: str = Field(min_length=1)
    quantity: int = Field(default=1, ge=1)


class RemoteAddOn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    quantity: int = 1


class RemoteCard(BaseModel):
    model_config = ConfigDict(extra="ignore")

    last4: str | None = None
    card_type: str | None = None
    status: str | None = None


class RemoteSubscriptionItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    item_price_id: str
    item_type: str | None = None
    quantity: int = 1


class RemoteSubscription(BaseModel):
    """Subscription resource as returned by Chargebee (only the fields we mirror).

    Subscriptions created through item based checkouts carry ``subscription_items``
    instead of ``plan_id``/``addons``; the ``resolved_*`` helpers read either shape.
    """

    model_config = ConfigDict(extra="allow")

    id: str
    plan_id: str | None = None
    status: str | None = None
    plan_quantity: int | None = None
    current_term_end: datetime | None = None
    trial_end: datetime | None = None
    cancelled_at: datetime | None = None
    addons: list[RemoteAddOn] = Field(default_factory=list)
    subscription_items: list[RemoteSubscriptionItem] = Field(default_factory=list)

    @field_validator("current_term_end", "trial_end", "cancelled_at", mode="before")
    @classmethod
    def parse_timestamp(cls, value: Any) -> Any:
        """Chargebee sends unix timestamps in seconds."""
        return _from_timestamp(value)

    @field_validator("addons", "subscription_items", mode="before")
    @classmethod
    def default_list(cls, value: Any) -> Any:
        return value or []

    def _plan_item(self) -> RemoteSubscriptionItem | None:
        for item in self.subscription_items:
            if item.item_type == "plan":
                return item
        return None

    @property
    def resolved_plan_id(self) -> str | None:
        if self.plan_id:
            return self.plan_id
        item = self._plan_item()
        return item.item_price_id if item else None

    @property
    def resolved_quantity(self) -> int:
        if self.plan_quantity is not None:
            return self.plan_quantity
        item = self._plan_item()
        return item.quantity if item else 1

    @property
    def resolved_addons(self) -> list[RemoteAddOn]:
        if self.addons:
            return list(self.addons)
        return [
            RemoteAddOn(id=item.item_price_id, quantity=item.quantity)
            for item in self.subscription_items
            if item.item_type == "addon"
        ]


class SubscriptionResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    subscription: RemoteSubscription
    card: RemoteCard | None = None


class HostedPage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    type: str | None = None
    url: str | None = None
    state: str | None = None
    embed: bool | None = None
    pass_thru_content: str | None = None
    content: dict[str, Any] = Field(default_factory=dict)

    @field_validator("content", mode="before")
    @classmethod
    def default_content(cls, value: Any) -> Any:
        return value or {}

    @property
    def subscription_id(self) -> str | None:
        subscription = self.content.get("subscription") or {}
        return subscription.get("id")
