"""
Subscription lifecycle for a single subscribing user.

Builds Chargebee requests from the selected plan, add-ons and coupon, submits them
and mirrors the resulting subscription into local ``Subscription``/``AddOn`` rows.
"""
from __future__ import annotations

import base64
import binascii
import logging
from typing import Any, Iterable, Mapping

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, object_session

from chargebee_subscriptions.config import Settings, SubscriberConfig, get_settings
from chargebee_subscriptions.core.exceptions import (
    CheckoutIncompleteError,
    ConfigurationError,
    MissingPlanError,
    PersistenceError,
    RemoteServiceError,
    UserMismatchError,
    ValidationError,
)
from chargebee_subscriptions.integrations.chargebee import ChargebeeClient
from chargebee_subscriptions.models import AddOn, Subscription
from chargebee_subscriptions.schemas.subscription import (
    AddOnSelection,
    RemoteSubscription,
    SubscriptionResult,
)

logger = logging.getLogger(__name__)

COMPLETED_HOSTED_PAGE_STATES = ("succeeded", "acknowledged")


def encode_pass_thru(value: Any) -> str:
    return base64.b64encode(str(value).encode("utf-8")).decode("ascii")


def decode_pass_thru(value: str | None) -> str | None:
    if not value:
        return None
    try:
        return base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None


class Subscriber:
    """Creates, retrieves and modifies Chargebee subscriptions for one user."""

    def __init__(
        self,
        model: Any = None,
        plan: str | None = None,
        config: SubscriberConfig | Mapping[str, Any] | None = None,
        *,
        db: Session | None = None,
        client: ChargebeeClient | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.model = model
        self.plan = plan
        self.coupon_id: str | None = None
        self._add_ons: list[AddOnSelection] = []
        self._db = db

        if config is not None:
            self.config = SubscriberConfig.coerce(config)
        else:
            self.config = self.settings.subscriber_config()

        # Configured once; the client holds the site and key for its lifetime.
        self._owns_client = client is None
        self.client = client or ChargebeeClient.from_settings(self.settings)

    @property
    def db(self) -> Session:
        db = self._db
        if db is None and self.model is not None:
            db = object_session(self.model)
        if db is None:
            raise ConfigurationError("No database session available for the subscriber")
        return db

    @property
    def selected_add_ons(self) -> tuple[AddOnSelection, ...]:
        return tuple(self._add_ons)

    def set_plan(self, plan: str) -> "Subscriber":
        self.plan = plan
        return self

    def add_ons(self, entries: Iterable[Any]) -> "Subscriber":
        """Add several add-ons. The whole batch is rejected if one entry is invalid."""
        selections: list[AddOnSelection] = []
        for entry in entries:
            if isinstance(entry, AddOnSelection):
                selections.append(entry)
                continue
            if isinstance(entry, Mapping):
                addon_id, quantity = entry.get("id"), entry.get("quantity")
            else:
                addon_id, quantity = getattr(entry, "id", None), getattr(entry, "quantity", None)
            if addon_id is None or quantity is None:
                raise ValidationError(f"Add-on entries need both an id and a quantity: {entry!r}")
            try:
                selections.append(AddOnSelection(id=addon_id, quantity=quantity))
            except SchemaValidationError as exc:
                raise ValidationError(f"Invalid add-on {entry!r}: {exc}") from exc

        self._add_ons.extend(selections)
        return self

    def with_add_on(self, addon_id: str, quantity: int = 1) -> "Subscriber":
        return self.add_ons([{"id": addon_id, "quantity": quantity}])

    def coupon(self, coupon_id: str) -> "Subscriber":
        self.coupon_id = coupon_id
        return self

    def build_add_ons(self) -> list[dict[str, Any]] | None:
        if not self._add_ons:
            return None
        return [{"id": addon.id, "quantity": addon.quantity} for addon in self._add_ons]

    def build_subscription(self, card_token: str | None = None) -> dict[str, Any]:
        model = self._require_model()
        subscription: dict[str, Any] = {
            "plan_id": self.plan,
            "customer": {
                "first_name": model.first_name,
                "last_name": model.last_name,
                "email": model.email,
            },
            "addons": self.build_add_ons(),
            "coupon": self.coupon_id,
        }
        if card_token:
            subscription["card"] = {
                "gateway": self.settings.chargebee_gateway,
                "tmp_token": card_token,
            }
        return subscription

    def build_checkout(self, embed: bool = False) -> dict[str, Any]:
        model = self._require_model()
        if self.config is None:
            raise ConfigurationError("Redirect URLs are not configured for hosted checkout")

        item_price_ids = [self.plan] + [addon.id for addon in self._add_ons]
        quantities = [1] + [addon.quantity for addon in self._add_ons]
        data: dict[str, Any] = {
            "subscription_items": {
                "item_price_id": item_price_ids,
                "quantity": quantities,
            },
            "embed": embed,
            "redirect_url": self.config.redirect.success,
            "cancel_url": self.config.redirect.cancelled,
            "pass_thru_content": encode_pass_thru(model.id),
        }
        if self.coupon_id:
            data["coupon_ids"] = [self.coupon_id]
        return data

    async def create(self, card_token: str | None = None) -> Subscription:
        self._require_plan()
        model = self._require_model()

        result = await self.client.create_subscription(self.build_subscription(card_token))
        record = self._persist(model, result)
        logger.info("Created subscription %s on plan %s for user %s", record.subscription_id, record.plan_id, model.id)
        return record

    async def get_checkout_url(self, embed: bool = False) -> str:
        self._require_plan()
        page = await self.client.checkout_new_for_items(self.build_checkout(embed))
        if not page.url:
            raise RemoteServiceError(f"Hosted page {page.id} was returned without a URL")
        return page.url

    async def register_from_hosted_page(self, hosted_page_id: str) -> Subscription:
        """Store the subscription a user created through a hosted checkout page."""
        model = self._require_model()
        page = await self.client.retrieve_hosted_page(hosted_page_id)

        if decode_pass_thru(page.pass_thru_content) != str(model.id):
            raise UserMismatchError(
                "The user who performed the payment is not the user you are trying to attach the subscription to"
            )
        if page.state not in COMPLETED_HOSTED_PAGE_STATES:
            raise CheckoutIncompleteError(
                f"Hosted page {page.id} has not completed (state: {page.state})", state=page.state
            )

        subscription_id = page.subscription_id
        if not subscription_id:
            raise RemoteServiceError(f"Hosted page {page.id} does not reference a subscription")

        result = await self.client.retrieve_subscription(subscription_id)
        record = self._persist(model, result)
        logger.info("Registered subscription %s from hosted page %s for user %s", subscription_id, page.id, model.id)
        return record

    async def swap(self, subscription: Subscription | str, plan_id: str) -> RemoteSubscription:
        result = await self.client.update_subscription(self._remote_id(subscription), {"plan_id": plan_id})
        self._sync(subscription, result.subscription)
        logger.info("Swapped subscription %s to plan %s", result.subscription.id, plan_id)
        return result.subscription

    async def cancel(self, subscription: Subscription | str, cancel_immediately: bool = False) -> RemoteSubscription:
        # TODO: skip the request when the subscription is already cancelled locally.
        result = await self.client.cancel_subscription(
            self._remote_id(subscription), {"end_of_term": not cancel_immediately}
        )
        self._sync(subscription, result.subscription)
        logger.info(
            "Cancelled subscription %s (%s)",
            result.subscription.id,
            "immediately" if cancel_immediately else "end of term",
        )
        return result.subscription

    async def resume(self, subscription: Subscription | str) -> RemoteSubscription:
        result = await self.client.remove_scheduled_cancellation(self._remote_id(subscription))
        self._sync(subscription, result.subscription)
        logger.info("Removed scheduled cancellation for subscription %s", result.subscription.id)
        return result.subscription

    async def reactivate(self, subscription: Subscription | str) -> RemoteSubscription:
        result = await self.client.reactivate_subscription(self._remote_id(subscription))
        self._sync(subscription, result.subscription)
        logger.info("Reactivated subscription %s", result.subscription.id)
        return result.subscription

    async def close(self):
        if self._owns_client:
            await self.client.close()

    def _require_plan(self) -> str:
        if not self.plan:
            raise MissingPlanError("No plan was set to assign to the customer.")
        return self.plan

    def _require_model(self) -> Any:
        if self.model is None:
            raise ConfigurationError("No subscribing user was set on the subscriber")
        return self.model

    @staticmethod
    def _remote_id(subscription: Subscription | str) -> str:
        if isinstance(subscription, str):
            return subscription
        return subscription.subscription_id

    def _persist(self, model: Any, result: SubscriptionResult) -> Subscription:
        remote = result.subscription
        db = self.db
        try:
            record = Subscription(
                subscription_id=remote.id,
                plan_id=remote.resolved_plan_id or self.plan,
                next_billing_at=remote.current_term_end,
                trial_ends_at=remote.trial_end,
                quantity=remote.resolved_quantity,
                last_four=result.card.last4 if result.card else None,
                status=remote.status,
            )
            for addon in remote.resolved_addons:
                record.addons.append(AddOn(addon_id=addon.id, quantity=addon.quantity))
            model.subscriptions.append(record)
            db.add(record)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error(
                "Chargebee subscription %s exists but could not be stored locally: %s", remote.id, exc
            )
            raise PersistenceError(
                f"Subscription {remote.id} was created remotely but not stored locally",
                subscription_id=remote.id,
            ) from exc
        return record

    def _sync(self, subscription: Subscription | str, remote: RemoteSubscription) -> None:
        """Refresh a local record from the provider's view of it. Add-on rows are left alone."""
        if not isinstance(subscription, Subscription):
            return
        db = object_session(subscription)
        attached = db is not None
        if db is None:
            db = self._db
        if db is None and self.model is not None:
            db = object_session(self.model)
        if db is None:
            raise PersistenceError(
                f"Subscription {remote.id} changed remotely but no session is available to update it locally",
                subscription_id=remote.id,
            )

        try:
            if not attached:
                db.add(subscription)
            subscription.plan_id = remote.resolved_plan_id or subscription.plan_id
            subscription.quantity = remote.resolved_quantity
            subscription.next_billing_at = remote.current_term_end
            subscription.trial_ends_at = remote.trial_end
            subscription.status = remote.status
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Could not sync local subscription %s: %s", remote.id, exc)
            raise PersistenceError(
                f"Subscription {remote.id} changed remotely but the local record was not updated",
                subscription_id=remote.id,
            ) from exc
