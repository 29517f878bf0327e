"""
Stripe Service - subscription sync and plan changes over the Stripe REST API
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import List, Optional

import requests
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..exceptions import ConfigurationError, PaymentProviderError
from ..models.center import TutorialCenter
from ..utils.helpers import isoformat_utc, utcnow
from .audit_service import record_audit
from .subscription_limits import DEFAULT_TIER, TIER_ORDER, normalize_tier, tier_rank, validate_downgrade

logger = logging.getLogger(__name__)

# Stripe subscription status -> center subscription_status
STATUS_MAP = {
    "active": "active",
    "past_due": "past_due",
    "unpaid": "unpaid",
    "canceled": "cancelled",
    "incomplete": "incomplete",
    "incomplete_expired": "expired",
    "trialing": "trialing",
    "paused": "paused",
}


def map_subscription_status(stripe_status: Optional[str]) -> str:
    return STATUS_MAP.get(stripe_status, "inactive")


def tier_from_product_name(name: Optional[str]) -> Optional[str]:
    lowered = (name or "").lower()
    for tier in TIER_ORDER:
        if tier in lowered:
            return tier
    return None


class StripeClient:
    """Minimal form-encoded Stripe REST client"""

    def __init__(self, secret_key: Optional[str] = None, api_url: Optional[str] = None, timeout: Optional[float] = None):
        self.secret_key = secret_key if secret_key is not None else settings.STRIPE_SECRET_KEY
        self.api_url = (api_url or settings.STRIPE_API_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self.session = requests.Session()

    def _request(self, method: str, path: str, params: Optional[dict] = None, data: Optional[dict] = None) -> dict:
        if not self.secret_key:
            raise ConfigurationError("STRIPE_SECRET_KEY is not configured")

        try:
            response = self.session.request(
                method,
                f"{self.api_url}{path}",
                params=params,
                data=data,
                auth=(self.secret_key, ""),
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"Stripe request {method} {path} failed: {e}")
            raise PaymentProviderError("Payment processor unreachable") from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        if not response.ok:
            message = (body.get("error") or {}).get("message") or response.text[:200]
            logger.error(f"Stripe API error {response.status_code} on {method} {path}: {message}")
            raise PaymentProviderError(f"Stripe error: {message}", {"status": response.status_code})

        return body

    def list_customers(self, email: str, limit: int = 1) -> List[dict]:
        return self._request("GET", "/customers", params={"email": email, "limit": limit}).get("data", [])

    def list_subscriptions(self, customer_id: str, status: str = "active", limit: int = 10) -> List[dict]:
        params = {"customer": customer_id, "status": status, "limit": limit}
        return self._request("GET", "/subscriptions", params=params).get("data", [])

    def retrieve_subscription(self, subscription_id: str) -> dict:
        return self._request("GET", f"/subscriptions/{subscription_id}")

    def retrieve_product(self, product_id: str) -> dict:
        return self._request("GET", f"/products/{product_id}")

    def update_subscription_price(self, subscription_id: str, item_id: str, price_id: str) -> dict:
        data = {
            "items[0][id]": item_id,
            "items[0][price]": price_id,
            "proration_behavior": "create_prorations",
        }
        return self._request("POST", f"/subscriptions/{subscription_id}", data=data)


@lru_cache()
def get_stripe_client() -> StripeClient:
    return StripeClient()


@dataclass
class SyncResult:
    synced: bool
    status: Optional[str] = None
    plan: Optional[str] = None
    current_period_end: Optional[datetime] = None
    message: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"synced": self.synced}
        if self.message:
            data["message"] = self.message
        if self.status:
            data["subscription"] = {
                "status": self.status,
                "plan": self.plan,
                "currentPeriodEnd": isoformat_utc(self.current_period_end),
            }
        return data


def _first_item(subscription: dict) -> dict:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def _period_end(subscription: dict) -> Optional[datetime]:
    # Newer API versions report the period on the subscription item
    timestamp = subscription.get("current_period_end") or _first_item(subscription).get("current_period_end")
    if not timestamp:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def resolve_plan(subscription: dict, client: StripeClient) -> str:
    """
    Plan tier for a subscription.

    Known price ids map directly. Otherwise the product name is matched
    against the tier names; failing that the plan stays on the default tier.
    """
    price = _first_item(subscription).get("price") or {}
    price_id = price.get("id")

    tier = settings.price_tier_map.get(price_id)
    if tier:
        return tier

    product_id = price.get("product")
    if isinstance(product_id, dict):
        product_id = product_id.get("id")

    if product_id:
        try:
            product = client.retrieve_product(product_id)
        except PaymentProviderError as e:
            logger.warning(f"Could not fetch product {product_id}: {e}")
        else:
            tier = tier_from_product_name(product.get("name"))
            if tier:
                logger.warning(f"Unrecognized price {price_id}; plan {tier} matched from product name {product.get('name')!r}")
                return tier

    logger.warning(f"Unrecognized price {price_id}; keeping default plan {DEFAULT_TIER}")
    return DEFAULT_TIER


def sync_subscription(db: Session, center: TutorialCenter, client: StripeClient) -> SyncResult:
    """
    Pull the center's subscription state from Stripe onto the center row.

    Raises PaymentProviderError / ConfigurationError from the client.
    """
    customer_id = center.stripe_customer_id
    if not customer_id and center.email:
        customers = client.list_customers(center.email, limit=1)
        if customers:
            customer_id = customers[0]["id"]

    if not customer_id:
        return SyncResult(synced=False, message="No Stripe customer found. Please complete a checkout first.")

    subscriptions = client.list_subscriptions(customer_id, status="active")
    if not subscriptions:
        subscriptions = client.list_subscriptions(customer_id, status="all")
        if not subscriptions:
            return SyncResult(synced=True, message="No subscriptions found")

    subscription = max(subscriptions, key=lambda sub: sub.get("created") or 0)
    plan = resolve_plan(subscription, client)
    status = map_subscription_status(subscription.get("status"))
    period_end = _period_end(subscription)

    logger.info(f"Syncing subscription for center {center.id}: plan={plan}, status={status}")

    try:
        center.stripe_customer_id = customer_id
        center.stripe_subscription_id = subscription.get("id")
        center.subscription_status = status
        center.subscription_tier = plan
        center.current_period_end = period_end
        center.cancel_at_period_end = bool(subscription.get("cancel_at_period_end"))
        center.updated_at = utcnow()
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    return SyncResult(synced=True, status=status, plan=plan, current_period_end=period_end)


def request_downgrade(
    db: Session,
    center: TutorialCenter,
    target_tier: str,
    client: StripeClient,
    requested_by: Optional[str] = None
) -> dict:
    """
    Move the center to a lower tier.

    Staff ceilings are checked first; a blocked downgrade changes nothing.

    Raises:
        ValueError: not a downgrade, or no subscription to change
        DowngradeBlockedError: too many active staff for the target tier
        ConfigurationError: target tier has no configured price
        PaymentProviderError: Stripe rejected the change
    """
    current_tier = normalize_tier(center.subscription_tier)
    if target_tier not in TIER_ORDER:
        raise ValueError(f"Invalid tier: {target_tier}")
    if tier_rank(target_tier) >= tier_rank(current_tier):
        raise ValueError("Target tier must be lower than the current tier")

    validate_downgrade(db, center.id, target_tier)

    if not center.stripe_subscription_id:
        raise ValueError("No subscription to change. Please sync your subscription first.")

    price_id = {tier: price for price, tier in settings.price_tier_map.items()}.get(target_tier)
    if not price_id:
        raise ConfigurationError(f"No Stripe price configured for the {target_tier} plan")

    subscription = client.retrieve_subscription(center.stripe_subscription_id)
    item_id = _first_item(subscription).get("id")
    if not item_id:
        raise PaymentProviderError("Subscription has no items to update")

    subscription_id = center.stripe_subscription_id
    center_id = center.id
    client.update_subscription_price(subscription_id, item_id, price_id)

    try:
        center.subscription_tier = target_tier
        center.updated_at = utcnow()
        record_audit(
            db,
            action="downgrade_subscription",
            entity_type="tutorial_center",
            entity_id=center.id,
            center_id=center.id,
            user_id=requested_by,
            old_values={"subscription_tier": current_tier},
            new_values={"subscription_tier": target_tier}
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        # Stripe already bills the lower price; the next sync repairs the stored tier
        logger.error(
            f"Stripe subscription {subscription_id} moved to the {target_tier} price but center "
            f"{center_id} still records {current_tier}: {e}"
        )
        raise

    logger.info(f"Center {center_id} downgraded from {current_tier} to {target_tier}")
    return {"previousTier": current_tier, "tier": target_tier}
