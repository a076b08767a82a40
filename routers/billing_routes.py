from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Optional

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from database import get_db
from models.subscription import Subscription
from models.user import User
from services.supabase_auth import get_current_db_user, get_optional_db_user

logger = logging.getLogger(__name__)

router = APIRouter()
stripe.api_key = os.environ.get("STRIPE_SECRET_KEY")

SITE_URL = os.environ.get("SITE_URL", "http://localhost:3000").rstrip("/")
APP_URL = os.environ.get("APP_URL", SITE_URL).rstrip("/")
WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")


# amounts in cents
PRICE_CONFIG = {
    "monthly": {"amount": 30 * 100, "interval": "month", "interval_count": 1},
    "annual": {"amount": 300 * 100, "interval": "year", "interval_count": 1},
    "supporter": {"amount": 3000 * 100, "interval": "year", "interval_count": 5},
}

PRODUCT_CONFIG = {
    "monthly": {"name": "Monthly", "description": "Essential relationship intelligence tools"},
    "annual": {"name": "Annual", "description": "Complete professional relationship system"},
    "supporter": {
        "name": "Supporter",
        "description": "Direct creator access + gratitude for supporting the vision",
    },
}


def build_line_item(price_type: str) -> dict:
    price = PRICE_CONFIG[price_type]
    product = PRODUCT_CONFIG[price_type]
    return {
        "price_data": {
            "currency": "usd",
            "product_data": {"name": product["name"], "description": product["description"]},
            "unit_amount": price["amount"],
            "recurring": {"interval": price["interval"], "interval_count": price["interval_count"]},
        },
        "quantity": 1,
    }


class CheckoutIn(BaseModel):
    priceType: str


class CheckoutOut(BaseModel):
    sessionId: str
    url: Optional[str] = None


@router.post("/create-checkout-session", response_model=CheckoutOut)
def create_checkout_session(
    payload: CheckoutIn,
    user: Optional[User] = Depends(get_optional_db_user),
):
    price_type = (payload.priceType or "").strip()
    if not price_type:
        raise HTTPException(400, detail="Missing priceType parameter")
    if price_type not in PRICE_CONFIG:
        raise HTTPException(400, detail="Invalid price type")

    metadata = {"priceType": price_type, "planName": f"Cultivate HQ - {price_type}"}
    subscription_metadata = {"priceType": price_type}
    params: dict = {
        "payment_method_types": ["card"],
        "line_items": [build_line_item(price_type)],
        "mode": "subscription",
        "success_url": f"{SITE_URL}/success?session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{SITE_URL}/pricing",
        "allow_promotion_codes": True,
    }
    if user is not None:
        params["customer_email"] = user.email
        metadata["userId"] = user.id
        subscription_metadata["userId"] = user.id
    params["metadata"] = metadata
    params["subscription_data"] = {"metadata": subscription_metadata}

    try:
        session = stripe.checkout.Session.create(**params)
    except stripe.StripeError:
        logger.exception("checkout_session_failed price_type=%s user_id=%s", price_type, getattr(user, "id", None))
        raise HTTPException(500, detail="Failed to create checkout session")

    logger.info("checkout_session_created price_type=%s user_id=%s", price_type, getattr(user, "id", None))
    return CheckoutOut(sessionId=session["id"], url=session["url"])


class PortalOut(BaseModel):
    url: str


@router.post("/create-portal-session", response_model=PortalOut)
def create_portal_session(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_db_user),
):
    row = db.query(Subscription).filter_by(user_id=user.id).first()
    if not row or not row.stripe_customer_id:
        raise HTTPException(404, detail="No active subscription found")

    try:
        session = stripe.billing_portal.Session.create(
            customer=row.stripe_customer_id,
            return_url=f"{APP_URL}/dashboard/settings",
        )
    except stripe.StripeError:
        logger.exception("portal_session_failed user_id=%s", user.id)
        raise HTTPException(500, detail="Failed to create billing portal session")

    logger.info("portal_session_created user_id=%s", user.id)
    return {"url": session["url"]}


# ─── Webhook ──────────────────────────────────────────────────


def _subscription_id(obj) -> Optional[str]:
    sub = obj.get("subscription")
    if isinstance(sub, str):
        return sub
    if sub:
        return sub.get("id")
    return None


def _handle_checkout_completed(db: Session, session_obj) -> None:
    metadata = session_obj.get("metadata") or {}
    user_id = metadata.get("userId")
    if not user_id or db.get(User, user_id) is None:
        logger.warning("stripe_checkout_without_user session_id=%s", session_obj.get("id"))
        return

    row = db.query(Subscription).filter_by(user_id=user_id).first()
    if row is None:
        row = Subscription(user_id=user_id)
        db.add(row)
    row.stripe_subscription_id = _subscription_id(session_obj)
    row.stripe_customer_id = session_obj.get("customer")
    row.status = "active"
    row.plan_type = metadata.get("priceType") if metadata.get("priceType") in PRICE_CONFIG else "monthly"
    db.commit()
    logger.info("stripe_subscription_created user_id=%s plan=%s", user_id, row.plan_type)


def _update_by_subscription_id(db: Session, stripe_sub_id: Optional[str], **fields) -> bool:
    if not stripe_sub_id:
        return False
    row = db.query(Subscription).filter_by(stripe_subscription_id=stripe_sub_id).first()
    if row is None:
        logger.info("stripe_subscription_unknown sub_id=%s", stripe_sub_id)
        return False
    for key, value in fields.items():
        setattr(row, key, value)
    db.commit()
    return True


# Webhook: no auth, Stripe signature instead
@router.post("/webhook")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    if not WEBHOOK_SECRET:
        raise HTTPException(500, detail="STRIPE_WEBHOOK_SECRET missing")

    payload = await request.body()
    sig = request.headers.get("stripe-signature")
    if not sig:
        raise HTTPException(400, detail="Invalid signature")

    try:
        event = stripe.Webhook.construct_event(payload, sig, WEBHOOK_SECRET)
    except (ValueError, stripe.SignatureVerificationError):
        logger.warning("stripe_webhook_signature_invalid")
        raise HTTPException(400, detail="Invalid signature")

    event_type = event["type"]
    obj = event["data"]["object"]

    if event_type == "checkout.session.completed":
        _handle_checkout_completed(db, obj)
    elif event_type == "customer.subscription.updated":
        _update_by_subscription_id(db, obj.get("id"), status=obj.get("status") or "active")
    elif event_type == "customer.subscription.deleted":
        _update_by_subscription_id(db, obj.get("id"), status="canceled")
    elif event_type == "invoice.payment_succeeded":
        _update_by_subscription_id(db, _subscription_id(obj), last_payment_date=datetime.now(timezone.utc))
    elif event_type == "invoice.payment_failed":
        _update_by_subscription_id(db, _subscription_id(obj), status="past_due")
    else:
        logger.info("stripe_webhook_unhandled type=%s", event_type)

    logger.info("stripe_webhook_processed type=%s", event_type)
    return {"received": True}
