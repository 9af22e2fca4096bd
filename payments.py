"""
Stripe checkout and webhook handling
"""

import logging
from typing import Any, Dict, Optional

import stripe

import config

logger = logging.getLogger(__name__)

PURCHASE_TYPE_SINGLE = "single"
PURCHASE_TYPE_PACK = "pack"


def build_checkout_params(
    base_url: str,
    email: str,
    image_id: Optional[str] = None,
    pack_type: Optional[str] = None
) -> Dict[str, Any]:
    """
    Build Stripe Checkout Session parameters for a single portrait or a pack

    Args:
        base_url: Site origin used for the success and cancel redirects
        email: Validated customer email
        image_id: Portrait being unlocked (single purchase)
        pack_type: Pack tag such as "2-pack" (pack purchase)
    """
    if pack_type:
        pack = config.PACK_TYPES[pack_type]
        amount = pack["amount"]
        product_data = {
            "name": config.PACK_PRODUCT_NAME,
            "description": config.PACK_PRODUCT_DESCRIPTION,
        }
        metadata = {
            "type": PURCHASE_TYPE_PACK,
            "packType": pack_type,
            "customerEmail": email,
        }
        success_url = f"{base_url}/success?type=pack&packType={pack_type}&session_id={{CHECKOUT_SESSION_ID}}"
        cancel_url = base_url
    else:
        amount = config.PRICE_AMOUNT
        product_data = {
            "name": config.PRODUCT_NAME,
            "description": config.PRODUCT_DESCRIPTION,
        }
        metadata = {
            "type": PURCHASE_TYPE_SINGLE,
            "imageId": image_id,
            "customerEmail": email,
        }
        success_url = f"{base_url}/success?imageId={image_id}&session_id={{CHECKOUT_SESSION_ID}}"
        cancel_url = base_url

    return {
        "mode": "payment",
        "payment_method_types": ["card"],
        "customer_email": email,
        "line_items": [
            {
                "price_data": {
                    "currency": config.CURRENCY,
                    "product_data": product_data,
                    "unit_amount": amount,
                },
                "quantity": 1,
            }
        ],
        "metadata": metadata,
        "success_url": success_url,
        "cancel_url": cancel_url,
    }


def create_checkout_session(
    base_url: str,
    email: str,
    image_id: Optional[str] = None,
    pack_type: Optional[str] = None
):
    """Create the Stripe Checkout Session. Stripe errors propagate to the caller."""
    checkout_params = build_checkout_params(base_url, email, image_id=image_id, pack_type=pack_type)
    checkout_session = stripe.checkout.Session.create(**checkout_params)
    logger.info(f"Created Stripe checkout session: {checkout_session.id}")
    return checkout_session


def verify_webhook_event(payload: bytes, sig_header: str, secret: str):
    """Verify the Stripe signature and return the event. Raises stripe.SignatureVerificationError."""
    return stripe.Webhook.construct_event(payload, sig_header, secret)


def handle_checkout_completed(session: Dict[str, Any], store) -> None:
    metadata = session.get("metadata") or {}
    purchase_type = metadata.get("type", PURCHASE_TYPE_SINGLE)
    customer_email = session.get("customer_email") or metadata.get("customerEmail")

    if purchase_type == PURCHASE_TYPE_PACK:
        # Pack credits live in the client ledger; nothing to unlock server side
        logger.info(f"✅ Pack purchase completed ({metadata.get('packType')}) for session {session.get('id')}")
        return

    image_id = metadata.get("imageId")
    if not image_id:
        logger.warning(f"⚠️ Checkout session {session.get('id')} has no imageId")
        return
    store.mark_paid(image_id, session.get("id"), customer_email)


def handle_checkout_expired(session: Dict[str, Any], store) -> None:
    metadata = session.get("metadata") or {}
    image_id = metadata.get("imageId")
    logger.info(f"Checkout session expired: {session.get('id')}")
    if image_id:
        store.mark_expired(image_id)


def handle_charge_refunded(charge: Dict[str, Any], store) -> None:
    logger.warning(f"⚠️ Charge refunded: {charge.get('id')} (payment intent {charge.get('payment_intent')})")


def handle_dispute_created(dispute: Dict[str, Any], store) -> None:
    logger.warning(f"⚠️ Dispute created: {dispute.get('id')} for charge {dispute.get('charge')}, reason: {dispute.get('reason')}")


def handle_payment_failed(payment_intent: Dict[str, Any], store) -> None:
    error = payment_intent.get("last_payment_error") or {}
    logger.warning(f"⚠️ Payment failed: {payment_intent.get('id')} - {error.get('message', 'unknown error')}")


WEBHOOK_HANDLERS = {
    "checkout.session.completed": handle_checkout_completed,
    "checkout.session.expired": handle_checkout_expired,
    "charge.refunded": handle_charge_refunded,
    "charge.dispute.created": handle_dispute_created,
    "payment_intent.payment_failed": handle_payment_failed,
}


def handle_webhook_event(event, store) -> None:
    """
    Dispatch a verified event. Processing errors are logged and swallowed so
    Stripe does not keep redelivering an event we cannot handle.
    """
    event_type = event["type"]
    event_data = event["data"]["object"]
    logger.info(f"Received Stripe webhook: {event_type}")

    handler = WEBHOOK_HANDLERS.get(event_type)
    if handler is None:
        logger.info(f"Unhandled webhook event type: {event_type}")
        return

    try:
        handler(event_data, store)
    except Exception as e:
        logger.error(f"❌ Error processing webhook {event_type}: {e}")
