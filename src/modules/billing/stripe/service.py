"""Stripe checkout for point packages and the webhook that credits them."""

import stripe  # type: ignore
from stripe import StripeError  # type: ignore

from src.core.base import BaseService
from src.modules.billing.constants import (
    POINT_PACKAGES,
    PointPackage,
    PointPackageConfig,
    StripeProductType,
)
from src.modules.billing.points.service import CreditResult, PointsService
from src.utils.settings.stripe import StripeSettings


class StripePaymentService(BaseService):
    def __init__(self, db, settings: StripeSettings | None = None):
        super().__init__(db)
        self.settings = settings or StripeSettings()
        stripe.api_key = self.settings.STRIPE_SECRET_KEY.get_secret_value()
        self.points_service = PointsService(db)

    def get_package_config(self, package: PointPackage | str) -> PointPackageConfig:
        """Raises ValueError for an unknown package name."""
        return POINT_PACKAGES[PointPackage(package)]

    async def create_checkout_session(
        self,
        user_id: str,
        package: PointPackage,
        customer_email: str | None = None,
        success_url: str | None = None,
        cancel_url: str | None = None,
    ) -> stripe.checkout.Session:
        config = self.get_package_config(package)
        try:
            checkout_session = stripe.checkout.Session.create(
                payment_method_types=["card"],
                line_items=[{"price": config.price_id, "quantity": 1}],
                mode="payment",
                success_url=success_url or self.settings.CHECKOUT_SUCCESS_URL,
                cancel_url=cancel_url or self.settings.CHECKOUT_CANCEL_URL,
                customer_email=customer_email,
                client_reference_id=user_id,
                metadata={
                    "user_id": user_id,
                    "points": str(config.total_points),
                    "package": package.value,
                    "product_type": StripeProductType.POINTS_PACKAGE.value,
                },
            )
        except StripeError as e:
            raise ValueError(f"Failed to create checkout session: {e}")

        self.logger.info(
            "Created checkout session",
            user_id=user_id,
            package=package.value,
            session_id=checkout_session.id,
        )
        return checkout_session

    def validate_webhook_signature(self, payload: bytes, signature: str) -> dict:
        try:
            event = stripe.Webhook.construct_event(
                payload,
                signature,
                self.settings.STRIPE_WEBHOOK_SECRET,
            )
            return event
        except (ValueError, stripe.SignatureVerificationError):
            raise ValueError("Invalid webhook data")

    async def handle_webhook_event(self, event: dict) -> bool:
        """Dispatch a verified event. Returns False for event types we ignore.

        Handler failures propagate so the endpoint answers with an error and
        Stripe redelivers the event.
        """
        event_type = event["type"]
        data = event["data"]["object"]

        webhook_handlers = {
            "checkout.session.completed": self._handle_checkout_completed,
            "checkout.session.async_payment_succeeded": self._handle_checkout_completed,
        }

        handler = webhook_handlers.get(event_type)
        if not handler:
            return False

        await handler(data)
        return True

    async def _handle_checkout_completed(self, session_data: dict) -> CreditResult | None:
        """Credit the purchased points once per checkout session."""
        session_id = session_data.get("id")
        if session_data.get("payment_status") != "paid":
            self.logger.info(
                "Checkout not paid yet, waiting for async payment",
                session_id=session_id,
                payment_status=session_data.get("payment_status"),
            )
            return None

        metadata = session_data.get("metadata") or {}
        user_id = metadata.get("user_id") or session_data.get("client_reference_id")
        if not user_id:
            self.logger.warning("No user_id in checkout session", session_id=session_id)
            return None

        points = self._resolve_points(metadata)
        if points <= 0:
            self.logger.error(
                "Checkout session carries no points",
                session_id=session_id,
                metadata=metadata,
            )
            return None

        # The account exists since checkout; a missing one is a data fault
        return await self.points_service.credit(
            user_id,
            points,
            f"Purchase: {metadata.get('package') or 'points'} ({points} points)",
            idempotency_key=session_id,
            metadata={
                "package": metadata.get("package"),
                "amount_total": session_data.get("amount_total"),
                "currency": session_data.get("currency"),
                "payment_intent": session_data.get("payment_intent"),
            },
        )

    def _resolve_points(self, metadata: dict) -> int:
        package = metadata.get("package")
        if package:
            try:
                return self.get_package_config(package).total_points
            except ValueError:
                self.logger.warning("Unknown package in metadata", package=package)
        try:
            return int(metadata.get("points") or 0)
        except (TypeError, ValueError):
            return 0
