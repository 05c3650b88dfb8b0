"""Stripe checkout and webhook endpoints."""

from fastapi import APIRouter, Request, status

from src.api.core.constants import MAX_WEBHOOK_PAYLOAD_BYTES
from src.api.core.dependencies import CurrentUserAuthDep, StripePaymentServiceDep
from src.api.core.exceptions.base import FactCheckException
from src.api.core.messages import APIResponse, MessageCode
from src.api.points.schemas import CheckoutSessionRequest, CheckoutSessionResponse
from src.modules.billing.constants import PointPackage
from src.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])
webhook_router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/checkout", response_model=APIResponse[CheckoutSessionResponse])
async def create_checkout_session(
    request_data: CheckoutSessionRequest,
    current_user: CurrentUserAuthDep,
    stripe_service: StripePaymentServiceDep,
) -> APIResponse[CheckoutSessionResponse]:
    """Create a Stripe checkout session for a point package."""
    try:
        package = PointPackage(request_data.package)
    except ValueError:
        raise FactCheckException(
            MessageCode.PACKAGE_NOT_FOUND,
            status.HTTP_404_NOT_FOUND,
            details={
                "package": request_data.package,
                "available": [p.value for p in PointPackage],
            },
        )

    await stripe_service.points_service.ensure_account(
        current_user.user_id, current_user.email
    )
    try:
        checkout_session = await stripe_service.create_checkout_session(
            user_id=current_user.user_id,
            package=package,
            customer_email=current_user.email,
            success_url=request_data.success_url,
            cancel_url=request_data.cancel_url,
        )
    except ValueError as e:
        logger.error(f"Checkout session creation failed: {e}")
        raise FactCheckException(
            MessageCode.CHECKOUT_FAILED, status.HTTP_502_BAD_GATEWAY
        )

    return APIResponse.success(
        message_code=MessageCode.CREATED,
        data=CheckoutSessionResponse(
            session_id=checkout_session.id, url=checkout_session.url
        ),
    )


@webhook_router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_service: StripePaymentServiceDep,
):
    """Verify and apply a Stripe event."""
    payload = await request.body()

    if not payload:
        raise FactCheckException(
            MessageCode.BAD_REQUEST,
            status.HTTP_400_BAD_REQUEST,
            details={"description": "Empty webhook payload"},
        )

    if len(payload) > MAX_WEBHOOK_PAYLOAD_BYTES:
        raise FactCheckException(
            MessageCode.BAD_REQUEST,
            status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            details={"description": "Webhook payload too large"},
        )

    signature = request.headers.get("stripe-signature")
    if not signature:
        raise FactCheckException(
            MessageCode.BAD_REQUEST,
            status.HTTP_400_BAD_REQUEST,
            details={"description": "Missing stripe-signature header"},
        )

    if not signature.startswith("t=") or ",v" not in signature:
        raise FactCheckException(
            MessageCode.BAD_REQUEST,
            status.HTTP_400_BAD_REQUEST,
            details={"description": "Invalid stripe-signature format"},
        )

    try:
        # Includes Stripe's timestamp tolerance check
        event = stripe_service.validate_webhook_signature(payload, signature)
    except ValueError as e:
        logger.warning(f"Webhook validation error: {e}")
        raise FactCheckException(
            MessageCode.BAD_REQUEST,
            status.HTTP_400_BAD_REQUEST,
            details={"description": "Invalid webhook data"},
        )

    try:
        handled = await stripe_service.handle_webhook_event(event)
    except Exception as e:
        # A non-2xx answer makes Stripe redeliver; crediting is idempotent
        logger.error(
            "Webhook processing error",
            event_type=event["type"],
            event_id=event.get("id"),
            error=str(e),
            exception_type=type(e).__name__,
        )
        raise FactCheckException(
            MessageCode.INTERNAL_ERROR, status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    if handled:
        logger.info(f"Successfully processed webhook event: {event['type']}")
        return {"status": "success"}

    logger.debug(f"Webhook event not handled: {event['type']}")
    return {"status": "ignored"}
