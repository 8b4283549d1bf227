"""HTTP views for the orders app.

Views are kept small: they validate requests (via Pydantic), map them to
domain inputs, delegate to the ``OrderService`` returned by
``get_order_service()`` and render the result.

Business-rule failures (``OrderError``) are rendered as
``{"detail": CODE, "message": ..., **context}`` with the status from
``ERROR_STATUS``. Database and upstream failures become 503
``SERVICE_UNAVAILABLE`` so clients can tell "retry later" apart from a
permanent rejection.

Idempotency: when an ``Idempotency-Key`` header is sent with a checkout, the
first successful response is stored and replayed for retries with the same
payload (``Idempotent-Replay: true``). Reusing the key with a different
payload returns 409.
"""

import hmac
import logging
from dataclasses import asdict

from django.conf import settings
from django.core.paginator import Paginator
from django.db import DatabaseError, transaction
from pydantic import ValidationError
from rest_framework import status
from rest_framework.permissions import BasePermission
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from .domain import Order, OrderError, OrderNotFound, ServiceUnavailable
from .idempotency import finalize, get_or_create_idempotent
from .providers import get_order_service
from .repository import OrderRepository, to_domain
from .schemas import (
    CreateOrderDTO,
    OrderReadDTO,
    TrackingReadDTO,
    UpdateOrderStatusDTO,
    UpdatePaymentStatusDTO,
    ValidateCouponDTO,
    ValidateStockDTO,
)

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "PRODUCT_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "ORDER_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "INVALID_TRANSITION": status.HTTP_409_CONFLICT,
    "CONCURRENT_UPDATE": status.HTTP_409_CONFLICT,
    "IDEMPOTENCY_CONFLICT": status.HTTP_409_CONFLICT,
    "INSUFFICIENT_STOCK": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "PRODUCT_UNAVAILABLE": status.HTTP_422_UNPROCESSABLE_ENTITY,
}
UNAVAILABLE_ERRORS = (ServiceUnavailable, DatabaseError)
MAX_PAGE_SIZE = 100


def error_response(exc: OrderError) -> Response:
    return Response(exc.as_dict(), status=ERROR_STATUS.get(str(exc), status.HTTP_400_BAD_REQUEST))


def unavailable_response(exc: Exception) -> Response:
    logger.error("dependency unavailable", exc_info=exc)
    return Response(
        {"detail": "SERVICE_UNAVAILABLE", "message": "Service temporarily unavailable, retry later"},
        status=status.HTTP_503_SERVICE_UNAVAILABLE,
    )


def validation_response(exc: ValidationError) -> Response:
    errors = [{"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()]
    return Response(
        {"detail": "VALIDATION_ERROR", "message": "Invalid request body", "errors": errors},
        status=status.HTTP_400_BAD_REQUEST,
    )


def order_body(order: Order) -> dict:
    dto = OrderReadDTO(
        id=order.id,
        order_number=order.order_number,
        user_id=order.user_id,
        status=order.status.value,
        payment_status=order.payment_status.value,
        payment_method=order.payment_method.value,
        shipping_payment_method=(
            order.shipping_payment_method.value if order.shipping_payment_method else None
        ),
        items=[asdict(line) for line in order.items],
        shipping_address=asdict(order.shipping_address),
        billing_address=asdict(order.billing_address),
        subtotal_cents=order.subtotal_cents,
        shipping_cents=order.shipping_cents,
        discount_cents=order.discount_cents,
        total_cents=order.total_cents,
        currency=order.currency,
        coupon_code=order.coupon_code,
        tracking_number=order.tracking_number,
        notes=order.notes,
        cancelled_at=order.cancelled_at,
        cancelled_reason=order.cancelled_reason,
        created_at=order.created_at,
        updated_at=order.updated_at,
    )
    return dto.model_dump(mode="json")


def paginated(request, qs) -> dict:
    try:
        page = int(request.GET.get("page", 1))
        page_size = min(max(1, int(request.GET.get("page_size", 20))), MAX_PAGE_SIZE)
    except ValueError:
        page, page_size = 1, 20
    p = Paginator(qs, page_size)
    page_obj = p.get_page(page)
    return {
        "count": p.count,
        "page": page_obj.number,
        "page_size": page_size,
        "results": [order_body(to_domain(o)) for o in page_obj.object_list],
    }


class HasAdminKey(BasePermission):
    """Shared-secret gate: ``X-Admin-Key`` must equal ``settings.ADMIN_API_KEY``."""

    message = "FORBIDDEN"

    def has_permission(self, request, view):
        expected = getattr(settings, "ADMIN_API_KEY", "")
        supplied = request.headers.get("X-Admin-Key", "")
        return bool(expected) and hmac.compare_digest(supplied.encode(), expected.encode())


class CustomerView(APIView):
    """Base for views acting on behalf of the caller named by ``X-User-Id``."""

    def user_id(self, request):
        return (request.headers.get("X-User-Id") or "").strip() or None

    def unauthenticated(self) -> Response:
        return Response(
            {"detail": "AUTHENTICATION_REQUIRED", "message": "X-User-Id header is required"},
            status=status.HTTP_401_UNAUTHORIZED,
        )


class OrdersCollectionView(CustomerView):
    """List the caller's orders or place a new one."""

    throttle_classes = [ScopedRateThrottle]

    def get_throttles(self):
        # throttles run in initial(), before the handler
        self.throttle_scope = "orders_list" if self.request.method == "GET" else "orders_create"
        return [throttle() for throttle in self.throttle_classes]

    def get(self, request):
        user_id = self.user_id(request)
        if not user_id:
            return self.unauthenticated()
        try:
            qs = OrderRepository().list_for_user(user_id, request.GET.get("status"))
            return Response(paginated(request, qs), status=status.HTTP_200_OK)
        except UNAVAILABLE_ERRORS as e:
            return unavailable_response(e)

    def post(self, request):
        """Create a new order.

        Returns:
            Response: One of the following responses.
            - 201 with the order when it is created.
            - 201 with the stored body and ``Idempotent-Replay: true`` when
              the same idempotency key and payload are retried.
            - 400 for DTO validation errors and input rule failures.
            - 404 ``PRODUCT_NOT_FOUND``.
            - 409 ``IDEMPOTENCY_CONFLICT``.
            - 422 ``INSUFFICIENT_STOCK`` / ``PRODUCT_UNAVAILABLE``.
            - 503 ``SERVICE_UNAVAILABLE``.
        """
        user_id = self.user_id(request)
        if not user_id:
            return self.unauthenticated()

        try:
            dto = CreateOrderDTO.model_validate(request.data)
        except ValidationError as e:
            return validation_response(e)

        idem_key = request.headers.get("Idempotency-Key")
        try:
            with transaction.atomic():
                rec = None
                if idem_key:
                    existing, rec = get_or_create_idempotent(idem_key, user_id, request.data)
                    if existing:
                        resp = Response(rec.response_body, status=rec.response_status or status.HTTP_200_OK)
                        resp["Idempotent-Replay"] = "true"
                        return resp

                service = get_order_service()
                order = service.create_order(
                    user_id=user_id,
                    items=[i.to_domain() for i in dto.items],
                    shipping_address=dto.shipping_address.to_domain() if dto.shipping_address else None,
                    payment_method=dto.payment_method,
                    shipping_cents=dto.shipping_cents,
                    coupon_code=dto.coupon_code,
                    shipping_payment_method=dto.shipping_payment_method,
                    notes=dto.notes,
                    billing_address=dto.billing_address.to_domain() if dto.billing_address else None,
                )

                body = order_body(order)
                if order.coupon_rejection is not None:
                    body["coupon_rejection"] = asdict(order.coupon_rejection)
                if rec:
                    finalize(rec, status.HTTP_201_CREATED, body, order_id=order.id)
        except OrderError as e:
            return error_response(e)
        except UNAVAILABLE_ERRORS as e:
            return unavailable_response(e)

        if dto.coupon_discount_cents is not None and dto.coupon_discount_cents != order.discount_cents:
            logger.warning("client discount differs from computed discount", extra={
                "order_number": order.order_number,
                "client_discount_cents": dto.coupon_discount_cents,
                "discount_cents": order.discount_cents,
            })
        return Response(body, status=status.HTTP_201_CREATED)


class RetrieveOrderView(CustomerView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def get(self, request, oid):
        user_id = self.user_id(request)
        if not user_id:
            return self.unauthenticated()
        try:
            order = OrderRepository().get(oid)
        except UNAVAILABLE_ERRORS as e:
            return unavailable_response(e)
        if order is None or order.user_id != user_id:
            return error_response(OrderNotFound(order_id=str(oid)))
        return Response(order_body(order), status=status.HTTP_200_OK)


class TrackOrderView(APIView):
    """Public tracking by order number; no customer data is exposed."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def get(self, request, order_number: str):
        try:
            order = OrderRepository().get_by_number(order_number)
        except UNAVAILABLE_ERRORS as e:
            return unavailable_response(e)
        if order is None:
            return error_response(OrderNotFound(order_number=order_number))
        dto = TrackingReadDTO(
            order_number=order.order_number,
            status=order.status.value,
            tracking_number=order.tracking_number,
            items=[asdict(line) for line in order.items],
            total_cents=order.total_cents,
            currency=order.currency,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )
        return Response(dto.model_dump(mode="json"), status=status.HTTP_200_OK)


class ValidateCouponView(APIView):
    """Read-only coupon check. Always answers 200; ``valid`` tells the outcome."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "checkout"

    def post(self, request):
        try:
            dto = ValidateCouponDTO.model_validate(request.data)
        except ValidationError as e:
            return validation_response(e)
        try:
            quote = get_order_service().validate_coupon(dto.code, dto.order_amount_cents)
        except UNAVAILABLE_ERRORS as e:
            return unavailable_response(e)

        if not quote.valid:
            body = {"valid": False, "error": quote.error, "detail": quote.reason}
            if quote.shortfall_cents is not None:
                body["shortfall_cents"] = quote.shortfall_cents
            return Response(body)
        coupon = quote.coupon
        return Response({
            "valid": True,
            "coupon": {
                "id": coupon.id,
                "code": coupon.code,
                "discount_type": coupon.discount_type.value,
                "discount_value": str(coupon.discount_value),
                "max_discount_cents": coupon.max_discount_cents,
                "min_purchase_cents": coupon.min_purchase_cents,
            },
            "discount_cents": quote.discount_cents,
            "final_amount_cents": quote.final_amount_cents,
        })


class ValidateStockView(APIView):
    """Read-only stock pre-flight for the checkout page."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "checkout"

    def post(self, request):
        try:
            dto = ValidateStockDTO.model_validate(request.data)
        except ValidationError as e:
            return validation_response(e)
        try:
            report = get_order_service().validate_stock([i.to_domain() for i in dto.items])
        except OrderError as e:
            body = e.as_dict()
            body["valid"] = False
            return Response(body, status=status.HTTP_400_BAD_REQUEST)
        except UNAVAILABLE_ERRORS as e:
            return unavailable_response(e)
        return Response({
            "valid": report.valid,
            "results": [asdict(r) for r in report.results],
        })


class AdminOrdersView(APIView):
    permission_classes = [HasAdminKey]

    def get(self, request):
        try:
            qs = OrderRepository().search(request.GET.get("status"), request.GET.get("search"))
            return Response(paginated(request, qs), status=status.HTTP_200_OK)
        except UNAVAILABLE_ERRORS as e:
            return unavailable_response(e)


class AdminOrderStatusView(APIView):
    """Admin status change (and/or tracking number) for one order."""

    permission_classes = [HasAdminKey]

    def patch(self, request, oid):
        try:
            dto = UpdateOrderStatusDTO.model_validate(request.data)
        except ValidationError as e:
            return validation_response(e)
        try:
            with transaction.atomic():
                order = get_order_service().update_status(
                    oid,
                    new_status=dto.status,
                    tracking_number=dto.tracking_number,
                    cancellation_reason=dto.cancellation_reason,
                )
        except OrderError as e:
            return error_response(e)
        except UNAVAILABLE_ERRORS as e:
            return unavailable_response(e)
        return Response(order_body(order), status=status.HTTP_200_OK)


class AdminPaymentStatusView(APIView):
    permission_classes = [HasAdminKey]

    def patch(self, request, oid):
        try:
            dto = UpdatePaymentStatusDTO.model_validate(request.data)
        except ValidationError as e:
            return validation_response(e)
        try:
            order = get_order_service().update_payment_status(oid, dto.payment_status)
        except OrderError as e:
            return error_response(e)
        except UNAVAILABLE_ERRORS as e:
            return unavailable_response(e)
        return Response(order_body(order), status=status.HTTP_200_OK)
