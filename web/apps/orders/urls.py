from django.urls import path

from .views import (
    AdminOrderStatusView,
    AdminOrdersView,
    AdminPaymentStatusView,
    OrdersCollectionView,
    RetrieveOrderView,
    TrackOrderView,
    ValidateCouponView,
    ValidateStockView,
)

app_name = "orders"

urlpatterns = [
    path("orders/", OrdersCollectionView.as_view(), name="orders-collection"),  # GET list / POST create
    path("orders/<uuid:oid>/", RetrieveOrderView.as_view(), name="orders-detail"),
    path("orders/track/<str:order_number>/", TrackOrderView.as_view(), name="orders-track"),
    path("checkout/validate-coupon/", ValidateCouponView.as_view(), name="validate-coupon"),
    path("checkout/validate-stock/", ValidateStockView.as_view(), name="validate-stock"),
    path("admin/orders/", AdminOrdersView.as_view(), name="admin-orders"),
    path("admin/orders/<uuid:oid>/status/", AdminOrderStatusView.as_view(), name="admin-order-status"),
    path("admin/orders/<uuid:oid>/payment-status/", AdminPaymentStatusView.as_view(),
         name="admin-order-payment-status"),
]
