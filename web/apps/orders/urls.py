from django.urls import path
from .views import (
    OrderDetailView,
    OrdersCollectionView,
    OrderStatusView,
    OrderSummaryView,
    SelectionStatusView,
)

app_name = "orders"

urlpatterns = [
    path("", OrdersCollectionView.as_view(), name="orders-collection"),  # GET list / POST create
    path("group/<str:identifier>/", OrderDetailView.as_view(), name="orders-by-group"),  # session recovery; "group" is a reserved slug
    path("<str:identifier>/", OrderDetailView.as_view(), name="orders-detail"),
    path("<str:identifier>/summary/", OrderSummaryView.as_view(), name="orders-summary"),
    path("<str:identifier>/wine-status/", SelectionStatusView.as_view(), name="orders-wine-status"),
    path("<str:identifier>/status/", OrderStatusView.as_view(), name="orders-status"),
]
