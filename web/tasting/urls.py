from django.urls import include, path

urlpatterns = [
    path("api/orders/", include("apps.orders.urls")),
    path("api/wineries/", include("apps.wineries.urls")),
    path("", include("apps.monitoring.urls")),
]
