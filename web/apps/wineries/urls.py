from django.urls import path
from apps.orders.views import winery_events
from .views import WineryCollectionView, WineryGroupsView, WineryWinesView

app_name = "wineries"

urlpatterns = [
    path("", WineryCollectionView.as_view(), name="wineries-collection"),
    path("<int:winery_id>/wines/", WineryWinesView.as_view(), name="wineries-wines"),
    path("<int:winery_id>/groups/", WineryGroupsView.as_view(), name="wineries-groups"),
    path("<int:winery_id>/events/", winery_events, name="wineries-events"),  # SSE
]
