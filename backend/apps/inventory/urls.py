from django.urls import path
from .views import (
    InventoryLedgerAPIView,
    StockLevelAPIView,
    LowStockAPIView,
    InwardListCreateAPIView,
    ReverseInwardAPIView,
    DiscardCreateAPIView,
    AdjustmentCreateAPIView,
    ReservationJournalAPIView,
    ProductAvailabilityAPIView,
    AlternativeCapacitiesAPIView,
)

urlpatterns = [
    path("ledger/", InventoryLedgerAPIView.as_view()),
    path("stock/<int:product_id>/", StockLevelAPIView.as_view()),
    path("low-stock/", LowStockAPIView.as_view()),
    path("inward/", InwardListCreateAPIView.as_view()),
    path("inward/<int:pk>/reverse/", ReverseInwardAPIView.as_view()),
    path("discards/", DiscardCreateAPIView.as_view()),
    path("adjustments/", AdjustmentCreateAPIView.as_view()),
    path("reservations/", ReservationJournalAPIView.as_view()),
    path("availability/<int:product_id>/", ProductAvailabilityAPIView.as_view()),
    path("alternatives/<int:master_id>/", AlternativeCapacitiesAPIView.as_view()),
]
