from django.urls import path
from .views import (
    BatchListCreateAPIView,
    BatchDetailAPIView,
    StartBatchAPIView,
    CompleteBatchAPIView,
    CancelBatchAPIView,
    BatchDistributionAPIView,
)

urlpatterns = [
    path('batches/', BatchListCreateAPIView.as_view()),
    path('batches/<int:pk>/', BatchDetailAPIView.as_view()),
    path('batches/<int:pk>/start/', StartBatchAPIView.as_view()),
    path('batches/<int:pk>/complete/', CompleteBatchAPIView.as_view()),
    path('batches/<int:pk>/cancel/', CancelBatchAPIView.as_view()),
    path('batches/<int:pk>/distribution/', BatchDistributionAPIView.as_view()),
]
