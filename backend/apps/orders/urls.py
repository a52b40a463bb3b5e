from django.urls import path
from .views import (
    OrderListCreateAPIView,
    OrderDetailAPIView,
    AcceptOrderAPIView,
    ReadyOrderAPIView,
    CancelOrderAPIView,
    SplitOrderAPIView,
    ReturnOrderAPIView,
    RequeueOrderAPIView,
)

urlpatterns = [
    path('', OrderListCreateAPIView.as_view()),
    path('<int:pk>/', OrderDetailAPIView.as_view()),
    path('<int:pk>/accept/', AcceptOrderAPIView.as_view()),
    path('<int:pk>/ready/', ReadyOrderAPIView.as_view()),
    path('<int:pk>/cancel/', CancelOrderAPIView.as_view()),
    path('<int:pk>/split/', SplitOrderAPIView.as_view()),
    path('<int:pk>/return/', ReturnOrderAPIView.as_view()),
    path('<int:pk>/requeue/', RequeueOrderAPIView.as_view()),
]
