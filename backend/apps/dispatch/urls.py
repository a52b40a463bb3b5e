from django.urls import path
from .views import DispatchListCreateAPIView, DeliverDispatchAPIView

urlpatterns = [
    path('', DispatchListCreateAPIView.as_view()),
    path('<int:pk>/deliver/', DeliverDispatchAPIView.as_view()),
]
