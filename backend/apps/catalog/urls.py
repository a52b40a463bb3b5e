from django.urls import path
from .views import (
    MasterProductListCreateAPIView,
    MasterProductDetailAPIView,
    SkuListCreateAPIView,
)

urlpatterns = [
    path('master-products/', MasterProductListCreateAPIView.as_view()),
    path('master-products/<int:pk>/', MasterProductDetailAPIView.as_view()),
    path('skus/', SkuListCreateAPIView.as_view()),
]
