# config/urls.py
from django.contrib import admin
from django.urls import path, include
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView

from apps.core.views import health_check

urlpatterns = [
    # Monitoring
    path('', include('django_prometheus.urls')),
    path('health/', health_check),

    # Admin
    path('admin/', admin.site.urls),

    # API V1 Routes
    path('api/v1/catalog/', include('apps.catalog.urls')),
    path('api/v1/inventory/', include('apps.inventory.urls')),
    path('api/v1/orders/', include('apps.orders.urls')),
    path('api/v1/production/', include('apps.production.urls')),
    path('api/v1/dispatch/', include('apps.dispatch.urls')),
    path('api/v1/audit/', include('apps.audit.urls')),

    # API Documentation
    path('api/schema/', SpectacularAPIView.as_view(), name='schema'),
    path('api/docs/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),
]
