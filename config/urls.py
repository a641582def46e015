"""
URL configuration for the workshop authorization engine.
"""
from django.urls import path, include
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView

urlpatterns = [
    # API Documentation
    path('schema/', SpectacularAPIView.as_view(), name='schema'),
    path('schema/swagger/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),

    # RBAC endpoints
    path('v1/', include('apps.rbac.urls')),  # Permissions, roles, user grants, cache, audit logs
]
