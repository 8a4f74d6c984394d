"""
URL configuration for sunat_gateway project.
"""
from django.urls import include, path

urlpatterns = [
    path('api/v1/', include('cpe.urls')),
    path('health/', include('cpe.urls_health')),
]
