from django.urls import path

from .views import DeviceCommandsView, HealthCheckView

urlpatterns = [
    path('v1/health/', HealthCheckView.as_view(), name='api_v1_health'),
    path('v1/devices/<str:unique_id>/commands/', DeviceCommandsView.as_view(), name='api_v1_device_commands'),
]
