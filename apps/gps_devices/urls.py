from django.urls import path
from . import views
app_name = 'gps_devices'
urlpatterns = [
    path('', views.osmand_report, name='osmand_report'),
]
