from django.urls import path, include

from core import api

urlpatterns = [
    path("api/", include("core.urls")),
    path("health", api.health, name="health_root"),
]
