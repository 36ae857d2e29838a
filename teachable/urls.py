"""
Root URL configuration for the Teachable project.

All classifier functionality lives under ``/classifier/``.
"""

from django.shortcuts import redirect
from django.urls import include, path

urlpatterns = [
    path("", lambda r: redirect("/classifier/api/classes/")),
    path("classifier/", include("classifier.urls")),
]
