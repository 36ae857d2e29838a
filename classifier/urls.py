"""
URL configuration for the classifier app.

Route groups
------------
- Classes API  : list / add / rename / delete classes, upload / delete samples.
- Training API : start, poll and cancel the background training run.
- Classify API : POST endpoint for image classification.
- Model API    : export / import the trained head, session stats.
"""

from django.urls import path

from . import views

urlpatterns = [
    # ── Classes and samples ─────────────────────────────────────────────
    path("api/classes/", views.api_classes, name="api_classes"),
    path("api/classes/<str:class_id>/rename/", views.api_rename_class, name="api_rename_class"),
    path("api/classes/<str:class_id>/delete/", views.api_delete_class, name="api_delete_class"),
    path("api/classes/<str:class_id>/samples/", views.api_add_sample, name="api_add_sample"),
    path(
        "api/classes/<str:class_id>/samples/<str:sample_id>/delete/",
        views.api_delete_sample,
        name="api_delete_sample",
    ),

    # ── Training ────────────────────────────────────────────────────────
    path("api/training/start/", views.api_training_start, name="api_training_start"),
    path("api/training/status/", views.api_training_status, name="api_training_status"),
    path("api/training/cancel/", views.api_training_cancel, name="api_training_cancel"),

    # ── Classification ──────────────────────────────────────────────────
    path("classify/", views.classify, name="classify"),

    # ── Model ───────────────────────────────────────────────────────────
    path("api/model/export/", views.api_model_export, name="api_model_export"),
    path("api/model/import/", views.api_model_import, name="api_model_import"),
    path("api/stats/", views.api_stats, name="api_stats"),
]
