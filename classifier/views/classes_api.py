"""
Class and sample APIs.

GET  /api/classes/                                  – List classes.
POST /api/classes/                                  – Add a class ({"name": ...}).
POST /api/classes/<class_id>/rename/                – Rename ({"name": ...}).
POST /api/classes/<class_id>/delete/                – Remove a class.
POST /api/classes/<class_id>/samples/               – Upload a sample (multipart "image").
POST /api/classes/<class_id>/samples/<id>/delete/   – Remove a sample.
"""

from __future__ import annotations

import logging

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods, require_POST

from classifier.session_store import get_session
from training.errors import TeachableError

from .helpers import error_response, parse_json_body, read_upload

logger = logging.getLogger(__name__)


def _class_list_payload(session) -> dict:
    return {
        "classes": [c.to_dict() for c in session.classes],
        "model_ready": session.ready,
        "total_samples": session.dataset.total_samples,
    }


@csrf_exempt
@require_http_methods(["GET", "POST"])
def api_classes(request):
    """List classes, or add one (optional JSON ``{"name": ...}``)."""
    session = get_session()

    if request.method == "POST":
        body = parse_json_body(request)
        name = (body.get("name") or "").strip() or None
        try:
            cls = session.add_class(name)
        except TeachableError as exc:
            return error_response(exc)
        logger.info("Class %r created via API", cls.name)
        return JsonResponse({"class": cls.to_dict(), **_class_list_payload(session)}, status=201)

    return JsonResponse(_class_list_payload(session))


@csrf_exempt
@require_POST
def api_rename_class(request, class_id: str):
    """Rename a class.  Expects JSON: {"name": "..."}."""
    body = parse_json_body(request)
    name = body.get("name")
    if not isinstance(name, str) or not name.strip():
        return JsonResponse({"error": "name is required."}, status=400)

    try:
        cls = get_session().rename_class(class_id, name)
    except (TeachableError, ValueError) as exc:
        return error_response(exc)
    return JsonResponse({"class": cls.to_dict()})


@csrf_exempt
@require_POST
def api_delete_class(request, class_id: str):
    """Remove a class and all of its samples."""
    session = get_session()
    try:
        session.remove_class(class_id)
    except TeachableError as exc:
        return error_response(exc)
    return JsonResponse({"status": "deleted", **_class_list_payload(session)})


@csrf_exempt
@require_POST
def api_add_sample(request, class_id: str):
    """Upload one image into a class."""
    try:
        buffer = read_upload(request)
        sample = get_session().add_sample(class_id, buffer)
    except (TeachableError, ValueError) as exc:
        return error_response(exc)

    logger.info("Sample %s added to class %s", sample.id, class_id)
    return JsonResponse({"sample": sample.to_dict(), "class_id": class_id}, status=201)


@csrf_exempt
@require_POST
def api_delete_sample(request, class_id: str, sample_id: str):
    """Remove one sample from a class."""
    try:
        get_session().remove_sample(class_id, sample_id)
    except TeachableError as exc:
        return error_response(exc)
    return JsonResponse({"status": "deleted", "class_id": class_id, "sample_id": sample_id})
