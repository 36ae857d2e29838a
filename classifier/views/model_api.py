"""
Model APIs.

GET  /api/model/export/   – Download the trained head as an ``.npz`` archive.
POST /api/model/import/   – Restore a head (multipart "model" or raw body).
GET  /api/stats/          – Class / sample counts, accuracy, inference time.
"""

from __future__ import annotations

import logging

from django.http import HttpResponse, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from classifier.session_store import get_loaded_session, get_session
from training.errors import ModelNotReady, TeachableError

from .helpers import MAX_UPLOAD_SIZE, error_response

logger = logging.getLogger(__name__)


@require_GET
def api_model_export(request):
    session = get_session()
    if not session.ready:
        return error_response(ModelNotReady())
    try:
        payload = session.export_head()
    except TeachableError as exc:
        return error_response(exc)

    response = HttpResponse(payload, content_type="application/octet-stream")
    response["Content-Disposition"] = 'attachment; filename="classifier-head.npz"'
    return response


@csrf_exempt
@require_POST
def api_model_import(request):
    """Import a head archive produced by the export endpoint.

    The archive must match the current number of classes.
    """
    if "model" in request.FILES:
        upload = request.FILES["model"]
        if upload.size > MAX_UPLOAD_SIZE:
            return JsonResponse({"error": "Archive too large."}, status=400)
        payload = upload.read()
    else:
        payload = request.body

    if not payload:
        return JsonResponse({"error": "No model archive provided."}, status=400)

    try:
        manifest = get_loaded_session().import_head(payload)
    except (TeachableError, ValueError) as exc:
        return error_response(exc)

    return JsonResponse({
        "status": "imported",
        "class_names": manifest.get("class_names", []),
        "model_ready": True,
    })


@require_GET
def api_stats(request):
    session = get_session()
    return JsonResponse({
        **session.stats().to_dict(),
        "model_ready": session.ready,
        "training_state": session.training_state.value,
    })
