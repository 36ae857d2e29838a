"""
Training API endpoints.

POST /api/training/start/    – Kick off a new training run (background).
GET  /api/training/status/   – Current run status and per-epoch history.
POST /api/training/cancel/   – Stop the active run after the current epoch.
"""

from __future__ import annotations

import logging

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from classifier.session_store import get_loaded_session, get_session
from training.errors import TeachableError
from training.tasks import cancel_training, is_training_running, start_training

from .helpers import error_response, parse_json_body, safe_positive_int

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def api_training_start(request):
    """Start a new training run.

    Accepts an optional JSON body ``{"epochs": n}``; otherwise the configured
    epoch count is used.  Returns 409 if a run is already in progress and
    400 if the classes cannot be trained on.
    """
    session = get_session()
    if is_training_running(session):
        return JsonResponse(
            {"error": "A training run is already in progress."},
            status=409,
        )

    body = parse_json_body(request)
    epochs = safe_positive_int(body.get("epochs"), session.config.epochs)

    try:
        session = get_loaded_session()
        run = start_training(session, epochs)
    except (TeachableError, ValueError) as exc:
        return error_response(exc)

    return JsonResponse({
        "status": "started",
        "run": run.to_dict(),
        "config": session.config.to_dict(),
    }, status=202)


@require_GET
def api_training_status(request):
    """Return the latest run (or ``null``) plus the model readiness."""
    session = get_session()
    run = session.run
    return JsonResponse({
        "state": session.training_state.value,
        "is_running": is_training_running(session),
        "model_ready": session.ready,
        "run": run.to_dict() if run else None,
    })


@csrf_exempt
@require_POST
def api_training_cancel(request):
    """Request cancellation of the active run."""
    session = get_session()
    if not cancel_training(session):
        return JsonResponse({"error": "No training run is in progress."}, status=409)
    return JsonResponse({"status": "cancelling", "run_id": session.run.run_id})
