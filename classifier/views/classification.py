"""
Image classification endpoint — accept an upload, run inference, return results.
"""

from __future__ import annotations

import logging

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from classifier.session_store import get_session
from training.errors import ModelNotReady, TeachableError

from .helpers import error_response, read_upload

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def classify(request):
    """Accept an uploaded image and rank every class for it.

    Workflow
    -------
    1. Validate and decode the upload (presence, size, content-type).
    2. Preprocess, embed and run the trained head.
    3. Return the predictions sorted by confidence (percent), plus the
       top prediction and the inference time.
    """
    session = get_session()
    if not session.ready:
        return error_response(ModelNotReady())

    try:
        buffer = read_upload(request)
        predictions = session.predict(buffer)
    except (TeachableError, ValueError) as exc:
        return error_response(exc)

    best = predictions[0] if predictions else None
    logger.info(
        "Classified upload: %s (%.1f%%)",
        best.class_name if best else "-", best.confidence if best else 0.0,
    )
    return JsonResponse({
        "predictions": [p.to_dict() for p in predictions],
        "best": best.to_dict() if best else None,
        "inference_seconds": round(session.inference.last_inference_seconds, 4),
    })
