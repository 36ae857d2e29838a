"""
Shared constants, utilities, and helper functions used across views.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Tuple, Type

from django.http import JsonResponse

from training.errors import (
    EmptyClass,
    ExtractorNotLoaded,
    InsufficientClasses,
    InvalidImageFormat,
    ModelNotReady,
    TeachableError,
    TrainingAlreadyRunning,
    UnknownClass,
    UnknownSample,
)
from training.preprocess import PixelBuffer

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAX_UPLOAD_SIZE = 10 * 1024 * 1024  # 10 MB

ALLOWED_CONTENT_TYPES = frozenset({
    "image/jpeg",
    "image/png",
    "image/bmp",
    "image/webp",
})

# Engine error → HTTP status, first match wins.
ERROR_STATUS: Tuple[Tuple[Type[BaseException], int], ...] = (
    (UnknownClass, 404),
    (UnknownSample, 404),
    (InvalidImageFormat, 400),
    (InsufficientClasses, 400),
    (EmptyClass, 400),
    (TrainingAlreadyRunning, 409),
    (ModelNotReady, 409),
    (ExtractorNotLoaded, 503),
    (TeachableError, 500),
    (ValueError, 400),
)


class UploadError(ValueError):
    """The request did not carry a usable image upload."""


# ---------------------------------------------------------------------------
# Utility functions
# ---------------------------------------------------------------------------

def parse_json_body(request) -> Dict[str, Any]:
    """Safely parse a JSON request body, returning {} on failure."""
    try:
        body = json.loads(request.body) if request.body else {}
    except (json.JSONDecodeError, ValueError):
        return {}
    return body if isinstance(body, dict) else {}


def safe_positive_int(value: Any, default: int) -> int:
    """Coerce *value* to a positive int, falling back to *default*."""
    try:
        n = int(value)
        return n if n > 0 else default
    except (TypeError, ValueError):
        return default


def error_response(exc: BaseException) -> JsonResponse:
    """Map an engine error to a JSON error response."""
    for exc_type, status in ERROR_STATUS:
        if isinstance(exc, exc_type):
            return JsonResponse(
                {"error": str(exc), "kind": type(exc).__name__},
                status=status,
            )
    raise exc


def read_upload(request, field: str = "image") -> PixelBuffer:
    """Validate an uploaded image (presence, size, type) and decode it.

    Raises
    ------
    UploadError
        Missing file, too large, or unsupported content type.
    InvalidImageFormat
        The file cannot be decoded.
    """
    if field not in request.FILES:
        raise UploadError("No image file provided.")

    upload = request.FILES[field]

    if upload.content_type not in ALLOWED_CONTENT_TYPES:
        raise UploadError(f"Unsupported file type: {upload.content_type}")

    if upload.size > MAX_UPLOAD_SIZE:
        raise UploadError(
            f"File too large ({upload.size:,} bytes). Max {MAX_UPLOAD_SIZE:,}."
        )

    return PixelBuffer.from_bytes(upload.read())
