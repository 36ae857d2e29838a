"""
Process-wide session for the HTTP layer.

The engine itself has no global state; this module holds the single
``Session`` that the JSON API operates on, built lazily from
``settings.TEACHABLE_TRAINING``.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from django.conf import settings

from training.config import TrainingConfig
from training.session import Session

logger = logging.getLogger(__name__)

_session: Optional[Session] = None
_session_lock = threading.Lock()


def build_config() -> TrainingConfig:
    """``TrainingConfig`` with the project's overrides applied."""
    return TrainingConfig.from_overrides(getattr(settings, "TEACHABLE_TRAINING", {}))


def get_session() -> Session:
    """Return the shared session, creating it on first use."""
    global _session
    with _session_lock:
        if _session is None:
            _session = Session(build_config())
            logger.info("Created session (base model %r)", _session.config.base_model)
        return _session


def get_loaded_session() -> Session:
    """Shared session with its feature extractor loaded."""
    session = get_session()
    if not session.extractor.is_loaded:
        session.load_extractor()
    return session


def reset_session() -> None:
    """Forget the shared session (a new one is built on next access)."""
    global _session
    with _session_lock:
        _session = None
