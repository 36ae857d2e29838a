"""
Background thread launcher and status helpers for training runs.

Simple threading-based approach for the single-process HTTP server: the
request thread starts the run (so precondition errors surface in the
response), a daemon thread drains the progress stream.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, Optional

from .errors import TrainingFailed
from .session import Session
from .train import RunState, TrainingRun, TrainingStream

logger = logging.getLogger(__name__)

# Active streams by session id, so a later request can cancel them
_streams: Dict[int, TrainingStream] = {}
_streams_lock = threading.Lock()


def start_training(session: Session, epochs: Optional[int] = None) -> TrainingRun:
    """Start a run for ``session`` and train it on a background thread.

    Returns
    -------
    TrainingRun
        The run record; poll it (or ``session.run``) for progress.

    Raises
    ------
    TrainingAlreadyRunning, InsufficientClasses, EmptyClass, …
        Straight from ``Session.start_training``.
    """
    stream = session.start_training(epochs)
    key = id(session)
    with _streams_lock:
        _streams[key] = stream

    def _run():
        try:
            for _ in stream:
                pass
        except TrainingFailed:
            logger.warning("Background training run %s failed", stream.run.run_id)
        except Exception:
            logger.exception("Background training crashed")
        finally:
            stream.close()
            with _streams_lock:
                if _streams.get(key) is stream:
                    del _streams[key]

    thread = threading.Thread(target=_run, name="training-runner", daemon=True)
    thread.start()
    logger.info("Background training started: run %s", stream.run.run_id)
    return stream.run


def cancel_training(session: Session) -> bool:
    """Ask the active run of ``session`` to stop after the current epoch.

    Returns False if nothing is running.
    """
    with _streams_lock:
        stream = _streams.get(id(session))
    if stream is None or stream.state is not RunState.RUNNING:
        return False
    stream.cancel()
    logger.info("Cancellation requested for run %s", stream.run.run_id)
    return True


def is_training_running(session: Session) -> bool:
    """Return True if a training run is currently in progress."""
    return session.orchestrator.is_running
