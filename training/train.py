"""
Training orchestrator — epoch loop over frozen extractor + trainable head.

Run lifecycle::

    idle ──start()──▶ running ──all epochs──▶ completed
                         │
                         ├──exception──▶ failed     (TrainingFailed raised)
                         └──cancel()───▶ cancelled  (checked between epochs)

One run at a time: ``start`` takes a non-blocking lock and raises
``TrainingAlreadyRunning`` if it is held.

Per run:
    1. Snapshot the dataset (``SampleDataset.materialize``).
    2. Embed every image once with the frozen extractor.
    3. Shuffle, hold out ``validation_split`` of the samples.
    4. Copy the current head into a candidate (warm start).
    5. One ``fit`` pass per epoch (Adam 1e-3, categorical cross-entropy);
       yield an ``EpochProgress`` after each.
    6. Evaluate on the held-out split, install the candidate, ready=True.

A failed or cancelled run never touches the installed head, so a model
that was ready before the run stays ready.
"""

from __future__ import annotations

import asyncio
import gc
import logging
import threading
import time
import uuid
import weakref
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import numpy as np
import tensorflow as tf

from .config import TrainingConfig
from .data import SampleDataset
from .errors import ExtractorNotLoaded, TrainingAlreadyRunning, TrainingFailed
from .evaluate import evaluate_head
from .extractor import FeatureExtractor
from .head import TrainableModel, copy_head

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# ═══════════════════════════════════════════════════════════════════════════
# Records
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class EpochProgress:
    """Metrics emitted after each epoch.

    ``accuracy`` / ``val_accuracy`` are fractions in [0, 1];
    ``elapsed_seconds`` is cumulative since the run started.
    """

    epoch: int                      # 1-based
    total_epochs: int
    loss: float
    accuracy: float
    elapsed_seconds: float
    samples_processed: int
    val_loss: Optional[float] = None
    val_accuracy: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "epoch": self.epoch,
            "total_epochs": self.total_epochs,
            "loss": self.loss,
            "accuracy": self.accuracy,
            "val_loss": self.val_loss,
            "val_accuracy": self.val_accuracy,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "samples_processed": self.samples_processed,
        }


@dataclass
class TrainingRun:
    """State of one training run.  ``history`` is append-only."""

    total_epochs: int
    started_at: float
    run_id: str = field(default_factory=lambda: f"run-{uuid.uuid4().hex[:8]}")
    state: RunState = RunState.RUNNING
    epoch: int = 0
    elapsed_seconds: float = 0.0
    num_samples: int = 0
    error_message: str = ""
    metrics: Dict[str, Any] = field(default_factory=dict)
    _history: List[EpochProgress] = field(default_factory=list, repr=False)

    @property
    def history(self) -> Tuple[EpochProgress, ...]:
        return tuple(self._history)

    @property
    def latest(self) -> Optional[EpochProgress]:
        return self._history[-1] if self._history else None

    def record(self, progress: EpochProgress) -> None:
        self._history.append(progress)
        self.epoch = progress.epoch
        self.elapsed_seconds = progress.elapsed_seconds

    def to_dict(self) -> Dict[str, Any]:
        latest = self.latest
        return {
            "run_id": self.run_id,
            "state": self.state.value,
            "epoch": self.epoch,
            "total_epochs": self.total_epochs,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "num_samples": self.num_samples,
            "error_message": self.error_message,
            "latest": latest.to_dict() if latest else None,
            "history": [p.to_dict() for p in self._history],
            "metrics": self.metrics,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Per-run tensors
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class RunData:
    """Embedded, shuffled and split tensors for one run."""

    x_train: Any
    y_train: Any
    x_val: Any
    y_val: Any
    val_embeddings: np.ndarray
    val_labels: np.ndarray
    class_names: List[str]
    signature: Tuple[str, ...]
    num_samples: int

    @property
    def num_train(self) -> int:
        return int(self.x_train.shape[0])

    def release(self) -> None:
        """Drop every tensor reference held for the run."""
        self.x_train = self.y_train = self.x_val = self.y_val = None
        self.val_embeddings = np.zeros((0,), dtype=np.float32)
        self.val_labels = np.zeros((0,), dtype=np.int32)

    @property
    def validation_data(self) -> Optional[tuple]:
        if self.val_labels.size == 0:
            return None
        return self.x_val, self.y_val


def split_indices(
    num_samples: int,
    validation_split: float,
    seed: Optional[int],
) -> Tuple[np.ndarray, np.ndarray]:
    """Shuffle ``range(num_samples)`` and split off the validation share.

    At least one sample always stays in the training share.
    """
    rng = np.random.default_rng(seed)
    order = rng.permutation(num_samples)
    n_val = min(int(num_samples * validation_split), num_samples - 1)
    return order[n_val:], order[:n_val]


@contextmanager
def scoped_run_data(
    dataset: SampleDataset,
    extractor: FeatureExtractor,
    config: TrainingConfig,
) -> Iterator[RunData]:
    """Build the tensors for one run and drop them on every exit path."""
    data: Optional[RunData] = None
    try:
        signature = dataset.shape_signature
        batch = dataset.materialize()
        embeddings = extractor.embed(batch.images)
        one_hot = batch.one_hot
        train_idx, val_idx = split_indices(
            batch.num_samples, config.validation_split, config.shuffle_seed,
        )
        data = RunData(
            x_train=tf.constant(embeddings[train_idx]),
            y_train=tf.constant(one_hot[train_idx]),
            x_val=tf.constant(embeddings[val_idx]),
            y_val=tf.constant(one_hot[val_idx]),
            val_embeddings=embeddings[val_idx],
            val_labels=batch.labels[val_idx],
            class_names=list(batch.class_names),
            signature=signature,
            num_samples=batch.num_samples,
        )
        del batch, embeddings, one_hot
        yield data
    finally:
        if data is not None:
            data.release()
        gc.collect()


# ═══════════════════════════════════════════════════════════════════════════
# Stream
# ═══════════════════════════════════════════════════════════════════════════

_DONE = object()


class TrainingStream:
    """Iterator over ``EpochProgress`` records of one run.

    Iterate it (sync or ``async for``) to drive training.  ``cancel()``
    stops the run at the next epoch boundary; ``close()`` (or leaving a
    ``with`` block) stops it immediately; a stream dropped before its first
    step ends the run as cancelled.  If the run fails, iteration raises
    ``TrainingFailed``.
    """

    def __init__(
        self,
        orchestrator: "TrainingOrchestrator",
        run: TrainingRun,
        generator: Iterator[EpochProgress],
        cancel_event: threading.Event,
    ) -> None:
        self.run = run
        self._orchestrator = orchestrator
        self._gen = generator
        self._cancel = cancel_event
        self._started = False
        # Ends the run if the stream is dropped before it was ever iterated
        self._abandon = weakref.finalize(
            self, orchestrator._finish, run, RunState.CANCELLED,
        )

    @property
    def state(self) -> RunState:
        return self.run.state

    def __iter__(self) -> "TrainingStream":
        return self

    def __next__(self) -> EpochProgress:
        self._mark_started()
        return next(self._gen)

    def __aiter__(self) -> "TrainingStream":
        return self

    async def __anext__(self) -> EpochProgress:
        self._mark_started()
        item = await asyncio.to_thread(next, self._gen, _DONE)
        if item is _DONE:
            raise StopAsyncIteration
        return item

    def _mark_started(self) -> None:
        if not self._started:
            self._started = True
            self._abandon.detach()

    def cancel(self) -> None:
        """Request a stop before the next epoch."""
        self._cancel.set()

    def close(self) -> None:
        if not self._started:
            self._abandon()
        self._gen.close()

    def __enter__(self) -> "TrainingStream":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


# ═══════════════════════════════════════════════════════════════════════════
# Orchestrator
# ═══════════════════════════════════════════════════════════════════════════

class TrainingOrchestrator:
    """Starts runs, enforces one-at-a-time, and owns the latest run."""

    def __init__(self, config: Optional[TrainingConfig] = None, clock: Clock = time.monotonic) -> None:
        self.config = config or TrainingConfig()
        self.clock = clock
        self.current_run: Optional[TrainingRun] = None
        # Held for the whole run; released by _finish
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    @property
    def state(self) -> RunState:
        return self.current_run.state if self.current_run else RunState.IDLE

    def start(
        self,
        model: TrainableModel,
        dataset: SampleDataset,
        extractor: FeatureExtractor,
        epochs: Optional[int] = None,
    ) -> TrainingStream:
        """Validate preconditions and return the stream for a new run.

        Raises
        ------
        ValueError
            ``epochs`` is not a positive integer.
        ExtractorNotLoaded
            The extractor has not been loaded.
        TrainingAlreadyRunning
            Another run holds the lock.
        InsufficientClasses / EmptyClass
            The dataset cannot be trained on.
        """
        epochs = self.config.epochs if epochs is None else epochs
        if isinstance(epochs, bool) or not isinstance(epochs, int) or epochs < 1:
            raise ValueError(f"epochs must be a positive integer, got {epochs!r}")
        if not extractor.is_loaded:
            raise ExtractorNotLoaded()
        if not self._lock.acquire(blocking=False):
            logger.warning("Training already in progress — refusing to start.")
            raise TrainingAlreadyRunning()

        try:
            dataset.validate()
            head = model.ensure_head(extractor.embedding_dim, dataset.shape_signature, self.config)
        except Exception:
            self._lock.release()
            raise

        run = TrainingRun(total_epochs=epochs, started_at=self.clock())
        self.current_run = run
        cancel_event = threading.Event()
        generator = self._execute(run, head, model, dataset, extractor, cancel_event)
        logger.info("Training run %s started: %d epochs, %d classes", run.run_id, epochs, len(dataset))
        return TrainingStream(self, run, generator, cancel_event)

    def _finish(self, run: TrainingRun, state: RunState, error: str = "") -> None:
        if run.state is not RunState.RUNNING:
            return
        run.state = state
        run.error_message = error
        run.elapsed_seconds = self.clock() - run.started_at
        self._lock.release()
        logger.info(
            "Training run %s %s after %d/%d epochs (%.1fs)",
            run.run_id, state.value, run.epoch, run.total_epochs, run.elapsed_seconds,
        )

    def _execute(
        self,
        run: TrainingRun,
        head: tf.keras.Model,
        model: TrainableModel,
        dataset: SampleDataset,
        extractor: FeatureExtractor,
        cancel_event: threading.Event,
    ) -> Iterator[EpochProgress]:
        config = self.config
        try:
            if cancel_event.is_set():
                self._finish(run, RunState.CANCELLED)
                return

            with scoped_run_data(dataset, extractor, config) as data:
                run.num_samples = data.num_samples
                logger.info(
                    "Run %s: %d training / %d validation samples",
                    run.run_id, data.num_train, data.val_labels.size,
                )
                candidate = copy_head(head, config)

                for epoch in range(run.total_epochs):
                    if cancel_event.is_set():
                        self._finish(run, RunState.CANCELLED)
                        return

                    history = candidate.fit(
                        data.x_train,
                        data.y_train,
                        batch_size=config.batch_size,
                        epochs=epoch + 1,
                        initial_epoch=epoch,
                        validation_data=data.validation_data,
                        shuffle=True,
                        verbose=0,
                    ).history

                    progress = EpochProgress(
                        epoch=epoch + 1,
                        total_epochs=run.total_epochs,
                        loss=float(history["loss"][-1]),
                        accuracy=float(history.get("accuracy", [0.0])[-1]),
                        val_loss=_last(history, "val_loss"),
                        val_accuracy=_last(history, "val_accuracy"),
                        elapsed_seconds=self.clock() - run.started_at,
                        samples_processed=data.num_samples,
                    )
                    run.record(progress)
                    logger.debug(
                        "Epoch %d/%d — loss=%.4f acc=%.4f",
                        progress.epoch, progress.total_epochs, progress.loss, progress.accuracy,
                    )
                    yield progress

                run.metrics = evaluate_head(
                    candidate, data.val_embeddings, data.val_labels, data.class_names,
                )
                if dataset.shape_signature != data.signature:
                    raise RuntimeError("The class list changed while training was running.")
                model.install(candidate, data.signature)

            self._finish(run, RunState.COMPLETED)

        except GeneratorExit:
            self._finish(run, RunState.CANCELLED)
            raise
        except Exception as exc:
            logger.exception("Training run %s failed", run.run_id)
            message = f"Training failed: {exc}"
            self._finish(run, RunState.FAILED, error=message)
            raise TrainingFailed(message, cause=exc) from exc


def _last(history: Dict[str, list], key: str) -> Optional[float]:
    values = history.get(key)
    return float(values[-1]) if values else None
