"""
Session — one user's classes, model and training state, passed explicitly.

A ``Session`` owns a ``FeatureExtractor``, a ``SampleDataset``, a
``TrainableModel``, a ``TrainingOrchestrator`` and an ``InferenceEngine``.
There is no module-level model: create as many sessions as needed.

Usage::

    session = Session(TrainingConfig(base_model="builtin"))
    session.load_extractor()
    a, b = session.classes
    session.add_sample(a.id, buffer_a)
    session.add_sample(b.id, buffer_b)
    for progress in session.start_training(epochs=5):
        print(progress.epoch, progress.loss)
    ranked = session.predict(frame)
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Sequence, Tuple

import tensorflow as tf

from .config import TrainingConfig
from .data import Sample, SampleDataset, TrainingClass
from .errors import ModelNotReady, TrainingAlreadyRunning
from .extractor import FeatureExtractor
from .head import (
    TrainableModel,
    build_head,
    build_transfer_model,
    deserialize_head,
    serialize_head,
)
from .inference import Frame, InferenceEngine, Prediction
from .preprocess import PixelBuffer
from .train import Clock, EpochProgress, RunState, TrainingOrchestrator, TrainingRun, TrainingStream

logger = logging.getLogger(__name__)

EXPORT_FORMAT = "teachable-head/1"


@dataclass(frozen=True)
class ModelStats:
    total_classes: int
    total_samples: int
    accuracy: float             # last epoch's training accuracy, 0..1
    inference_seconds: float

    def to_dict(self) -> dict:
        return {
            "total_classes": self.total_classes,
            "total_samples": self.total_samples,
            "accuracy": round(self.accuracy, 4),
            "inference_seconds": round(self.inference_seconds, 4),
        }


class Session:
    """Explicit context for one classifier project."""

    def __init__(
        self,
        config: Optional[TrainingConfig] = None,
        clock: Clock = time.monotonic,
        dataset: Optional[SampleDataset] = None,
    ) -> None:
        self.config = config or TrainingConfig()
        self.extractor = FeatureExtractor(self.config)
        self.dataset = dataset or SampleDataset.with_default_classes(self.config)
        self.model = TrainableModel()
        self.orchestrator = TrainingOrchestrator(self.config, clock=clock)
        self.inference = InferenceEngine(self.extractor, self.model)

    # ── Extractor ──────────────────────────────────────────────────────

    def load_extractor(self) -> FeatureExtractor:
        self.extractor.load()
        self._sync_head()
        return self.extractor

    async def aload_extractor(self) -> FeatureExtractor:
        return await asyncio.to_thread(self.load_extractor)

    # ── Classes ────────────────────────────────────────────────────────

    @property
    def classes(self) -> Tuple[TrainingClass, ...]:
        return self.dataset.classes

    @property
    def ready(self) -> bool:
        return self.model.ready

    def _guard_structure(self) -> None:
        if self.orchestrator.is_running:
            raise TrainingAlreadyRunning(
                "Cannot add, remove or reorder classes while training is running."
            )

    def _sync_head(self) -> None:
        """Invalidate / rebuild the head after the class list changed shape."""
        signature = self.dataset.shape_signature
        self.model.invalidate(signature)
        if self.extractor.is_loaded and len(signature) >= 2:
            self.model.ensure_head(self.extractor.embedding_dim, signature, self.config)

    def add_class(self, name: Optional[str] = None) -> TrainingClass:
        self._guard_structure()
        cls = self.dataset.add_class(name)
        self._sync_head()
        return cls

    def remove_class(self, class_id: str) -> None:
        self._guard_structure()
        self.dataset.remove_class(class_id)
        self._sync_head()

    def rename_class(self, class_id: str, name: str) -> TrainingClass:
        return self.dataset.rename_class(class_id, name)

    def set_classes(self, classes: Sequence[TrainingClass]) -> None:
        """Replace the class list; the head is invalidated if the ids or their order changed."""
        if tuple(c.id for c in classes) != self.dataset.shape_signature:
            self._guard_structure()
        self.dataset.set_classes(classes)
        self._sync_head()

    # ── Samples ────────────────────────────────────────────────────────

    def add_sample(self, class_id: str, buffer: PixelBuffer) -> Sample:
        """Raises ``InvalidImageFormat`` or ``UnknownClass``."""
        return self.dataset.add_sample(class_id, buffer)

    def remove_sample(self, class_id: str, sample_id: str) -> None:
        self.dataset.remove_sample(class_id, sample_id)

    # ── Training ───────────────────────────────────────────────────────

    def start_training(self, epochs: Optional[int] = None) -> TrainingStream:
        """Start a run; iterate the returned stream to drive it."""
        return self.orchestrator.start(self.model, self.dataset, self.extractor, epochs)

    async def atrain(self, epochs: Optional[int] = None) -> AsyncIterator[EpochProgress]:
        """Async form of ``start_training``: ``async for p in session.atrain(5)``."""
        stream = self.start_training(epochs)
        try:
            async for progress in stream:
                yield progress
        finally:
            stream.close()

    @property
    def run(self) -> Optional[TrainingRun]:
        return self.orchestrator.current_run

    @property
    def training_state(self) -> RunState:
        return self.orchestrator.state

    @property
    def training_history(self) -> Tuple[EpochProgress, ...]:
        run = self.run
        return run.history if run else ()

    # ── Inference ──────────────────────────────────────────────────────

    def predict(self, frame: Frame) -> List[Prediction]:
        return self.inference.predict(frame, self.dataset.class_names)

    async def apredict(self, frame: Frame) -> List[Prediction]:
        return await self.inference.apredict(frame, self.dataset.class_names)

    def stats(self) -> ModelStats:
        run = self.run
        latest = run.latest if run else None
        return ModelStats(
            total_classes=len(self.dataset),
            total_samples=self.dataset.total_samples,
            accuracy=latest.accuracy if latest else 0.0,
            inference_seconds=self.inference.last_inference_seconds,
        )

    # ── Export / import ────────────────────────────────────────────────

    def export_head(self) -> bytes:
        """Serialise the trained head's weights (requires a ready model)."""
        head = self.model.require_ready()
        manifest = {
            "format": EXPORT_FORMAT,
            "class_names": self.dataset.class_names,
            "num_classes": self.model.num_classes,
            "embedding_dim": self.extractor.embedding_dim,
            "backend": self.extractor.backend,
            "config": self.config.to_dict(),
        }
        return serialize_head(head, manifest)

    def import_head(self, payload: bytes) -> dict:
        """Restore a head exported by ``export_head`` and mark it ready.

        The archive must match the current class count and embedding size.

        Raises
        ------
        ValueError
            Wrong format or mismatched shapes.
        """
        weights, manifest = deserialize_head(payload)
        if manifest.get("format") != EXPORT_FORMAT:
            raise ValueError(f"Unsupported export format: {manifest.get('format')!r}")
        self._guard_structure()

        signature = self.dataset.shape_signature
        num_classes = len(signature)
        if manifest.get("num_classes") != num_classes:
            raise ValueError(
                f"Archive has {manifest.get('num_classes')} classes, session has {num_classes}."
            )
        dim = self.extractor.embedding_dim
        if manifest.get("embedding_dim") != dim:
            raise ValueError(
                f"Archive embedding size {manifest.get('embedding_dim')} does not match "
                f"the loaded extractor ({dim})."
            )

        head = build_head(dim, num_classes, self.config)
        head.set_weights(weights)
        self.model.install(head, signature)
        logger.info("Imported classifier head for %d classes", num_classes)
        return manifest

    def transfer_model(self) -> tf.keras.Model:
        """Whole-image Keras model (extractor + trained head), e.g. for ``.save``."""
        if not self.model.ready:
            raise ModelNotReady()
        return build_transfer_model(self.extractor.model, self.model.head)
