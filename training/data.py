"""
In-memory training data: classes, their samples, and materialisation.

The class list is the single source of truth for labels: a class's
*position* in the list is its integer label during training.  Each sample
caches its preprocessed tensor at creation, so materialising a run is just
stacking cached arrays.

Public API
----------
TrainingClass     – id, display name, colour, ordered samples.
Sample            – pixels, cached tensor, JPEG display handle.
SampleDataset     – thread-safe class list + sample operations.
MaterializedBatch – a snapshot of the dataset ready for training.

Usage::

    dataset = SampleDataset.with_default_classes()
    sample = dataset.add_sample(dataset.classes[0].id, buffer)
    batch = dataset.materialize()
    batch.images.shape   # (n, 224, 224, 3)
    batch.one_hot.shape  # (n, num_classes)
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np
import tensorflow as tf

from .config import CLASS_COLORS, TrainingConfig
from .errors import EmptyClass, InsufficientClasses, UnknownClass, UnknownSample
from .preprocess import PixelBuffer, make_thumbnail, preprocess

logger = logging.getLogger(__name__)


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def default_class_name(position: int) -> str:
    """``0 → "Class A"``, ``1 → "Class B"``, … ``26 → "Class 27"``."""
    if position < 26:
        return f"Class {chr(ord('A') + position)}"
    return f"Class {position + 1}"


# ═══════════════════════════════════════════════════════════════════════════
# Records
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(eq=False)
class Sample:
    """One training image.

    ``tensor`` is the cached ``(224, 224, 3)`` preprocessed array;
    ``thumbnail`` is the JPEG display handle (``None`` once released).
    """

    buffer: PixelBuffer
    tensor: np.ndarray
    thumbnail: Optional[bytes]
    id: str = field(default_factory=lambda: _new_id("sample"))

    @classmethod
    def from_buffer(cls, buffer: PixelBuffer) -> "Sample":
        """Validate + preprocess a buffer.  Raises ``InvalidImageFormat``."""
        tensor = preprocess(buffer)
        return cls(buffer=buffer, tensor=tensor, thumbnail=make_thumbnail(buffer))

    def release(self) -> None:
        """Drop the display handle."""
        self.thumbnail = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "width": self.buffer.width,
            "height": self.buffer.height,
            "mode": self.buffer.mode,
        }


@dataclass(eq=False)
class TrainingClass:
    """A labelled class.  ``id`` never changes; ``name`` may."""

    name: str
    color: str
    samples: List[Sample] = field(default_factory=list)
    id: str = field(default_factory=lambda: _new_id("class"))

    def find_sample(self, sample_id: str) -> Sample:
        for sample in self.samples:
            if sample.id == sample_id:
                return sample
        raise UnknownSample(sample_id)

    def release(self) -> None:
        for sample in self.samples:
            sample.release()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "num_samples": len(self.samples),
            "samples": [s.to_dict() for s in self.samples],
        }


@dataclass
class MaterializedBatch:
    """A frozen snapshot of the dataset for one training run."""

    images: np.ndarray              # (n, 224, 224, 3) float32
    labels: np.ndarray              # (n,) int32 — positions in the class list
    class_names: List[str]
    class_ids: List[str]

    @property
    def num_classes(self) -> int:
        return len(self.class_names)

    @property
    def num_samples(self) -> int:
        return int(self.labels.shape[0])

    @property
    def one_hot(self) -> np.ndarray:
        """Labels as ``(n, num_classes)`` float32 one-hot rows."""
        return tf.one_hot(self.labels, depth=self.num_classes).numpy()


# ═══════════════════════════════════════════════════════════════════════════
# Dataset
# ═══════════════════════════════════════════════════════════════════════════

class SampleDataset:
    """Ordered class list with per-class samples.

    All mutators take an internal lock, so the HTTP layer may add and
    remove samples while a background run trains on its own snapshot.
    """

    def __init__(
        self,
        classes: Optional[Iterable[TrainingClass]] = None,
        config: Optional[TrainingConfig] = None,
    ) -> None:
        self.config = config or TrainingConfig()
        self._lock = threading.RLock()
        self._classes: List[TrainingClass] = list(classes or [])

    @classmethod
    def with_default_classes(cls, config: Optional[TrainingConfig] = None) -> "SampleDataset":
        """A dataset holding two empty classes, "Class A" and "Class B"."""
        dataset = cls(config=config)
        dataset.add_class()
        dataset.add_class()
        return dataset

    # ── Class list ─────────────────────────────────────────────────────

    @property
    def classes(self) -> Tuple[TrainingClass, ...]:
        with self._lock:
            return tuple(self._classes)

    @property
    def class_names(self) -> List[str]:
        with self._lock:
            return [c.name for c in self._classes]

    @property
    def shape_signature(self) -> Tuple[str, ...]:
        """Ordered class ids; changes whenever labels would change."""
        with self._lock:
            return tuple(c.id for c in self._classes)

    @property
    def total_samples(self) -> int:
        with self._lock:
            return sum(len(c.samples) for c in self._classes)

    def __len__(self) -> int:
        with self._lock:
            return len(self._classes)

    def get_class(self, class_id: str) -> TrainingClass:
        with self._lock:
            for cls in self._classes:
                if cls.id == class_id:
                    return cls
        raise UnknownClass(class_id)

    def index_of(self, class_id: str) -> int:
        with self._lock:
            for idx, cls in enumerate(self._classes):
                if cls.id == class_id:
                    return idx
        raise UnknownClass(class_id)

    def add_class(self, name: Optional[str] = None) -> TrainingClass:
        """Append a class; name and colour default by position."""
        with self._lock:
            position = len(self._classes)
            cls = TrainingClass(
                name=name or default_class_name(position),
                color=CLASS_COLORS[position % len(CLASS_COLORS)],
            )
            self._classes.append(cls)
        logger.info("Added class %r (%s)", cls.name, cls.id)
        return cls

    def rename_class(self, class_id: str, name: str) -> TrainingClass:
        name = name.strip()
        if not name:
            raise ValueError("Class name must not be empty.")
        with self._lock:
            cls = self.get_class(class_id)
            cls.name = name
        return cls

    def remove_class(self, class_id: str) -> TrainingClass:
        """Remove a class and release all of its samples."""
        with self._lock:
            cls = self.get_class(class_id)
            self._classes.remove(cls)
        cls.release()
        logger.info("Removed class %r with %d samples", cls.name, len(cls.samples))
        return cls

    def set_classes(self, classes: Sequence[TrainingClass]) -> None:
        """Replace the class list (order defines labels).

        Samples of classes that are no longer present are released.
        """
        if len({c.id for c in classes}) != len(classes):
            raise ValueError("Class ids must be unique.")
        with self._lock:
            kept = {c.id for c in classes}
            dropped = [c for c in self._classes if c.id not in kept]
            self._classes = list(classes)
        for cls in dropped:
            cls.release()

    # ── Samples ────────────────────────────────────────────────────────

    def add_sample(self, class_id: str, buffer: PixelBuffer) -> Sample:
        """Preprocess ``buffer`` and append it to the class.

        Raises
        ------
        UnknownClass
            No class with ``class_id``.
        InvalidImageFormat
            The buffer cannot be preprocessed (nothing is added).
        """
        self.get_class(class_id)
        sample = Sample.from_buffer(buffer)
        with self._lock:
            self.get_class(class_id).samples.append(sample)
        return sample

    def remove_sample(self, class_id: str, sample_id: str) -> None:
        with self._lock:
            cls = self.get_class(class_id)
            sample = cls.find_sample(sample_id)
            cls.samples.remove(sample)
        sample.release()

    # ── Materialisation ────────────────────────────────────────────────

    def validate(self) -> None:
        """Cheap checks that must pass before any tensor work.

        Raises
        ------
        InsufficientClasses
            Fewer than two classes.
        EmptyClass
            One or more classes have no samples.
        """
        with self._lock:
            if len(self._classes) < 2:
                raise InsufficientClasses(len(self._classes))
            empty = [c.name for c in self._classes if not c.samples]
            if empty:
                raise EmptyClass(empty)

            for cls in self._classes:
                if len(cls.samples) < self.config.min_samples_warning:
                    logger.warning(
                        "Class %r has only %d samples — add at least %d for best results",
                        cls.name, len(cls.samples), self.config.min_samples_warning,
                    )

    def materialize(self) -> MaterializedBatch:
        """Snapshot every sample into one training batch.

        Validation runs first, so a bad dataset fails before any arrays are
        stacked.  The returned arrays are copies: later edits to the dataset
        do not affect them.
        """
        with self._lock:
            self.validate()
            tensors: List[np.ndarray] = []
            labels: List[int] = []
            for idx, cls in enumerate(self._classes):
                for sample in cls.samples:
                    tensors.append(sample.tensor)
                    labels.append(idx)
            class_names = [c.name for c in self._classes]
            class_ids = [c.id for c in self._classes]

        batch = MaterializedBatch(
            images=np.stack(tensors).astype(np.float32),
            labels=np.asarray(labels, dtype=np.int32),
            class_names=class_names,
            class_ids=class_ids,
        )
        logger.info(
            "Materialised %d samples across %d classes",
            batch.num_samples, batch.num_classes,
        )
        return batch
