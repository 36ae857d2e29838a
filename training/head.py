"""
Classifier head — the only trainable part of the model.

Architecture::

    Input(embedding_dim)
      → Dropout(0.2)                 ← identity at inference
      → Dense(num_classes, softmax)  ← "predictions"

``TrainableModel`` owns the current head together with the ordered class
ids it was built for and the ``ready`` flag.
"""

from __future__ import annotations

import io
import json
import logging
import threading
import zipfile
from typing import Optional, Sequence, Tuple

import numpy as np
import tensorflow as tf
from tensorflow.keras.layers import Dense, Dropout, Input
from tensorflow.keras.optimizers import Adam

from .config import CHANNELS, IMAGE_SIZE, TrainingConfig
from .errors import InsufficientClasses, ModelNotReady

logger = logging.getLogger(__name__)

MANIFEST_KEY = "__manifest__"


# ═══════════════════════════════════════════════════════════════════════════
# Model building
# ═══════════════════════════════════════════════════════════════════════════

def build_head(
    embedding_dim: int,
    num_classes: int,
    config: Optional[TrainingConfig] = None,
) -> tf.keras.Model:
    """Build and compile a fresh head for ``num_classes`` classes.

    Raises
    ------
    InsufficientClasses
        If ``num_classes < 2``.
    """
    if num_classes < 2:
        raise InsufficientClasses(num_classes)
    config = config or TrainingConfig()

    inputs = Input(shape=(embedding_dim,), name="embedding")
    x = Dropout(config.dropout_rate, name="dropout")(inputs)
    outputs = Dense(num_classes, activation="softmax", name="predictions")(x)
    head = tf.keras.Model(inputs, outputs, name="classifier_head")
    compile_head(head, config)

    logger.info(
        "Built classifier head: %d → %d classes (dropout %.2f)",
        embedding_dim, num_classes, config.dropout_rate,
    )
    return head


def compile_head(head: tf.keras.Model, config: TrainingConfig) -> None:
    """Attach a fresh Adam optimizer and categorical cross-entropy."""
    head.compile(
        optimizer=Adam(learning_rate=config.learning_rate),
        loss=tf.keras.losses.CategoricalCrossentropy(),
        metrics=["accuracy"],
    )


def copy_head(head: tf.keras.Model, config: TrainingConfig) -> tf.keras.Model:
    """Return an independent, compiled copy of ``head`` with the same weights."""
    clone = tf.keras.models.clone_model(head)
    clone.set_weights(head.get_weights())
    compile_head(clone, config)
    return clone


def build_transfer_model(
    extractor: tf.keras.Model,
    head: tf.keras.Model,
) -> tf.keras.Model:
    """Compose image → frozen extractor → head into one Keras model."""
    h, w = IMAGE_SIZE
    inputs = Input(shape=(h, w, CHANNELS), name="image")
    features = extractor(inputs, training=False)
    outputs = head(features)
    return tf.keras.Model(inputs, outputs, name="transfer_model")


# ═══════════════════════════════════════════════════════════════════════════
# Trainable model state
# ═══════════════════════════════════════════════════════════════════════════

class TrainableModel:
    """Current head, the ordered class ids it serves, and the ready flag.

    The head is only valid for the exact class list it was built for: a
    different count or order of class ids drops it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.head: Optional[tf.keras.Model] = None
        self.signature: Tuple[str, ...] = ()
        self.ready: bool = False

    @property
    def num_classes(self) -> int:
        return len(self.signature)

    def ensure_head(
        self,
        embedding_dim: int,
        signature: Sequence[str],
        config: TrainingConfig,
    ) -> tf.keras.Model:
        """Return a head for ``signature``, rebuilding it if the class ids changed."""
        signature = tuple(signature)
        with self._lock:
            if self.head is None or self.signature != signature:
                self.head = build_head(embedding_dim, len(signature), config)
                self.signature = signature
                self.ready = False
            return self.head

    def invalidate(self, signature: Sequence[str]) -> None:
        """Drop the head if it was built for a different class list."""
        signature = tuple(signature)
        with self._lock:
            if self.head is not None and self.signature != signature:
                logger.info(
                    "Class list changed (%d → %d classes) — discarding trained head",
                    len(self.signature), len(signature),
                )
                self.head = None
                self.ready = False
            self.signature = signature

    def install(self, head: tf.keras.Model, signature: Sequence[str]) -> None:
        """Swap in a trained head and mark the model ready."""
        with self._lock:
            self.head = head
            self.signature = tuple(signature)
            self.ready = True

    def require_ready(self) -> tf.keras.Model:
        if not self.ready or self.head is None:
            raise ModelNotReady()
        return self.head


# ═══════════════════════════════════════════════════════════════════════════
# Serialisation
# ═══════════════════════════════════════════════════════════════════════════

def serialize_head(head: tf.keras.Model, manifest: dict) -> bytes:
    """Pack head weights and a JSON manifest into an ``.npz`` archive."""
    arrays = {f"w{i}": w for i, w in enumerate(head.get_weights())}
    arrays[MANIFEST_KEY] = np.frombuffer(
        json.dumps(manifest).encode("utf-8"), dtype=np.uint8,
    )
    out = io.BytesIO()
    np.savez(out, **arrays)
    return out.getvalue()


def deserialize_head(payload: bytes) -> tuple[list, dict]:
    """Inverse of ``serialize_head``: ``(weights, manifest)``.

    Raises
    ------
    ValueError
        If the payload is not a head archive.
    """
    try:
        with np.load(io.BytesIO(payload), allow_pickle=False) as archive:
            if MANIFEST_KEY not in archive.files:
                raise ValueError("Archive has no manifest.")
            manifest = json.loads(archive[MANIFEST_KEY].tobytes().decode("utf-8"))
            count = len(archive.files) - 1
            weights = [archive[f"w{i}"] for i in range(count)]
    except (OSError, KeyError, TypeError, zipfile.BadZipFile, json.JSONDecodeError) as exc:
        raise ValueError(f"Not a classifier head archive: {exc}") from exc
    return weights, manifest
