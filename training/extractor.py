"""
Frozen feature extractor — a pretrained classifier cut down to an embedding.

Loading
    1. Build the configured base network on the GPU (when one is visible
       and ``prefer_gpu`` is set).
    2. On failure, build it again on the CPU.
    3. On failure again, build a small random conv stack (degraded, but the
       session stays usable).  This is logged, never raised.

Cutting
    The base network is truncated at its last pre-classification layer.
    ``CUT_POINTS`` is a ranked table of layer roles; the first role with a
    matching layer wins.  If nothing matches, the layer at
    ``FALLBACK_CUT_OFFSET`` from the output is used.  The truncated graph
    is frozen for the rest of the process.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np
import tensorflow as tf
from tensorflow.keras import layers
from tensorflow.keras.models import load_model

from .config import BASE_BUILTIN, BASE_MOBILENET, CHANNELS, IMAGE_SIZE, TrainingConfig
from .errors import ExtractorNotLoaded, InvalidImageFormat

logger = logging.getLogger(__name__)

# ── Cut-point table ─────────────────────────────────────────────────────────

# (role, layer-name patterns), best role first.
CUT_POINTS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("global_pooling", ("global_average_pooling", "global_max_pooling")),
    ("flatten", ("flatten",)),
    ("dense_projection", ("dense",)),
)

# Used when no layer matches any role: second-to-last layer.
FALLBACK_CUT_OFFSET: int = -2

BACKEND_GPU = "GPU"
BACKEND_CPU = "CPU"
BACKEND_BUILTIN = "builtin"


def find_cut_layer(model: tf.keras.Model) -> Tuple[tf.keras.layers.Layer, str]:
    """Return ``(layer, role)`` where the embedding should be taken from.

    The output layer itself is never a candidate.
    """
    candidates = [
        layer for layer in model.layers[:-1]
        if not isinstance(layer, layers.InputLayer)
    ]
    for role, patterns in CUT_POINTS:
        for layer in candidates:
            name = layer.name.lower()
            if any(p in name for p in patterns):
                return layer, role

    return model.layers[FALLBACK_CUT_OFFSET], "fallback_offset"


def build_builtin_base(seed: int = 1337) -> tf.keras.Model:
    """Small convolutional stack used when no pretrained network loads.

    Weights are random (seeded), so embeddings only carry low-level colour
    and texture statistics.
    """
    h, w = IMAGE_SIZE
    init = tf.keras.initializers.GlorotUniform
    inputs = layers.Input(shape=(h, w, CHANNELS))
    x = layers.Conv2D(32, 3, activation="relu", kernel_initializer=init(seed=seed))(inputs)
    x = layers.MaxPooling2D(pool_size=2)(x)
    x = layers.Conv2D(64, 3, activation="relu", kernel_initializer=init(seed=seed + 1))(x)
    x = layers.MaxPooling2D(pool_size=2)(x)
    x = layers.GlobalAveragePooling2D(name="global_average_pooling2d")(x)
    outputs = layers.Dense(
        1000, activation="softmax", name="predictions",
        kernel_initializer=init(seed=seed + 2),
    )(x)
    return tf.keras.Model(inputs, outputs, name="builtin_cnn")


class FeatureExtractor:
    """Loads a pretrained network once and exposes ``embed``.

    Parameters
    ----------
    config : TrainingConfig
        ``base_model`` picks the network, ``prefer_gpu`` the device order,
        ``batch_size`` the chunk size for ``embed``.
    """

    def __init__(self, config: Optional[TrainingConfig] = None) -> None:
        self.config = config or TrainingConfig()
        self.backend: Optional[str] = None
        self.cut_layer: Optional[str] = None
        self.cut_role: Optional[str] = None
        self._device: str = "/CPU:0"
        self._model: Optional[tf.keras.Model] = None
        self._load_lock = threading.Lock()

    # ── State ──────────────────────────────────────────────────────────

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    @property
    def model(self) -> tf.keras.Model:
        if self._model is None:
            raise ExtractorNotLoaded()
        return self._model

    @property
    def embedding_dim(self) -> int:
        return int(self.model.outputs[0].shape[-1])

    # ── Loading ────────────────────────────────────────────────────────

    def _candidate_devices(self) -> List[str]:
        devices = []
        if self.config.prefer_gpu and tf.config.list_physical_devices("GPU"):
            devices.append(BACKEND_GPU)
        devices.append(BACKEND_CPU)
        return devices

    def _build_base(self) -> tf.keras.Model:
        source = self.config.base_model
        h, w = IMAGE_SIZE
        if source == BASE_MOBILENET:
            return tf.keras.applications.MobileNet(
                input_shape=(h, w, CHANNELS),
                alpha=1.0,
                include_top=True,
                weights="imagenet",
            )
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Base model not found: {path}")
        return load_model(str(path), compile=False)

    def load(self) -> "FeatureExtractor":
        """Load, cut and freeze the extractor.  Safe to call twice."""
        with self._load_lock:
            if self._model is None:
                self._load()
        return self

    def _load(self) -> None:
        base = None
        if self.config.base_model != BASE_BUILTIN:
            for device in self._candidate_devices():
                try:
                    with tf.device(f"/{device}:0"):
                        base = self._build_base()
                except Exception:
                    logger.warning(
                        "Loading base model %r on %s failed, trying next backend",
                        self.config.base_model, device, exc_info=True,
                    )
                    continue
                self.backend = device
                self._device = f"/{device}:0"
                logger.info(
                    "Loaded base model %r on %s backend", self.config.base_model, device,
                )
                break

        if base is None:
            if self.config.base_model != BASE_BUILTIN:
                logger.warning(
                    "No backend could load %r — using the built-in conv stack "
                    "(reduced accuracy)", self.config.base_model,
                )
            with tf.device("/CPU:0"):
                base = build_builtin_base()
            self.backend = BACKEND_BUILTIN
            self._device = "/CPU:0"

        self._model = self._cut(base)
        logger.info(
            "Feature extractor ready: cut at %r (%s), embedding dim %d, backend %s",
            self.cut_layer, self.cut_role, self.embedding_dim, self.backend,
        )

    async def aload(self) -> "FeatureExtractor":
        """Awaitable ``load``; the blocking work runs in a worker thread."""
        return await asyncio.to_thread(self.load)

    def _cut(self, base: tf.keras.Model) -> tf.keras.Model:
        layer, role = find_cut_layer(base)
        self.cut_layer = layer.name
        self.cut_role = role

        outputs = layer.output
        if len(outputs.shape) > 2:
            # e.g. MobileNet's keepdims pooling: (1, 1, C) → (C,)
            outputs = layers.Flatten(name="embedding_flatten")(outputs)

        extractor = tf.keras.Model(base.inputs, outputs, name="feature_extractor")
        extractor.trainable = False
        return extractor

    # ── Embedding ──────────────────────────────────────────────────────

    def embed(self, images: np.ndarray) -> np.ndarray:
        """Map preprocessed image(s) to embedding vector(s).

        Parameters
        ----------
        images : np.ndarray
            ``(224, 224, 3)`` or ``(n, 224, 224, 3)``, float32 in [0, 1].

        Returns
        -------
        np.ndarray
            ``(dim,)`` for a single image, ``(n, dim)`` for a batch.

        Raises
        ------
        ExtractorNotLoaded
            If ``load()`` has not completed.
        InvalidImageFormat
            If the tensor shape is wrong.
        """
        model = self.model
        batch = np.asarray(images, dtype=np.float32)
        single = batch.ndim == 3
        if single:
            batch = batch[np.newaxis]
        if batch.ndim != 4 or batch.shape[1:] != (*IMAGE_SIZE, CHANNELS):
            raise InvalidImageFormat(
                f"Expected preprocessed tensor of shape (n, {IMAGE_SIZE[0]}, "
                f"{IMAGE_SIZE[1]}, {CHANNELS}), got {batch.shape}."
            )

        step = self.config.batch_size
        chunks = []
        with tf.device(self._device):
            for start in range(0, len(batch), step):
                out = model(batch[start:start + step], training=False)
                chunks.append(np.asarray(out, dtype=np.float32))

        if not chunks:
            return np.zeros((0, self.embedding_dim), dtype=np.float32)
        result = np.concatenate(chunks, axis=0)
        return result[0] if single else result
