"""
Inference — one frame in, a ranked confidence list out.

Pipeline:
    1. Preprocess the frame (same path as training) → (224, 224, 3).
    2. Frozen extractor → embedding.
    3. Head → softmax over N classes.
    4. Zip with class names, scale to percent, sort by confidence
       (descending), ties by class index (ascending).
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

import numpy as np

from .extractor import FeatureExtractor
from .head import TrainableModel
from .preprocess import PixelBuffer, preprocess

logger = logging.getLogger(__name__)

Frame = Union[PixelBuffer, np.ndarray]


@dataclass(frozen=True)
class Prediction:
    class_name: str
    confidence: float       # percent, 0..100
    class_index: int

    def to_dict(self) -> dict:
        return {
            "class_name": self.class_name,
            "confidence": round(self.confidence, 4),
            "class_index": self.class_index,
        }


def rank_predictions(probabilities: Sequence[float], class_names: Sequence[str]) -> List[Prediction]:
    """Turn a probability vector into a sorted ``Prediction`` list."""
    predictions = [
        Prediction(
            class_name=class_names[idx] if idx < len(class_names) else f"Class {idx + 1}",
            confidence=float(p) * 100.0,
            class_index=idx,
        )
        for idx, p in enumerate(probabilities)
    ]
    predictions.sort(key=lambda p: (-p.confidence, p.class_index))
    return predictions


class InferenceEngine:
    """Read-only view over an extractor and a trainable model."""

    def __init__(self, extractor: FeatureExtractor, model: TrainableModel) -> None:
        self.extractor = extractor
        self.model = model
        self.last_inference_seconds: float = 0.0

    def predict(self, frame: Frame, class_names: Sequence[str]) -> List[Prediction]:
        """Rank every class for one frame.

        Parameters
        ----------
        frame : PixelBuffer or np.ndarray
            A decoded frame, or an already preprocessed ``(224, 224, 3)``
            array.
        class_names : sequence of str
            Names in label order.

        Returns
        -------
        list[Prediction]
            Every class, highest confidence first.

        Raises
        ------
        ModelNotReady
            No successful training run yet.
        ExtractorNotLoaded
            The extractor is not loaded.
        InvalidImageFormat
            The frame cannot be preprocessed.
        """
        head = self.model.require_ready()
        start = time.perf_counter()

        tensor = preprocess(frame) if isinstance(frame, PixelBuffer) else frame
        embedding = self.extractor.embed(tensor)
        probs = np.asarray(head(embedding[np.newaxis], training=False))[0]

        self.last_inference_seconds = time.perf_counter() - start
        logger.debug("Inference took %.1f ms", self.last_inference_seconds * 1000)
        return rank_predictions(probs, class_names)

    async def apredict(self, frame: Frame, class_names: Sequence[str]) -> List[Prediction]:
        return await asyncio.to_thread(self.predict, frame, class_names)

    def best(self, frame: Frame, class_names: Sequence[str]) -> Optional[Prediction]:
        """Top prediction only (headline readout)."""
        ranked = self.predict(frame, class_names)
        return ranked[0] if ranked else None
