"""
Teachable transfer-learning engine
==================================

Lets a user define a handful of classes, add example images, fine-tune a
small head on top of a frozen pretrained network, and rank classes for new
frames.

1. Decoded pixels are resized (bilinear, 224×224) and scaled to [0, 1].
2. A pretrained MobileNet, cut at its global pooling layer and frozen,
   turns each image into an embedding.
3. A dropout + softmax head is trained on those embeddings, one epoch at
   a time, with progress streamed back to the caller.
4. Inference runs extractor → head and returns a ranked confidence list.

Package layout
--------------
config.py     – ``TrainingConfig`` dataclass, image size, class palette.
errors.py     – Error kinds raised by the engine.
preprocess.py – ``PixelBuffer`` and the shared resize + normalise path.
extractor.py  – Backend fallback loading, cut-point table, ``embed``.
head.py       – Head building, ``TrainableModel`` state, weight export.
data.py       – Classes, samples, snapshot materialisation.
train.py      – Run state machine, epoch loop, progress stream.
evaluate.py   – Held-out metrics after a successful run.
inference.py  – Ranked predictions for one frame.
session.py    – ``Session`` context object tying it all together.
tasks.py      – Background thread launcher for the HTTP layer.
"""

from .config import TrainingConfig
from .errors import (
    EmptyClass,
    ExtractorNotLoaded,
    InsufficientClasses,
    InvalidImageFormat,
    ModelNotReady,
    TeachableError,
    TrainingAlreadyRunning,
    TrainingFailed,
)
from .inference import Prediction
from .preprocess import PixelBuffer
from .session import ModelStats, Session
from .train import EpochProgress, RunState, TrainingRun

__all__ = [
    "EmptyClass",
    "EpochProgress",
    "ExtractorNotLoaded",
    "InsufficientClasses",
    "InvalidImageFormat",
    "ModelNotReady",
    "ModelStats",
    "PixelBuffer",
    "Prediction",
    "RunState",
    "Session",
    "TeachableError",
    "TrainingAlreadyRunning",
    "TrainingConfig",
    "TrainingFailed",
    "TrainingRun",
]
