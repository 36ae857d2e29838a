"""
Training configuration.

All tuneable settings live here so they are easy to find, review,
and override without touching training logic.  The HTTP layer builds a
``TrainingConfig`` from ``settings.TEACHABLE_TRAINING``; scripts and tests
construct one directly.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Tuple

# ── Fixed geometry ──────────────────────────────────────────────────────────

IMAGE_SIZE: Tuple[int, int] = (224, 224)   # MobileNet v1 input
CHANNELS: int = 3

# Display colours handed out to new classes, cycled by class count.
CLASS_COLORS: Tuple[str, ...] = (
    "green",
    "orange",
    "blue",
    "purple",
    "pink",
    "indigo",
    "red",
    "yellow",
)

# Base network choices understood by ``FeatureExtractor``.
BASE_MOBILENET = "mobilenet"
BASE_BUILTIN = "builtin"


@dataclass
class TrainingConfig:
    """All hyperparameters and settings for a session.

    Attributes
    ----------
    base_model : str
        * ``"mobilenet"`` → Keras MobileNet v1 with ImageNet weights.
        * ``"builtin"``   → small random conv stack, no download needed.
        * ``"/path/…"``   → any saved ``.keras`` classifier.
    epochs : int
        Default epoch count when the caller does not pass one (default 20).
    batch_size : int
        Mini-batch size for both embedding and fitting (default 16).
    learning_rate : float
        Adam learning rate for the head (default 1e-3).
    dropout_rate : float
        Dropout in front of the dense projection (default 0.2).
    validation_split : float
        Fraction of shuffled samples held out per run (default 0.2).
    shuffle_seed : int | None
        Seed for the per-run shuffle; ``None`` draws a fresh one.
    min_samples_warning : int
        Log a warning when a class has fewer samples than this.
    prefer_gpu : bool
        Try the GPU before the CPU when loading the extractor.
    """

    # ── Base model ──────────────────────────────────────────────────────
    base_model: str = BASE_MOBILENET
    prefer_gpu: bool = True

    # ── Hyperparameters ─────────────────────────────────────────────────
    epochs: int = 20
    batch_size: int = 16
    learning_rate: float = 1e-3
    dropout_rate: float = 0.2
    validation_split: float = 0.2
    image_size: tuple = IMAGE_SIZE

    # ── Data ────────────────────────────────────────────────────────────
    shuffle_seed: Optional[int] = None
    min_samples_warning: int = 3

    # ── Metadata ────────────────────────────────────────────────────────
    notes: str = ""

    # ── Helpers ──────────────────────────────────────────────────────────

    @classmethod
    def from_overrides(cls, overrides: Optional[Dict[str, Any]] = None) -> "TrainingConfig":
        """Build a config from a (possibly partial) dict of overrides.

        Raises
        ------
        TypeError
            If an override names an unknown field.
        ValueError
            If the resulting values are out of range.
        """
        config = cls(**(overrides or {}))
        if isinstance(config.image_size, list):
            config.image_size = tuple(config.image_size)
        config.validate()
        return config

    def validate(self) -> None:
        """Reject values the training loop cannot work with."""
        if self.epochs < 1:
            raise ValueError(f"epochs must be positive, got {self.epochs}")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        if self.learning_rate <= 0:
            raise ValueError(f"learning_rate must be positive, got {self.learning_rate}")
        if not 0.0 <= self.dropout_rate < 1.0:
            raise ValueError(f"dropout_rate must be in [0, 1), got {self.dropout_rate}")
        if not 0.0 <= self.validation_split < 1.0:
            raise ValueError(
                f"validation_split must be in [0, 1), got {self.validation_split}"
            )
        if tuple(self.image_size) != IMAGE_SIZE:
            raise ValueError(f"image_size is fixed at {IMAGE_SIZE}")

    def to_dict(self) -> dict:
        """Serialise to a JSON-safe dict (for status payloads and exports)."""
        data = asdict(self)
        data["image_size"] = list(self.image_size)
        return data
