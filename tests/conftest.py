"""
Shared fixtures.

Every session uses the built-in conv stack so no ImageNet download is
needed; embeddings are 64-dimensional.
"""

import os

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "teachable.settings")
os.environ.setdefault("TF_CPP_MIN_LOG_LEVEL", "2")

import django

django.setup()

import numpy as np
import pytest

from training.config import TrainingConfig
from training.preprocess import PixelBuffer
from training.session import Session


@pytest.fixture
def config():
    return TrainingConfig(
        base_model="builtin",
        prefer_gpu=False,
        epochs=3,
        batch_size=8,
        shuffle_seed=7,
    )


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def make_buffer(rng):
    """Factory for synthetic RGB frames dominated by one channel."""

    def _make(channel=0, width=64, height=48):
        pixels = rng.integers(0, 60, size=(height, width, 3), dtype=np.uint8)
        pixels[..., channel] = rng.integers(180, 256, size=(height, width), dtype=np.uint8)
        return PixelBuffer.from_array(pixels)

    return _make


@pytest.fixture
def session(config):
    """Session with the extractor loaded and the two default classes."""
    s = Session(config)
    s.load_extractor()
    return s


@pytest.fixture
def filled_session(session, make_buffer):
    """Two classes × three samples each, ready to train."""
    a, b = session.classes
    for _ in range(3):
        session.add_sample(a.id, make_buffer(channel=0))
        session.add_sample(b.id, make_buffer(channel=2))
    return session
