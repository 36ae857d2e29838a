"""
Launch a demo training run on synthetic images.

Two classes ("red-ish" and "blue-ish" noise), 8 samples each, then a single
prediction.  The whole-image model (extractor + head) is saved under
models/demo_transfer.keras.

Run with: python start_demo_training.py [--base mobilenet|builtin] [--epochs N]
"""
import argparse
import logging
import os
from pathlib import Path

os.environ.setdefault("TF_CPP_MIN_LOG_LEVEL", "1")

import numpy as np

from training.config import TrainingConfig
from training.preprocess import PixelBuffer
from training.session import Session


def synthetic_frame(rng, channel):
    pixels = rng.integers(0, 80, size=(96, 96, 3), dtype=np.uint8)
    pixels[..., channel] = rng.integers(170, 256, size=(96, 96), dtype=np.uint8)
    return PixelBuffer.from_array(pixels)


parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
parser.add_argument("--base", default="builtin")
parser.add_argument("--epochs", type=int, default=5)
parser.add_argument("--out", default="models/demo_transfer.keras")
args = parser.parse_args()

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

config = TrainingConfig(base_model=args.base, epochs=args.epochs, batch_size=8)
session = Session(config)
session.load_extractor()

rng = np.random.default_rng(0)
red, blue = session.classes
session.rename_class(red.id, "red-ish")
session.rename_class(blue.id, "blue-ish")
for _ in range(8):
    session.add_sample(red.id, synthetic_frame(rng, 0))
    session.add_sample(blue.id, synthetic_frame(rng, 2))

print("=" * 60)
print("STARTING DEMO TRAINING RUN")
print("=" * 60)
print(f"  Backend      : {session.extractor.backend}")
print(f"  Cut layer    : {session.extractor.cut_layer} ({session.extractor.cut_role})")
print(f"  Embedding    : {session.extractor.embedding_dim}")
print(f"  Epochs       : {config.epochs}")
print(f"  Samples      : {session.dataset.total_samples}")
print("=" * 60)

with session.start_training() as stream:
    for progress in stream:
        print(
            f"  epoch {progress.epoch}/{progress.total_epochs}  "
            f"loss={progress.loss:.4f}  acc={progress.accuracy:.3f}  "
            f"t={progress.elapsed_seconds:.1f}s"
        )

run = session.run
print()
print("=" * 60)
print(f"RUN COMPLETE: {run.run_id}")
print(f"  State      : {run.state.value}")
print(f"  Metrics    : {run.metrics.get('accuracy')}")

for p in session.predict(synthetic_frame(rng, 0)):
    print(f"  {p.class_name:<10} {p.confidence:6.2f}%")

out = Path(args.out)
out.parent.mkdir(parents=True, exist_ok=True)
session.transfer_model().save(out)
print(f"  Model saved: {out}")
print("=" * 60)
