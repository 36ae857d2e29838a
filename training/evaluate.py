"""
Held-out evaluation — runs after a successful training run.

Produces, for the validation split of the run:
- accuracy and loss,
- per-class precision / recall / F1 / support (``classification_report``),
- the confusion matrix as a nested list.

Nothing is written to disk; the dict is attached to the ``TrainingRun``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

import numpy as np
import tensorflow as tf
from sklearn.metrics import classification_report, confusion_matrix

logger = logging.getLogger(__name__)


def evaluate_head(
    head: tf.keras.Model,
    embeddings: np.ndarray,
    labels: np.ndarray,
    class_names: List[str],
) -> Dict[str, Any]:
    """Evaluate ``head`` on embedded validation samples.

    Parameters
    ----------
    head : tf.keras.Model
        Trained classifier head (softmax output).
    embeddings : np.ndarray
        ``(n, dim)`` validation embeddings.
    labels : np.ndarray
        ``(n,)`` integer labels (positions in ``class_names``).
    class_names : list[str]
        Ordered class names matching label indices.

    Returns
    -------
    dict
        Keys: num_samples, accuracy, loss, macro_f1, per_class (list),
        confusion_matrix (nested list).  Only ``num_samples`` is set when
        there is no validation data.
    """
    if len(labels) == 0:
        return {"num_samples": 0}

    probs = np.asarray(head(embeddings, training=False), dtype=np.float64)
    y_pred = probs.argmax(axis=1)
    y_true = np.asarray(labels, dtype=np.int64)

    picked = np.clip(probs[np.arange(len(y_true)), y_true], 1e-7, 1.0)
    loss = float(-np.mean(np.log(picked)))
    accuracy = float(np.mean(y_pred == y_true))

    all_labels = list(range(len(class_names)))
    cm = confusion_matrix(y_true, y_pred, labels=all_labels)
    report = classification_report(
        y_true, y_pred,
        target_names=class_names,
        labels=all_labels,
        output_dict=True,
        zero_division=0,
    )

    per_class = []
    for name in class_names:
        stats = report.get(name, {})
        per_class.append({
            "class": name,
            "precision": round(stats.get("precision", 0), 4),
            "recall": round(stats.get("recall", 0), 4),
            "f1": round(stats.get("f1-score", 0), 4),
            "support": int(stats.get("support", 0)),
        })

    metrics = {
        "num_samples": int(len(y_true)),
        "accuracy": round(accuracy, 4),
        "loss": round(loss, 4),
        "macro_f1": round(report.get("macro avg", {}).get("f1-score", 0), 4),
        "per_class": per_class,
        "confusion_matrix": cm.tolist(),
    }
    logger.info(
        "Validation — accuracy=%.4f, loss=%.4f, macro_f1=%.4f (%d samples)",
        metrics["accuracy"], metrics["loss"], metrics["macro_f1"], metrics["num_samples"],
    )
    return metrics
