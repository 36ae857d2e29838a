"""
Error kinds raised by the training engine.

Everything derives from ``TeachableError`` so callers (and the HTTP layer)
can catch engine failures in one place.  Input-validation errors also
derive from the matching builtin (``ValueError`` / ``KeyError``).
"""

from __future__ import annotations

from typing import Iterable, Optional


class TeachableError(Exception):
    """Base class for all engine errors."""


class InvalidImageFormat(TeachableError, ValueError):
    """Pixel buffer has an unsupported mode, bad dimensions or wrong size."""


class ExtractorNotLoaded(TeachableError):
    """The feature extractor was used before ``load()`` finished."""

    def __init__(self, message: str = "Feature extractor is not loaded yet.") -> None:
        super().__init__(message)


class InsufficientClasses(TeachableError):
    """Fewer than two classes are defined."""

    def __init__(self, num_classes: int) -> None:
        self.num_classes = num_classes
        super().__init__(
            f"Need at least 2 classes to train, got {num_classes}."
        )


class EmptyClass(TeachableError):
    """At least one class has no samples."""

    def __init__(self, class_names: Iterable[str]) -> None:
        self.class_names = list(class_names)
        joined = '", "'.join(self.class_names)
        super().__init__(f'Classes "{joined}" have no training samples.')


class ModelNotReady(TeachableError):
    """Inference or export was requested before a successful training run."""

    def __init__(self, message: str = "Model not ready for predictions. Train it first.") -> None:
        super().__init__(message)


class TrainingAlreadyRunning(TeachableError):
    """A training run is in progress."""

    def __init__(self, message: str = "A training run is already in progress.") -> None:
        super().__init__(message)


class TrainingFailed(TeachableError):
    """A training run ended in the ``failed`` state.

    ``cause`` holds the original exception, when there is one.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        self.cause = cause
        super().__init__(message)


class UnknownClass(TeachableError, KeyError):
    """No class with the given id."""

    def __str__(self) -> str:
        return f"Unknown class id: {self.args[0]!r}"


class UnknownSample(TeachableError, KeyError):
    """No sample with the given id in the class."""

    def __str__(self) -> str:
        return f"Unknown sample id: {self.args[0]!r}"
