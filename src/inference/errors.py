"""
Exception hierarchy for the detection core.

An empty detection list is a valid result, never an error.
"""

from __future__ import annotations


class DetectionError(Exception):
    """Base class for every error raised by the detection core."""


class BackendUnavailableError(DetectionError):
    """A compute backend is missing or failed to initialise. Triggers fallback."""


class ModelLoadError(DetectionError):
    """The model artifact could not be fetched, parsed or warmed up."""


class ShapeMismatchError(DetectionError):
    """A tensor did not have the shape the network or decoder expects."""


class InferenceError(DetectionError):
    """The runtime failed while executing a forward pass."""


class LoopEscalationError(InferenceError):
    """A streaming loop stopped itself after repeated cycle failures."""

    def __init__(self, message: str, failures: int):
        super().__init__(message)
        self.failures = failures
