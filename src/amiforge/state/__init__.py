"""State management module for tracking images."""

from .manager import StateLockError, StateManager, StateNotFoundError
from .models import FieldDrift, ImageRecord, ImageStatus, ObservedEbsDevice, ObservedImage, StateFile

__all__ = [
    "FieldDrift",
    "ImageRecord",
    "ImageStatus",
    "ObservedEbsDevice",
    "ObservedImage",
    "StateFile",
    "StateManager",
    "StateLockError",
    "StateNotFoundError",
]
