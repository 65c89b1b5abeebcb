"""Reconstruction state: views, landmarks, observations and their session."""

from .landmark import Landmark
from .observation import Observation
from .session import Session
from .view import View

__all__ = [
    "Landmark",
    "Observation",
    "Session",
    "View",
]
