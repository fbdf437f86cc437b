"""HTTP clients for the external classification and rebuild services."""

from .classifier import TypeClassifier
from .rebuild import RebuildCoordinator

__all__ = ["TypeClassifier", "RebuildCoordinator"]
