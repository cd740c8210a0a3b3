"""Projection of provider lifecycle events into the search read model."""

from .synchronizer import ProjectionSynchronizer

__all__ = ["ProjectionSynchronizer"]
