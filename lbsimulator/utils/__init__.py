"""Small helpers shared by the engine."""

from lbsimulator.utils.ids import IdGenerator

__all__ = ["IdGenerator"]
