"""
Abstract Base Class for Mass-Conserving CA Engines

Engines own their grid state and expose it to a driver that supplies
parameters between steps and reads result buffers between steps. The
driver never sees a half-finished step.
"""

from abc import ABC, abstractmethod
import numpy as np


class CAEngine(ABC):
    """Base class for cellular automaton engines."""

    engine_name = ""   # e.g. "flow_lenia"
    engine_label = ""  # e.g. "Flow Lenia"

    def __init__(self, size=128):
        self.size = size
        self.generation = 0

    @property
    @abstractmethod
    def world(self):
        """Living mass of the current (committed) state, shape (size, size)."""

    @abstractmethod
    def step(self):
        """Advance one time step. Returns the living mass."""

    def step_n(self, n):
        """Advance n steps. Returns final state."""
        for _ in range(n):
            self.step()
        return self.world

    @abstractmethod
    def set_params(self, **params):
        """Update engine parameters."""

    @abstractmethod
    def get_params(self):
        """Return dict of current parameter values."""

    @abstractmethod
    def seed(self, seed_type="blocks", **kwargs):
        """Seed the world based on type string."""

    @abstractmethod
    def paint(self, position, radius, hue, mode="create"):
        """Apply one paint-brush directive between steps."""

    def add_blob(self, cx, cy, radius=15, hue=0.5):
        """Paint living matter at (cx, cy)."""
        return self.paint((cx, cy), radius, hue, mode="create")

    def remove_blob(self, cx, cy, radius=15):
        """Erase living matter at (cx, cy)."""
        return self.paint((cx, cy), radius, 0.0, mode="erase")

    @abstractmethod
    def clear(self):
        """Clear the world."""

    @property
    def stats(self):
        """Return current world statistics."""
        world = self.world
        return {
            "generation": self.generation,
            "mass": float(world.sum()),
            "mean": float(world.mean()),
            "max": float(world.max()),
            "alive_pct": float((world > 0.01).sum()) / world.size * 100,
        }

    @classmethod
    @abstractmethod
    def get_slider_defs(cls):
        """Return list of slider definitions for a driver's control panel.

        Each entry is a dict:
            {"key": "dt", "label": "Time step", "section": "TIME",
             "min": 0.05, "max": 1.0, "default": 0.2,
             "fmt": ".2f", "step": None}
        """


def brush_falloff(size, cx, cy, radius):
    """Smooth (1 - d/r)^2 brush profile centred on (cx, cy)."""
    Y, X = np.ogrid[:size, :size]
    dist = np.sqrt((X - cx) ** 2 + (Y - cy) ** 2)
    return np.clip(1.0 - dist / max(radius, 1e-6), 0, 1) ** 2
