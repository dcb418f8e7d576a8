"""
FlowLeniaSimulator - headless driver around the FlowLenia engine

Owns the engine and everything that happens *between* steps: preset
switching, runtime parameter updates, queued paint-brush directives,
pause/resume, the fractional speed accumulator and the throttled species
statistics pass.

A step is atomic for observers: `advance()` and `snapshot()` take the same
lock, so a driver thread reading results never sees a half-written step.

Usage:
    from flow_lenia.simulator import FlowLeniaSimulator
    sim = FlowLeniaSimulator("primordial", 128, seed=7)
    sim.queue_paint((64, 64), 6, hue=0.3)
    sim.run(100)
    top = sim.latest_species
"""

import logging
import threading
from collections import deque

from .flow_lenia import FlowLenia
from .presets import get_preset, preset_params, SEED_KEYS

logger = logging.getLogger(__name__)


class FlowLeniaSimulator:
    """Between-step orchestration for a FlowLenia engine.

    Args:
        preset_key: Initial preset name (e.g. 'primordial', 'sediment')
        sim_size: Simulation grid size in cells
        seed: Seed for a reproducible run
        workers: Parallel-for worker threads
        top_n: How many species the throttled stats pass keeps
    """

    def __init__(self, preset_key="primordial", sim_size=128, seed=None,
                 workers=1, top_n=10):
        self.sim_size = sim_size
        self.workers = workers
        self.top_n = top_n

        # Fractional speed system (accumulator pattern)
        self.sim_speed = 1.0
        self.speed_accumulator = 0.0
        self.paused = False

        self._brushes = deque()
        self._lock = threading.Lock()
        self._steps_since_stats = 0
        self.latest_species = []

        self.engine = None
        self.preset_key = None
        self.apply_preset(preset_key, seed=seed)

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    def apply_preset(self, key, seed=None):
        """Build a fresh engine from a preset and seed it."""
        preset = get_preset(key)
        if preset is None:
            raise KeyError(f"Unknown preset: {key}")
        params = preset_params(key)
        params.pop("size", None)
        with self._lock:
            self.preset_key = key
            if self.engine is not None:
                self.engine.executor.shutdown()
            self.engine = FlowLenia(size=self.sim_size, seed=seed,
                                    workers=self.workers, **params)
            self._reseed(seed)
        for message in self.engine.config_warnings:
            logger.info("preset %s: %s", key, message)

    def set_runtime_params(self, **kwargs):
        """Set runtime parameters between steps.

        Supported keys:
            preset: Switch to named preset
            speed: Set sim_speed (steps per advance, fractional allowed)
            paused: Pause or resume
            reseed: Truthy value reseeds; an int is used as the seed
            anything else: forwarded to FlowLenia.set_params
        """
        engine_params = {}
        for key, val in kwargs.items():
            if key == "preset":
                self.apply_preset(val)
            elif key == "speed":
                self.sim_speed = max(0.0, float(val))
            elif key == "paused":
                self.paused = bool(val)
            elif key == "reseed":
                if val:
                    seed = val if isinstance(val, int) and not isinstance(val, bool) else None
                    with self._lock:
                        self._reseed(seed)
            else:
                engine_params[key] = val
        if engine_params:
            with self._lock:
                self.engine.set_params(**engine_params)

    def queue_paint(self, position, radius, hue=0.5, mode="create"):
        """Queue a brush directive; it is applied before the next step."""
        if mode not in ("create", "erase"):
            raise ValueError(f"Unknown brush mode: {mode}")
        self._brushes.append((tuple(position), float(radius), float(hue), mode))

    def pause(self):
        self.paused = True

    def resume(self):
        self.paused = False

    def advance(self):
        """Apply queued brushes and run the steps owed by the accumulator.

        Returns the number of engine steps run (0 while paused).
        """
        with self._lock:
            self._apply_brushes()
            if self.paused:
                return 0
            steps = 0
            self.speed_accumulator += self.sim_speed
            while self.speed_accumulator >= 1.0:
                self._step_once()
                self.speed_accumulator -= 1.0
                steps += 1
            return steps

    def run(self, n_steps):
        """Run exactly n_steps engine steps (ignores speed, honours pause)."""
        done = 0
        with self._lock:
            self._apply_brushes()
            while done < n_steps and not self.paused:
                self._step_once()
                done += 1
        return done

    def snapshot(self):
        """Consistent copy of the committed state plus the latest stats."""
        with self._lock:
            snap = self.engine.snapshot()
            snap["species_stats"] = [s.as_dict() for s in self.latest_species]
            snap["stats"] = self.engine.stats
        return snap

    @property
    def stats(self):
        with self._lock:
            return self.engine.stats

    @property
    def config_warnings(self):
        return list(self.engine.config_warnings)

    # -----------------------------------------------------------------------
    # Helpers (caller holds the lock)
    # -----------------------------------------------------------------------

    def _reseed(self, seed):
        preset = get_preset(self.preset_key)
        seed_kwargs = {k: preset[k] for k in SEED_KEYS[1:] if k in preset}
        self.engine.seed(preset.get("seed", "blocks"), seed=seed, **seed_kwargs)
        self._steps_since_stats = 0
        self.latest_species = self.engine.species_stats(self.top_n)

    def _apply_brushes(self):
        while self._brushes:
            position, radius, hue, mode = self._brushes.popleft()
            self.engine.paint(position, radius, hue, mode=mode)

    def _step_once(self):
        self.engine.step()
        self._steps_since_stats += 1
        interval = max(1, int(self.engine.params["stats_interval"]))
        if self._steps_since_stats >= interval:
            self.latest_species = self.engine.species_stats(self.top_n)
            self._steps_since_stats = 0
