"""
Flow Lenia - Mass-Conserving Continuous Cellular Automaton Engine

Every cell carries a mass, a genome (structure, diet, sigma), aux traits
and a species id, plus a co-located waste pool. Mass is never created by
growth: it flows along a velocity field derived from the growth function,
and moves between the living and waste pools through eating and death.

One step runs the bulk-synchronous pipeline:

    1. potential  - species-dependent convolution of living mass
    2. velocity   - growth gradient, mass repulsion, chemotaxis
    3. advection  - gather transport, winner-takes-all traits
    4. resolve    - mutation, speciation, metabolism, death
    5. reduction  - total mass -> normalization factor for the next step

Stage 6 (species statistics) is a read-only diagnostic run on demand.

Reference: Plantec et al., "Flow-Lenia: Towards open-ended evolution in
cellular automata through mass conservation and parameter localization" (2023)
"""

import logging

import numpy as np

from .engine_base import CAEngine, brush_falloff
from .genome import (
    STRUCTURE, DIET, SIGMA, N_AUX, DEFAULT_GENOME, DEFAULT_AUX,
    fresh_species_ids,
)
from .grid import DoubleBuffer, AdvectedFields, Environment, seed_blocks
from .parallel import ParallelExecutor
from .potential import PotentialField
from .velocity import compute_velocity, velocity_ceiling
from .advection import advect, search_radius
from .resolve import resolve, draw_noise, VOID_THRESHOLD
from .reduction import reduce_mass, normalization_factor
from .species_table import SpeciesTable, aggregate_species
from .presets import DEFAULT_PARAMS

logger = logging.getLogger(__name__)

MIN_SIZE = 8
PAINT_MASS = 0.5


class FlowLenia(CAEngine):

    engine_name = "flow_lenia"
    engine_label = "Flow Lenia"

    def __init__(self, size=128, seed=None, workers=1, **params):
        """
        Args:
            size: Grid dimension (size x size)
            seed: Seed for the engine's random stream (init, mutation, ids)
            workers: Parallel-for worker threads (1 runs inline)
            **params: Overrides for DEFAULT_PARAMS (see presets.py)
        """
        merged = dict(DEFAULT_PARAMS)
        merged.update(params)
        merged["size"] = size
        self.config_warnings = []
        merged, self.v_max = self._validate(merged)
        super().__init__(merged["size"])
        self.params = merged
        self._target_pinned = merged["target_mass"] is not None

        size = self.size
        self.grid = DoubleBuffer(size, size)
        self.parity = 0
        self.environment = Environment(size, size)
        self.advected = AdvectedFields(size, size)
        # Transient work buffers, recomputed every step
        self.potential = np.zeros((size, size), dtype=np.float64)
        self.velocity = np.zeros((2, size, size), dtype=np.float64)
        self.waste_velocity = np.zeros((2, size, size), dtype=np.float64)

        self.executor = ParallelExecutor(workers)
        self.potential_field = PotentialField(size, size, R=merged["R"],
                                              floor=merged["floor"])
        self.table = SpeciesTable(merged["table_capacity"])

        self.rng = np.random.default_rng(seed)
        self.scale = 1.0
        self.total_mass = 0.0
        self._overflow_reported = False

    # -----------------------------------------------------------------------
    # State access
    # -----------------------------------------------------------------------

    @property
    def current(self):
        """The committed state (source buffer of the next step)."""
        return self.grid.read(self.parity)

    @property
    def world(self):
        return self.current.mass

    def snapshot(self):
        """Copies of every persistent channel of the committed state."""
        cur = self.current
        return {
            "generation": self.generation,
            "mass": cur.mass.copy(),
            "genome": cur.genome.copy(),
            "aux": cur.aux.copy(),
            "species": cur.species.copy(),
            "waste_mass": cur.waste_mass.copy(),
            "waste_type": cur.waste_type.copy(),
            "waste_velocity": cur.waste_vel.copy(),
        }

    # -----------------------------------------------------------------------
    # Pipeline
    # -----------------------------------------------------------------------

    def step(self):
        """Advance one time step. Returns the living mass."""
        p = dict(self.params, v_max=self.v_max)
        ex = self.executor
        src = self.grid.read(self.parity)
        dst = self.grid.write(self.parity)

        self.potential_field.compute(ex, src.mass, src.genome, self.potential)
        compute_velocity(ex, src, self.potential, p, self.velocity,
                         self.waste_velocity)
        radius = search_radius(self.v_max, p["dt"])
        advect(ex, src, self.velocity, p["dt"], self.advected, radius,
               floor=p["floor"],
               waste_velocity=self.waste_velocity if p["physics"] else None)
        noise = draw_noise(self.rng, self.size, self.size)
        resolve(ex, self.advected, src, self.potential, self.environment,
                p, self.scale, noise, dst)

        self.parity ^= 1
        self.generation += 1

        self.total_mass = reduce_mass(ex, dst, fixed_point=p["fixed_point"])
        if p["normalize"]:
            self.scale = normalization_factor(self.total_mass, p["target_mass"])
        else:
            self.scale = 1.0
        logger.debug("step %d: total mass %.4f, next scale %.4f",
                     self.generation, self.total_mass, self.scale)
        return self.world

    def species_stats(self, n=10):
        """Run the aggregation pass and return the n most populous species."""
        aggregate_species(self.executor, self.current, self.table)
        if self.table.dropped and not self._overflow_reported:
            self._overflow_reported = True
            self._warn(f"species table capacity {self.table.capacity} exceeded: "
                       f"{self.table.dropped} cells missing from statistics")
        return self.table.top(n)

    # -----------------------------------------------------------------------
    # Seeding and painting
    # -----------------------------------------------------------------------

    def seed(self, seed_type="blocks", seed=None, density=0.5, block_size=8,
             **_kw):
        """Reinitialize the grid and regenerate the environment.

        seed_type: "blocks" (random block pattern) or "dense" (every block)
        """
        if seed is not None:
            self.rng = np.random.default_rng(seed)
        if seed_type == "dense":
            density = 1.0
        elif seed_type != "blocks":
            raise ValueError(f"Unknown seed type: {seed_type}")

        self.environment = Environment(self.size, self.size, rng=self.rng)
        self.parity = 0
        cur = self.current
        n_filled = seed_blocks(cur, self.rng, density=density,
                               block_size=block_size)
        self.grid.write(self.parity).copy_from(cur)
        self.generation = 0
        self.scale = 1.0
        self.total_mass = cur.total_mass()
        self._overflow_reported = False
        if not self._target_pinned:
            self.params["target_mass"] = self.total_mass
        logger.debug("seeded %d blocks, total mass %.3f", n_filled,
                     self.total_mass)

    def paint(self, position, radius, hue, mode="create"):
        """Apply a brush directive to the committed state.

        create: adds mass with structure/diet = hue under one fresh species id
        erase:  moves living mass under the brush into the waste pool

        Returns the net change of living + waste mass (0 for erase).
        """
        cx, cy = position
        influence = brush_falloff(self.size, cx, cy, radius)
        touched = influence > 0.0
        cur = self.current
        hue = float(np.clip(hue, 0.0, 1.0))

        if mode == "create":
            added = influence * PAINT_MASS
            cur.mass += added
            cur.genome[STRUCTURE][touched] = hue
            cur.genome[DIET][touched] = hue
            cur.genome[SIGMA][touched] = DEFAULT_GENOME[2]
            for i in range(N_AUX):
                cur.aux[i][touched] = DEFAULT_AUX[i]
            cur.species[touched] = fresh_species_ids(self.rng, 1)[0]
            delta = float(added.sum())
        elif mode == "erase":
            moved = cur.mass * np.clip(influence, 0.0, 1.0)
            self._bury(cur, moved)
            delta = 0.0
        else:
            raise ValueError(f"Unknown brush mode: {mode}")

        # Fold brush leftovers below the void threshold into waste
        residue = touched & (cur.mass < VOID_THRESHOLD)
        self._bury(cur, np.where(residue, cur.mass, 0.0))
        cur.species[residue] = 0

        if delta and self.params["target_mass"] is not None:
            self.params["target_mass"] += delta
        return delta

    def _bury(self, cur, moved):
        """Move `moved` living mass into the waste pool, mixing waste type."""
        new_waste = cur.waste_mass + moved
        share = np.divide(moved, new_waste, out=np.zeros_like(moved),
                          where=new_waste > 1e-12)
        cur.waste_type += (cur.genome[STRUCTURE] - cur.waste_type) * share
        np.clip(cur.waste_type, 0.0, 1.0, out=cur.waste_type)
        cur.mass -= moved
        np.maximum(cur.mass, 0.0, out=cur.mass)
        cur.waste_mass[:] = new_waste

    def clear(self):
        for buf in self.grid.buffers:
            buf.clear()
        self.parity = 0
        self.generation = 0
        self.scale = 1.0
        self.total_mass = 0.0
        self._overflow_reported = False
        if not self._target_pinned:
            self.params["target_mass"] = None

    # -----------------------------------------------------------------------
    # Parameters
    # -----------------------------------------------------------------------

    def set_params(self, **params):
        """Update parameters. Rebuilds kernels if R or the boundary changes."""
        if "size" in params and params["size"] != self.size:
            self._warn("grid size is fixed after construction; ignoring size")
        params.pop("size", None)
        unknown = [k for k in params if k not in DEFAULT_PARAMS]
        for key in unknown:
            params.pop(key)
            self._warn(f"unknown parameter ignored: {key}")
        if "target_mass" in params:
            self._target_pinned = params["target_mass"] is not None

        merged = dict(self.params)
        merged.update(params)
        merged, self.v_max = self._validate(merged)
        self.params = merged

        self.potential_field.configure(R=merged["R"], floor=merged["floor"])
        if merged["table_capacity"] != self.table.capacity:
            self.table = SpeciesTable(merged["table_capacity"])
            self._overflow_reported = False

    def get_params(self):
        return dict(self.params)

    def _warn(self, message):
        logger.warning(message)
        self.config_warnings.append(message)

    def _validate(self, params):
        """Clamp a parameter dict into a runnable configuration.

        Never raises for bad values: every fix-up is reported through
        config_warnings. Returns (params, velocity ceiling).
        """
        params = dict(params)
        size = int(params["size"])
        if size < MIN_SIZE:
            self._warn(f"grid size {size} too small; using {MIN_SIZE}")
            size = MIN_SIZE
        params["size"] = size

        for d in self.get_slider_defs():
            key = d["key"]
            value = params[key]
            clamped = min(d["max"], max(d["min"], value))
            if clamped != value:
                self._warn(f"{key}={value} out of range; clamped to {clamped}")
            if d.get("step") == 1:
                clamped = int(clamped)
            params[key] = clamped

        max_R = max(1, size // 2 - 1)
        if params["R"] > max_R:
            self._warn(f"kernel radius {params['R']} exceeds search window; "
                       f"clamped to {max_R}")
            params["R"] = max_R

        v_max = velocity_ceiling(params["physics"])
        max_radius = (size - 1) // 2
        if search_radius(v_max, params["dt"]) > max_radius:
            # Stay just under the boundary so ceil() cannot round up past it
            v_max = max(0.0, 0.999 * (max_radius - 1) / params["dt"])
            self._warn(f"advection window wider than the grid; velocity "
                       f"ceiling reduced to {v_max:.2f}")

        capacity = int(params["table_capacity"])
        if capacity < 1:
            self._warn("species table capacity must be positive; using 1")
            capacity = 1
        params["table_capacity"] = capacity

        target = params["target_mass"]
        if target is not None and target < 0:
            self._warn("negative target mass; normalization disabled")
            params["target_mass"] = None
        return params, v_max

    @property
    def stats(self):
        cur = self.current
        base = super().stats
        base.update({
            "waste": float(cur.waste_mass.sum()),
            "total": cur.total_mass(),
            "target": self.params["target_mass"],
            "scale": self.scale,
            "species": int(np.unique(cur.species[cur.species != 0]).size),
        })
        return base

    @classmethod
    def get_slider_defs(cls):
        return [
            {"key": "dt", "label": "Time step", "section": "TIME",
             "min": 0.01, "max": 1.0, "default": 0.2, "fmt": ".2f"},
            {"key": "R", "label": "Kernel radius", "section": "KERNEL",
             "min": 2, "max": 32, "default": 8, "fmt": ".0f", "step": 1},
            {"key": "mutation_rate", "label": "Mutation", "section": "GENETICS",
             "min": 0.0, "max": 1.0, "default": 0.05, "fmt": ".3f"},
            {"key": "inertia", "label": "Genetic inertia", "section": "GENETICS",
             "min": 0.0, "max": 1.0, "default": 0.3, "fmt": ".2f"},
            {"key": "eat_rate", "label": "Eat rate", "section": "METABOLISM",
             "min": 0.0, "max": 5.0, "default": 0.5, "fmt": ".2f"},
            {"key": "decay_rate", "label": "Decay", "section": "METABOLISM",
             "min": 0.0, "max": 1.0, "default": 0.02, "fmt": ".3f"},
            {"key": "diet_selectivity", "label": "Diet selectivity",
             "section": "METABOLISM",
             "min": 0.01, "max": 1.0, "default": 0.5, "fmt": ".2f"},
            {"key": "chemotaxis", "label": "Chemotaxis", "section": "FORCES",
             "min": 0.0, "max": 5.0, "default": 0.0, "fmt": ".2f"},
            {"key": "friction", "label": "Friction", "section": "PHYSICS",
             "min": 0.0, "max": 1.0, "default": 0.1, "fmt": ".2f"},
            {"key": "gravity", "label": "Gravity", "section": "PHYSICS",
             "min": -2.0, "max": 2.0, "default": 0.0, "fmt": ".2f"},
            {"key": "immiscibility", "label": "Immiscibility", "section": "PHYSICS",
             "min": 0.25, "max": 4.0, "default": 1.0, "fmt": ".2f"},
            {"key": "velocity_impact", "label": "Velocity impact",
             "section": "PHYSICS",
             "min": 0.0, "max": 1.0, "default": 0.0, "fmt": ".2f"},
        ]
