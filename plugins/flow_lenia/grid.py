"""
Grid State - double-buffered per-cell fields for Flow Lenia

The grid is allocated once at startup (both the "A" and "B" copies) and
reinitialized in place by the init pass. Stages never write into the
buffer they read: the engine owns a parity flag and passes it explicitly,
`read(parity)` is the source snapshot and `write(parity)` is the
destination.

Boundary convention: the horizontal axis always wraps. The vertical axis
wraps too unless the floor flag is set, in which case the top and bottom
rows are walls (samples beyond them do not exist).
"""

import numpy as np
from scipy.ndimage import gaussian_filter

from .genome import (
    N_GENES, N_AUX, DEFAULT_GENOME, DEFAULT_AUX, SIGMA_MIN, SIGMA_MAX,
    clamp_genome, clamp_aux,
)

# Initial per-cell mass range for filled blocks
INIT_MASS_LOW = 0.15
INIT_MASS_HIGH = 0.35
# Per-cell genome noise inside a block (blocks share a base genome)
INIT_GENOME_NOISE = 0.02


class CellFields:
    """One full copy of the persistent per-cell state."""

    def __init__(self, height, width):
        self.height = height
        self.width = width
        self.mass = np.zeros((height, width), dtype=np.float64)
        self.genome = np.empty((N_GENES, height, width), dtype=np.float64)
        self.aux = np.empty((N_AUX, height, width), dtype=np.float64)
        self.species = np.zeros((height, width), dtype=np.uint32)
        self.waste_mass = np.zeros((height, width), dtype=np.float64)
        self.waste_type = np.zeros((height, width), dtype=np.float64)
        self.waste_vel = np.zeros((2, height, width), dtype=np.float64)
        self.clear()

    def clear(self):
        self.mass[:] = 0.0
        self.genome[:] = np.asarray(DEFAULT_GENOME).reshape(N_GENES, 1, 1)
        self.aux[:] = np.asarray(DEFAULT_AUX).reshape(N_AUX, 1, 1)
        self.species[:] = 0
        self.waste_mass[:] = 0.0
        self.waste_type[:] = 0.0
        self.waste_vel[:] = 0.0

    def copy_from(self, other):
        np.copyto(self.mass, other.mass)
        np.copyto(self.genome, other.genome)
        np.copyto(self.aux, other.aux)
        np.copyto(self.species, other.species)
        np.copyto(self.waste_mass, other.waste_mass)
        np.copyto(self.waste_type, other.waste_type)
        np.copyto(self.waste_vel, other.waste_vel)

    def total_mass(self):
        return float(self.mass.sum() + self.waste_mass.sum())


class AdvectedFields:
    """Stage-3 intermediate: transported mass plus the winner's traits."""

    def __init__(self, height, width):
        self.mass = np.zeros((height, width), dtype=np.float64)
        self.genome = np.zeros((N_GENES, height, width), dtype=np.float64)
        self.aux = np.zeros((N_AUX, height, width), dtype=np.float64)
        self.species = np.zeros((height, width), dtype=np.uint32)
        # Physics variant only: transported waste
        self.waste_mass = np.zeros((height, width), dtype=np.float64)
        self.waste_type = np.zeros((height, width), dtype=np.float64)
        self.waste_vel = np.zeros((2, height, width), dtype=np.float64)


class DoubleBuffer:
    """Two owned CellFields selected by an explicit parity flag."""

    def __init__(self, height, width):
        self.buffers = (CellFields(height, width), CellFields(height, width))

    def read(self, parity):
        return self.buffers[parity]

    def write(self, parity):
        return self.buffers[1 - parity]


class Environment:
    """Static per-cell environment, immutable after generation."""

    def __init__(self, height, width, rng=None):
        self.temperature = np.full((height, width), 0.5)
        self.resource_capacity = np.full((height, width), 0.5)
        self.hazard = np.zeros((height, width))
        if rng is not None:
            self.temperature = _smooth_noise(rng, height, width, scale=0.12)
            self.resource_capacity = _smooth_noise(rng, height, width, scale=0.08)
            # Hazard is sparse: only the upper tail of the noise survives
            raw = _smooth_noise(rng, height, width, scale=0.06)
            self.hazard = np.clip((raw - 0.6) / 0.4, 0.0, 1.0)
        for arr in (self.temperature, self.resource_capacity, self.hazard):
            arr.flags.writeable = False


def _smooth_noise(rng, height, width, scale):
    """Smooth periodic noise normalized to [0, 1]."""
    noise = rng.random((height, width))
    sigma = max(1.0, scale * min(height, width))
    noise = gaussian_filter(noise, sigma, mode="wrap")
    lo, hi = noise.min(), noise.max()
    span = max(hi - lo, 1e-9)
    return (noise - lo) / span


# ---------------------------------------------------------------------------
# Boundary padding
# ---------------------------------------------------------------------------

def pad_field(field, r, floor, wall="constant"):
    """Pad the last two axes of `field` by r cells.

    Horizontal padding always wraps. Vertical padding wraps, or uses `wall`
    ("constant" -> zeros, "edge" -> zero-flux) when the floor flag is set.
    """
    lead = [(0, 0)] * (field.ndim - 2)
    out = np.pad(field, lead + [(0, 0), (r, r)], mode="wrap")
    if floor:
        return np.pad(out, lead + [(r, r), (0, 0)], mode=wall)
    return np.pad(out, lead + [(r, r), (0, 0)], mode="wrap")


def presence_mask(height, width, r, floor):
    """Padded mask of cells that exist (1) versus beyond-wall padding (0)."""
    return pad_field(np.ones((height, width)), r, floor)


# ---------------------------------------------------------------------------
# Init pass
# ---------------------------------------------------------------------------

def seed_blocks(fields, rng, density=0.5, block_size=8):
    """Fill a random block pattern with mass, per-block genomes and ids.

    Every block is filled with probability `density`. Each filled block
    gets a base genome plus small per-cell noise, base aux traits and a
    unique species id. Deterministic for a fixed rng state.
    """
    fields.clear()
    h, w = fields.height, fields.width
    block_size = max(1, int(block_size))
    by = -(-h // block_size)
    bx = -(-w // block_size)
    n_blocks = by * bx

    # Draw everything up front so the stream does not depend on density
    filled = rng.random(n_blocks) < density
    base_genome = rng.random((n_blocks, N_GENES))
    base_genome[:, 2] = SIGMA_MIN + base_genome[:, 2] * (SIGMA_MAX - SIGMA_MIN)
    base_aux = rng.random((n_blocks, N_AUX))
    block_ids = rng.permutation(n_blocks).astype(np.uint32) + 1
    cell_mass = rng.uniform(INIT_MASS_LOW, INIT_MASS_HIGH, size=(h, w))
    cell_noise = rng.uniform(-INIT_GENOME_NOISE, INIT_GENOME_NOISE,
                             size=(N_GENES, h, w))

    # Block index of every cell
    rows = np.arange(h) // block_size
    cols = np.arange(w) // block_size
    block_of = rows[:, None] * bx + cols[None, :]

    alive = filled[block_of]
    fields.mass[:] = np.where(alive, cell_mass, 0.0)
    genome = np.moveaxis(base_genome[block_of], -1, 0)
    noise_scale = np.array([1.0, 1.0, 0.1]).reshape(N_GENES, 1, 1)
    genome = genome + cell_noise * noise_scale
    fields.genome[:] = np.where(alive, clamp_genome(genome), fields.genome)
    aux = np.moveaxis(base_aux[block_of], -1, 0)
    fields.aux[:] = np.where(alive, clamp_aux(aux), fields.aux)
    fields.species[:] = np.where(alive, block_ids[block_of], 0)
    return int(filled.sum())
