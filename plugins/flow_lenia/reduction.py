"""
Stage 5 - Global Mass Reduction

Sums living + waste mass over the whole grid the way a GPU would: each
worker walks its tiles, reduces every tile with a pairwise tree (halving
until one value is left) and adds the tile's partial into one shared
accumulator with an atomic add.

The atomic accumulator is an integer, so partials are fixed-point encoded
(x1000, truncated) before the add and decoded on readback. Each tile can
therefore lose up to 0.001 of mass to truncation. With fixed_point=False
the encoding is skipped and the accumulator holds a float.

The result drives the next step's normalization factor:
target / total, softly clamped, or 1.0 when the grid is empty.
"""

import logging

import numpy as np

from .parallel import AtomicCounter
from .resolve import soft_clamp_scale

logger = logging.getLogger(__name__)

FIXED_POINT_SCALE = 1000
REDUCE_TILE = 16
EMPTY_MASS = 1e-9


def tree_sum(values):
    """Pairwise tree reduction of a 1D array (power-of-two halving)."""
    buf = np.asarray(values, dtype=np.float64).ravel()
    n = 1
    while n < buf.size:
        n *= 2
    if n != buf.size:
        buf = np.concatenate([buf, np.zeros(n - buf.size)])
    else:
        buf = buf.copy()
    while n > 1:
        n //= 2
        buf[:n] += buf[n:2 * n]
    return float(buf[0]) if buf.size else 0.0


def encode_fixed(value):
    return int(value * FIXED_POINT_SCALE)


def decode_fixed(value):
    return value / FIXED_POINT_SCALE


def reduce_mass(executor, fields, fixed_point=True, tile=REDUCE_TILE):
    """Total living + waste mass of `fields` via tiles and an atomic add."""
    height, width = fields.mass.shape
    total = fields.mass + fields.waste_mass
    acc = AtomicCounter(0 if fixed_point else 0.0)
    tile_rows = -(-height // tile)

    # Bands are split over tile rows, so the tiling (and therefore the
    # truncation error) does not depend on the worker count
    def kernel(t0, t1):
        for ty in range(t0 * tile, min(t1 * tile, height), tile):
            for tx in range(0, width, tile):
                partial = tree_sum(total[ty:ty + tile, tx:tx + tile])
                if fixed_point:
                    acc.add(encode_fixed(partial))
                else:
                    acc.add(partial)

    executor.parallel_for(tile_rows, kernel)
    return decode_fixed(acc.value) if fixed_point else float(acc.value)


def normalization_factor(total_mass, target_mass):
    """Scale that pulls total_mass toward target_mass (1.0 if empty)."""
    if total_mass <= EMPTY_MASS or target_mass is None:
        return 1.0
    raw = target_mass / total_mass
    scale = soft_clamp_scale(raw)
    if scale != raw:
        logger.debug("normalization clamped: raw %.4f -> %.4f", raw, scale)
    return scale


def tile_count(height, width, tile=REDUCE_TILE):
    """Number of tiles reduce_mass adds (bounds the fixed-point error)."""
    return -(-height // tile) * -(-width // tile)
