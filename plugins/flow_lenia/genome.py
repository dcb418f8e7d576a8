"""
Genome layout, bounds and the shared growth mapping.

Each living cell carries a three-gene genome and four auxiliary traits:

    genome[0]  structure  [0, 1]      growth-kernel shape + target potential
    genome[1]  diet       [0, 1]      preferred waste type
    genome[2]  sigma      [0.01, 0.1] growth-curve width

    aux[0]     speed
    aux[1]     aggression
    aux[2]     defense
    aux[3]     thermal_preference     all [0, 1]

The effective-mu mapping below is used by both the velocity stage and the
metabolism stage; the two must agree exactly.
"""

import numpy as np

STRUCTURE, DIET, SIGMA = 0, 1, 2
SPEED, AGGRESSION, DEFENSE, THERMAL = 0, 1, 2, 3

N_GENES = 3
N_AUX = 4

SIGMA_MIN = 0.01
SIGMA_MAX = 0.1

# Per-gene (low, high) bounds, shaped for broadcasting over (3, H, W)
GENOME_LOW = np.array([0.0, 0.0, SIGMA_MIN]).reshape(3, 1, 1)
GENOME_HIGH = np.array([1.0, 1.0, SIGMA_MAX]).reshape(3, 1, 1)

DEFAULT_GENOME = (0.5, 0.5, 0.05)
DEFAULT_AUX = (0.5, 0.5, 0.5, 0.5)

MU_BASE = 0.08
MU_RANGE = 0.42


def effective_mu(gene):
    """Map a raw [0, 1] gene into the usable potential range."""
    return MU_BASE + MU_RANGE * gene


def growth(u, mu, sigma):
    """Growth mapping G(u) in [-1, 1]: Gaussian bump at effective_mu(mu)."""
    return 2.0 * np.exp(-0.5 * ((u - effective_mu(mu)) / sigma) ** 2) - 1.0


def clamp_genome(genome, out=None):
    """Clip a (3, ...) genome array into its declared bounds."""
    low = GENOME_LOW.reshape((3,) + (1,) * (genome.ndim - 1))
    high = GENOME_HIGH.reshape((3,) + (1,) * (genome.ndim - 1))
    return np.clip(genome, low, high, out=out)


def clamp_aux(aux, out=None):
    return np.clip(aux, 0.0, 1.0, out=out)


def smoothstep(edge0, edge1, x):
    """Hermite smoothstep, safe for edge0 == edge1."""
    span = np.maximum(edge1 - edge0, 1e-6)
    t = np.clip((x - edge0) / span, 0.0, 1.0)
    return t * t * (3.0 - 2.0 * t)


def hash32(x):
    """32-bit integer avalanche hash (lowbias32) over uint32 arrays or ints."""
    x = np.asarray(x, dtype=np.uint64) & 0xFFFFFFFF
    x ^= x >> 16
    x = (x * 0x7FEB352D) & 0xFFFFFFFF
    x ^= x >> 15
    x = (x * 0x846CA68B) & 0xFFFFFFFF
    x ^= x >> 16
    return x.astype(np.uint32)


def fresh_species_ids(rng, n):
    """Draw n random non-zero species ids (0 is reserved for void)."""
    return rng.integers(1, 2 ** 32, size=n, dtype=np.uint64).astype(np.uint32)
