"""
Stage 1 - Potential Field

Each cell senses its neighbourhood through a kernel whose shape depends on
its own structure gene mu. The kernel is a blend of three radial bells
(short, mid and long range):

    K(r, mu) = (1-mu)^2 * g_short(r) + 2 mu (1-mu) * g_mid(r) + mu^2 * g_long(r)

The potential is the K-weighted average of neighbour mass over the disc of
radius R, normalized by the kernel weight of the samples actually taken
(samples beyond a wall are not taken). K is linear in the three mixing
weights, so each cell's numerator and denominator are mixtures of three
fixed-kernel convolutions of the mass and of the presence mask.
"""

import numpy as np
from scipy.ndimage import correlate

from .genome import STRUCTURE
from .grid import pad_field, presence_mask

KERNEL_PEAKS = (0.15, 0.5, 0.85)
KERNEL_WIDTHS = (0.12, 0.15, 0.12)


def _bell(x, center, width):
    """Gaussian bell curve"""
    return np.exp(-0.5 * ((x - center) / width) ** 2)


def _valid_correlate(padded, kernel):
    """Correlation of an R-padded array, keeping only fully covered cells."""
    r = kernel.shape[0] // 2
    full = correlate(padded, kernel, mode="constant", cval=0.0)
    return full[r:-r, r:-r]


def mixing_weights(mu):
    """Quadratic Bernstein blend of the short/mid/long bells."""
    return (1.0 - mu) ** 2, 2.0 * mu * (1.0 - mu), mu ** 2


class PotentialField:
    """Species-dependent convolution of living mass."""

    def __init__(self, height, width, R=8, floor=False):
        self.height = height
        self.width = width
        self.R = max(1, int(R))
        self.floor = bool(floor)
        self._build_kernels()

    def _build_kernels(self):
        """Build the three ring kernels and the per-cell sample weights."""
        R = self.R
        y, x = np.ogrid[-R:R + 1, -R:R + 1]
        D = np.sqrt(x * x + y * y) / R
        disc = D <= 1.0
        self.kernels = [
            np.where(disc, _bell(D, peak, width), 0.0)
            for peak, width in zip(KERNEL_PEAKS, KERNEL_WIDTHS)
        ]
        # Denominators only change with the boundary, so precompute them
        mask = presence_mask(self.height, self.width, R, self.floor)
        self._denoms = [_valid_correlate(mask, k) for k in self.kernels]

    def configure(self, R=None, floor=None):
        rebuild = False
        if R is not None and max(1, int(R)) != self.R:
            self.R = max(1, int(R))
            rebuild = True
        if floor is not None and bool(floor) != self.floor:
            self.floor = bool(floor)
            rebuild = True
        if rebuild:
            self._build_kernels()

    def compute(self, executor, mass, genome, out):
        """Fill `out` (H, W) with the potential of `mass` under `genome`."""
        R = self.R
        padded = pad_field(mass, R, self.floor)
        mu = genome[STRUCTURE]

        def kernel(y0, y1):
            band = padded[y0:y1 + 2 * R]
            weights = mixing_weights(mu[y0:y1])
            num = np.zeros((y1 - y0, self.width))
            den = np.zeros((y1 - y0, self.width))
            for w, k, d in zip(weights, self.kernels, self._denoms):
                num += w * _valid_correlate(band, k)
                den += w * d[y0:y1]
            u = np.divide(num, den, out=np.zeros_like(num), where=den > 1e-12)
            np.maximum(u, 0.0, out=out[y0:y1])

        executor.parallel_for(self.height, kernel)
        return out
