"""
Stage 3 - Advection / Gather

Mass-conserving transport by gathering instead of scattering. Every
destination scans a window of radius R_adv, recomputes where each candidate
source lands (source + velocity * dt) and accepts the bilinear (tent)
overlap of the landing footprint with itself:

    w = max(0, 1 - |dy|) * max(0, 1 - |dx|)

The four tent weights of a source sum to 1 over the destinations it can
reach, so the sum of gathered mass equals the sum of source mass.

Genomes are not averaged: a destination takes the full genome, species id
and aux traits of the single source with the largest weighted contribution
(first in scan order on ties). With the physics variant, waste is gathered
by the same rule along the waste velocity; waste type and waste velocity
are mass-weighted since waste is not an organism.
"""

import math

import numpy as np

from .grid import pad_field


def search_radius(v_max, dt):
    """Window radius that covers the largest single-step displacement."""
    return int(math.ceil(abs(v_max * dt))) + 1


def tent(d):
    return np.maximum(0.0, 1.0 - np.abs(d))


def advect(executor, src, velocity, dt, out, radius, floor=False,
           waste_velocity=None):
    """Gather `src` along `velocity` into the AdvectedFields `out`.

    `waste_velocity`, when given, also transports the waste pool.
    """
    height, width = src.mass.shape
    R = int(radius)

    mass_p = pad_field(src.mass, R, floor)
    vel_p = pad_field(velocity, R, floor)
    genome_p = pad_field(src.genome, R, floor)
    aux_p = pad_field(src.aux, R, floor)
    species_p = pad_field(src.species, R, floor)
    if waste_velocity is not None:
        wmass_p = pad_field(src.waste_mass, R, floor)
        wtype_p = pad_field(src.waste_type, R, floor)
        wvel_p = pad_field(waste_velocity, R, floor)

    def kernel(y0, y1):
        rows = np.arange(y0, y1, dtype=np.float64)[:, None]
        band = y1 - y0
        acc = np.zeros((band, width))
        best = np.zeros((band, width))
        genome = np.zeros((src.genome.shape[0], band, width))
        aux = np.zeros((src.aux.shape[0], band, width))
        species = np.zeros((band, width), dtype=np.uint32)
        if waste_velocity is not None:
            w_acc = np.zeros((band, width))
            w_type = np.zeros((band, width))
            w_vel = np.zeros((2, band, width))

        for oy in range(-R, R + 1):
            rs = slice(y0 + R + oy, y1 + R + oy)
            for ox in range(-R, R + 1):
                cs = slice(R + ox, R + ox + width)
                m = mass_p[rs, cs]
                w = _landing_weight(vel_p[:, rs, cs], oy, ox, dt, rows,
                                    height, floor)
                contrib = w * m
                acc += contrib
                better = contrib > best
                if better.any():
                    best = np.where(better, contrib, best)
                    genome = np.where(better, genome_p[:, rs, cs], genome)
                    aux = np.where(better, aux_p[:, rs, cs], aux)
                    species = np.where(better, species_p[rs, cs], species)

                if waste_velocity is not None:
                    wm = wmass_p[rs, cs]
                    ww = _landing_weight(wvel_p[:, rs, cs], oy, ox, dt, rows,
                                         height, floor) * wm
                    w_acc += ww
                    w_type += ww * wtype_p[rs, cs]
                    w_vel += ww * wvel_p[:, rs, cs]

        out.mass[y0:y1] = acc
        out.genome[:, y0:y1] = genome
        out.aux[:, y0:y1] = aux
        out.species[y0:y1] = species
        if waste_velocity is not None:
            out.waste_mass[y0:y1] = w_acc
            has = w_acc > 1e-12
            out.waste_type[y0:y1] = np.divide(
                w_type, w_acc, out=np.zeros_like(w_acc), where=has)
            out.waste_vel[:, y0:y1] = np.divide(
                w_vel, w_acc, out=np.zeros_like(w_vel), where=has)

    executor.parallel_for(height, kernel)
    return out


def _landing_weight(vel, oy, ox, dt, rows, height, floor):
    """Tent overlap of sources at offset (oy, ox) with their destination.

    With a floor the landing row is clamped into the grid, so mass piles up
    against the wall instead of leaving it.
    """
    ly = oy + vel[0] * dt
    if floor:
        ly = np.clip(rows + ly, 0.0, height - 1.0) - rows
    lx = ox + vel[1] * dt
    return tent(ly) * tent(lx)
