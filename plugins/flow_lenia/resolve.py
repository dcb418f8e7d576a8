"""
Stage 4 - Growth & Metabolism Resolve

Turns the advected intermediate grid into the next living/waste/species/aux
state. Effects are applied in order, every write path clamped:

    0. global normalization with the previous step's scale factor
    1. fallback genome/species for degenerate cells
    2. mutation (mass, growth-sign and rate gated)
    3. speciation (second, much rarer gate on large genetic displacement)
    4. genetic inertia toward the previous local genome
    5. metabolism: waste diffusion, then diet/thermal-matched eating
    6. death: base decay, crowding, starvation and hazard damage -> waste
    7. void cleanup: residual mass folds into waste, species reset to 0

Mass only moves between the living and waste pools, so the stage conserves
Σmass + Σwaste apart from the deliberate normalization factor.

Random numbers are drawn for the whole grid before dispatch (draw_noise),
so the outcome does not depend on how rows are split across workers.
"""

import numpy as np

from .genome import (
    STRUCTURE, DIET, SIGMA, AGGRESSION, DEFENSE, THERMAL,
    N_GENES, N_AUX, DEFAULT_GENOME, DEFAULT_AUX, SIGMA_MIN, MU_RANGE,
    effective_mu, growth, clamp_genome, clamp_aux, smoothstep,
    fresh_species_ids,
)
from .grid import pad_field
from .velocity import MASS_EPSILON

# Mutation
MUTATION_MASS = 0.05
MUTATION_STEP = 0.05
GENE_SENSITIVITY = np.array([1.0, 0.8, 0.1]).reshape(N_GENES, 1, 1)
AUX_SENSITIVITY = np.array([0.6, 0.5, 0.5, 0.4]).reshape(N_AUX, 1, 1)

# Speciation
SPECIATION_THRESHOLD = 0.04
SPECIATION_CHANCE = 0.05

# Metabolism
WASTE_DIFFUSION = 0.1
THERMAL_WIDTH = 0.2
EAT_EPSILON = 1e-6

# Death
CROWD_THRESHOLD = 0.6
CROWD_PENALTY = 1.5
STARVATION_PENALTY = 2.0
HAZARD_RATE = 0.5
DEFENSE_MITIGATION = 0.8

VOID_THRESHOLD = 1e-3
SCALE_MIN = 0.9
SCALE_MAX = 1.1

_DEFAULT_GENOME = np.asarray(DEFAULT_GENOME).reshape(N_GENES, 1, 1)
_DEFAULT_AUX = np.asarray(DEFAULT_AUX).reshape(N_AUX, 1, 1)


def draw_noise(rng, height, width):
    """Per-cell random draws for one resolve pass."""
    shape = (height, width)
    return {
        "mutate": rng.random(shape),
        "drift": rng.uniform(-MUTATION_STEP, MUTATION_STEP, size=shape),
        "speciate": rng.random(shape),
        "fresh_ids": fresh_species_ids(rng, height * width).reshape(shape),
        "new_ids": fresh_species_ids(rng, height * width).reshape(shape),
    }


def soft_clamp_scale(scale):
    return float(np.clip(scale, SCALE_MIN, SCALE_MAX))


def resolve(executor, adv, prev, potential, env, params, scale, noise, dst):
    """Write the next living/waste state into `dst` (a CellFields)."""
    height, width = prev.mass.shape
    physics = bool(params.get("physics", False))
    floor = bool(params.get("floor", False))
    dt = float(params.get("dt", 0.2))
    mutation_rate = float(params.get("mutation_rate", 0.0))
    inertia = float(np.clip(params.get("inertia", 0.0), 0.0, 1.0))
    eat_rate = float(params.get("eat_rate", 0.0))
    decay_rate = float(params.get("decay_rate", 0.0))
    selectivity = float(np.clip(params.get("diet_selectivity", 0.5), 1e-3, 1.0))
    s = soft_clamp_scale(scale) if params.get("normalize", True) else 1.0

    # Waste source: transported pool (physics) or the resting pool
    if physics:
        waste_m, waste_t, waste_v = adv.waste_mass, adv.waste_type, adv.waste_vel
    else:
        waste_m, waste_t, waste_v = prev.waste_mass, prev.waste_type, None
    wm_pad = pad_field(waste_m * s, 1, floor, wall="edge")
    wq_pad = pad_field(waste_m * s * waste_t, 1, floor, wall="edge")

    def kernel(y0, y1):
        band = slice(y0, y1)
        prev_alive = prev.mass[band] >= MASS_EPSILON
        mass = adv.mass[band] * s

        # 1. Fallback
        degenerate = (adv.mass[band] < MASS_EPSILON) | (adv.genome[SIGMA, band] < SIGMA_MIN * 0.5)
        genome = np.where(degenerate,
                          np.where(prev_alive, prev.genome[:, band], _DEFAULT_GENOME),
                          adv.genome[:, band])
        aux = np.where(degenerate,
                       np.where(prev_alive, prev.aux[:, band], _DEFAULT_AUX),
                       adv.aux[:, band])
        clamp_genome(genome, out=genome)
        clamp_aux(aux, out=aux)
        species = np.where(adv.species[band] != 0, adv.species[band],
                           np.where(prev.species[band] != 0, prev.species[band],
                                    noise["fresh_ids"][band]))

        # 2. Mutation
        g = growth(potential[band], genome[STRUCTURE], genome[SIGMA])
        mutate = ((mass > MUTATION_MASS) & (g > 0.0)
                  & (noise["mutate"][band] < mutation_rate * dt))
        drift = noise["drift"][band]
        before = genome.copy()
        genome = np.where(mutate, genome + drift * GENE_SENSITIVITY, genome)
        aux = np.where(mutate, aux + drift * AUX_SENSITIVITY, aux)
        clamp_genome(genome, out=genome)
        clamp_aux(aux, out=aux)

        # 3. Speciation
        displacement = (np.abs(genome[STRUCTURE] - before[STRUCTURE])
                        + np.abs(genome[DIET] - before[DIET])
                        + 10.0 * np.abs(genome[SIGMA] - before[SIGMA]))
        speciate = (mutate & (displacement > SPECIATION_THRESHOLD)
                    & (noise["speciate"][band] < SPECIATION_CHANCE))
        species = np.where(speciate, noise["new_ids"][band], species)

        # 4. Inertia
        if inertia > 0.0:
            genome = np.where(prev_alive,
                              (1.0 - inertia) * genome + inertia * prev.genome[:, band],
                              genome)
            aux = np.where(prev_alive,
                           (1.0 - inertia) * aux + inertia * prev.aux[:, band],
                           aux)
            clamp_genome(genome, out=genome)
            clamp_aux(aux, out=aux)

        # 5. Metabolism: diffuse waste, then eat it
        wm, wq = _diffuse(wm_pad, y0, y1), _diffuse(wq_pad, y0, y1)
        np.maximum(wm, 0.0, out=wm)
        wt = np.clip(np.divide(wq, wm, out=np.zeros_like(wm), where=wm > 1e-12),
                     0.0, 1.0)

        match = 1.0 - np.abs(effective_mu(genome[DIET]) - effective_mu(wt)) / MU_RANGE
        efficiency = smoothstep(1.0 - selectivity, 1.0, match)
        temperature = env.temperature[band]
        efficiency *= np.exp(-0.5 * ((aux[THERMAL] - temperature) / THERMAL_WIDTH) ** 2)
        eat_fraction = np.clip(
            eat_rate * efficiency * (0.75 + 0.5 * aux[AGGRESSION]) * dt, 0.0, 1.0)
        eaten = np.where(mass >= MASS_EPSILON, wm * eat_fraction, 0.0)
        mass = mass + eaten
        wm = wm - eaten

        # 6. Death / decay
        crowd = CROWD_THRESHOLD * (0.5 + env.resource_capacity[band])
        excess = np.maximum(mass - crowd, 0.0)
        death_rate = decay_rate + CROWD_PENALTY * excess ** 2
        starving = (g < 0.0) & (eaten < EAT_EPSILON)
        death_rate = death_rate + np.where(starving, STARVATION_PENALTY * decay_rate * -g, 0.0)
        exposure = np.maximum(env.hazard[band] - DEFENSE_MITIGATION * aux[DEFENSE], 0.0)
        death_rate = death_rate + HAZARD_RATE * exposure
        dead = mass * np.clip(death_rate * dt, 0.0, 1.0)
        mass = mass - dead

        # 7. Void cleanup: fold residual mass into waste
        void = mass < VOID_THRESHOLD
        dead = dead + np.where(void, mass, 0.0)
        mass = np.where(void, 0.0, mass)
        species = np.where(void, 0, species)

        new_wm = wm + dead
        mixed = new_wm > 1e-12
        share = np.divide(dead, new_wm, out=np.zeros_like(dead), where=mixed)
        wt = np.clip(wt + (genome[STRUCTURE] - wt) * share, 0.0, 1.0)

        dst.mass[band] = np.maximum(mass, 0.0)
        dst.genome[:, band] = genome
        dst.aux[:, band] = aux
        dst.species[band] = species.astype(np.uint32)
        dst.waste_mass[band] = np.maximum(new_wm, 0.0)
        dst.waste_type[band] = wt
        if waste_v is not None:
            dst.waste_vel[:, band] = np.where(new_wm > 0.0, waste_v[:, band], 0.0)
        else:
            dst.waste_vel[:, band] = 0.0

    executor.parallel_for(height, kernel)
    return dst


def _diffuse(padded, y0, y1):
    """One explicit 4-neighbour Laplacian blur step of a 1-padded field."""
    center = padded[y0 + 1:y1 + 1, 1:-1]
    lap = (padded[y0:y1, 1:-1] + padded[y0 + 2:y1 + 2, 1:-1]
           + padded[y0 + 1:y1 + 1, :-2] + padded[y0 + 1:y1 + 1, 2:]
           - 4.0 * center)
    return center + WASTE_DIFFUSION * lap
