"""
Stage 2 - Velocity Field

Three additive force terms, all central differences over the 4-neighbour
cross:

    v = grad_growth - 2 * grad_mass + chemotaxis * hunger * grad_food

- grad_growth: G evaluated at the neighbours' potential, but with this
  cell's own genome (mu, sigma).
- grad_mass: neighbour density, pushes mass away from crowded regions.
  In the physics variant density is (mass + waste) ** immiscibility.
- grad_food: waste affinity (1 - |waste_type - diet|) * waste_mass of the
  neighbours, suppressed by hunger when local waste is already high.

The physics variant also couples to the waste velocity (velocity_impact),
adds gravity and applies friction. Magnitudes are clamped to a ceiling
(4.0 base, 5.0 physics). Cells below MASS_EPSILON get zero velocity.
"""

import numpy as np

from .genome import STRUCTURE, DIET, SIGMA, growth
from .grid import pad_field

MASS_EPSILON = 1e-4
V_MAX_BASE = 4.0
V_MAX_PHYSICS = 5.0
REPULSION = 2.0
# hunger = 1 / (1 + HUNGER_K * local waste mass)
HUNGER_K = 4.0


def velocity_ceiling(physics):
    return V_MAX_PHYSICS if physics else V_MAX_BASE


def clamp_magnitude(vy, vx, v_max):
    """Scale (vy, vx) in place so that |v| <= v_max."""
    mag = np.sqrt(vy * vy + vx * vx)
    scale = np.where(mag > v_max, v_max / np.maximum(mag, 1e-12), 1.0)
    vy *= scale
    vx *= scale


def _cross(padded, y0, y1):
    """Up/down/left/right neighbour views of rows [y0, y1) of a 1-padded array."""
    up = padded[..., y0:y1, 1:-1]
    down = padded[..., y0 + 2:y1 + 2, 1:-1]
    left = padded[..., y0 + 1:y1 + 1, :-2]
    right = padded[..., y0 + 1:y1 + 1, 2:]
    return up, down, left, right


def compute_velocity(executor, src, potential, params, out, waste_out=None):
    """Fill `out` (2, H, W) with (vy, vx) for every cell of `src`.

    `params` is the engine parameter dict. When the physics variant is on
    and `waste_out` is given, the next waste velocity is written there.
    """
    physics = bool(params.get("physics", False))
    floor = bool(params.get("floor", False))
    chemotaxis = float(params.get("chemotaxis", 0.0))
    friction = float(params.get("friction", 0.0))
    gravity = float(params.get("gravity", 0.0))
    immiscibility = float(params.get("immiscibility", 1.0))
    impact = float(params.get("velocity_impact", 0.0))
    dt = float(params.get("dt", 0.2))
    v_max = float(params.get("v_max", velocity_ceiling(physics)))
    height = src.mass.shape[0]

    if physics:
        density = (src.mass + src.waste_mass) ** immiscibility
    else:
        density = src.mass
    u_pad = pad_field(potential, 1, floor, wall="edge")
    rho_pad = pad_field(density, 1, floor, wall="edge")
    wm_pad = pad_field(src.waste_mass, 1, floor, wall="edge")
    wt_pad = pad_field(src.waste_type, 1, floor, wall="edge")

    def kernel(y0, y1):
        mu = src.genome[STRUCTURE, y0:y1]
        sigma = src.genome[SIGMA, y0:y1]
        diet = src.genome[DIET, y0:y1]

        u_up, u_down, u_left, u_right = _cross(u_pad, y0, y1)
        gy = 0.5 * (growth(u_down, mu, sigma) - growth(u_up, mu, sigma))
        gx = 0.5 * (growth(u_right, mu, sigma) - growth(u_left, mu, sigma))

        r_up, r_down, r_left, r_right = _cross(rho_pad, y0, y1)
        vy = gy - REPULSION * 0.5 * (r_down - r_up)
        vx = gx - REPULSION * 0.5 * (r_right - r_left)

        if chemotaxis != 0.0:
            m_up, m_down, m_left, m_right = _cross(wm_pad, y0, y1)
            t_up, t_down, t_left, t_right = _cross(wt_pad, y0, y1)
            food_up = (1.0 - np.abs(t_up - diet)) * m_up
            food_down = (1.0 - np.abs(t_down - diet)) * m_down
            food_left = (1.0 - np.abs(t_left - diet)) * m_left
            food_right = (1.0 - np.abs(t_right - diet)) * m_right
            hunger = 1.0 / (1.0 + HUNGER_K * src.waste_mass[y0:y1])
            vy += chemotaxis * hunger * 0.5 * (food_down - food_up)
            vx += chemotaxis * hunger * 0.5 * (food_right - food_left)

        if physics:
            vy += impact * src.waste_vel[0, y0:y1] + gravity
            vx += impact * src.waste_vel[1, y0:y1]
            vy *= 1.0 - friction
            vx *= 1.0 - friction

        clamp_magnitude(vy, vx, v_max)

        if floor:
            _block_walls(vy, y0, y1, height)

        alive = src.mass[y0:y1] >= MASS_EPSILON
        out[0, y0:y1] = np.where(alive, vy, 0.0)
        out[1, y0:y1] = np.where(alive, vx, 0.0)

        if physics and waste_out is not None:
            wvy = src.waste_vel[0, y0:y1]
            wvx = src.waste_vel[1, y0:y1]
            nvy = (1.0 - friction) * wvy + impact * (out[0, y0:y1] - wvy) + gravity * dt
            nvx = (1.0 - friction) * wvx + impact * (out[1, y0:y1] - wvx)
            clamp_magnitude(nvy, nvx, v_max)
            if floor:
                _block_walls(nvy, y0, y1, height)
            has_waste = src.waste_mass[y0:y1] >= MASS_EPSILON
            waste_out[0, y0:y1] = np.where(has_waste, nvy, 0.0)
            waste_out[1, y0:y1] = np.where(has_waste, nvx, 0.0)

    executor.parallel_for(height, kernel)
    if not physics and waste_out is not None:
        waste_out[:] = 0.0
    return out


def _block_walls(vy, y0, y1, height):
    """Zero vertical velocity pointing into the ceiling or the floor."""
    if y0 == 0:
        vy[0] = np.maximum(vy[0], 0.0)
    if y1 == height:
        vy[-1] = np.minimum(vy[-1], 0.0)
