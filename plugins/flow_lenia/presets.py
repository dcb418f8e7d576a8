"""
Flow Lenia Parameter Presets

Each preset is a full parameter set for the FlowLenia engine plus the
seeding recipe used by the init pass. "physics" selects the physics
variant (waste transport, gravity, friction, immiscibility).
"""

DEFAULT_PARAMS = {
    "size": 128,
    "dt": 0.2,
    "R": 8,
    "mutation_rate": 0.05,
    "eat_rate": 0.5,
    "decay_rate": 0.02,
    "inertia": 0.3,
    "diet_selectivity": 0.5,
    "chemotaxis": 0.0,
    "friction": 0.1,
    "gravity": 0.0,
    "immiscibility": 1.0,
    "velocity_impact": 0.0,
    "target_mass": None,
    "floor": False,
    "physics": False,
    "normalize": True,
    "fixed_point": True,
    "stats_interval": 10,
    "table_capacity": 256,
}

PRESETS = {
    "primordial": {
        "name": "Primordial Soup",
        "description": "Random blocks of unrelated species, base variant",
        "seed": "blocks", "density": 0.5, "block_size": 8,
    },
    "monoculture": {
        "name": "Monoculture",
        "description": "Dense uniform fill, slow mutation, no predation",
        "mutation_rate": 0.02, "eat_rate": 0.2, "inertia": 0.6,
        "seed": "dense", "density": 1.0, "block_size": 16,
    },
    "scavengers": {
        "name": "Scavengers",
        "description": "Strong chemotaxis toward diet-matched waste",
        "chemotaxis": 1.5, "eat_rate": 1.2, "diet_selectivity": 0.3,
        "decay_rate": 0.04,
        "seed": "blocks", "density": 0.4, "block_size": 6,
    },
    "radiation": {
        "name": "Radiation",
        "description": "High mutation rate, weak inertia, frequent speciation",
        "mutation_rate": 0.4, "inertia": 0.05,
        "seed": "blocks", "density": 0.6, "block_size": 8,
    },
    "sediment": {
        "name": "Sediment",
        "description": "Physics variant: gravity settles waste on the floor",
        "physics": True, "floor": True, "gravity": 0.3, "friction": 0.15,
        "immiscibility": 1.5, "velocity_impact": 0.2, "chemotaxis": 0.5,
        "seed": "blocks", "density": 0.5, "block_size": 8,
    },
    "currents": {
        "name": "Currents",
        "description": "Physics variant: waste drags organisms along",
        "physics": True, "gravity": 0.0, "friction": 0.05,
        "immiscibility": 1.0, "velocity_impact": 0.5, "chemotaxis": 1.0,
        "seed": "blocks", "density": 0.5, "block_size": 10,
    },
}

PRESET_ORDER = [
    "primordial", "monoculture", "scavengers", "radiation",
    "sediment", "currents",
]

# Keys that describe seeding rather than engine parameters
SEED_KEYS = ("seed", "density", "block_size")


def get_preset(name):
    """Get a preset by name. Returns None if not found."""
    return PRESETS.get(name)


def preset_params(name):
    """Full engine parameter dict for a preset (defaults filled in)."""
    preset = PRESETS[name]
    params = dict(DEFAULT_PARAMS)
    params.update({k: v for k, v in preset.items()
                   if k in DEFAULT_PARAMS})
    return params


def list_presets():
    """Return list of (key, name, description) for presets."""
    return [(k, PRESETS[k]["name"], PRESETS[k]["description"])
            for k in PRESET_ORDER if k in PRESETS]
