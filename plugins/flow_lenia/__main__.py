"""
Flow Lenia - Headless Entry Point

Usage:
    python -m flow_lenia [preset] [--size N] [--steps K] [--seed S]
                         [--workers W] [--every E] [--verbose]

Examples:
    python -m flow_lenia
    python -m flow_lenia scavengers --size 96 --steps 500
    python -m flow_lenia sediment --seed 3 --every 50

Use --list to see all available presets.
"""

import logging
import sys

from .presets import PRESET_ORDER, list_presets
from .simulator import FlowLeniaSimulator


def run(preset, sim_size, steps, seed, workers, every):
    """Run `steps` steps, printing mass and the top species every `every`."""
    sim = FlowLeniaSimulator(preset, sim_size, seed=seed, workers=workers)
    for message in sim.config_warnings:
        print(f"  warning: {message}")

    print(f"Flow Lenia: {preset} @ {sim_size}x{sim_size}, {steps} steps"
          + (f", seed {seed}" if seed is not None else ""))
    done = 0
    while done < steps:
        done += sim.run(min(every, steps - done))
        s = sim.stats
        print(f"  step {s['generation']:6d}  living {s['mass']:10.3f}  "
              f"waste {s['waste']:10.3f}  total {s['total']:10.3f}  "
              f"species {s['species']:5d}  alive {s['alive_pct']:5.1f}%")

    print("\nTop species:")
    for row in sim.engine.species_stats(5):
        print(f"  #{row.species_id:<10d} cells {row.count:6d}  "
              f"speed {row.avg_speed:.3f}  aggression {row.avg_aggression:.3f}  "
              f"structure {row.avg_structure:.3f}")
    return sim


def main():
    args = sys.argv[1:]
    preset = "primordial"
    sim_size = 128
    steps = 200
    seed = None
    workers = 1
    every = 20

    i = 0
    while i < len(args):
        arg = args[i]
        if arg == "--size" and i + 1 < len(args):
            sim_size = int(args[i + 1])
            i += 2
        elif arg == "--steps" and i + 1 < len(args):
            steps = int(args[i + 1])
            i += 2
        elif arg == "--seed" and i + 1 < len(args):
            seed = int(args[i + 1])
            i += 2
        elif arg == "--workers" and i + 1 < len(args):
            workers = int(args[i + 1])
            i += 2
        elif arg == "--every" and i + 1 < len(args):
            every = max(1, int(args[i + 1]))
            i += 2
        elif arg == "--verbose":
            logging.basicConfig(level=logging.DEBUG)
            i += 1
        elif arg == "--list":
            print("\nAvailable presets:")
            for key, name, desc in list_presets():
                print(f"    {key:16s} {name:20s} {desc}")
            print()
            return
        elif arg in ("--help", "-h"):
            print(__doc__)
            return
        elif not arg.startswith("-") and arg in PRESET_ORDER:
            preset = arg
            i += 1
        else:
            print(f"Unknown argument: {arg}")
            print("Use --list to see available presets")
            sys.exit(1)

    logging.basicConfig(level=logging.WARNING)
    run(preset, sim_size, steps, seed, workers, every)


if __name__ == "__main__":
    main()
