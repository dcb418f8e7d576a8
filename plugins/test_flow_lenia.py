#!/usr/bin/env python3
"""
End-to-end checks for the Flow Lenia engine.

Verifies:
1. Uniform steady state only loses mass to base decay
2. Living + waste mass is conserved without normalization (base and physics)
3. Normalization pulls total mass to a pinned target
4. Bounds and void invariants hold under heavy mutation
5. Runs are reproducible and independent of the worker count
6. Bad configuration is clamped and reported, never raised
7. Paint brushes add mass and erase into the waste pool
8. Species table overflow is reported once per seeded run
"""

import numpy as np

from flow_lenia.flow_lenia import FlowLenia
from flow_lenia.genome import STRUCTURE, DIET, SIGMA, SIGMA_MIN, SIGMA_MAX, effective_mu
from flow_lenia.grid import Environment
from flow_lenia.presets import preset_params
from flow_lenia.resolve import VOID_THRESHOLD
from flow_lenia.simulator import FlowLeniaSimulator


def _uniform_engine(size=64, **params):
    engine = FlowLenia(size=size, seed=1, mutation_rate=0.0, chemotaxis=0.0,
                       normalize=False, **params)
    engine.seed("dense", block_size=16)
    engine.environment = Environment(size, size)
    cur = engine.current
    cur.species[:] = 1
    cur.genome[STRUCTURE] = 0.3
    cur.genome[DIET] = 0.5
    cur.genome[SIGMA] = 0.05
    cur.mass[:] = effective_mu(0.3)
    return engine


def test_uniform_steady_state():
    """A uniform colony at its growth optimum stays put and only decays."""
    print("Testing uniform steady state...")
    engine = _uniform_engine()
    before = engine.current.mass.copy()
    total_before = engine.current.total_mass()
    decay, dt = engine.params["decay_rate"], engine.params["dt"]

    engine.step()
    cur = engine.current
    expected = before * (1.0 - decay * dt)
    assert np.allclose(cur.mass, expected, rtol=0, atol=1e-6), \
        f"living mass drifted: max err {np.abs(cur.mass - expected).max()}"
    assert np.all(cur.species == 1), "species should be unchanged"
    assert abs(cur.total_mass() - total_before) < 1e-6, "total mass not conserved"
    print("  ✓ only base decay removed living mass")


def _assert_conserved(engine, steps=10):
    start = engine.current.total_mass()
    for _ in range(steps):
        engine.step()
        total = engine.current.total_mass()
        assert abs(total - start) <= 1e-9 * max(start, 1.0), \
            f"mass not conserved at step {engine.generation}: {start} -> {total}"


def test_conservation_base():
    print("Testing conservation (base variant)...")
    engine = FlowLenia(size=48, seed=3, normalize=False)
    engine.seed("blocks", density=0.5, block_size=8)
    _assert_conserved(engine)
    print("  ✓ living + waste conserved over 10 steps")


def test_conservation_physics_floor():
    print("Testing conservation (physics variant with floor)...")
    params = preset_params("sediment")
    params.pop("size")
    params["normalize"] = False
    engine = FlowLenia(size=48, seed=5, **params)
    engine.seed("blocks", density=0.5, block_size=8)
    _assert_conserved(engine)
    print("  ✓ living + waste conserved with walls and waste transport")


def test_normalization_converges():
    print("Testing normalization toward a pinned target...")
    engine = FlowLenia(size=64, seed=11)
    engine.seed("blocks", density=0.5, block_size=8)
    target = 1.2 * engine.current.total_mass()
    engine.set_params(target_mass=target)
    for _ in range(20):
        engine.step()
    total = engine.current.total_mass()
    assert abs(total - target) / target < 0.01, f"total {total} vs target {target}"
    assert 0.9 <= engine.scale <= 1.1
    print(f"  ✓ total mass {total:.3f} within 1% of {target:.3f}")


def test_invariants_under_radiation():
    print("Testing state bounds under heavy mutation...")
    params = preset_params("radiation")
    params.pop("size")
    engine = FlowLenia(size=48, seed=7, **params)
    engine.seed("blocks", density=0.6, block_size=8)
    for _ in range(15):
        engine.step()
        cur = engine.current
        assert np.all(cur.mass >= 0.0)
        assert np.all(cur.waste_mass >= 0.0)
        assert np.all((cur.mass == 0.0) | (cur.mass >= VOID_THRESHOLD)), \
            "residual mass below the void threshold"
        assert np.all(cur.species[cur.mass == 0.0] == 0), "void cells keep a species"
        assert np.all((cur.genome[:2] >= 0.0) & (cur.genome[:2] <= 1.0))
        assert np.all((cur.genome[SIGMA] >= SIGMA_MIN) & (cur.genome[SIGMA] <= SIGMA_MAX))
        assert np.all((cur.aux >= 0.0) & (cur.aux <= 1.0))
        assert np.all((cur.waste_type >= 0.0) & (cur.waste_type <= 1.0))
    print("  ✓ all channels stayed in bounds")


def _run(seed, workers, steps=5):
    engine = FlowLenia(size=64, seed=seed, workers=workers)
    engine.seed("blocks", density=0.5, block_size=8)
    for _ in range(steps):
        engine.step()
    snap = engine.snapshot()
    engine.executor.shutdown()
    return snap


def test_determinism():
    print("Testing reproducibility...")
    a, b = _run(21, 1), _run(21, 1)
    for key in ("mass", "genome", "aux", "species", "waste_mass", "waste_type"):
        assert np.array_equal(a[key], b[key]), f"{key} differs between identical runs"

    c = _run(21, 4)
    assert np.array_equal(a["species"], c["species"]), "species depend on worker count"
    for key in ("mass", "genome", "aux", "waste_mass", "waste_type"):
        assert np.allclose(a[key], c[key], rtol=0, atol=1e-12), \
            f"{key} depends on worker count"
    print("  ✓ same seed, same result, for 1 and 4 workers")


def test_config_warnings():
    print("Testing configuration fix-ups...")
    engine = FlowLenia(size=0)
    assert engine.size == 8
    assert any("too small" in w for w in engine.config_warnings)
    assert engine.params["R"] == 3, "R should be clamped to the grid"

    engine = FlowLenia(size=32, R=40)
    assert engine.params["R"] == 15
    assert any("kernel radius" in w for w in engine.config_warnings)

    engine = FlowLenia(size=32)
    engine.set_params(bogus=1, size=64)
    assert engine.size == 32
    assert any("bogus" in w for w in engine.config_warnings)
    assert "bogus" not in engine.get_params()
    print("  ✓ bad values clamped and reported")


def test_paint():
    print("Testing paint brushes...")
    engine = FlowLenia(size=48, seed=2)
    engine.seed("blocks", density=0.3, block_size=8)
    target = engine.params["target_mass"]
    total = engine.current.total_mass()

    delta = engine.paint((24, 24), 5, hue=0.3)
    assert delta > 0.0
    assert abs(engine.current.total_mass() - (total + delta)) < 1e-9
    assert abs(engine.params["target_mass"] - (target + delta)) < 1e-9
    painted = engine.current.species[24, 24]
    assert painted != 0
    assert abs(engine.current.genome[STRUCTURE, 24, 24] - 0.3) < 1e-12

    total = engine.current.total_mass()
    living = engine.current.mass.sum()
    assert engine.paint((24, 24), 5, hue=0.0, mode="erase") == 0.0
    assert engine.current.mass.sum() < living
    assert abs(engine.current.total_mass() - total) < 1e-9, "erase must move mass to waste"
    assert engine.current.mass[24, 24] == 0.0
    assert engine.current.species[24, 24] == 0
    print("  ✓ create adds mass, erase buries it")


def test_simulator_driver():
    print("Testing simulator driver...")
    sim = FlowLeniaSimulator("primordial", 32, seed=4)
    sim.set_runtime_params(speed=0.5)
    assert sim.advance() == 0
    assert sim.advance() == 1
    sim.pause()
    assert sim.run(5) == 0
    sim.resume()
    sim.queue_paint((16, 16), 4, hue=0.7)
    assert sim.run(10) == 10
    snap = sim.snapshot()
    assert snap["generation"] == 11
    assert snap["species_stats"], "throttled stats pass should have run"
    try:
        sim.queue_paint((0, 0), 3, mode="smear")
    except ValueError:
        pass
    else:
        raise AssertionError("unknown brush mode accepted")
    print("  ✓ speed accumulator, pause and brushes work")


def test_species_overflow_reported_per_run():
    print("Testing species table overflow warnings...")
    engine = FlowLenia(size=32, seed=1, table_capacity=4)
    engine.seed("dense", block_size=8)
    engine.species_stats()
    assert engine.table.dropped > 0
    reports = [w for w in engine.config_warnings if "capacity 4 exceeded" in w]
    assert len(reports) == 1

    engine.species_stats()
    reports = [w for w in engine.config_warnings if "capacity 4 exceeded" in w]
    assert len(reports) == 1, "one report per seeded run"

    engine.seed("dense", seed=2, block_size=8)
    engine.species_stats()
    reports = [w for w in engine.config_warnings if "capacity 4 exceeded" in w]
    assert len(reports) == 2, "overflow after a reseed went unreported"
    print("  ✓ overflow reported again after reseeding")


def test_preset_switch_releases_workers():
    sim = FlowLeniaSimulator("primordial", 32, seed=4, workers=2)
    old = sim.engine
    assert old.executor._pool is not None
    sim.set_runtime_params(preset="sediment")
    assert sim.engine is not old
    assert old.executor._pool is None, "old thread pool left running"
    sim.engine.executor.shutdown()


if __name__ == "__main__":
    test_uniform_steady_state()
    test_conservation_base()
    test_conservation_physics_floor()
    test_normalization_converges()
    test_invariants_under_radiation()
    test_determinism()
    test_config_warnings()
    test_paint()
    test_simulator_driver()
    test_species_overflow_reported_per_run()
    test_preset_switch_releases_workers()
    print("\nAll Flow Lenia engine tests passed.")
