"""
Stage 6 - Species Statistics Aggregation

A fixed-capacity open-addressing hash table with linear probing, filled
concurrently by the aggregation workers:

- probe from hash32(id) % capacity
- compare-and-swap the slot id from 0 (empty) to this id
- claimed, or already holding this id -> atomically add the counters, stop
- otherwise move to the next slot, at most `capacity` attempts

CAS against the empty sentinel is the only transition a slot's identity can
make, so the table is correct under any interleaving. When more distinct
species are alive than there are slots, the samples that find no slot are
dropped and counted; this is an accepted approximation.

Workers pre-aggregate their row shard with np.unique and insert one record
per (shard, species), so the table sees one CAS chain per distinct id
rather than one per cell.
"""

import logging
import threading

import numpy as np

from .genome import SPEED, AGGRESSION, STRUCTURE, hash32
from .reduction import FIXED_POINT_SCALE

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 256


class SpeciesStats:
    """Aggregate row for one species."""

    __slots__ = ("species_id", "count", "avg_speed", "avg_aggression",
                 "avg_structure")

    def __init__(self, species_id, count, avg_speed, avg_aggression,
                 avg_structure):
        self.species_id = species_id
        self.count = count
        self.avg_speed = avg_speed
        self.avg_aggression = avg_aggression
        self.avg_structure = avg_structure

    def as_dict(self):
        return {
            "species_id": self.species_id,
            "count": self.count,
            "avg_speed": self.avg_speed,
            "avg_aggression": self.avg_aggression,
            "avg_structure": self.avg_structure,
        }

    def __repr__(self):
        return (f"SpeciesStats(id={self.species_id}, count={self.count}, "
                f"speed={self.avg_speed:.3f}, aggression={self.avg_aggression:.3f}, "
                f"structure={self.avg_structure:.3f})")


class SpeciesTable:
    """Open-addressed species table with CAS-claimed slots."""

    def __init__(self, capacity=DEFAULT_CAPACITY):
        self.capacity = max(1, int(capacity))
        self.ids = np.zeros(self.capacity, dtype=np.uint32)
        self.count = np.zeros(self.capacity, dtype=np.int64)
        self.speed_sum = np.zeros(self.capacity, dtype=np.int64)
        self.aggression_sum = np.zeros(self.capacity, dtype=np.int64)
        self.structure_sum = np.zeros(self.capacity, dtype=np.int64)
        self.dropped = 0
        self._id_lock = threading.Lock()
        self._add_lock = threading.Lock()

    def clear(self):
        self.ids[:] = 0
        self.count[:] = 0
        self.speed_sum[:] = 0
        self.aggression_sum[:] = 0
        self.structure_sum[:] = 0
        self.dropped = 0

    def compare_and_swap(self, slot, expected, new):
        """Atomically set ids[slot] = new if it equals expected.

        Returns the id the slot held before the attempt.
        """
        with self._id_lock:
            current = int(self.ids[slot])
            if current == expected:
                self.ids[slot] = new
            return current

    def _atomic_add(self, slot, count, speed, aggression, structure):
        with self._add_lock:
            self.count[slot] += count
            self.speed_sum[slot] += speed
            self.aggression_sum[slot] += aggression
            self.structure_sum[slot] += structure

    def insert(self, species_id, count=1, speed=0.0, aggression=0.0,
               structure=0.0):
        """Add a (pre-aggregated) sample for species_id.

        Sums are plain floats; they are fixed-point encoded here.
        Returns the slot used, or -1 if the sample was dropped.
        """
        species_id = int(species_id)
        if species_id == 0:
            return -1
        slot = int(hash32(species_id)) % self.capacity
        for _ in range(self.capacity):
            previous = self.compare_and_swap(slot, 0, species_id)
            if previous == 0 or previous == species_id:
                self._atomic_add(slot, int(count),
                                 int(speed * FIXED_POINT_SCALE),
                                 int(aggression * FIXED_POINT_SCALE),
                                 int(structure * FIXED_POINT_SCALE))
                return slot
            slot = (slot + 1) % self.capacity
        with self._add_lock:
            self.dropped += int(count)
        return -1

    def entries(self):
        """All occupied slots as SpeciesStats, in slot order."""
        rows = []
        for slot in np.flatnonzero(self.ids):
            n = int(self.count[slot])
            denom = max(n, 1) * FIXED_POINT_SCALE
            rows.append(SpeciesStats(
                int(self.ids[slot]), n,
                self.speed_sum[slot] / denom,
                self.aggression_sum[slot] / denom,
                self.structure_sum[slot] / denom,
            ))
        return rows

    def top(self, n=10):
        """The n most populous species (ties broken by id)."""
        rows = self.entries()
        rows.sort(key=lambda r: (-r.count, r.species_id))
        return rows[:n]

    @property
    def occupied(self):
        return int(np.count_nonzero(self.ids))


def aggregate_species(executor, fields, table):
    """Fill `table` from the species/aux/genome channels of `fields`.

    Read-only over `fields`. Returns the table.
    """
    table.clear()
    height = fields.species.shape[0]

    def kernel(y0, y1):
        ids = fields.species[y0:y1].ravel()
        live = ids != 0
        if not live.any():
            return
        ids = ids[live]
        speed = fields.aux[SPEED, y0:y1].ravel()[live]
        aggression = fields.aux[AGGRESSION, y0:y1].ravel()[live]
        structure = fields.genome[STRUCTURE, y0:y1].ravel()[live]
        uniq, inverse, counts = np.unique(ids, return_inverse=True,
                                          return_counts=True)
        inverse = inverse.ravel()
        speed_sums = np.bincount(inverse, weights=speed, minlength=uniq.size)
        aggr_sums = np.bincount(inverse, weights=aggression, minlength=uniq.size)
        struct_sums = np.bincount(inverse, weights=structure, minlength=uniq.size)
        for i, sid in enumerate(uniq):
            table.insert(sid, counts[i], speed_sums[i], aggr_sums[i],
                         struct_sums[i])

    executor.parallel_for(height, kernel)
    if table.dropped:
        logger.debug("species table full (%d slots): dropped %d cells",
                     table.capacity, table.dropped)
    return table
