"""
Parallel-for executor and the atomic primitives used by the reductions.

Stages are written as row-band kernels: `kernel(y0, y1)` reads the full
source arrays and writes only rows [y0, y1) of its destination arrays.
`ParallelExecutor.parallel_for` splits the grid into row bands, runs the
bands on a thread pool (numpy releases the GIL inside its loops) and
blocks until every band has finished. With one worker the bands run
inline, so results never depend on the worker count.
"""

import os
import threading
from concurrent.futures import ThreadPoolExecutor


class ParallelExecutor:
    """Bulk-synchronous parallel-for over row bands of a 2D grid."""

    def __init__(self, workers=None, min_band=8):
        if workers is None:
            workers = os.cpu_count() or 1
        self.workers = max(1, int(workers))
        self.min_band = max(1, int(min_band))
        self._pool = None
        if self.workers > 1:
            self._pool = ThreadPoolExecutor(max_workers=self.workers,
                                            thread_name_prefix="flow-lenia")

    def bands(self, height):
        """Split [0, height) into at most `workers` contiguous bands."""
        n = min(self.workers, max(1, height // self.min_band))
        step = -(-height // n)
        return [(y0, min(height, y0 + step)) for y0 in range(0, height, step)]

    def parallel_for(self, height, kernel):
        """Run kernel(y0, y1) over every band and wait for all of them.

        Exceptions raised inside a band propagate to the caller.
        """
        bands = self.bands(height)
        if self._pool is None or len(bands) == 1:
            return [kernel(y0, y1) for y0, y1 in bands]
        futures = [self._pool.submit(kernel, y0, y1) for y0, y1 in bands]
        return [f.result() for f in futures]

    def shutdown(self):
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None


class AtomicCounter:
    """Lock-guarded accumulator standing in for a hardware atomic add."""

    def __init__(self, value=0):
        self._value = value
        self._lock = threading.Lock()

    def add(self, amount):
        with self._lock:
            self._value += amount
            return self._value

    @property
    def value(self):
        with self._lock:
            return self._value

    def reset(self, value=0):
        with self._lock:
            self._value = value
