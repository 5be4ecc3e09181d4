import os
import time
from contextlib import contextmanager
from concurrent.futures import ThreadPoolExecutor, wait, FIRST_EXCEPTION


# Class for timing operations. Initialize to start, call to check elapsed
# seconds, use the `start` and `stop` methods to restart / freeze the timer.
class Timer:
    #-----------------------------------------------------------------
    #                            Private
    _a = None
    _b = None
    # Elapsed time since start (or total time when stopped).
    def _check(self):
        if   (self._a is None): return 0.0
        elif (self._b is None): return time.perf_counter() - self._a
        else:                   return self._b - self._a
    #-----------------------------------------------------------------
    #                             Public
    #
    # Initialization.
    def __init__(self): self.start()
    # If not stopped, return elapsed time, otherwise return total time.
    def __call__(self, precision=2): return float(f"{self._check():.{precision-1}e}")
    def __str__(self): return str(self())
    # Begin (or restart) the timer, return the start time.
    def start(self):
        self._a = time.perf_counter()
        self._b = None
        return self._a
    # Stop the timer, return the total time.
    def stop(self):
        if (self._b is None): self._b = time.perf_counter()
        return self.total
    # Total elapsed seconds at full precision.
    @property
    def total(self): return self._check()
    # Context manager usage, times the enclosed block.
    def __enter__(self):
        self.start()
        return self
    def __exit__(self, *exc):
        self.stop()
        return False


# Number of worker threads to use when none is requested.
def default_threads():
    return os.cpu_count() or 1


# Split [0, count) into contiguous (start, stop) ranges of at most
# "batch_size" elements. The ranges are disjoint and ordered.
def partition(count, batch_size, start=0):
    assert batch_size >= 1, f"partition(count, batch_size), batch_size >= 1 required but received {batch_size}"
    stop = start + count
    return [(i, min(i + batch_size, stop)) for i in range(start, stop, batch_size)]


# Run "task(start, stop)" over every range of "partition(count, batch_size)".
# Each task owns its index range exclusively, so no locking is needed. The
# results are returned in range order (independent of completion order),
# which keeps serial reductions over them deterministic. When "pool" is None
# or there is only a single range, tasks run in the calling thread. The first
# exception raised by any task is re-raised once pending tasks are cancelled
# and running ones have finished, so no task writes after the call returns.
def parallel_for(count, batch_size, task, pool=None, start=0):
    ranges = partition(count, batch_size, start=start)
    if (pool is None) or (len(ranges) <= 1):
        return [task(a, b) for (a, b) in ranges]
    futures = [pool.submit(task, a, b) for (a, b) in ranges]
    done, pending = wait(futures, return_when=FIRST_EXCEPTION)
    for future in pending:
        future.cancel()
    wait(futures)
    for future in futures:
        if future.done() and (not future.cancelled()) and (future.exception() is not None):
            raise future.exception()
    return [future.result() for future in futures]


# Create a thread pool sized for "num_threads" (default all CPUs). Returns
# None when a single thread is requested so work runs inline.
def make_pool(num_threads=None):
    if num_threads is None: num_threads = default_threads()
    if num_threads <= 1: return None
    return ThreadPoolExecutor(max_workers=num_threads, thread_name_prefix="kclust")


# Context manager yielding "pool" when given, otherwise a new pool for
# "num_threads" that is shut down on exit.
@contextmanager
def thread_pool(pool=None, num_threads=None):
    if pool is not None:
        yield pool
        return
    pool = make_pool(num_threads)
    try:
        yield pool
    finally:
        if pool is not None: pool.shutdown(wait=True)
