# Tools for profiling clustering runs (time and memory per stage).
import psutil

from kclust.progress import ClusterObserver
from kclust.system import Timer


# Declare the divisors for different memory units.
MEM_UNIT_DIVISORS = {
    "KB" : 2**10,
    "MB" : 2**20,
    "GB" : 2**30,
    "TB" : 2**40,
}


# Return the memory usage currently of this process.
def mem_use(proc=None, unit="MB"):
    if proc is None: proc = psutil.Process()
    return proc.memory_info().rss / MEM_UNIT_DIVISORS[unit]


# Observer that records wall time and resident memory change for every
# named stage the engine reports. Nested stages are timed independently.
#
# Example:
#
#   profiler = ProfilingObserver()
#   cluster(dim, 1, points, centroids, labels, observer=profiler)
#   print(profiler.summary())
#
class ProfilingObserver(ClusterObserver):
    def __init__(self, process=None):
        self.process = psutil.Process() if process is None else process
        # name -> [total seconds, total rss delta bytes, peak rss bytes, executions]
        self.stats = {}
        self._open = {}

    def stage_begin(self, name):
        self._open[name] = (Timer(), self.process.memory_info().rss)

    def stage_end(self, name):
        timer, mem_before = self._open.pop(name)
        elapsed = timer.stop()
        mem = self.process.memory_info().rss
        stats = self.stats.setdefault(name, [0.0, 0, 0, 0])
        stats[0] += elapsed
        stats[1] += mem - mem_before
        stats[2] = max(stats[2], mem)
        stats[3] += 1

    # Total seconds spent in stage "name" (0 if never observed).
    def seconds(self, name):
        return self.stats.get(name, [0.0])[0]

    # Number of times stage "name" completed.
    def executions(self, name):
        return self.stats.get(name, [0, 0, 0, 0])[3]

    # Generate a summary table string of all observed stages.
    def summary(self, munit="MB", tunit="s", tdiv=1):
        if len(self.stats) == 0:
            return "No stages have been observed."
        mdiv = MEM_UNIT_DIVISORS[munit]
        rows = []
        for name, (seconds, mdelta, peak, execs) in sorted(self.stats.items()):
            rows.append((
                name,
                f"{seconds / tdiv:.3f}{tunit}",
                f"{mdelta / mdiv:.2f}{munit}",
                f"{peak / mdiv:.2f}{munit}",
                f"{execs}",
            ))
        header = ("Stage", "Time", "MDelta", "Peak", "Execs")
        widths = [max(len(r[i]) for r in rows + [header]) for i in range(len(header))]
        line = lambda r: "  ".join(f"{v:<{w}s}" for (v, w) in zip(r, widths))
        bar = "-" * (sum(widths) + 2 * (len(widths) - 1))
        return "\n".join([line(header), bar] + [line(r) for r in rows] + [bar])
