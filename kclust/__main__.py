import argparse
import logging
import sys

import numpy as np


DESCRIPTION = """
kclust -- parallel k-means clustering (k-means++ seeding, Lloyd iterations).

### Python

    > import numpy as np, kclust
    > centroids = np.empty((k, dim), dtype=np.float32)
    > labels = np.empty(len(points), dtype=np.int32)
    > result = kclust.cluster(dim, 1, points, centroids, labels, max_iterations=100)

### Command line

    $ python -m kclust [--points N] [--dim D] [--k K] [--minibatch] [--profile]

  Cluster a seeded synthetic data set of Gaussian blobs and print the
  iteration count, the run status, timings and the final centroids.
"""


# Build the argument parser for the command line demo.
def make_parser():
    parser = argparse.ArgumentParser(
        prog="python -m kclust",
        description=DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--points", type=int, default=100_000, help="number of synthetic points")
    parser.add_argument("--dim", type=int, default=3, help="dimension of every point")
    parser.add_argument("--k", type=int, default=8, help="number of clusters")
    parser.add_argument("--centers", type=int, default=None, help="number of generating blobs (default k)")
    parser.add_argument("--stride", type=int, default=1, help="subsample stride used while seeding")
    parser.add_argument("--max-iterations", type=int, default=1024)
    parser.add_argument("--min-delta", type=float, default=0.0)
    parser.add_argument("--seed", type=int, default=0, help="seed of the data and of k-means++")
    parser.add_argument("--threads", type=int, default=None, help="worker threads (default all CPUs)")
    parser.add_argument("--kernel", choices=["scalar", "vector4", "vector8"], default=None)
    parser.add_argument("--minibatch", action="store_true", help="use mini-batch k-means")
    parser.add_argument("--batch-size", type=int, default=1024, help="mini-batch size")
    parser.add_argument("--passes", type=float, default=1.0, help="mini-batch passes over the data")
    parser.add_argument("--profile", action="store_true", help="print time and memory per stage")
    parser.add_argument("-v", "--verbose", action="count", default=0)
    return parser


def main(argv=None):
    from kclust import ClusterConfig, cluster, minibatch_cluster
    from kclust.profiling import ProfilingObserver
    from kclust.random import blobs
    from kclust.system import Timer

    args = make_parser().parse_args(argv)
    logging.basicConfig(
        level=(logging.WARNING, logging.INFO, logging.DEBUG)[min(args.verbose, 2)],
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )
    config = ClusterConfig.from_env(num_threads=args.threads, kernel=args.kernel)
    observer = ProfilingObserver() if args.profile else None

    t = Timer()
    points, _ = blobs(args.points, args.dim, centers=args.centers or args.k, seed=args.seed)
    print(f"generated {args.points} points of dim {args.dim} in {t()} seconds", flush=True)

    centroids = np.empty((args.k, args.dim), dtype=np.float32)
    labels = np.empty(args.points, dtype=np.int32)
    t.start()
    if args.minibatch:
        result = minibatch_cluster(
            args.dim, points, centroids, labels, args.batch_size, args.passes,
            rng_seed=args.seed + 1, observer=observer, config=config,
        )
    else:
        result = cluster(
            args.dim, args.stride, points, centroids, labels,
            args.max_iterations, args.min_delta,
            rng_seed=args.seed, observer=observer, config=config,
        )
    t.stop()
    print(f"{result.status.value} after {result.iterations} iterations in {t()} seconds"
          + (f" ({result.stop_reason.value})" if result.stop_reason else ""))
    counts = np.bincount(labels, minlength=args.k)
    with np.printoptions(precision=3, suppress=True):
        for i, (c, n) in enumerate(zip(centroids, counts)):
            print(f"  {i:3d}  {n:8d}  {c}")
    if observer is not None:
        print()
        print(observer.summary())
    return 0 if not result.cancelled else 1


if __name__ == "__main__":
    sys.exit(main())
